"""Plan execution with dependency ordering, retries and readiness probes."""

import asyncio
import logging
from typing import Dict, List, Optional

from podfleet.core.health import HealthChecker
from podfleet.core.planner import diff_container
from podfleet.errors import (
    HealthCheckTimeout,
    ResourceExistsError,
    ResourceNotFoundError,
    RuntimeOperationError,
    TransientRuntimeError,
)
from podfleet.models.config import ExecutorConfig
from podfleet.models.host import ContainerSpec
from podfleet.models.plan import STARTING_KINDS, Operation, OperationKind, ReconciliationPlan
from podfleet.models.report import OperationResult, ResultStatus
from podfleet.runtime.base import BaseRuntime


logger = logging.getLogger(__name__)

_SUCCESS = (ResultStatus.APPLIED, ResultStatus.UNCHANGED)


class Executor:
    """Applies a ReconciliationPlan to one host's runtime."""

    def __init__(
        self,
        runtime: BaseRuntime,
        config: Optional[ExecutorConfig] = None,
        health_checker: Optional[HealthChecker] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        """Initialize executor."""
        self.runtime = runtime
        self.config = config or ExecutorConfig()
        self.health_checker = health_checker
        self.cancel_event = cancel_event or asyncio.Event()

    async def execute(self, plan: ReconciliationPlan) -> List[OperationResult]:
        """
        Run every operation of ``plan``.

        Independent operations run concurrently, bounded by
        ``config.workers``. An operation starts only after all of its
        dependencies finished; if any of them did not succeed it is
        reported as skipped. Once the cancel event is set no new operation
        starts, while those already running are allowed to finish.
        """
        results: Dict[str, OperationResult] = {}
        finished = {op.op_id: asyncio.Event() for op in plan.operations}
        semaphore = asyncio.Semaphore(self.config.workers)

        async def run(operation: Operation) -> None:
            try:
                for dep in operation.depends_on:
                    if dep in finished:
                        await finished[dep].wait()
                if self.cancel_event.is_set():
                    results[operation.op_id] = self._result(operation, ResultStatus.CANCELLED)
                    return
                blocked = [
                    dep for dep in operation.depends_on
                    if dep in results and results[dep].status not in _SUCCESS
                ]
                if blocked:
                    logger.warning(f"[{plan.host}] Skipping {operation.describe()}: {', '.join(blocked)} did not succeed")
                    results[operation.op_id] = self._result(
                        operation, ResultStatus.SKIPPED,
                        error=f"dependency failed: {', '.join(blocked)}",
                    )
                    return
                async with semaphore:
                    if self.cancel_event.is_set():
                        results[operation.op_id] = self._result(operation, ResultStatus.CANCELLED)
                        return
                    result = await self._apply(plan.host, operation)
                # Readiness polling does not hold a worker slot.
                if result.status in _SUCCESS and self._needs_probe(operation):
                    result = await self._wait_ready(plan.host, operation, result)
                results[operation.op_id] = result
            except Exception as e:
                logger.error(f"[{plan.host}] Unexpected error in {operation.describe()}: {e}", exc_info=True)
                results[operation.op_id] = self._result(
                    operation, ResultStatus.FAILED, error=str(e), error_type=type(e).__name__,
                )
            finally:
                finished[operation.op_id].set()

        await asyncio.gather(*(run(operation) for operation in plan.operations))
        return [results[operation.op_id] for operation in plan.operations]

    async def _apply(self, host: str, operation: Operation) -> OperationResult:
        loop = asyncio.get_running_loop()
        start = loop.time()
        attempts = 0

        while True:
            attempts += 1
            try:
                status = await self._dispatch(operation)
                break
            except TransientRuntimeError as e:
                if attempts >= self.config.max_attempts:
                    logger.error(f"[{host}] {operation.describe()} failed after {attempts} attempts: {e}")
                    return self._result(
                        operation, ResultStatus.FAILED, error=str(e), error_type=type(e).__name__,
                        attempts=attempts, duration=loop.time() - start,
                    )
                delay = self.config.backoff * (2 ** (attempts - 1))
                logger.warning(f"[{host}] {operation.describe()} failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
            except RuntimeOperationError as e:
                logger.error(f"[{host}] {operation.describe()} failed: {e}")
                return self._result(
                    operation, ResultStatus.FAILED, error=str(e), error_type=type(e).__name__,
                    attempts=attempts, duration=loop.time() - start,
                )

        logger.info(f"[{host}] {operation.describe()}: {status.value}")
        return self._result(operation, status, attempts=attempts, duration=loop.time() - start)

    def _needs_probe(self, operation: Operation) -> bool:
        spec = operation.spec
        return (
            self.health_checker is not None
            and operation.kind in STARTING_KINDS
            and isinstance(spec, ContainerSpec)
            and spec.state == "running"
            and spec.health_check is not None
        )

    async def _wait_ready(self, host: str, operation: Operation, result: OperationResult) -> OperationResult:
        spec = operation.spec
        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            await self.health_checker.wait_ready(spec.name, spec.health_check)
        except HealthCheckTimeout as e:
            logger.error(f"[{host}] {e}; container left running for inspection")
            return self._result(
                operation, ResultStatus.FAILED, error=str(e), error_type=type(e).__name__,
                detail=HealthCheckTimeout.reason, attempts=result.attempts,
                duration=result.duration + loop.time() - start,
            )
        result.detail = "healthy"
        result.duration += loop.time() - start
        return result

    async def _dispatch(self, operation: Operation) -> ResultStatus:
        kind = operation.kind
        runtime = self.runtime

        if kind is OperationKind.CREATE_NETWORK:
            try:
                await runtime.create_network(operation.spec)
            except ResourceExistsError:
                logger.info(f"Network {operation.target} was created concurrently")
                return ResultStatus.UNCHANGED
            return ResultStatus.APPLIED

        if kind is OperationKind.CREATE_DIRECTORY:
            await runtime.ensure_directory(operation.spec)
            return ResultStatus.APPLIED

        if kind is OperationKind.PULL_IMAGE:
            await runtime.pull_image(operation.target)
            return ResultStatus.APPLIED

        if kind is OperationKind.CREATE_CONTAINER:
            return await self._create(operation.spec)

        if kind is OperationKind.RECREATE_CONTAINER:
            await self._remove(operation.target)
            return await self._create(operation.spec)

        if kind is OperationKind.UPDATE_CONTAINER:
            await runtime.update_container(operation.spec)
            return ResultStatus.APPLIED

        if kind is OperationKind.REMOVE_CONTAINER:
            removed = await self._remove(operation.target)
            return ResultStatus.APPLIED if removed else ResultStatus.UNCHANGED

        if kind is OperationKind.START_CONTAINER:
            await runtime.start_container(operation.target)
            return ResultStatus.APPLIED

        if kind is OperationKind.STOP_CONTAINER:
            await runtime.stop_container(operation.target)
            return ResultStatus.APPLIED

        if kind is OperationKind.RESTART_CONTAINER:
            await runtime.stop_container(operation.target)
            await runtime.start_container(operation.target)
            return ResultStatus.APPLIED

        raise ValueError(f"Unsupported operation kind: {kind}")

    async def _create(self, spec: ContainerSpec) -> ResultStatus:
        status = ResultStatus.APPLIED
        try:
            await self.runtime.create_container(spec)
        except ResourceExistsError:
            # Someone else created it in the meantime; re-check and converge.
            live = await self.runtime.inspect_container(spec.name)
            changes = diff_container(spec, live)
            if changes:
                logger.info(f"Container {spec.name} appeared concurrently with drift ({', '.join(changes)}), recreating")
                await self._remove(spec.name)
                await self.runtime.create_container(spec)
            else:
                logger.info(f"Container {spec.name} appeared concurrently and matches its declaration")
                status = ResultStatus.UNCHANGED
                if spec.state == "stopped" and live.is_running:
                    await self.runtime.stop_container(spec.name)
                    return status
                if (spec.state == "running") == live.is_running:
                    return status
        if spec.state == "running":
            await self.runtime.start_container(spec.name)
        return status

    async def _remove(self, name: str) -> bool:
        try:
            await self.runtime.remove_container(name)
        except ResourceNotFoundError:
            return False
        return True

    @staticmethod
    def _result(
        operation: Operation,
        status: ResultStatus,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        detail: Optional[str] = None,
        attempts: int = 0,
        duration: float = 0.0,
    ) -> OperationResult:
        return OperationResult(
            op_id=operation.op_id,
            kind=operation.kind,
            target=operation.target,
            status=status,
            error=error,
            error_type=error_type,
            detail=detail,
            attempts=attempts,
            duration=duration,
        )
