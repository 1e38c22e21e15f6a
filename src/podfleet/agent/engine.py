"""Fleet reconciliation engine."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from podfleet.agent.config import ConfigManager
from podfleet.core.executor import Executor
from podfleet.core.health import HealthChecker, default_probe_host
from podfleet.core.inspector import Inspector
from podfleet.core.planner import DEFAULT_PHASES, PHASES, Planner
from podfleet.core.reporter import StatusReporter
from podfleet.errors import ValidationError
from podfleet.models.live import InspectionResult
from podfleet.models.plan import ReconciliationPlan
from podfleet.models.report import HostReport, RunReport
from podfleet.runtime import RuntimeRegistry


logger = logging.getLogger(__name__)


@dataclass
class HostRun:
    """Everything produced for one host during a run."""
    host: str
    report: HostReport
    plan: Optional[ReconciliationPlan] = None
    live: Optional[InspectionResult] = None


@dataclass
class FleetRun:
    """Result of one run over the selected hosts."""
    report: RunReport
    hosts: List[HostRun] = field(default_factory=list)

    @property
    def plans(self) -> List[ReconciliationPlan]:
        return [run.plan for run in self.hosts if run.plan is not None]

    @property
    def inspections(self) -> List[InspectionResult]:
        return [run.live for run in self.hosts if run.live is not None]


def resolve_phases(tags: Optional[Iterable[str]] = None) -> frozenset:
    """Phases selected by ``tags``; the default set when none are given."""
    if not tags:
        return DEFAULT_PHASES
    selected = frozenset(tags)
    unknown = sorted(selected - set(PHASES))
    if unknown:
        raise ValidationError(f"Unknown phase(s): {', '.join(unknown)}; valid phases: {', '.join(PHASES)}")
    return selected


class FleetEngine:
    """Inspects, plans and converges every selected host."""

    def __init__(
        self,
        config_manager: ConfigManager,
        runtime_registry: Optional[RuntimeRegistry] = None,
        reporter: Optional[StatusReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        """Initialize fleet engine."""
        self.config_manager = config_manager
        self.runtime_registry = runtime_registry or RuntimeRegistry()
        self.reporter = reporter or StatusReporter()
        self.cancel_event = cancel_event or asyncio.Event()
        self.last_reconciliation: Optional[datetime] = None
        self.last_report: Optional[RunReport] = None
        self._reconciliation_lock = asyncio.Lock()

    async def reconcile(
        self,
        hosts: Optional[Iterable[str]] = None,
        phases: Optional[Iterable[str]] = None,
        dry_run: bool = False,
        prune: Optional[bool] = None,
    ) -> RunReport:
        """Perform a full reconciliation and log its summary."""
        async with self._reconciliation_lock:
            run = await self.run(hosts=hosts, phases=phases, dry_run=dry_run, prune=prune)
            self.last_reconciliation = datetime.now()
            self.last_report = run.report
            self.reporter.log_summary(run.report)
            return run.report

    async def run(
        self,
        hosts: Optional[Iterable[str]] = None,
        phases: Optional[Iterable[str]] = None,
        dry_run: bool = False,
        prune: Optional[bool] = None,
    ) -> FleetRun:
        """
        Run the selected phases on the selected hosts.

        Hosts are handled concurrently, at most ``executor.host_parallelism``
        at a time, and never share state. A host that cannot be validated,
        inspected or planned gets a report carrying the error; other hosts
        are unaffected.
        """
        selected_phases = resolve_phases(phases)
        names = self.config_manager.select(hosts)
        config = self.config_manager.config
        if prune is None:
            prune = config.agent.prune

        loop = asyncio.get_running_loop()
        start = loop.time()
        semaphore = asyncio.Semaphore(config.executor.host_parallelism)
        logger.info(
            f"Starting {'dry run' if dry_run else 'reconciliation'} of {len(names)} host(s), "
            f"phases: {', '.join(sorted(selected_phases))}"
        )

        async def bounded(name: str) -> HostRun:
            async with semaphore:
                return await self._run_host(name, selected_phases, dry_run, prune)

        host_runs = await asyncio.gather(*(bounded(name) for name in names))
        report = RunReport(
            hosts=[run.report for run in host_runs],
            dry_run=dry_run,
            duration=loop.time() - start,
        )
        return FleetRun(report=report, hosts=list(host_runs))

    async def _run_host(self, name: str, phases: frozenset, dry_run: bool, prune: bool) -> HostRun:
        loop = asyncio.get_running_loop()
        start = loop.time()
        profile = self.config_manager.get_host(name)
        if profile is None:
            error = self.config_manager.host_errors.get(name) or ValidationError(f"Host {name} is not declared")
            return HostRun(host=name, report=self.reporter.error_report(name, error, dry_run))

        config = self.config_manager.config
        try:
            runtime = self.runtime_registry.create(config.runtime, profile)
            inspector = Inspector(runtime)
            planner = Planner(supports_in_place_update=runtime.supports_in_place_update, prune=prune)
            images: List[str] = []
            if "images" in phases:
                images = list(dict.fromkeys(c.image for c in profile.containers if c.state != "absent"))

            live = await inspector.inspect(profile, images)
            plan = planner.plan(profile, live, phases)
        except Exception as e:
            logger.error(f"[{name}] Cannot plan host: {e}", exc_info=not isinstance(e, ValidationError))
            return HostRun(
                host=name,
                report=self.reporter.error_report(name, e, dry_run, loop.time() - start),
            )

        if dry_run:
            results = self.reporter.planned_results(plan)
        else:
            health_checker = None
            if "health-check" in phases:
                health_checker = HealthChecker(runtime, default_probe_host(profile))
            executor = Executor(runtime, config.executor, health_checker, self.cancel_event)
            results = await executor.execute(plan)

        report = self.reporter.host_report(plan, results, dry_run=dry_run)
        reload_error = self.config_manager.host_errors.get(name)
        if reload_error is not None:
            # The previous declaration was used
            report.warnings.insert(
                0, f"Declaration failed to reload, previous version applied: {'; '.join(reload_error.errors)}",
            )

        if "verification" in phases and not dry_run and not self.cancel_event.is_set():
            try:
                after = await inspector.inspect(profile, images)
                remaining = planner.plan(profile, after, phases)
            except Exception as e:
                logger.error(f"[{name}] Verification failed: {e}")
                report.drift = [f"verification failed: {e}"]
            else:
                report.drift = remaining.summary()
                live = after
                if remaining.is_empty:
                    logger.info(f"[{name}] Verified: live state matches the declaration")

        report.duration = loop.time() - start
        return HostRun(host=name, report=report, plan=plan, live=live)
