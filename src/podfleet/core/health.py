"""Readiness probes for newly started containers."""

import asyncio
import logging

import httpx

from podfleet.errors import HealthCheckTimeout, RuntimeOperationError
from podfleet.models.host import HealthCheckSpec, HostProfile
from podfleet.runtime.base import BaseRuntime


logger = logging.getLogger(__name__)


def default_probe_host(host: HostProfile) -> str:
    """Address TCP probes connect to when a check does not name one."""
    if host.transport == "ssh" and host.address:
        return host.address.rsplit("@", 1)[-1]
    return "127.0.0.1"


class HealthChecker:
    """Polls a container's readiness probe without blocking the event loop."""

    def __init__(self, runtime: BaseRuntime, probe_host: str = "127.0.0.1"):
        """Initialize health checker."""
        self.runtime = runtime
        self.probe_host = probe_host

    async def probe(self, container: str, check: HealthCheckSpec) -> bool:
        """Run one probe. Returns True when the container is ready."""
        if check.type == "tcp":
            return await self._probe_tcp(check.host or self.probe_host, check.port, check.interval)
        if check.type == "http":
            return await self._probe_http(check.url, check.expect_status, check.interval)
        return await self._probe_command(container, check)

    async def wait_ready(self, container: str, check: HealthCheckSpec) -> float:
        """
        Poll until the probe succeeds.

        Returns the seconds waited. Raises HealthCheckTimeout when
        ``check.timeout`` elapses first; the container is left as it is.
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + check.timeout
        attempts = 0

        while True:
            attempts += 1
            if await self.probe(container, check):
                waited = loop.time() - start
                logger.debug(f"Container {container} ready after {waited:.1f}s ({attempts} probes)")
                return waited
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(check.interval, remaining))

        raise HealthCheckTimeout(
            f"Container {container} not ready after {check.timeout}s ({check.type} probe, {attempts} attempts)",
            details={"container": container, "attempts": attempts},
        )

    async def _probe_tcp(self, host: str, port: int, timeout: float) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _probe_http(self, url: str, expect_status: int, timeout: float) -> bool:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"HTTP probe {url} failed: {e}")
            return False
        return response.status_code == expect_status

    async def _probe_command(self, container: str, check: HealthCheckSpec) -> bool:
        try:
            exit_code = await asyncio.wait_for(
                self.runtime.exec_in_container(container, list(check.command)),
                timeout=check.interval + 10,
            )
        except (RuntimeOperationError, asyncio.TimeoutError) as e:
            logger.debug(f"Command probe in {container} failed: {e}")
            return False
        return exit_code == check.expect_exit
