"""Watch mode: keep the fleet converged."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Iterable, List, Optional

from watchfiles import awatch

from podfleet.agent.config import ConfigManager
from podfleet.agent.engine import FleetEngine, resolve_phases
from podfleet.runtime import RuntimeRegistry
from podfleet.utils.logging import setup_logging


logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "PODFLEET_CONFIG_DIR"


def default_config_dir() -> Path:
    """Configuration directory from the environment, or ./configs."""
    return Path(os.environ.get(CONFIG_DIR_ENV) or "./configs")


def yaml_filter(change, path: str) -> bool:
    """Only YAML files trigger a reload."""
    return path.endswith((".yaml", ".yml"))


class FleetAgent:
    """Reconciles periodically and whenever the configuration changes."""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        hosts: Optional[Iterable[str]] = None,
        phases: Optional[Iterable[str]] = None,
        prune: Optional[bool] = None,
        log_level: Optional[str] = None,
    ):
        """Initialize the agent."""
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.hosts = list(hosts) if hosts else None
        self.phases = resolve_phases(phases)
        self.prune = prune
        self.log_level = log_level
        self.config_manager: Optional[ConfigManager] = None
        self.engine: Optional[FleetEngine] = None
        self.shutdown_event = asyncio.Event()
        self.cancel_event = asyncio.Event()
        self._reconcile_requested = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def initialize(self):
        """Initialize agent components."""
        self.config_manager = ConfigManager(self.config_dir)
        await self.config_manager.load()

        # Setup logging
        config = self.config_manager.config
        setup_logging(self.log_level or config.logging.level, fmt=config.logging.format)

        self.engine = FleetEngine(
            config_manager=self.config_manager,
            runtime_registry=RuntimeRegistry(),
            cancel_event=self.cancel_event,
        )
        logger.info("Agent initialized successfully")

    async def run(self):
        """Run the agent main loop."""
        await self.initialize()

        # Setup signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            self._tasks.append(asyncio.create_task(self._reconciliation_loop()))
            self._tasks.append(asyncio.create_task(self._config_watch_loop()))

            logger.info("Agent started, waiting for shutdown signal")
            await self.shutdown_event.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self._cleanup()

    async def _reconciliation_loop(self):
        """Reconcile now, then on every interval or configuration change."""
        while not self.shutdown_event.is_set():
            self._reconcile_requested.clear()
            try:
                logger.debug("Starting reconciliation cycle")
                await self.engine.reconcile(hosts=self.hosts, phases=self.phases, prune=self.prune)
                logger.debug("Reconciliation cycle completed")
            except Exception as e:
                logger.error(f"Reconciliation error: {e}", exc_info=True)

            interval = self.config_manager.config.agent.reconciliation_interval
            await self._wait_for_trigger(interval)

    async def _wait_for_trigger(self, interval: float):
        """Sleep until the interval elapses, a reload happens or shutdown."""
        waiters = [
            asyncio.create_task(self.shutdown_event.wait()),
            asyncio.create_task(self._reconcile_requested.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    async def _config_watch_loop(self):
        """Watch for configuration changes."""
        logger.info(f"Starting config watcher on {self.config_manager.config_dir}")
        try:
            async for _ in awatch(
                self.config_manager.config_dir,
                watch_filter=yaml_filter,
                stop_event=self.shutdown_event,
            ):
                if not await self.config_manager.watch_for_changes():
                    continue
                logger.info("Configuration changed, reloading")
                try:
                    await self.config_manager.load()
                except Exception as e:
                    logger.error(f"Failed to reload configuration, keeping previous: {e}")
                    continue
                self._reconcile_requested.set()
        except Exception as e:
            if not self.shutdown_event.is_set():
                logger.error(f"Config watch error: {e}", exc_info=True)

    def shutdown(self):
        """Signal shutdown; operations already running are allowed to finish."""
        logger.info("Shutdown requested")
        self.cancel_event.set()
        self.shutdown_event.set()

    async def _cleanup(self):
        """Wait for the loops to wind down."""
        logger.info("Cleaning up agent resources")
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Agent cleanup completed")


async def run_agent(
    config_dir: Optional[Path] = None,
    hosts: Optional[Iterable[str]] = None,
    phases: Optional[Iterable[str]] = None,
    prune: Optional[bool] = None,
    log_level: Optional[str] = None,
):
    """Run the agent."""
    agent = FleetAgent(config_dir=config_dir, hosts=hosts, phases=phases, prune=prune, log_level=log_level)
    await agent.run()
