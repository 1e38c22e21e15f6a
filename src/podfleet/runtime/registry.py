"""Runtime registry mapping backend names to runtime classes."""

import logging
from typing import Dict, List, Type

from podfleet.models.config import RuntimeConfig
from podfleet.models.host import HostProfile
from podfleet.runtime.base import BaseRuntime
from podfleet.runtime.podman import PodmanRuntime


logger = logging.getLogger(__name__)


class RuntimeRegistry:
    """Registry for runtime backends."""

    def __init__(self):
        """Initialize runtime registry."""
        self._runtime_classes: Dict[str, Type[BaseRuntime]] = {
            "podman": PodmanRuntime,
        }

    def register(self, name: str, runtime_class: Type[BaseRuntime]) -> None:
        """Register an additional backend."""
        self._runtime_classes[name] = runtime_class

    def create(self, config: RuntimeConfig, host: HostProfile) -> BaseRuntime:
        """Instantiate the configured backend for a host."""
        runtime_class = self._runtime_classes.get(config.backend)
        if runtime_class is None:
            raise ValueError(f"Unknown runtime backend: {config.backend}")
        logger.debug(f"Using {config.backend} runtime for host {host.name}")
        return runtime_class(config, host)

    def list_backends(self) -> List[str]:
        """List available backend names."""
        return list(self._runtime_classes.keys())
