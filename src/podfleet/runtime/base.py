"""Base runtime interface."""

from abc import ABC, abstractmethod
from typing import List

from podfleet.models.host import ContainerSpec, DirectorySpec, NetworkSpec
from podfleet.models.live import LiveContainer, LiveDirectory, LiveNetwork


class BaseRuntime(ABC):
    """Capabilities the reconciler needs from a container engine on one host."""

    supports_in_place_update: bool = False

    @abstractmethod
    async def list_containers(self) -> List[str]:
        """Names of all containers, running or not."""
        pass

    @abstractmethod
    async def inspect_container(self, name: str) -> LiveContainer:
        """Inspect a single container."""
        pass

    @abstractmethod
    async def create_container(self, spec: ContainerSpec) -> None:
        """Create (but do not start) a container."""
        pass

    @abstractmethod
    async def start_container(self, name: str) -> None:
        """Start a container."""
        pass

    @abstractmethod
    async def stop_container(self, name: str) -> None:
        """Stop a container."""
        pass

    @abstractmethod
    async def remove_container(self, name: str) -> None:
        """Remove a container, stopping it first if needed."""
        pass

    @abstractmethod
    async def update_container(self, spec: ContainerSpec) -> None:
        """Apply in-place updatable attributes to an existing container."""
        pass

    @abstractmethod
    async def list_networks(self) -> List[LiveNetwork]:
        """All networks known to the engine."""
        pass

    @abstractmethod
    async def create_network(self, spec: NetworkSpec) -> None:
        """Create a network."""
        pass

    @abstractmethod
    async def exec_in_container(self, name: str, command: List[str]) -> int:
        """Run a command inside a container and return its exit code."""
        pass

    @abstractmethod
    async def image_exists(self, image: str) -> bool:
        """Check whether an image is available locally."""
        pass

    @abstractmethod
    async def pull_image(self, image: str) -> None:
        """Pull an image."""
        pass

    @abstractmethod
    async def stat_directory(self, path: str) -> LiveDirectory:
        """Report existence, mode and ownership of a host path."""
        pass

    @abstractmethod
    async def ensure_directory(self, spec: DirectorySpec) -> None:
        """Create a directory and apply its mode and ownership."""
        pass
