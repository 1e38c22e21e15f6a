"""Shared fixtures: an in-memory runtime and configuration directories."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from podfleet.errors import ResourceExistsError, ResourceNotFoundError
from podfleet.models.host import ContainerSpec, DirectorySpec, HostProfile, NetworkSpec
from podfleet.models.live import HOST_LABEL, MANAGED_LABEL, SPEC_LABEL, LiveContainer, LiveDirectory, LiveNetwork
from podfleet.runtime.base import BaseRuntime


class FakeRuntime(BaseRuntime):
    """Runtime keeping containers, networks and directories in memory."""

    supports_in_place_update = True

    def __init__(self, host: str = "node1"):
        self.host = host
        self.containers: Dict[str, LiveContainer] = {}
        self.networks: Dict[str, LiveNetwork] = {}
        self.directories: Dict[str, LiveDirectory] = {}
        self.images = set()
        self.exec_results: Dict[str, int] = {}
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], List[Exception]] = {}

    def fail(self, method: str, name: str, *errors: Exception) -> None:
        """Make the next calls of ``method`` on ``name`` raise ``errors`` in turn."""
        self._failures.setdefault((method, name), []).extend(errors)

    def _record(self, method: str, name: str) -> None:
        self.calls.append((method, name))
        pending = self._failures.get((method, name))
        if pending:
            raise pending.pop(0)

    def mutating_calls(self) -> List[Tuple[str, str]]:
        readonly = {"list_containers", "inspect_container", "list_networks", "stat_directory", "image_exists", "exec"}
        return [call for call in self.calls if call[0] not in readonly]

    def add_container(self, spec: ContainerSpec, status: str = "running", **overrides) -> LiveContainer:
        """Put a container in place as if it had been created from ``spec``."""
        container = LiveContainer(
            name=spec.name,
            image=spec.image,
            status=status,
            labels={
                MANAGED_LABEL: "true",
                HOST_LABEL: self.host,
                SPEC_LABEL: spec.fingerprint(),
                **spec.labels,
            },
            networks=list(spec.declared_networks),
            restart_policy=spec.restart_policy,
        )
        for key, value in overrides.items():
            setattr(container, key, value)
        self.containers[spec.name] = container
        return container

    async def list_containers(self) -> List[str]:
        self._record("list_containers", "")
        return list(self.containers)

    async def inspect_container(self, name: str) -> LiveContainer:
        self._record("inspect_container", name)
        if name not in self.containers:
            raise ResourceNotFoundError(f"no such container {name}")
        return self.containers[name]

    async def create_container(self, spec: ContainerSpec) -> None:
        self._record("create_container", spec.name)
        if spec.name in self.containers:
            raise ResourceExistsError(f"the container name {spec.name} is already in use")
        self.add_container(spec, status="created")

    async def start_container(self, name: str) -> None:
        self._record("start_container", name)
        if name not in self.containers:
            raise ResourceNotFoundError(f"no such container {name}")
        self.containers[name].status = "running"
        self.containers[name].health = None

    async def stop_container(self, name: str) -> None:
        self._record("stop_container", name)
        if name not in self.containers:
            raise ResourceNotFoundError(f"no such container {name}")
        self.containers[name].status = "exited"

    async def remove_container(self, name: str) -> None:
        self._record("remove_container", name)
        if name not in self.containers:
            raise ResourceNotFoundError(f"no such container {name}")
        del self.containers[name]

    async def update_container(self, spec: ContainerSpec) -> None:
        self._record("update_container", spec.name)
        self.containers[spec.name].restart_policy = spec.restart_policy

    async def list_networks(self) -> List[LiveNetwork]:
        self._record("list_networks", "")
        return list(self.networks.values())

    async def create_network(self, spec: NetworkSpec) -> None:
        self._record("create_network", spec.name)
        if spec.name in self.networks:
            raise ResourceExistsError(f"network name {spec.name} already exists")
        subnets = [spec.subnet] if spec.subnet else []
        self.networks[spec.name] = LiveNetwork(name=spec.name, driver=spec.driver or "bridge", subnets=subnets)

    async def exec_in_container(self, name: str, command: List[str]) -> int:
        self._record("exec", name)
        return self.exec_results.get(name, 0)

    async def image_exists(self, image: str) -> bool:
        self._record("image_exists", image)
        return image in self.images

    async def pull_image(self, image: str) -> None:
        self._record("pull_image", image)
        self.images.add(image)

    async def stat_directory(self, path: str) -> LiveDirectory:
        self._record("stat_directory", path)
        return self.directories.get(path) or LiveDirectory(path=path, exists=False)

    async def ensure_directory(self, spec: DirectorySpec) -> None:
        self._record("ensure_directory", spec.path)
        self.directories[spec.path] = LiveDirectory(
            path=spec.path,
            exists=True,
            mode=spec.mode,
            owner=spec.owner or "root",
            group=spec.group or "root",
            uid="0",
            gid="0",
        )


class FakeRegistry:
    """Stands in for RuntimeRegistry, handing out one FakeRuntime per host."""

    def __init__(self, runtimes: Optional[Dict[str, FakeRuntime]] = None):
        self.runtimes = runtimes or {}

    def create(self, config, host: HostProfile) -> FakeRuntime:
        if host.name not in self.runtimes:
            self.runtimes[host.name] = FakeRuntime(host.name)
        return self.runtimes[host.name]


@pytest.fixture
def fake_runtime():
    """An empty in-memory runtime for host node1."""
    return FakeRuntime("node1")


@pytest.fixture
def make_runtime():
    """Factory for additional in-memory runtimes."""
    return FakeRuntime


@pytest.fixture
def fake_registry():
    """Registry creating in-memory runtimes on demand."""
    return FakeRegistry()


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """A configuration directory with one host and an app network."""
    (tmp_path / "hosts").mkdir()
    (tmp_path / "config.yaml").write_text(
        "executor:\n"
        "  workers: 2\n"
        "  backoff: 0\n"
        "agent:\n"
        "  reconciliation_interval: 60\n"
    )
    (tmp_path / "hosts" / "node1.yaml").write_text(
        "networks:\n"
        "  - name: app-net\n"
        "containers:\n"
        "  - name: web\n"
        "    image: nginx:1.25\n"
        "    ports: ['8080:80']\n"
        "    networks: [app-net]\n"
    )
    return tmp_path
