"""Tests for current-state inspection."""

import pytest

from podfleet.core.inspector import Inspector
from podfleet.errors import InspectionFailed, ResourceNotFoundError, TransientRuntimeError
from podfleet.models.host import ContainerSpec, HostProfile
from podfleet.models.live import LiveDirectory


@pytest.fixture
def host():
    return HostProfile(
        name="node1",
        directories=[{"path": "/srv/a"}, {"path": "/srv/b"}],
        containers=[{"name": "web", "image": "nginx"}],
    )


@pytest.mark.asyncio
class TestInspector:
    """Test Inspector."""

    async def test_collects_live_state(self, fake_runtime, host):
        fake_runtime.add_container(ContainerSpec(name="web", image="nginx"))
        fake_runtime.add_container(ContainerSpec(name="other", image="busybox"), status="exited")
        fake_runtime.directories["/srv/a"] = LiveDirectory(path="/srv/a", exists=True, mode="0755")
        fake_runtime.images.add("nginx")

        result = await Inspector(fake_runtime).inspect(host, images=["nginx", "busybox"])

        assert set(result.containers) == {"web", "other"}
        assert result.directories["/srv/a"].exists
        assert not result.directories["/srv/b"].exists
        assert result.images == {"nginx": True, "busybox": False}
        assert result.complete

    async def test_per_container_failure_collected(self, fake_runtime, host):
        fake_runtime.add_container(ContainerSpec(name="web", image="nginx"))
        fake_runtime.add_container(ContainerSpec(name="db", image="postgres"))
        fake_runtime.fail("inspect_container", "db", TransientRuntimeError("timed out"))

        result = await Inspector(fake_runtime).inspect(host)

        assert "web" in result.containers
        assert "db" not in result.containers
        assert result.failed("container") == {"db"}
        assert not result.complete

    async def test_container_removed_during_scan(self, fake_runtime, host):
        fake_runtime.add_container(ContainerSpec(name="web", image="nginx"))
        fake_runtime.fail("inspect_container", "web", ResourceNotFoundError("no such container"))

        result = await Inspector(fake_runtime).inspect(host)

        assert result.containers == {}
        assert result.complete

    async def test_directory_failure_collected(self, fake_runtime, host):
        fake_runtime.fail("stat_directory", "/srv/b", TransientRuntimeError("ssh: connection reset"))

        result = await Inspector(fake_runtime).inspect(host)

        assert result.failed("directory") == {"/srv/b"}
        assert "/srv/a" in result.directories

    async def test_list_failure_raises(self, fake_runtime, host):
        fake_runtime.fail("list_containers", "", TransientRuntimeError("connection refused"))

        with pytest.raises(InspectionFailed):
            await Inspector(fake_runtime).inspect(host)

    async def test_read_only(self, fake_runtime, host):
        fake_runtime.add_container(ContainerSpec(name="web", image="nginx"))

        await Inspector(fake_runtime).inspect(host, images=["nginx"])

        assert fake_runtime.mutating_calls() == []
