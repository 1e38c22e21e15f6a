"""Tests for RuntimeRegistry."""

import pytest

from podfleet.models.config import RuntimeConfig
from podfleet.models.host import HostProfile
from podfleet.runtime.podman import PodmanRuntime
from podfleet.runtime.registry import RuntimeRegistry


class TestRuntimeRegistry:
    """Test backend lookup."""

    def test_default_backend(self):
        runtime = RuntimeRegistry().create(RuntimeConfig(), HostProfile(name="node1"))

        assert isinstance(runtime, PodmanRuntime)
        assert runtime.host.name == "node1"

    def test_unknown_backend(self):
        with pytest.raises(ValueError) as exc_info:
            RuntimeRegistry().create(RuntimeConfig(backend="quadlet"), HostProfile(name="node1"))

        assert "quadlet" in str(exc_info.value)

    def test_register(self):
        class CustomRuntime(PodmanRuntime):
            pass

        registry = RuntimeRegistry()
        registry.register("custom", CustomRuntime)

        assert "custom" in registry.list_backends()
        assert isinstance(registry.create(RuntimeConfig(backend="custom"), HostProfile(name="node1")), CustomRuntime)
