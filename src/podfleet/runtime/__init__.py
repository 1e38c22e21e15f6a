"""Container runtime backends."""

from podfleet.runtime.base import BaseRuntime
from podfleet.runtime.podman import PodmanRuntime, classify_error
from podfleet.runtime.registry import RuntimeRegistry

__all__ = [
    "BaseRuntime",
    "PodmanRuntime",
    "RuntimeRegistry",
    "classify_error",
]
