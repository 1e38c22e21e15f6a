"""
Podfleet - declarative container fleet reconciliation.

Converges Podman hosts to per-host YAML declarations of directories,
networks and containers: inspect the live state, compute a minimal ordered
plan, execute it with retries and readiness probes, and report the outcome.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from podfleet.models.config import PodfleetConfig
from podfleet.models.host import ContainerSpec, DirectorySpec, HostProfile, NetworkSpec
from podfleet.models.plan import ReconciliationPlan
from podfleet.models.report import RunReport

__all__ = [
    "PodfleetConfig",
    "ContainerSpec",
    "DirectorySpec",
    "HostProfile",
    "NetworkSpec",
    "ReconciliationPlan",
    "RunReport",
]
