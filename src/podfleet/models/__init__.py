"""Pydantic models for configuration and declarations, dataclasses for runtime state."""

from podfleet.models.config import PodfleetConfig, RuntimeConfig, ExecutorConfig, AgentConfig, LoggingConfig
from podfleet.models.host import (
    HostProfile,
    DirectorySpec,
    NetworkSpec,
    ContainerSpec,
    HealthCheckSpec,
    PortMapping,
    VolumeMount,
)
from podfleet.models.live import LiveContainer, LiveNetwork, LiveDirectory, InspectionResult, InspectionError
from podfleet.models.plan import Operation, OperationKind, ReconciliationPlan
from podfleet.models.report import OperationResult, ResultStatus, HostReport, RunReport

__all__ = [
    "PodfleetConfig",
    "RuntimeConfig",
    "ExecutorConfig",
    "AgentConfig",
    "LoggingConfig",
    "HostProfile",
    "DirectorySpec",
    "NetworkSpec",
    "ContainerSpec",
    "HealthCheckSpec",
    "PortMapping",
    "VolumeMount",
    "LiveContainer",
    "LiveNetwork",
    "LiveDirectory",
    "InspectionResult",
    "InspectionError",
    "Operation",
    "OperationKind",
    "ReconciliationPlan",
    "OperationResult",
    "ResultStatus",
    "HostReport",
    "RunReport",
]
