"""Result models for plan execution."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from podfleet.models.plan import OperationKind


class ResultStatus(str, Enum):
    """Outcome of a single operation."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped-dependency-failed"
    CANCELLED = "cancelled"
    PLANNED = "planned"


_CREATING = {
    OperationKind.CREATE_NETWORK,
    OperationKind.CREATE_DIRECTORY,
    OperationKind.CREATE_CONTAINER,
    OperationKind.PULL_IMAGE,
}


@dataclass
class OperationResult:
    """Result for a single Operation."""
    op_id: str
    kind: OperationKind
    target: str
    status: ResultStatus
    error_type: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    attempts: int = 0
    duration: float = 0.0

    @property
    def target_type(self) -> str:
        return self.kind.target_type

    @property
    def outcome(self) -> str:
        """Per-resource outcome: created, changed, removed, unchanged or the status."""
        if self.status is ResultStatus.APPLIED:
            if self.kind in _CREATING:
                return "created"
            if self.kind is OperationKind.REMOVE_CONTAINER:
                return "removed"
            return "changed"
        if self.status is ResultStatus.FAILED and self.detail:
            return f"failed: {self.detail}"
        return self.status.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.op_id,
            "kind": self.kind.value,
            "type": self.target_type,
            "target": self.target,
            "status": self.status.value,
            "outcome": self.outcome,
            "error_type": self.error_type,
            "error": self.error,
            "detail": self.detail,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
        }


@dataclass
class HostReport:
    """Aggregate result for one host."""
    host: str
    results: List[OperationResult] = field(default_factory=list)
    unchanged: List[Dict[str, str]] = field(default_factory=list)
    blocked: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    dry_run: bool = False
    duration: float = 0.0
    error: Optional[str] = None
    error_type: Optional[str] = None
    drift: List[str] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for result in self.results:
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        if self.unchanged:
            counts[ResultStatus.UNCHANGED.value] = counts.get(ResultStatus.UNCHANGED.value, 0) + len(self.unchanged)
        if self.blocked:
            counts[ResultStatus.FAILED.value] = counts.get(ResultStatus.FAILED.value, 0) + len(self.blocked)
        return counts

    def failures(self) -> List[OperationResult]:
        return [r for r in self.results if r.status in (ResultStatus.FAILED, ResultStatus.SKIPPED)]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.drift and not self.blocked and not any(
            r.status in (ResultStatus.FAILED, ResultStatus.SKIPPED, ResultStatus.CANCELLED)
            for r in self.results
        )

    def get(self, target: str) -> List[OperationResult]:
        """Results concerning ``target``."""
        return [r for r in self.results if r.target == target]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "ok": self.ok,
            "dry_run": self.dry_run,
            "duration": round(self.duration, 3),
            "error": self.error,
            "error_type": self.error_type,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
            "unchanged": list(self.unchanged),
            "blocked": dict(self.blocked),
            "warnings": list(self.warnings),
            "drift": list(self.drift),
        }


@dataclass
class RunReport:
    """Aggregate result for a whole run across hosts."""
    hosts: List[HostReport] = field(default_factory=list)
    dry_run: bool = False
    duration: float = 0.0

    def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for host in self.hosts:
            for status, count in host.counts().items():
                counts[status] = counts.get(status, 0) + count
        return counts

    @property
    def ok(self) -> bool:
        return all(host.ok for host in self.hosts)

    @property
    def exit_code(self) -> int:
        if any(host.error_type == "ValidationError" for host in self.hosts):
            return 2
        return 0 if self.ok else 1

    def get_host(self, name: str) -> Optional[HostReport]:
        for host in self.hosts:
            if host.host == name:
                return host
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "dry_run": self.dry_run,
            "duration": round(self.duration, 3),
            "counts": self.counts(),
            "hosts": [host.to_dict() for host in self.hosts],
        }
