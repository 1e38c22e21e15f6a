"""Reconciliation plan model."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class OperationKind(str, Enum):
    """Kinds of operations a plan may contain."""
    CREATE_NETWORK = "create-network"
    CREATE_DIRECTORY = "create-directory"
    PULL_IMAGE = "pull-image"
    CREATE_CONTAINER = "create-container"
    RECREATE_CONTAINER = "recreate-container"
    UPDATE_CONTAINER = "update-container"
    REMOVE_CONTAINER = "remove-container"
    RESTART_CONTAINER = "restart-container"
    START_CONTAINER = "start-container"
    STOP_CONTAINER = "stop-container"

    @property
    def target_type(self) -> str:
        if self is OperationKind.CREATE_NETWORK:
            return "network"
        if self is OperationKind.CREATE_DIRECTORY:
            return "directory"
        if self is OperationKind.PULL_IMAGE:
            return "image"
        return "container"


# Operations after which a container is freshly (re)started and may be probed.
STARTING_KINDS = {
    OperationKind.CREATE_CONTAINER,
    OperationKind.RECREATE_CONTAINER,
    OperationKind.START_CONTAINER,
    OperationKind.RESTART_CONTAINER,
}


@dataclass
class Operation:
    """A single step of a ReconciliationPlan."""
    op_id: str
    kind: OperationKind
    target: str
    reason: str = ""
    changes: List[str] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)
    spec: Optional[Any] = None

    @property
    def target_type(self) -> str:
        return self.kind.target_type

    def describe(self) -> str:
        text = f"{self.kind.value} {self.target}"
        if self.changes:
            text = f"{text} ({', '.join(self.changes)})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.op_id,
            "kind": self.kind.value,
            "target": self.target,
            "reason": self.reason,
            "changes": list(self.changes),
            "depends_on": list(self.depends_on),
        }


@dataclass
class ReconciliationPlan:
    """Ordered operations converging one host to its declared state."""
    host: str
    operations: List[Operation] = field(default_factory=list)
    unchanged: List[Tuple[str, str]] = field(default_factory=list)
    blocked: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def get(self, op_id: str) -> Optional[Operation]:
        for operation in self.operations:
            if operation.op_id == op_id:
                return operation
        return None

    def summary(self) -> List[str]:
        """One line per operation, in execution order."""
        return [operation.describe() for operation in self.operations]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "operations": [operation.to_dict() for operation in self.operations],
            "unchanged": [{"type": kind, "name": name} for kind, name in self.unchanged],
            "blocked": dict(self.blocked),
            "warnings": list(self.warnings),
        }
