"""Live state models reported by the runtime."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


logger = logging.getLogger(__name__)

MANAGED_LABEL = "io.podfleet.managed"
HOST_LABEL = "io.podfleet.host"
SPEC_LABEL = "io.podfleet.spec"


@dataclass
class LiveContainer:
    """A container as seen by the runtime."""
    name: str
    image: str
    status: str
    id: str = ""
    health: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    networks: List[str] = field(default_factory=list)
    restart_policy: str = "no"

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def managed(self) -> bool:
        return self.labels.get(MANAGED_LABEL) == "true"

    @property
    def host(self) -> Optional[str]:
        return self.labels.get(HOST_LABEL)

    @property
    def recorded_spec(self) -> Optional[Dict[str, Any]]:
        """Declaration the container was created from, if it carries one."""
        raw = self.labels.get(SPEC_LABEL)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Container {self.name} has an unreadable {SPEC_LABEL} label")
            return None
        return data if isinstance(data, dict) else None


@dataclass
class LiveNetwork:
    """A network as seen by the runtime."""
    name: str
    driver: str = "bridge"
    subnets: List[str] = field(default_factory=list)
    internal: bool = False


@dataclass
class LiveDirectory:
    """Stat result for a declared directory."""
    path: str
    exists: bool
    is_dir: bool = True
    mode: Optional[str] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    uid: Optional[str] = None
    gid: Optional[str] = None

    def owner_matches(self, owner: Optional[str]) -> bool:
        return owner is None or owner in (self.owner, self.uid)

    def group_matches(self, group: Optional[str]) -> bool:
        return group is None or group in (self.group, self.gid)


@dataclass
class InspectionError:
    """A single resource that could not be inspected."""
    resource_type: str
    name: str
    message: str


@dataclass
class InspectionResult:
    """Live state of one host, possibly partial."""
    host: str
    containers: Dict[str, LiveContainer] = field(default_factory=dict)
    networks: Dict[str, LiveNetwork] = field(default_factory=dict)
    directories: Dict[str, LiveDirectory] = field(default_factory=dict)
    images: Dict[str, bool] = field(default_factory=dict)
    errors: List[InspectionError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors

    def failed(self, resource_type: str) -> Set[str]:
        """Names of resources of ``resource_type`` whose inspection failed."""
        return {e.name for e in self.errors if e.resource_type == resource_type}
