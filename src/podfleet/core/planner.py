"""Diff declared state against live state and build a ReconciliationPlan."""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from podfleet.core.ordering import CycleError, topological_order
from podfleet.errors import ValidationError
from podfleet.models.host import ContainerSpec, HostProfile, PortMapping, normalize_image
from podfleet.models.live import InspectionResult, LiveContainer
from podfleet.models.plan import Operation, OperationKind, ReconciliationPlan


logger = logging.getLogger(__name__)

PHASES = (
    "directories",
    "images",
    "networks",
    "containers",
    "health-check",
    "verification",
    "info",
)
DEFAULT_PHASES = frozenset({"directories", "networks", "containers", "health-check"})

# Attributes recorded on the container at creation and compared on every run.
RECORDED_FIELDS = (
    "ports",
    "volumes",
    "networks",
    "environment",
    "devices",
    "security_opts",
    "command",
    "labels",
)


def diff_container(spec: ContainerSpec, live: LiveContainer) -> List[str]:
    """
    Names of attributes in which ``live`` differs from ``spec``.

    Image, attached networks and restart policy are read from the live
    container itself; everything else is compared against the declaration
    recorded on the container when it was created. A container without a
    recorded declaration is reported as ``unmanaged``.
    """
    desired = spec.drift_fields()
    changes: List[str] = []

    if normalize_image(live.image) != desired["image"]:
        changes.append("image")

    recorded = live.recorded_spec
    if recorded is None:
        changes.append("unmanaged")
    else:
        for key in RECORDED_FIELDS:
            if recorded.get(key) != desired[key]:
                changes.append(key)

    if "networks" not in changes and any(n not in live.networks for n in spec.declared_networks):
        changes.append("networks")

    if live.restart_policy != spec.restart_policy:
        changes.append("restart_policy")

    return changes


def _host_ports(ports: Iterable[str]) -> Set[Tuple[int, str]]:
    """Host side (port, protocol) pairs of rendered port mappings."""
    result = set()
    for value in ports:
        try:
            port = PortMapping.parse(value)
        except ValueError:
            continue
        result.add((port.host_port, port.protocol))
    return result


class Planner:
    """Computes the minimal ordered set of operations for one host."""

    def __init__(self, supports_in_place_update: bool = False, prune: bool = False):
        """Initialize planner."""
        self.supports_in_place_update = supports_in_place_update
        self.prune = prune

    def plan(
        self,
        host: HostProfile,
        live: InspectionResult,
        phases: Optional[Iterable[str]] = None,
    ) -> ReconciliationPlan:
        """Build the plan converging ``live`` to ``host``."""
        phases = set(DEFAULT_PHASES if phases is None else phases)
        builder = _PlanBuilder(host, live)

        if "networks" in phases:
            self._plan_networks(builder)
        if "directories" in phases:
            self._plan_directories(builder)
        if "images" in phases:
            self._plan_images(builder)
        if "containers" in phases:
            self._plan_containers(builder)

        plan = builder.plan
        if plan.is_empty:
            logger.debug(f"[{host.name}] No changes required")
        else:
            logger.info(f"[{host.name}] Planned {len(plan.operations)} operation(s)")
        return plan

    def _plan_networks(self, builder: "_PlanBuilder") -> None:
        for network in builder.host.networks:
            live_network = builder.live.networks.get(network.name)
            if live_network is None:
                builder.add(OperationKind.CREATE_NETWORK, network.name, "missing", spec=network)
                continue
            if network.driver and live_network.driver != network.driver:
                builder.warn(
                    f"Network {network.name} uses driver {live_network.driver}, declared {network.driver}; "
                    "remove it manually to apply the change"
                )
            if network.subnet and network.subnet not in live_network.subnets:
                builder.warn(
                    f"Network {network.name} has subnets {', '.join(live_network.subnets) or 'none'}, "
                    f"declared {network.subnet}; remove it manually to apply the change"
                )
            builder.unchanged("network", network.name)

    def _plan_directories(self, builder: "_PlanBuilder") -> None:
        failed = builder.live.failed("directory")
        for directory in builder.host.directories:
            if directory.path in failed:
                builder.block(directory.path, "inspection-failed")
                continue
            live_dir = builder.live.directories.get(directory.path)
            if live_dir is None or not live_dir.exists:
                builder.add(OperationKind.CREATE_DIRECTORY, directory.path, "missing", spec=directory)
                continue
            if not live_dir.is_dir:
                builder.block(directory.path, "path exists and is not a directory")
                continue
            changes = []
            if live_dir.mode != directory.mode:
                changes.append("mode")
            if not live_dir.owner_matches(directory.owner):
                changes.append("owner")
            if not live_dir.group_matches(directory.group):
                changes.append("group")
            if changes:
                builder.add(OperationKind.CREATE_DIRECTORY, directory.path, "drift", changes=changes, spec=directory)
            else:
                builder.unchanged("directory", directory.path)

    def _plan_images(self, builder: "_PlanBuilder") -> None:
        failed = builder.live.failed("image")
        for image in dict.fromkeys(c.image for c in builder.host.containers if c.state != "absent"):
            if image in failed:
                builder.block(image, "inspection-failed")
            elif builder.live.images.get(image):
                builder.unchanged("image", image)
            else:
                builder.add(OperationKind.PULL_IMAGE, image, "missing")

    def _plan_containers(self, builder: "_PlanBuilder") -> None:
        host, live = builder.host, builder.live
        failed = live.failed("container")

        try:
            order = topological_order(
                [c.name for c in host.containers],
                {c.name: c.dependencies for c in host.containers},
            )
        except CycleError as e:
            raise ValidationError(f"Invalid container dependencies on host {host.name}: {e}") from e

        # Removals first so freed names and ports are available to creates.
        removals: Dict[str, Operation] = {}
        for spec in host.containers:
            if spec.state == "absent":
                if spec.name in failed:
                    builder.block(spec.name, "inspection-failed")
                elif spec.name in live.containers:
                    removals[spec.name] = builder.add(OperationKind.REMOVE_CONTAINER, spec.name, "declared absent")
                else:
                    builder.unchanged("container", spec.name)
        if self.prune:
            declared = {c.name for c in host.containers}
            for name, container in sorted(live.containers.items()):
                if name not in declared and container.managed and container.host == host.name:
                    removals[name] = builder.add(OperationKind.REMOVE_CONTAINER, name, "not declared (prune)")

        recreated: Set[str] = set()
        for name in order:
            spec = host.get_container(name)
            if spec.state == "absent":
                continue
            if name in failed:
                builder.block(name, "inspection-failed")
                continue

            depends = builder.container_dependencies(spec)
            depends.extend(
                op.op_id for removed, op in removals.items()
                if _host_ports((live.containers[removed].recorded_spec or {}).get("ports") or [])
                & _host_ports(p.render() for p in spec.ports)
            )

            live_container = live.containers.get(name)
            if live_container is None:
                builder.add(OperationKind.CREATE_CONTAINER, name, "missing", depends_on=depends, spec=spec)
                continue

            changes = diff_container(spec, live_container)
            # A container sharing the network namespace of a recreated one loses it.
            namespace_lost = [
                dep for dep in spec.dependencies
                if dep in recreated and f"container:{dep}" in spec.networks
            ]
            if namespace_lost:
                changes.append("network-namespace")

            if changes == ["restart_policy"] and self.supports_in_place_update:
                builder.add(
                    OperationKind.UPDATE_CONTAINER, name, "drift",
                    changes=changes, depends_on=depends, spec=spec,
                )
            elif changes:
                builder.add(
                    OperationKind.RECREATE_CONTAINER, name, "drift",
                    changes=changes, depends_on=depends, spec=spec,
                )
                recreated.add(name)
                continue

            kind = None
            if spec.state == "running" and not live_container.is_running:
                kind = OperationKind.START_CONTAINER
            elif spec.state == "running" and live_container.health == "unhealthy":
                kind = OperationKind.RESTART_CONTAINER
            elif spec.state == "stopped" and live_container.is_running:
                kind = OperationKind.STOP_CONTAINER

            if kind is not None:
                builder.add(kind, name, f"status {live_container.status}", depends_on=depends, spec=spec)
            elif not changes:
                builder.unchanged("container", name)


class _PlanBuilder:
    """Accumulates operations and their dependencies for one plan."""

    def __init__(self, host: HostProfile, live: InspectionResult):
        self.host = host
        self.live = live
        self.plan = ReconciliationPlan(host=host.name)
        self._ops_by_target: Dict[str, List[str]] = {}

    def add(
        self,
        kind: OperationKind,
        target: str,
        reason: str,
        changes: Optional[List[str]] = None,
        depends_on: Optional[List[str]] = None,
        spec=None,
    ) -> Operation:
        op_id = f"{kind.value}:{target}"
        deps = list(dict.fromkeys(depends_on or []))
        # Multiple operations on one container run in declaration order.
        deps.extend(self._ops_by_target.get(f"{kind.target_type}:{target}", []))
        operation = Operation(
            op_id=op_id,
            kind=kind,
            target=target,
            reason=reason,
            changes=list(changes or []),
            depends_on=deps,
            spec=spec,
        )
        self.plan.operations.append(operation)
        self._ops_by_target.setdefault(f"{kind.target_type}:{target}", []).append(op_id)
        return operation

    def unchanged(self, resource_type: str, name: str) -> None:
        self.plan.unchanged.append((resource_type, name))

    def block(self, name: str, message: str) -> None:
        logger.warning(f"[{self.host.name}] Skipping {name}: {message}")
        self.plan.blocked[name] = message

    def warn(self, message: str) -> None:
        logger.warning(f"[{self.host.name}] {message}")
        self.plan.warnings.append(message)

    def container_dependencies(self, spec: ContainerSpec) -> List[str]:
        """Operation ids that must complete before operations on ``spec``."""
        deps: List[str] = []
        for network in spec.declared_networks:
            deps.extend(self._ops_by_target.get(f"network:{network}", []))
        for volume in spec.volumes:
            if not volume.is_bind:
                continue
            for directory in self.host.directories:
                if directory.contains(volume.source):
                    deps.extend(self._ops_by_target.get(f"directory:{directory.path}", []))
        deps.extend(self._ops_by_target.get(f"image:{spec.image}", []))
        for dependency in sorted(spec.dependencies):
            deps.extend(self._ops_by_target.get(f"container:{dependency}", []))
        return list(dict.fromkeys(deps))
