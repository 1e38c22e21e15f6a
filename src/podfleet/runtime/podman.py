"""Podman CLI runtime."""

import json
import logging
import shlex
from typing import Any, Dict, List, Optional

from podfleet.errors import (
    CommandError,
    FatalRuntimeError,
    ResourceExistsError,
    ResourceNotFoundError,
    RuntimeOperationError,
    TransientRuntimeError,
)
from podfleet.models.config import RuntimeConfig
from podfleet.models.host import ContainerSpec, DirectorySpec, HostProfile, NetworkSpec
from podfleet.models.live import HOST_LABEL, MANAGED_LABEL, SPEC_LABEL, LiveContainer, LiveDirectory, LiveNetwork
from podfleet.runtime.base import BaseRuntime
from podfleet.utils.command import CommandResult, run_command


logger = logging.getLogger(__name__)

_EXISTS_PATTERNS = (
    "already exists",
    "is already in use",
)
_NOT_FOUND_PATTERNS = (
    "no such container",
    "no such network",
    "no such object",
    "network not found",
    "container not known",
)
_FATAL_PATTERNS = (
    "image not known",
    "no such image",
    "manifest unknown",
    "not found: manifest",
    "repository does not exist",
    "permission denied",
    "access denied",
    "unauthorized",
    "operation not permitted",
)
_TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "temporarily unavailable",
    "resource busy",
    "device or resource busy",
    "database is locked",
    "try again",
    "connection reset",
    "connection refused",
    "i/o timeout",
)

# Pull timeouts are longer than ordinary command timeouts.
PULL_TIMEOUT_FACTOR = 5


def classify_error(error: CommandError) -> RuntimeOperationError:
    """Map a failed runtime command to the runtime error taxonomy."""
    text = f"{error.stderr}\n{error.stdout}".lower()
    details = {"cmd": error.cmd, "returncode": error.returncode, "stderr": error.stderr.strip()}
    message = error.stderr.strip() or str(error)

    if any(pattern in text for pattern in _EXISTS_PATTERNS):
        return ResourceExistsError(message, details=details, cause=error)
    if any(pattern in text for pattern in _NOT_FOUND_PATTERNS):
        return ResourceNotFoundError(message, details=details, cause=error)
    if any(pattern in text for pattern in _FATAL_PATTERNS):
        return FatalRuntimeError(message, details=details, cause=error)
    if any(pattern in text for pattern in _TRANSIENT_PATTERNS):
        return TransientRuntimeError(message, details=details, cause=error)
    # ssh exits 255 when the connection itself fails
    if error.returncode == 255 and error.cmd and error.cmd[0] == "ssh":
        return TransientRuntimeError(message, details=details, cause=error)
    return FatalRuntimeError(message, details=details, cause=error)


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_container(data: Dict[str, Any]) -> LiveContainer:
    """Build a LiveContainer from ``container inspect`` output."""
    config = data.get("Config") or {}
    state = data.get("State") or {}
    host_config = data.get("HostConfig") or {}
    network_settings = data.get("NetworkSettings") or {}

    health = state.get("Health") or state.get("Healthcheck") or {}
    restart = (host_config.get("RestartPolicy") or {}).get("Name") or "no"

    return LiveContainer(
        name=data.get("Name", "").lstrip("/"),
        id=data.get("Id", ""),
        image=_first(data, "ImageName", default=config.get("Image", "")),
        status=str(state.get("Status", "unknown")).lower(),
        health=health.get("Status") or None,
        labels=dict(config.get("Labels") or {}),
        networks=sorted((network_settings.get("Networks") or {}).keys()),
        restart_policy=restart,
    )


def parse_network(data: Dict[str, Any]) -> LiveNetwork:
    """Build a LiveNetwork from ``network ls --format json`` output."""
    subnets = []
    for subnet in _first(data, "subnets", "Subnets", default=[]) or []:
        if isinstance(subnet, dict):
            value = _first(subnet, "subnet", "Subnet")
            if value:
                subnets.append(value)
        elif subnet:
            subnets.append(str(subnet))
    return LiveNetwork(
        name=_first(data, "name", "Name", default=""),
        driver=_first(data, "driver", "Driver", default="bridge"),
        subnets=subnets,
        internal=bool(_first(data, "internal", "Internal", default=False)),
    )


class PodmanRuntime(BaseRuntime):
    """Drives a Podman-compatible CLI, locally or through ssh."""

    supports_in_place_update = True

    def __init__(self, config: RuntimeConfig, host: HostProfile):
        """Initialize runtime for a host."""
        self.config = config
        self.host = host
        self.binary = config.binary
        self.timeout = config.command_timeout
        self.supports_in_place_update = config.supports_in_place_update

    def _build(self, cmd: List[str]) -> List[str]:
        """Wrap a command for the host's transport."""
        if self.host.transport == "ssh":
            return [*self.config.ssh_command, self.host.address, shlex.join(cmd)]
        return cmd

    async def _run(self, cmd: List[str], check: bool = True, timeout: Optional[float] = None) -> CommandResult:
        try:
            return await run_command(self._build(cmd), check=check, timeout=timeout or self.timeout)
        except CommandError as e:
            raise classify_error(e) from e

    async def _podman(self, *args: str, check: bool = True, timeout: Optional[float] = None) -> CommandResult:
        return await self._run([self.binary, *args], check=check, timeout=timeout)

    async def _podman_json(self, *args: str) -> Any:
        result = await self._podman(*args)
        text = result.stdout.strip()
        if not text:
            return []
        try:
            return json.loads(text)
        except ValueError as e:
            raise FatalRuntimeError(f"Unparseable output from {self.binary} {' '.join(args)}: {e}") from e

    async def list_containers(self) -> List[str]:
        """List all container names."""
        data = await self._podman_json("ps", "--all", "--format", "json")
        names = []
        for entry in data:
            entry_names = entry.get("Names") or []
            if isinstance(entry_names, str):
                entry_names = [entry_names]
            names.extend(name.lstrip("/") for name in entry_names)
        return names

    async def inspect_container(self, name: str) -> LiveContainer:
        """Inspect a container."""
        data = await self._podman_json("container", "inspect", name)
        if isinstance(data, list):
            if not data:
                raise ResourceNotFoundError(f"no such container: {name}")
            data = data[0]
        return parse_container(data)

    def create_args(self, spec: ContainerSpec) -> List[str]:
        """Arguments for ``podman create`` (without the binary)."""
        args = [
            "create",
            "--name", spec.name,
            "--label", f"{MANAGED_LABEL}=true",
            "--label", f"{HOST_LABEL}={self.host.name}",
            "--label", f"{SPEC_LABEL}={spec.fingerprint()}",
            "--restart", spec.restart_policy,
            "--pull", spec.pull,
        ]
        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])
        for port in spec.ports:
            args.extend(["--publish", port.render()])
        for volume in spec.volumes:
            args.extend(["--volume", volume.render()])
        for network in spec.networks:
            args.extend(["--network", network])
        for key, value in spec.environment.items():
            args.extend(["--env", f"{key}={value}"])
        for device in spec.devices:
            args.extend(["--device", device])
        for option in spec.security_opts:
            args.extend(["--security-opt", option])
        args.append(spec.image)
        if spec.command:
            args.extend(spec.command)
        return args

    async def create_container(self, spec: ContainerSpec) -> None:
        """Create a container."""
        logger.info(f"[{self.host.name}] Creating container {spec.name} from {spec.image}")
        # Image pulls happen inside create, so allow the pull timeout.
        await self._podman(*self.create_args(spec), timeout=self.timeout * PULL_TIMEOUT_FACTOR)

    async def start_container(self, name: str) -> None:
        """Start the container."""
        logger.info(f"[{self.host.name}] Starting container {name}")
        await self._podman("start", name)

    async def stop_container(self, name: str) -> None:
        """Stop the container."""
        logger.info(f"[{self.host.name}] Stopping container {name}")
        await self._podman("stop", name)

    async def remove_container(self, name: str) -> None:
        """Remove the container."""
        logger.info(f"[{self.host.name}] Removing container {name}")
        await self._podman("rm", "--force", "--depend", name)

    async def update_container(self, spec: ContainerSpec) -> None:
        """Update restart policy in place."""
        logger.info(f"[{self.host.name}] Updating container {spec.name} in place")
        await self._podman("update", "--restart", spec.restart_policy, spec.name)

    async def list_networks(self) -> List[LiveNetwork]:
        """List networks."""
        data = await self._podman_json("network", "ls", "--format", "json")
        return [parse_network(entry) for entry in data]

    async def create_network(self, spec: NetworkSpec) -> None:
        """Create a network."""
        logger.info(f"[{self.host.name}] Creating network {spec.name}")
        args = ["network", "create", "--label", f"{MANAGED_LABEL}=true"]
        if spec.driver:
            args.extend(["--driver", spec.driver])
        if spec.subnet:
            args.extend(["--subnet", spec.subnet])
        if spec.gateway:
            args.extend(["--gateway", spec.gateway])
        if spec.internal:
            args.append("--internal")
        for key, value in spec.options.items():
            args.extend(["--opt", f"{key}={value}"])
        args.append(spec.name)
        await self._podman(*args)

    async def exec_in_container(self, name: str, command: List[str]) -> int:
        """Execute command in container."""
        result = await self._podman("exec", name, *command, check=False)
        return result.returncode

    async def image_exists(self, image: str) -> bool:
        """Check if an image exists locally."""
        result = await self._podman("image", "exists", image, check=False)
        return result.returncode == 0

    async def pull_image(self, image: str) -> None:
        """Pull an image."""
        logger.info(f"[{self.host.name}] Pulling image {image}")
        await self._podman("pull", image, timeout=self.timeout * PULL_TIMEOUT_FACTOR)

    async def stat_directory(self, path: str) -> LiveDirectory:
        """Stat a host path."""
        result = await self._run(["stat", "-c", "%F|%a|%U|%G|%u|%g", path], check=False)
        if result.returncode != 0:
            if "no such file" in result.stderr.lower():
                return LiveDirectory(path=path, exists=False)
            raise classify_error(CommandError(["stat", path], result.returncode, result.stdout, result.stderr))

        kind, mode, owner, group, uid, gid = result.stdout.strip().split("|")
        return LiveDirectory(
            path=path,
            exists=True,
            is_dir=kind == "directory",
            mode=mode.zfill(4),
            owner=owner,
            group=group,
            uid=uid,
            gid=gid,
        )

    async def ensure_directory(self, spec: DirectorySpec) -> None:
        """Create a directory with mode and ownership."""
        logger.info(f"[{self.host.name}] Ensuring directory {spec.path} ({spec.mode})")
        await self._run(["mkdir", "-p", spec.path])
        await self._run(["chmod", spec.mode, spec.path])
        if spec.owner:
            owner = f"{spec.owner}:{spec.group}" if spec.group else spec.owner
            await self._run(["chown", owner, spec.path])
        elif spec.group:
            await self._run(["chgrp", spec.group, spec.path])
