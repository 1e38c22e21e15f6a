"""Host declaration models: directories, networks and containers."""

import ipaddress
import json
import re
import shlex
from pathlib import PurePosixPath
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ruamel.yaml.scalarint import OctalInt

from podfleet.core.ordering import CycleError, topological_order


NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
PORT_RE = re.compile(
    r"^(?:(?P<ip>\d{1,3}(?:\.\d{1,3}){3}|\[[0-9a-fA-F:]+\]):)?"
    r"(?P<host>\d{1,5}):(?P<container>\d{1,5})"
    r"(?:/(?P<proto>tcp|udp|sctp))?$"
)
MODE_RE = re.compile(r"^0?[0-7]{3}$|^[0-7]{4}$")
DEVICE_PERMS_RE = re.compile(r"^[rwm]{1,3}$")

VOLUME_OPTIONS = {
    "ro", "rw", "z", "Z", "U", "O", "nocopy", "copy",
    "shared", "slave", "private", "rshared", "rslave", "rprivate",
    "exec", "noexec", "suid", "nosuid", "dev", "nodev", "idmap",
}
SPECIAL_NETWORKS = {"host", "none"}
MANAGED_LABEL_PREFIX = "io.podfleet."


def _check_name(value: str, kind: str) -> str:
    if not NAME_RE.match(value):
        raise ValueError(
            f"Invalid {kind} name {value!r}: use letters, digits, '_', '.' or '-', "
            "starting with a letter or digit"
        )
    return value


def _absolute_path(value: str, what: str) -> str:
    path = PurePosixPath(value)
    if not path.is_absolute():
        raise ValueError(f"{what} must be an absolute path: {value!r}")
    if ".." in path.parts:
        raise ValueError(f"{what} must not contain '..': {value!r}")
    return str(path)


def normalize_mode(value: Any) -> str:
    """Normalise a permission mode to a four digit octal string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid permission mode: {value!r}")
    if isinstance(value, OctalInt):
        value = format(value, "o")
    elif isinstance(value, int):
        # YAML 1.2 reads 0755 as the decimal int 755; read its digits as octal.
        value = str(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid permission mode: {value!r}")
    text = value.strip()
    if text.startswith("0o"):
        text = text[2:]
    if not MODE_RE.match(text):
        raise ValueError(f"Invalid permission mode {value!r}: expected an octal such as 0755")
    return text.zfill(4)


def normalize_image(reference: str) -> str:
    """Normalise an image reference so short and fully qualified names compare equal."""
    name, digest = reference, ""
    if "@" in name:
        name, digest = name.split("@", 1)
        digest = "@" + digest
    last = name.rsplit("/", 1)[-1]
    if ":" not in last and not digest:
        name = f"{name}:latest"
    if name.startswith("docker.io/library/"):
        name = name[len("docker.io/library/"):]
    elif name.startswith("docker.io/"):
        name = name[len("docker.io/"):]
    elif name.startswith("library/"):
        name = name[len("library/"):]
    return name + digest


class PortMapping(BaseModel):
    """Published port in ``[ip:]host:container[/proto]`` form."""
    host_ip: Optional[str] = None
    host_port: int
    container_port: int
    protocol: Literal["tcp", "udp", "sctp"] = "tcp"

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(cls, value: Any) -> "PortMapping":
        """Parse the port grammar, raising ValueError on mismatch."""
        match = PORT_RE.match(str(value).strip()) if isinstance(value, (str, int)) else None
        if not match:
            raise ValueError(f"Invalid port {value!r}: expected host:container[/proto]")
        host_port = int(match.group("host"))
        container_port = int(match.group("container"))
        for port in (host_port, container_port):
            if not 1 <= port <= 65535:
                raise ValueError(f"Invalid port {value!r}: {port} is out of range")
        host_ip = match.group("ip")
        if host_ip:
            ipaddress.ip_address(host_ip.strip("[]"))
        return cls(
            host_ip=host_ip,
            host_port=host_port,
            container_port=container_port,
            protocol=match.group("proto") or "tcp",
        )

    def render(self) -> str:
        """Render as a ``--publish`` value."""
        prefix = f"{self.host_ip}:" if self.host_ip else ""
        return f"{prefix}{self.host_port}:{self.container_port}/{self.protocol}"


class VolumeMount(BaseModel):
    """Volume in ``host:container[:opts]`` form."""
    source: str
    target: str
    options: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(cls, value: Any) -> "VolumeMount":
        """Parse the volume grammar, raising ValueError on mismatch."""
        if not isinstance(value, str):
            raise ValueError(f"Invalid volume {value!r}: expected host:container[:opts]")
        parts = value.split(":")
        if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid volume {value!r}: expected host:container[:opts]")
        source, target = parts[0], parts[1]
        if source.startswith("/"):
            source = _absolute_path(source, "Volume source")
        elif not NAME_RE.match(source):
            raise ValueError(f"Invalid volume {value!r}: source must be an absolute path or a volume name")
        target = _absolute_path(target, "Volume target")
        options: List[str] = []
        if len(parts) == 3:
            options = [opt for opt in parts[2].split(",") if opt]
            unknown = [opt for opt in options if opt not in VOLUME_OPTIONS]
            if unknown or not options:
                raise ValueError(f"Invalid volume {value!r}: unknown options {', '.join(unknown) or '(empty)'}")
        return cls(source=source, target=target, options=options)

    @property
    def is_bind(self) -> bool:
        """True when the source is a host path rather than a named volume."""
        return self.source.startswith("/")

    def render(self) -> str:
        """Render as a ``--volume`` value."""
        value = f"{self.source}:{self.target}"
        if self.options:
            value = f"{value}:{','.join(self.options)}"
        return value


class HealthCheckSpec(BaseModel):
    """Readiness probe run after a container is started."""
    type: Literal["tcp", "command", "http"]
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    host: Optional[str] = None
    command: Optional[List[str]] = None
    expect_exit: int = Field(default=0)
    url: Optional[str] = None
    expect_status: int = Field(default=200)
    timeout: float = Field(default=60.0, gt=0)
    interval: float = Field(default=2.0, gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v):
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @model_validator(mode="after")
    def check_probe_fields(self):
        if self.type == "tcp" and self.port is None:
            raise ValueError("tcp health check requires 'port'")
        if self.type == "command" and not self.command:
            raise ValueError("command health check requires 'command'")
        if self.type == "http" and not self.url:
            raise ValueError("http health check requires 'url'")
        return self


class DirectorySpec(BaseModel):
    """Host directory declaration."""
    path: str = Field(..., description="Absolute directory path")
    mode: str = Field(default="0755")
    owner: Optional[str] = None
    group: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        return _absolute_path(v, "Directory path")

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v):
        return normalize_mode(v)

    @field_validator("owner", "group", mode="before")
    @classmethod
    def stringify_ids(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def contains(self, path: str) -> bool:
        """True if ``path`` is this directory or lives below it."""
        own = PurePosixPath(self.path)
        other = PurePosixPath(path)
        return other == own or own in other.parents


class NetworkSpec(BaseModel):
    """Container network declaration."""
    name: str
    driver: Optional[str] = None
    subnet: Optional[str] = None
    gateway: Optional[str] = None
    internal: bool = False
    options: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v in SPECIAL_NETWORKS:
            raise ValueError(f"Network name {v!r} is reserved")
        return _check_name(v, "network")

    @field_validator("subnet")
    @classmethod
    def validate_subnet(cls, v):
        if v is not None:
            ipaddress.ip_network(v, strict=True)
        return v

    @field_validator("gateway")
    @classmethod
    def validate_gateway(cls, v):
        if v is not None:
            ipaddress.ip_address(v)
        return v

    @field_validator("options", mode="before")
    @classmethod
    def stringify_options(cls, v):
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v


class ContainerSpec(BaseModel):
    """Container declaration."""
    name: str = Field(..., description="Container name")
    image: str = Field(..., description="Image reference")
    state: Literal["running", "stopped", "absent"] = Field(default="running")
    ports: List[PortMapping] = Field(default_factory=list)
    volumes: List[VolumeMount] = Field(default_factory=list)
    networks: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    devices: List[str] = Field(default_factory=list)
    security_opts: List[str] = Field(default_factory=list)
    restart_policy: Literal["always", "on-failure", "no"] = Field(default="no")
    command: Optional[List[str]] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list)
    pull: Literal["missing", "always", "never", "newer"] = Field(default="missing")
    health_check: Optional[HealthCheckSpec] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _check_name(v, "container")

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        if not v or any(ch.isspace() for ch in v):
            raise ValueError(f"Invalid image reference: {v!r}")
        return v

    @field_validator("ports", mode="before")
    @classmethod
    def parse_ports(cls, v):
        if isinstance(v, list):
            return [item if isinstance(item, (PortMapping, dict)) else PortMapping.parse(item) for item in v]
        return v

    @field_validator("volumes", mode="before")
    @classmethod
    def parse_volumes(cls, v):
        if isinstance(v, list):
            return [item if isinstance(item, (VolumeMount, dict)) else VolumeMount.parse(item) for item in v]
        return v

    @field_validator("environment", "labels", mode="before")
    @classmethod
    def stringify_mapping(cls, v):
        if not isinstance(v, dict):
            return v
        result = {}
        for key, value in v.items():
            if isinstance(value, (dict, list)):
                raise ValueError(f"Value for {key!r} must be a scalar")
            if value is None:
                value = ""
            elif isinstance(value, bool):
                value = "true" if value else "false"
            result[str(key)] = str(value)
        return result

    @field_validator("labels")
    @classmethod
    def validate_labels(cls, v):
        reserved = [key for key in v if key.startswith(MANAGED_LABEL_PREFIX)]
        if reserved:
            raise ValueError(f"Labels with prefix {MANAGED_LABEL_PREFIX!r} are reserved: {', '.join(reserved)}")
        return v

    @field_validator("devices")
    @classmethod
    def validate_devices(cls, v):
        for device in v:
            parts = device.split(":")
            if len(parts) > 3 or not parts[0].startswith("/"):
                raise ValueError(f"Invalid device {device!r}: expected /host/path[:/container/path[:perms]]")
            if len(parts) >= 2 and not parts[1].startswith("/"):
                raise ValueError(f"Invalid device {device!r}: container path must be absolute")
            if len(parts) == 3 and not DEVICE_PERMS_RE.match(parts[2]):
                raise ValueError(f"Invalid device {device!r}: permissions must be a combination of r, w and m")
        return v

    @field_validator("restart_policy", mode="before")
    @classmethod
    def normalize_restart_policy(cls, v):
        if v is False or v is None:
            return "no"
        return v

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, v):
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("networks")
    @classmethod
    def validate_networks(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Network list contains duplicates")
        return v

    @property
    def dependencies(self) -> Set[str]:
        """Names of containers that must exist before this one."""
        deps = set(self.depends_on)
        for network in self.networks:
            if network.startswith("container:"):
                deps.add(network.split(":", 1)[1])
        return deps

    @property
    def declared_networks(self) -> List[str]:
        """Networks that must be declared on the host."""
        return [
            network for network in self.networks
            if network not in SPECIAL_NETWORKS and not network.startswith("container:")
        ]

    def drift_fields(self) -> Dict[str, Any]:
        """Normalised attributes compared against the live container."""
        return {
            "image": normalize_image(self.image),
            "ports": sorted(port.render() for port in self.ports),
            "volumes": sorted(volume.render() for volume in self.volumes),
            "networks": sorted(self.networks),
            "environment": dict(sorted(self.environment.items())),
            "devices": sorted(self.devices),
            "security_opts": sorted(self.security_opts),
            "command": list(self.command) if self.command is not None else None,
            "labels": dict(sorted(self.labels.items())),
        }

    def fingerprint(self) -> str:
        """Compact JSON of :meth:`drift_fields`, stored on the container."""
        return json.dumps(self.drift_fields(), sort_keys=True, separators=(",", ":"))


class HostProfile(BaseModel):
    """Everything declared for a single host."""
    name: str
    transport: Literal["local", "ssh"] = Field(default="local")
    address: Optional[str] = None
    vars: Dict[str, Any] = Field(default_factory=dict)
    directories: List[DirectorySpec] = Field(default_factory=list)
    networks: List[NetworkSpec] = Field(default_factory=list)
    containers: List[ContainerSpec] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def check_references(self):
        errors: List[str] = []

        if self.transport == "ssh" and not self.address:
            errors.append("ssh transport requires 'address'")

        for kind, names in (
            ("directory path", [d.path for d in self.directories]),
            ("network name", [n.name for n in self.networks]),
            ("container name", [c.name for c in self.containers]),
        ):
            seen: Set[str] = set()
            for name in names:
                if name in seen:
                    errors.append(f"Duplicate {kind}: {name}")
                seen.add(name)

        network_names = {n.name for n in self.networks}
        containers = {c.name: c for c in self.containers}
        for container in self.containers:
            for network in container.declared_networks:
                if network not in network_names:
                    errors.append(f"Container {container.name} references undeclared network {network}")
            for dep in sorted(container.dependencies):
                if dep == container.name:
                    errors.append(f"Container {container.name} depends on itself")
                elif dep not in containers:
                    errors.append(f"Container {container.name} depends on undeclared container {dep}")
                elif containers[dep].state == "absent" and container.state != "absent":
                    errors.append(f"Container {container.name} depends on container {dep} which is declared absent")

        if not errors:
            try:
                topological_order(
                    [c.name for c in self.containers],
                    {c.name: c.dependencies for c in self.containers},
                )
            except CycleError as e:
                errors.append(str(e))

        if errors:
            raise ValueError("; ".join(errors))
        return self

    def get_container(self, name: str) -> Optional[ContainerSpec]:
        """Get container declaration by name."""
        for container in self.containers:
            if container.name == name:
                return container
        return None

    def get_network(self, name: str) -> Optional[NetworkSpec]:
        """Get network declaration by name."""
        for network in self.networks:
            if network.name == name:
                return network
        return None
