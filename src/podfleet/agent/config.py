"""Desired-state loading and change detection."""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pydantic
from jinja2 import TemplateError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from podfleet.errors import ValidationError
from podfleet.models.config import PodfleetConfig
from podfleet.models.host import HostProfile
from podfleet.utils.templates import merge_dicts, render_values


logger = logging.getLogger(__name__)

DEFAULTS_KEYS = {"vars", "container_defaults"}
RENDERED_KEYS = ("address", "directories", "networks", "containers")


def format_pydantic_errors(error: pydantic.ValidationError) -> List[str]:
    """Flatten a pydantic ValidationError into readable messages."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        if not location:
            messages.extend(message.split("; "))
        else:
            messages.append(f"{location}: {message}")
    return messages


class ConfigManager:
    """Loads config.yaml, defaults.yaml and hosts/*.yaml from a directory."""

    def __init__(self, config_dir: Path):
        """Initialize configuration manager."""
        self.config_dir = Path(config_dir)
        self.yaml = YAML()
        self.config: PodfleetConfig = PodfleetConfig()
        self.hosts: Dict[str, HostProfile] = {}
        self.host_errors: Dict[str, ValidationError] = {}
        self._config_hashes: Dict[str, str] = {}

    async def load(self) -> None:
        """
        Load all configuration files.

        Raises ValidationError when config.yaml or defaults.yaml is invalid;
        nothing is replaced in that case. Invalid host files are collected in
        ``host_errors`` so that every host's problems are reported together.
        A host that was valid before and fails to reload keeps its previous
        declaration.
        """
        logger.info(f"Loading configuration from {self.config_dir}")
        if not self.config_dir.is_dir():
            raise ValidationError(f"Configuration directory not found: {self.config_dir}")

        hashes: Dict[str, str] = {}
        config = await self._load_main_config(hashes)
        defaults = await self._load_defaults(hashes)
        hosts, errors = await self._load_hosts(defaults, hashes)

        for name, error in errors.items():
            previous = self.hosts.get(name)
            if previous is not None:
                logger.warning(f"Host {name} failed to reload, keeping previous declaration: {error}")
                hosts[name] = previous

        self.config = config
        self.hosts = hosts
        self.host_errors = errors
        self._config_hashes = hashes

        if errors:
            logger.error(f"Configuration loaded with errors in {len(errors)} host(s): {', '.join(sorted(errors))}")
        else:
            logger.info(f"Configuration loaded successfully ({len(hosts)} host(s))")

    async def _load_main_config(self, hashes: Dict[str, str]) -> PodfleetConfig:
        """Load main configuration file."""
        config_file = self.config_dir / "config.yaml"
        if not config_file.exists():
            logger.debug(f"No main config at {config_file}, using defaults")
            return PodfleetConfig()

        data = await self._read_yaml(config_file, hashes)
        try:
            return PodfleetConfig.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid main config {config_file}", errors=format_pydantic_errors(e), cause=e,
            ) from e

    async def _load_defaults(self, hashes: Dict[str, str]) -> Dict[str, Any]:
        """Load shared vars and container defaults."""
        defaults_file = self.config_dir / "defaults.yaml"
        if not defaults_file.exists():
            return {"vars": {}, "container_defaults": {}}

        data = await self._read_yaml(defaults_file, hashes)
        unknown = sorted(set(data) - DEFAULTS_KEYS)
        if unknown:
            raise ValidationError(f"Unknown keys in {defaults_file}: {', '.join(unknown)}")
        for key in DEFAULTS_KEYS:
            if not isinstance(data.get(key) or {}, dict):
                raise ValidationError(f"{defaults_file}: '{key}' must be a mapping")
        return {key: dict(data.get(key) or {}) for key in DEFAULTS_KEYS}

    async def _load_hosts(self, defaults: Dict[str, Any], hashes: Dict[str, str]):
        """Load every host declaration file."""
        hosts: Dict[str, HostProfile] = {}
        errors: Dict[str, ValidationError] = {}
        hosts_dir = self.config_dir / "hosts"
        if not hosts_dir.exists():
            logger.warning(f"Hosts directory not found: {hosts_dir}")
            return hosts, errors

        for yaml_file in sorted(hosts_dir.glob("*.yaml")):
            name = yaml_file.stem
            try:
                data = await self._read_yaml(yaml_file, hashes)
                name = str(data.get("name") or yaml_file.stem)
                if name in hosts or name in errors:
                    raise ValidationError(f"Host {name} is declared more than once ({yaml_file})")
                hosts[name] = self.build_host(name, data, defaults, source=yaml_file)
                logger.debug(f"Loaded host {name} from {yaml_file}")
            except ValidationError as e:
                logger.error(f"Invalid host declaration {yaml_file}: {e}")
                errors[name] = e

        return hosts, errors

    def build_host(
        self,
        name: str,
        data: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
        source: Optional[Path] = None,
    ) -> HostProfile:
        """Merge defaults, render templates and validate one host declaration."""
        defaults = defaults or {}
        where = source or name
        data = dict(data)
        data["name"] = name

        host_vars = data.get("vars") or {}
        if not isinstance(host_vars, dict):
            raise ValidationError(f"{where}: 'vars' must be a mapping")
        host_vars = merge_dicts(defaults.get("vars") or {}, host_vars)
        data["vars"] = host_vars

        container_defaults = defaults.get("container_defaults") or {}
        containers = data.get("containers") or []
        if not isinstance(containers, list):
            raise ValidationError(f"{where}: 'containers' must be a list")
        if container_defaults:
            data["containers"] = [
                merge_dicts(container_defaults, container) if isinstance(container, dict) else container
                for container in containers
            ]

        context = {**host_vars, "host": name, "vars": host_vars}
        try:
            for key in RENDERED_KEYS:
                if key in data:
                    data[key] = render_values(data[key], context)
        except TemplateError as e:
            raise ValidationError(f"{where}: template error: {e}", cause=e) from e

        try:
            return HostProfile.model_validate(data)
        except pydantic.ValidationError as e:
            messages = format_pydantic_errors(e)
            raise ValidationError(
                f"Invalid declaration for host {name} ({where})", errors=messages, cause=e,
            ) from e

    async def _read_yaml(self, file_path: Path, hashes: Dict[str, str]) -> Dict[str, Any]:
        """Read and parse YAML file."""
        raw = await asyncio.to_thread(file_path.read_bytes)
        # Store hash for change detection
        hashes[str(file_path)] = hashlib.md5(raw).hexdigest()
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Cannot read {file_path}: not valid UTF-8 ({e})", cause=e) from e
        try:
            data = self.yaml.load(content)
        except YAMLError as e:
            raise ValidationError(f"Cannot parse {file_path}: {e}", cause=e) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError(f"{file_path}: top level must be a mapping")
        return data

    async def watch_for_changes(self) -> bool:
        """Check if configuration files have changed since the last load."""
        current: Dict[str, str] = {}
        for yaml_file in self.watched_files():
            raw = await asyncio.to_thread(yaml_file.read_bytes)
            current[str(yaml_file)] = hashlib.md5(raw).hexdigest()
        return current != self._config_hashes

    def watched_files(self) -> List[Path]:
        """Files whose content makes up the loaded configuration."""
        files = [self.config_dir / "config.yaml", self.config_dir / "defaults.yaml"]
        files.extend(sorted((self.config_dir / "hosts").glob("*.yaml")))
        return [path for path in files if path.is_file()]

    def select(self, names: Optional[Iterable[str]] = None) -> List[str]:
        """
        Host names to operate on, including invalid ones.

        Raises ValidationError for names that are not declared at all.
        """
        known = sorted(set(self.hosts) | set(self.host_errors))
        if not names:
            return known
        names = list(dict.fromkeys(names))
        unknown = [name for name in names if name not in known]
        if unknown:
            raise ValidationError(f"Unknown host(s): {', '.join(unknown)}")
        return names

    def get_host(self, name: str) -> Optional[HostProfile]:
        """Get host declaration by name."""
        return self.hosts.get(name)
