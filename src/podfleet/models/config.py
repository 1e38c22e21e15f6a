"""Configuration models."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuntimeConfig(BaseModel):
    """Container runtime configuration."""
    backend: str = Field(default="podman")
    binary: str = Field(default="podman")
    command_timeout: float = Field(default=120.0, gt=0)
    ssh_command: List[str] = Field(default_factory=lambda: ["ssh", "-o", "BatchMode=yes"])
    supports_in_place_update: bool = Field(default=True)


class ExecutorConfig(BaseModel):
    """Plan execution configuration."""
    workers: int = Field(default=4, ge=1)
    host_parallelism: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff: float = Field(default=1.0, ge=0)


class AgentConfig(BaseModel):
    """Agent (watch mode) configuration."""
    reconciliation_interval: int = Field(default=300, ge=5)
    prune: bool = Field(default=False)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO")
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class PodfleetConfig(BaseModel):
    """Main configuration model."""
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="ignore")
