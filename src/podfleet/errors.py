"""Exception hierarchy for podfleet."""

from typing import Any, Dict, List, Optional


class PodfleetError(Exception):
    """
    Base exception for podfleet.

    Attributes:
        details: Optional structured information (command, stderr, resource).
        cause: Optional original exception that triggered this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}
        self.cause = cause


class ValidationError(PodfleetError):
    """Raised when host declarations are invalid. Never retried."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs: Any) -> None:
        self.errors = list(errors) if errors else [message]
        super().__init__(message, **kwargs)

    def __str__(self) -> str:
        if len(self.errors) <= 1:
            return super().__str__()
        lines = [super().__str__()]
        lines.extend(f"  - {error}" for error in self.errors)
        return "\n".join(lines)


class CommandError(PodfleetError):
    """Raised when an external command exits non-zero."""

    def __init__(
        self,
        cmd: List[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"Command {' '.join(cmd)} exited with {returncode}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, details={"returncode": returncode, "stderr": stderr})


class RuntimeOperationError(PodfleetError):
    """Base class for failures reported by the container runtime."""


class TransientRuntimeError(RuntimeOperationError):
    """Timeouts, busy resources and other retryable runtime failures."""


class FatalRuntimeError(RuntimeOperationError):
    """Missing images, permission problems and other non-retryable failures."""


class ResourceExistsError(RuntimeOperationError):
    """A create raced with another writer and the resource already exists."""


class ResourceNotFoundError(RuntimeOperationError):
    """The runtime does not know the requested resource."""


class InspectionFailed(PodfleetError):
    """Raised when the live state of a host cannot be listed at all."""


class HealthCheckTimeout(PodfleetError):
    """A container did not become ready before its health check timed out."""

    reason = "health-check-timeout"
