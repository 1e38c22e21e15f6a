"""Async subprocess helpers."""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional

from podfleet.errors import CommandError, TransientRuntimeError


logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[float] = None,
    input: Optional[str] = None,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously."""
    logger.debug(f"Running command: {shlex.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if input is not None else None,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
        **kwargs
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input.encode() if input is not None else None),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TransientRuntimeError(
            f"Command timed out after {timeout}s: {shlex.join(cmd)}",
            details={"cmd": cmd, "timeout": timeout},
        )

    result = CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode() if stdout else "",
        stderr=stderr.decode() if stderr else "",
    )

    if check and process.returncode != 0:
        raise CommandError(cmd, process.returncode, result.stdout, result.stderr)

    return result
