"""
Shell execution primitive.

Thin wrapper over asyncio subprocesses. The awaiting task suspends while the
command runs; other tasks on the loop keep going.
"""

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger("shell")


@dataclass(frozen=True)
class ShellResult:
    """Outcome of a shell command."""
    command: str
    returncode: int
    stdout: str
    stderr: str


class ShellCommandError(Exception):
    """Raised when a shell command exits non-zero."""

    def __init__(self, result: ShellResult):
        self.result = result
        detail = (result.stderr or result.stdout).strip()[:500]
        super().__init__(f"Command failed with exit code {result.returncode}: {result.command}: {detail}")

    @property
    def already_exists(self) -> bool:
        """True when the failure is an idempotency conflict ("already exists")."""
        text = f"{self.result.stdout}\n{self.result.stderr}".lower()
        return "already exists" in text


async def exec_shell(command: str) -> ShellResult:
    """
    Run a command through the system shell.

    Raises:
        ShellCommandError: If the command exits non-zero
    """
    logger.debug(f"Executing: {command}")
    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    result = ShellResult(
        command=command,
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if result.returncode != 0:
        raise ShellCommandError(result)
    return result
