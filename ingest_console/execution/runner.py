"""Async subprocess runner for built commands."""

import asyncio
from dataclasses import dataclass

from ..errors import TransportError
from ..telemetry import get_logger
from .commands import Command

logger = get_logger(__name__)

# ssh exits with 255 when the connection itself fails
SSH_CONNECTION_FAILED = 255


@dataclass
class CommandResult:
    """Captured outcome of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs commands with ``asyncio.create_subprocess_exec``.

    Failures to deliver the command (missing binary, timeout, ssh connection
    failure) raise ``TransportError``. Any other non-zero exit status is
    returned to the caller, which decides whether it matters.
    """

    async def run(self, command: Command) -> CommandResult:
        logger.debug("command.run", kind=command.kind, command=command.as_string())

        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("command.failed", kind=command.kind, error=str(e))
            raise TransportError(f"Cannot start {command.argv[0]}: {e}") from e

        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                process.communicate(), timeout=command.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error("command.failed", kind=command.kind, error="timeout", timeout=command.timeout)
            raise TransportError(f"Command timed out after {command.timeout:g}s")

        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        result = CommandResult(returncode=process.returncode, stdout=stdout, stderr=stderr)

        if command.argv[0] == "ssh" and result.returncode == SSH_CONNECTION_FAILED:
            logger.error("command.failed", kind=command.kind, error="ssh", stderr=stderr.strip())
            raise TransportError(
                f"SSH connection failed: {stderr.strip() or 'exit status 255'}",
                returncode=result.returncode,
                stderr=stderr,
            )

        return result
