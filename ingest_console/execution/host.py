"""
Execution host adapter: launch detached job sessions and probe their state.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from ..config.settings import JobCfg
from ..errors import TransportError
from ..telemetry import get_logger
from .commands import (
    LOCK_END,
    LOCK_START,
    LOG_END,
    LOG_START,
    NO_LOCK,
    NO_LOG,
    NO_SCREEN,
    SCREEN_END,
    SCREEN_START,
    CommandBuilder,
)
from .runner import CommandRunner

logger = get_logger(__name__)


@dataclass
class HostProbe:
    """What the execution host reports about one job session."""

    running: bool = False          # lock file present
    session_active: bool = False   # screen session listed
    output: str = ""
    started_at: Optional[str] = None
    pid: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.running or self.session_active


def _section(text: str, start: str, end: str, default: str) -> str:
    match = re.search(re.escape(start) + r"\s*([\s\S]*?)\s*" + re.escape(end), text)
    return match.group(1).strip() if match else default


def parse_probe_output(stdout: str) -> HostProbe:
    """
    Parse the delimited output of a status-probe command.

    A lock file that is present but not valid JSON still counts as running,
    with an unknown start time.
    """
    lock = _section(stdout, LOCK_START, LOCK_END, NO_LOCK)
    log = _section(stdout, LOG_START, LOG_END, NO_LOG)
    screen = _section(stdout, SCREEN_START, SCREEN_END, NO_SCREEN)

    probe = HostProbe()
    if lock != NO_LOCK:
        probe.running = True
        try:
            info = json.loads(lock)
        except json.JSONDecodeError:
            info = {}
        if isinstance(info, dict):
            probe.started_at = info.get("startedAt") or None
            probe.pid = str(info["pid"]) if info.get("pid") else None

    probe.output = "" if log == NO_LOG else log
    probe.session_active = screen != NO_SCREEN
    return probe


class ShellHost:
    """Launches and probes job sessions through a CommandBuilder."""

    def __init__(
        self,
        builder: CommandBuilder,
        app_path: str,
        jobs: JobCfg,
        runner: Optional[CommandRunner] = None,
    ):
        self.builder = builder
        self.app_path = app_path
        self.jobs = jobs
        self.runner = runner or CommandRunner()

    async def probe(self, definition) -> HostProbe:
        """
        Report lock, log tail and session presence for a job definition.

        Raises:
            TransportError: If the probe could not be run
        """
        command = self.builder.status_probe(
            session_name=definition.session_name,
            lock_file=definition.lock_file(self.app_path),
            log_file=definition.log_file(self.app_path),
            tail_lines=self.jobs.log_tail_lines,
            timeout=self.jobs.probe_timeout,
        )
        result = await self.runner.run(command)
        if not result.ok and LOCK_START not in result.stdout:
            raise TransportError(
                f"Status probe failed with exit status {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return parse_probe_output(result.stdout)

    async def launch(self, definition, params: BaseModel) -> None:
        """
        Start the job in its detached session and return immediately.

        Raises:
            TransportError: If the session could not be created
        """
        script = definition.script(self.app_path, params)
        command = self.builder.detached_launch(
            definition.session_name, script, timeout=self.jobs.command_timeout
        )
        result = await self.runner.run(command)
        if not result.ok:
            raise TransportError(
                f"Failed to start {definition.job_type.value}: "
                f"{result.stderr.strip() or f'exit status {result.returncode}'}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        logger.info(
            "job.session_started",
            job_type=definition.job_type.value,
            session=definition.session_name,
            context=self.builder.context.value,
        )
