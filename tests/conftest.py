"""Test configuration and fixtures."""

import asyncio
from typing import Dict, List

import pytest

from ingest_console.config.settings import JobCfg
from ingest_console.execution.host import HostProbe
from ingest_console.jobs import JobController, JobRegistry, JobType


class MutableClock:
    """Deterministic time source for registry and grace-window tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHost:
    """
    In-memory execution host.

    ``launch`` makes the session visible immediately unless ``visible_on_launch``
    is False (a session the host has not reported yet). Queued probes are
    returned first, in order, before the live state is consulted.
    """

    def __init__(self, visible_on_launch: bool = True):
        self.visible_on_launch = visible_on_launch
        self.sessions: Dict[JobType, HostProbe] = {}
        self.logs: Dict[JobType, str] = {}
        self.queued: Dict[JobType, List[HostProbe]] = {}
        self.launches: list = []
        self.probe_calls = 0
        self.probe_error = None
        self.launch_error = None

    async def probe(self, definition) -> HostProbe:
        self.probe_calls += 1
        # yield to the loop like a real subprocess call would
        await asyncio.sleep(0)
        if self.probe_error is not None:
            raise self.probe_error
        jt = definition.job_type
        if self.queued.get(jt):
            return self.queued[jt].pop(0)
        session = self.sessions.get(jt)
        if session is not None:
            return HostProbe(
                running=session.running,
                session_active=session.session_active,
                output=self.logs.get(jt, ""),
                started_at=session.started_at,
            )
        return HostProbe(output=self.logs.get(jt, ""))

    async def launch(self, definition, params) -> None:
        await asyncio.sleep(0)
        if self.launch_error is not None:
            raise self.launch_error
        self.launches.append((definition.job_type, params.model_dump()))
        self.logs[definition.job_type] = ""
        if self.visible_on_launch:
            self.sessions[definition.job_type] = HostProbe(
                running=True, session_active=True, started_at="2024-05-01T10:00:00Z"
            )

    def start_external(self, job_type: JobType, started_at: str, output: str = "") -> None:
        """A session started outside this console."""
        self.sessions[job_type] = HostProbe(running=True, session_active=True, started_at=started_at)
        self.logs[job_type] = output

    def drain(self, job_type: JobType) -> None:
        """Job process exited; the session is still shutting down."""
        session = self.sessions[job_type]
        self.sessions[job_type] = HostProbe(running=False, session_active=True, started_at=session.started_at)

    def finish(self, job_type: JobType, output: str) -> None:
        self.sessions.pop(job_type, None)
        self.logs[job_type] = output


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def registry(tmp_path, clock):
    """Temporary job registry on a fake clock."""
    reg = JobRegistry(tmp_path / "registry.db", clock=clock)
    yield reg
    reg.close()


@pytest.fixture
def jobs_cfg():
    return JobCfg(poll_interval=0.01, launch_grace_seconds=30.0)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def controller(host, registry, jobs_cfg):
    return JobController(host, registry, jobs_cfg)
