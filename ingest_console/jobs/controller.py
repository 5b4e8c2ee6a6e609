"""
Job controller: launch and status for detached ingestion jobs.

Nothing about a run is kept in process memory. Every call re-reads the job
registry and probes the execution host, so a restarted web process picks up
in-flight runs where it left off.
"""

import asyncio
from typing import AsyncIterator, Optional, Union

from ..config.settings import JobCfg
from ..errors import LaunchConflict, TransportError
from ..telemetry import get_logger
from .definitions import JobDefinition, get_definition
from .registry import JobRegistry
from .results import parse_result
from .types import JobResult, JobSnapshot, JobState, JobType, ResultOutcome, RunRecord

logger = get_logger(__name__)


class JobController:
    """
    Stateless per-request job control.

    Args:
        host: Execution host adapter (``probe`` / ``launch`` coroutines)
        registry: Persistent job registry
        jobs: Timing configuration
    """

    def __init__(self, host, registry: JobRegistry, jobs: JobCfg):
        self.host = host
        self.registry = registry
        self.jobs = jobs

    def _in_grace(self, record: RunRecord) -> bool:
        """
        True while a fresh claim may not be visible on the host yet.

        Only claims whose session was never observed qualify; once the host
        has shown the session, its disappearance means the run is over.
        """
        if record.seen:
            return False
        return self.registry.clock() - record.claimed_ts < self.jobs.launch_grace_seconds

    def _track(self, jt: JobType, existing: Optional[RunRecord], probe) -> Optional[RunRecord]:
        """Adopt or mark seen the claim behind a session the host reports as active."""
        if existing is None:
            return self.registry.adopt(jt, probe.started_at)
        return self.registry.mark_seen(existing)

    def _finalize(self, record: RunRecord, output: str) -> Optional[RunRecord]:
        result = parse_result(record.job_type, output, tail_chars=self.jobs.raw_tail_chars)
        archived = self.registry.finish(record, result)
        if archived is not None:
            logger.info(
                "job.finalized",
                job_type=record.job_type.value,
                run_id=record.run_id,
                outcome=result.outcome.value,
                added=result.summary.added,
                modified=result.summary.modified,
            )
        return archived

    async def launch(self, job_type: Union[str, JobType], params: Optional[dict] = None) -> RunRecord:
        """
        Start a job in a detached session unless one is already active.

        Returns as soon as the session has been created; never waits for the
        job itself.

        Args:
            job_type: Job type to launch
            params: Job parameters (``months`` for backfill)

        Returns:
            RunRecord of the accepted run

        Raises:
            UnknownJobType: For an unknown job type
            pydantic.ValidationError: For invalid parameters
            LaunchConflict: If a run of this type is active (or being created)
            TransportError: If the host could not be reached
        """
        definition = get_definition(job_type)
        parsed = definition.parse_params(params)
        jt = definition.job_type

        existing = self.registry.active(jt)
        probe = await self.host.probe(definition)

        if probe.active:
            existing = self._track(jt, existing, probe)
            started_at = (existing.started_at if existing else None) or probe.started_at
            logger.info("job.launch.conflict", job_type=jt.value, started_at=started_at)
            raise LaunchConflict(jt.value, started_at)

        if existing is not None:
            if self._in_grace(existing):
                logger.info("job.launch.conflict", job_type=jt.value, started_at=existing.started_at)
                raise LaunchConflict(jt.value, existing.started_at)
            # session gone: the run has ended
            self._finalize(existing, probe.output)

        record = self.registry.try_claim(jt, params=parsed.model_dump())
        if record is None:
            winner = self.registry.active(jt)
            started_at = winner.started_at if winner else None
            logger.info("job.launch.conflict", job_type=jt.value, started_at=started_at, race=True)
            raise LaunchConflict(jt.value, started_at)

        try:
            await self.host.launch(definition, parsed)
        except TransportError as e:
            self.registry.finish(
                record,
                JobResult(
                    job_type=jt,
                    outcome=ResultOutcome.FAILED,
                    message=f"Launch failed: {e}",
                    source="launch",
                ),
            )
            logger.error("job.launch.failed", job_type=jt.value, run_id=record.run_id, error=str(e))
            raise

        logger.info(
            "job.launch.accepted",
            job_type=jt.value,
            run_id=record.run_id,
            started_at=record.started_at,
            params=record.params,
        )
        return record

    async def status(self, job_type: Union[str, JobType]) -> JobSnapshot:
        """
        Current snapshot for a job type, probed live from the host.

        A claim whose session has disappeared is finalized here: its result is
        parsed from the final output and archived exactly once.

        Raises:
            UnknownJobType: For an unknown job type
            TransportError: If the host could not be reached
        """
        definition: JobDefinition = get_definition(job_type)
        jt = definition.job_type

        probe = await self.host.probe(definition)
        existing = self.registry.active(jt)

        if probe.active:
            existing = self._track(jt, existing, probe)
            snapshot = JobSnapshot(
                job_type=jt,
                running=probe.running,
                session_active=probe.session_active,
                output=probe.output,
                started_at=(existing.started_at if existing else None) or probe.started_at,
                state=JobState.RUNNING if probe.running else JobState.FINISHING,
            )
        elif existing is not None and self._in_grace(existing):
            snapshot = JobSnapshot(
                job_type=jt,
                running=False,
                session_active=True,
                output="",
                started_at=existing.started_at,
                state=JobState.LAUNCHING,
            )
        else:
            if existing is not None:
                self._finalize(existing, probe.output)
            snapshot = JobSnapshot(job_type=jt, output=probe.output)

        snapshot.last_result = self.registry.last_result(jt)
        return snapshot

    async def watch(
        self,
        job_type: Union[str, JobType],
        interval: Optional[float] = None,
    ) -> AsyncIterator[JobSnapshot]:
        """
        Yield a snapshot whenever it changes, ending with the first terminal one.

        Args:
            job_type: Job type to observe
            interval: Seconds between probes (defaults to ``poll_interval``)
        """
        interval = self.jobs.poll_interval if interval is None else interval
        previous = None
        while True:
            snapshot = await self.status(job_type)
            key = (snapshot.state, snapshot.running, snapshot.session_active, snapshot.output)
            if key != previous:
                previous = key
                yield snapshot
            if snapshot.terminal:
                return
            await asyncio.sleep(interval)

    def history(self, job_type: Optional[Union[str, JobType]] = None, limit: int = 20) -> list:
        jt = get_definition(job_type).job_type if job_type is not None else None
        return self.registry.history(jt, limit=limit)
