"""
Unit tests for the job controller.

Launch single-flight, status reconstruction, launch grace window and
finalization of finished runs.
"""
import asyncio

import pytest
from pydantic import ValidationError

from ingest_console.errors import LaunchConflict, TransportError, UnknownJobType
from ingest_console.execution.host import HostProbe
from ingest_console.jobs import JobState, JobType, ResultOutcome

pytestmark = pytest.mark.asyncio


async def test_launch_then_status_is_running(controller, host):
    record = await controller.launch("ingestion")
    assert record.job_type == JobType.INGESTION
    assert host.launches == [(JobType.INGESTION, {})]

    snapshot = await controller.status("ingestion")
    assert snapshot.running is True
    assert snapshot.session_active is True
    assert snapshot.state == JobState.RUNNING
    assert snapshot.started_at == record.started_at


async def test_second_launch_conflicts_with_first_start_time(controller):
    record = await controller.launch("ingestion")
    with pytest.raises(LaunchConflict) as exc:
        await controller.launch("ingestion")
    assert exc.value.started_at == record.started_at
    assert exc.value.job_type == "ingestion"


async def test_simultaneous_launches_exactly_one_wins(controller, host):
    outcomes = await asyncio.gather(
        controller.launch("ingestion"),
        controller.launch("ingestion"),
        return_exceptions=True,
    )
    accepted = [o for o in outcomes if not isinstance(o, Exception)]
    conflicts = [o for o in outcomes if isinstance(o, LaunchConflict)]
    assert len(accepted) == 1
    assert len(conflicts) == 1
    assert conflicts[0].started_at == accepted[0].started_at
    assert len(host.launches) == 1


async def test_job_types_are_independent(controller, host):
    await controller.launch("ingestion")
    await controller.launch("backfill", {"months": 3})
    assert host.launches[1] == (JobType.BACKFILL, {"months": 3})


async def test_backfill_months_default_and_bounds(controller, host):
    record = await controller.launch("backfill")
    assert record.params == {"months": 6}
    host.finish(JobType.BACKFILL, "BACKFILL COMPLETE")
    for months in (0, 121):
        with pytest.raises(ValidationError):
            await controller.launch("backfill", {"months": months})


async def test_ingestion_rejects_params(controller):
    with pytest.raises(ValidationError):
        await controller.launch("ingestion", {"months": 3})


async def test_unknown_job_type(controller):
    with pytest.raises(UnknownJobType):
        await controller.launch("reindex")
    with pytest.raises(UnknownJobType):
        await controller.status("reindex")


async def test_never_run_status_is_stable_idle(controller):
    first = await controller.status("backfill")
    second = await controller.status("backfill")
    for snapshot in (first, second):
        assert snapshot.running is False
        assert snapshot.session_active is False
        assert snapshot.output == ""
        assert snapshot.started_at is None
        assert snapshot.state == JobState.IDLE
        assert snapshot.last_result is None
        assert snapshot.terminal


async def test_finished_run_is_finalized_once(controller, host, registry, clock):
    await controller.launch("ingestion")
    clock.advance(120)
    host.finish(JobType.INGESTION, "Fetched: 500\nAdded: 10\nModified: 2\nErrors: 0\nINGESTION COMPLETE")

    snapshot = await controller.status("ingestion")
    assert snapshot.terminal
    assert snapshot.state == JobState.IDLE
    assert snapshot.output.endswith("INGESTION COMPLETE")
    assert snapshot.last_result.success is True
    assert snapshot.last_result.summary.fetched == 500

    await controller.status("ingestion")
    assert len(registry.history(JobType.INGESTION)) == 1
    assert registry.active(JobType.INGESTION) is None


async def test_draining_session_is_finishing(controller, host):
    await controller.launch("backfill", {"months": 2})
    host.drain(JobType.BACKFILL)
    snapshot = await controller.status("backfill")
    assert snapshot.state == JobState.FINISHING
    assert snapshot.running is False
    assert snapshot.session_active is True
    assert not snapshot.terminal
    with pytest.raises(LaunchConflict):
        await controller.launch("backfill")


async def test_launching_window_is_not_terminal(controller, host, registry, clock):
    host.visible_on_launch = False
    record = await controller.launch("ingestion")

    snapshot = await controller.status("ingestion")
    assert snapshot.state == JobState.LAUNCHING
    assert snapshot.session_active is True
    assert snapshot.started_at == record.started_at
    assert not snapshot.terminal

    with pytest.raises(LaunchConflict):
        await controller.launch("ingestion")

    clock.advance(31)
    snapshot = await controller.status("ingestion")
    assert snapshot.terminal
    assert snapshot.last_result.outcome == ResultOutcome.UNCONFIRMED
    assert registry.active(JobType.INGESTION) is None


async def test_run_seen_on_host_finishes_without_waiting_for_grace(controller, host, registry, clock):
    await controller.launch("ingestion")
    snapshot = await controller.status("ingestion")
    assert snapshot.state == JobState.RUNNING

    clock.advance(5)
    host.finish(JobType.INGESTION, "Added: 0\nINGESTION COMPLETE")
    snapshot = await controller.status("ingestion")
    assert snapshot.terminal
    assert snapshot.state == JobState.IDLE
    assert snapshot.output.endswith("INGESTION COMPLETE")
    assert snapshot.last_result.success is True
    assert registry.active(JobType.INGESTION) is None

    await controller.launch("ingestion")
    assert len(host.launches) == 2


async def test_stale_claim_is_finalized_on_launch(controller, host, registry, clock):
    first = await controller.launch("ingestion")
    host.finish(JobType.INGESTION, "Added: 4\nINGESTION COMPLETE")
    clock.advance(600)

    second = await controller.launch("ingestion")
    assert second.run_id != first.run_id
    runs = registry.history(JobType.INGESTION)
    assert [r.run_id for r in runs] == [first.run_id]
    assert runs[0].result.summary.added == 4


async def test_unknown_session_on_host_is_adopted(controller, host, registry):
    host.start_external(JobType.BACKFILL, "2024-02-02T02:02:02Z", output="Processing month 1/6")

    snapshot = await controller.status("backfill")
    assert snapshot.running is True
    assert snapshot.started_at == "2024-02-02T02:02:02Z"
    assert registry.active(JobType.BACKFILL).params == {"adopted": True}

    with pytest.raises(LaunchConflict) as exc:
        await controller.launch("backfill")
    assert exc.value.started_at == "2024-02-02T02:02:02Z"


async def test_draining_session_without_lock_file_has_no_start_time(controller, host, registry):
    host.sessions[JobType.BACKFILL] = HostProbe(running=False, session_active=True, started_at=None)

    snapshot = await controller.status("backfill")
    assert snapshot.state == JobState.FINISHING
    assert snapshot.started_at is None
    assert registry.active(JobType.BACKFILL).started_at is None

    with pytest.raises(LaunchConflict) as exc:
        await controller.launch("backfill")
    assert exc.value.started_at is None
    assert host.launches == []


async def test_launch_transport_failure_releases_claim(controller, host, registry):
    host.launch_error = TransportError("SSH connection failed: timed out", returncode=255)
    with pytest.raises(TransportError):
        await controller.launch("ingestion")

    assert registry.active(JobType.INGESTION) is None
    failed = registry.last_result(JobType.INGESTION)
    assert failed.outcome == ResultOutcome.FAILED
    assert failed.source == "launch"
    assert "SSH connection failed" in failed.message

    host.launch_error = None
    await controller.launch("ingestion")


async def test_probe_failure_propagates(controller, host):
    host.probe_error = TransportError("unreachable")
    with pytest.raises(TransportError):
        await controller.status("ingestion")
    with pytest.raises(TransportError):
        await controller.launch("ingestion")


async def test_watch_yields_changes_until_idle(controller, host, clock):
    await controller.launch("ingestion")
    clock.advance(60)
    seen = []
    async for snapshot in controller.watch("ingestion", interval=0):
        seen.append(snapshot.state)
        if snapshot.state == JobState.RUNNING:
            host.finish(JobType.INGESTION, "INGESTION COMPLETE")
    assert seen == [JobState.RUNNING, JobState.IDLE]


async def test_history_lists_finished_runs(controller, host, clock):
    await controller.launch("ingestion")
    host.finish(JobType.INGESTION, "INGESTION COMPLETE")
    clock.advance(60)
    await controller.status("ingestion")
    runs = controller.history("ingestion")
    assert len(runs) == 1
    assert runs[0].result.success
    assert controller.history() == runs
