"""
Client-side job status poller.

One asyncio task per observed job type. The first tick fires immediately,
then every ``interval`` seconds until the host reports the job type idle
(``running`` and ``session_active`` both false). The final output is then
classified exactly once and no further status requests are made.

Stopping a poller only stops observation; the job keeps running on its host.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from ..errors import TransportError
from ..jobs.definitions import parse_job_type
from ..jobs.results import DEFAULT_TAIL_CHARS, parse_result
from ..jobs.types import JobResult, JobSnapshot, JobState, JobType
from ..telemetry import get_logger

logger = get_logger(__name__)

StatusFetcher = Callable[[str], Awaitable[JobSnapshot]]


class ViewPhase(str, Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    RUNNING = "running"
    FINISHING = "finishing"
    DONE = "done"
    LOST = "lost"          # gave up after repeated transport errors


_PHASES = {
    JobState.IDLE: ViewPhase.IDLE,
    JobState.LAUNCHING: ViewPhase.LAUNCHING,
    JobState.RUNNING: ViewPhase.RUNNING,
    JobState.FINISHING: ViewPhase.FINISHING,
}


@dataclass
class JobView:
    """What an operator sees for one job type."""

    job_type: JobType
    phase: ViewPhase = ViewPhase.IDLE
    running: bool = False
    session_active: bool = False
    output: str = ""
    started_at: Optional[str] = None
    result: Optional[JobResult] = None
    banner: str = ""
    lost: bool = False
    consecutive_errors: int = 0
    last_error: Optional[str] = None
    ticks: int = 0

    @property
    def polling(self) -> bool:
        return self.phase not in (ViewPhase.DONE, ViewPhase.LOST)


class JobPoller:
    """
    Poll job status until each observed job type turns idle.

    Args:
        fetch_status: Coroutine returning the current JobSnapshot for a job type
        interval: Seconds between ticks
        on_update: Called with the JobView after every successful tick
        on_result: Called once with (JobView, JobResult) at the terminal tick
        on_error: Called with (JobView, exception) for each failed tick
        max_consecutive_errors: Failed ticks in a row before giving up
        tail_chars: Characters of output kept in the view and the result

    Callbacks may be plain functions or coroutines.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = 5.0,
        on_update: Optional[Callable] = None,
        on_result: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
        max_consecutive_errors: int = 12,
        tail_chars: int = DEFAULT_TAIL_CHARS,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be >= 1")
        self.fetch_status = fetch_status
        self.interval = interval
        self.on_update = on_update
        self.on_result = on_result
        self.on_error = on_error
        self.max_consecutive_errors = max_consecutive_errors
        self.tail_chars = tail_chars
        self.views: Dict[JobType, JobView] = {}
        self._tasks: Dict[JobType, asyncio.Task] = {}

    def start(self, job_type: Union[str, JobType]) -> asyncio.Task:
        """
        Begin observing a job type, replacing any loop already running for it.

        Must be called from within a running event loop.
        """
        jt = parse_job_type(job_type)
        self.stop(jt)

        self.views[jt] = JobView(job_type=jt)
        task = asyncio.get_running_loop().create_task(self._run(jt), name=f"poller-{jt.value}")
        self._tasks[jt] = task
        task.add_done_callback(lambda t, jt=jt: self._forget(jt, t))
        logger.debug("poller.started", job_type=jt.value, interval=self.interval)
        return task

    def _forget(self, jt: JobType, task: asyncio.Task) -> None:
        if self._tasks.get(jt) is task:
            del self._tasks[jt]

    def stop(self, job_type: Union[str, JobType]) -> bool:
        """Cancel observation of a job type. Returns True if a loop was cancelled."""
        jt = parse_job_type(job_type)
        task = self._tasks.pop(jt, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("poller.stopped", job_type=jt.value)
        return True

    def is_polling(self, job_type: Union[str, JobType]) -> bool:
        task = self._tasks.get(parse_job_type(job_type))
        return task is not None and not task.done()

    async def aclose(self) -> None:
        """Cancel every loop and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("poller.callback_failed", callback=getattr(callback, "__name__", repr(callback)))

    def _apply(self, view: JobView, snapshot: JobSnapshot) -> None:
        view.ticks += 1
        view.running = snapshot.running
        view.session_active = snapshot.session_active
        view.output = snapshot.output[-self.tail_chars:] if snapshot.output else ""
        if snapshot.started_at:
            view.started_at = snapshot.started_at
        view.phase = _PHASES[snapshot.state]
        view.consecutive_errors = 0
        view.last_error = None

    async def _run(self, jt: JobType) -> JobView:
        view = self.views[jt]
        while True:
            try:
                snapshot = await self.fetch_status(jt.value)
            except asyncio.CancelledError:
                raise
            except TransportError as e:
                view.consecutive_errors += 1
                view.last_error = str(e)
                logger.warning(
                    "poller.transport_error",
                    job_type=jt.value,
                    error=str(e),
                    consecutive=view.consecutive_errors,
                )
                await self._notify(self.on_error, view, e)
                if view.consecutive_errors >= self.max_consecutive_errors:
                    return self._give_up(view)
                await asyncio.sleep(self.interval)
                continue
            except Exception as e:
                view.last_error = str(e)
                logger.exception("poller.tick_failed", job_type=jt.value)
                await self._notify(self.on_error, view, e)
                return self._give_up(view)

            self._apply(view, snapshot)
            logger.debug(
                "poller.tick",
                job_type=jt.value,
                state=snapshot.state.value,
                running=snapshot.running,
                session_active=snapshot.session_active,
            )

            if snapshot.terminal:
                result = parse_result(jt, snapshot.output, tail_chars=self.tail_chars)
                view.result = result
                view.phase = ViewPhase.DONE
                logger.info(
                    "poller.terminal",
                    job_type=jt.value,
                    outcome=result.outcome.value,
                    ticks=view.ticks,
                )
                await self._notify(self.on_update, view)
                await self._notify(self.on_result, view, result)
                return view

            await self._notify(self.on_update, view)
            await asyncio.sleep(self.interval)

    def _give_up(self, view: JobView) -> JobView:
        view.lost = True
        view.phase = ViewPhase.LOST
        view.banner = f"Lost contact with {view.job_type.value} status: {view.last_error}"
        logger.error("poller.lost", job_type=view.job_type.value, error=view.last_error)
        return view
