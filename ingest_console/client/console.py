"""Launch-and-watch orchestration on top of the client and poller."""

import asyncio
from typing import Callable, Optional, Tuple

from ..jobs.definitions import parse_job_type
from .http import ConsoleClient, LaunchOutcome
from .poller import JobPoller, JobView


def _label(job_type) -> str:
    return job_type.value.capitalize()


class JobConsole:
    """
    Operator-side control for both job types.

    A launch that is accepted starts the poller; a launch that conflicts with
    a running job shows an informational banner and attaches the poller to
    the run already in progress.
    """

    def __init__(
        self,
        client: ConsoleClient,
        interval: float = 5.0,
        on_update: Optional[Callable] = None,
        on_result: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
        max_consecutive_errors: int = 12,
    ):
        self.client = client
        self.poller = JobPoller(
            client.status,
            interval=interval,
            on_update=on_update,
            on_result=on_result,
            on_error=on_error,
            max_consecutive_errors=max_consecutive_errors,
        )

    async def launch_and_watch(
        self, job_type: str, months: Optional[int] = None
    ) -> Tuple[LaunchOutcome, asyncio.Task]:
        """
        Launch a job and start following it.

        Raises:
            ValueError: For an unknown job type or invalid parameters
            TransportError: If the launch request could not be delivered
        """
        jt = parse_job_type(job_type)
        outcome = await self.client.launch(jt.value, months=months)

        task = self.poller.start(jt)
        view = self.poller.views[jt]
        view.started_at = outcome.started_at
        if outcome.accepted:
            view.banner = outcome.message or f"{_label(jt)} started"
        else:
            view.banner = f"{_label(jt)} is already running (started {outcome.started_at or 'unknown'})"
        return outcome, task

    def attach(self, job_type: str) -> asyncio.Task:
        """Follow a job type without launching anything."""
        return self.poller.start(job_type)

    async def run(self, job_type: str, months: Optional[int] = None, attach: bool = False) -> JobView:
        """Launch (or attach) and wait until the job type is idle again."""
        if attach:
            task = self.attach(job_type)
        else:
            _, task = await self.launch_and_watch(job_type, months=months)
        return await task

    def cancel(self, job_type: str) -> bool:
        """Stop watching; the job itself keeps running."""
        return self.poller.stop(job_type)

    async def aclose(self) -> None:
        await self.poller.aclose()
