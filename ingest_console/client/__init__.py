"""
Console client: HTTP access to the job API and client-side status polling.
"""

from .http import ConsoleClient, LaunchOutcome, snapshot_from_json
from .poller import JobPoller, JobView, ViewPhase
from .console import JobConsole

__all__ = [
    "ConsoleClient",
    "LaunchOutcome",
    "snapshot_from_json",
    "JobPoller",
    "JobView",
    "ViewPhase",
    "JobConsole",
]
