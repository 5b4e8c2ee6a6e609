"""
Async HTTP client for the console API.

Launch conflicts are an expected outcome, not an error: they come back as a
``LaunchOutcome`` with ``conflict=True``. Anything that prevents a request
from completing is raised as ``TransportError``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..errors import TransportError
from ..jobs.types import JobResult, JobSnapshot, JobState, JobSummary, JobType, ResultOutcome
from ..telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class LaunchOutcome:
    """Answer to a launch request."""

    job_type: JobType
    accepted: bool
    started_at: Optional[str] = None
    run_id: Optional[str] = None
    message: str = ""
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def conflict(self) -> bool:
        return not self.accepted


def _result_from_json(data: Optional[dict]) -> Optional[JobResult]:
    if not data:
        return None
    summary = data.get("summary") or {}
    return JobResult(
        job_type=JobType(data["jobType"]),
        outcome=ResultOutcome(data["outcome"]),
        message=data.get("message", ""),
        summary=JobSummary(
            added=summary.get("added", 0),
            modified=summary.get("modified", 0),
            fetched=summary.get("fetched"),
            errors=summary.get("errors", 0),
        ),
        raw_tail=data.get("rawTail", ""),
        source=data.get("source", "log"),
    )


def snapshot_from_json(data: dict) -> JobSnapshot:
    """Build a JobSnapshot from a ``/status`` response body."""
    return JobSnapshot(
        job_type=JobType(data["jobType"]),
        running=bool(data.get("running")),
        session_active=bool(data.get("sessionActive")),
        output=data.get("output") or "",
        started_at=data.get("startedAt"),
        state=JobState(data.get("state", "idle")),
        last_result=_result_from_json(data.get("lastResult")),
    )


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


class ConsoleClient:
    """
    Thin async wrapper over the console HTTP API.

    Args:
        base_url: API base URL
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    async def launch(self, job_type: str, months: Optional[int] = None) -> LaunchOutcome:
        """
        Request a launch.

        Returns:
            LaunchOutcome, ``accepted`` on 202 and ``conflict`` on 409

        Raises:
            ValueError: On 404/422 (unknown job type or invalid parameters)
            TransportError: On network failure or a 5xx answer
        """
        body = {"months": months} if months is not None else {}
        response = await self._request("POST", f"/jobs/{job_type}/launch", json=body)

        if response.status_code in (200, 202):
            data = response.json()
            return LaunchOutcome(
                job_type=JobType(data["jobType"]),
                accepted=True,
                started_at=data.get("startedAt"),
                run_id=data.get("runId"),
                message=data.get("message", ""),
                params=data.get("params") or {},
            )
        if response.status_code == 409:
            data = response.json()
            return LaunchOutcome(
                job_type=JobType(data.get("jobType", job_type)),
                accepted=False,
                started_at=data.get("startedAt"),
                message=data.get("error", ""),
            )
        if response.status_code in (404, 422):
            raise ValueError(_error_text(response))
        raise TransportError(
            f"Launch failed with HTTP {response.status_code}: {_error_text(response)}",
            returncode=response.status_code,
        )

    async def status(self, job_type: str) -> JobSnapshot:
        """
        Fetch the live status of a job type.

        Raises:
            ValueError: On 404 (unknown job type)
            TransportError: On network failure or a non-200 answer
        """
        response = await self._request("GET", f"/jobs/{job_type}/status")
        if response.status_code == 200:
            return snapshot_from_json(response.json())
        if response.status_code == 404:
            raise ValueError(_error_text(response))
        raise TransportError(
            f"Status failed with HTTP {response.status_code}: {_error_text(response)}",
            returncode=response.status_code,
        )

    async def history(self, job_type: Optional[str] = None, limit: int = 20) -> list:
        params: Dict[str, Any] = {"limit": limit}
        if job_type is not None:
            params["job_type"] = job_type
        response = await self._request("GET", "/jobs/history", params=params)
        if response.status_code != 200:
            raise TransportError(
                f"History failed with HTTP {response.status_code}: {_error_text(response)}",
                returncode=response.status_code,
            )
        return response.json().get("runs", [])
