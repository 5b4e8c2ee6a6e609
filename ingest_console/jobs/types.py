"""Job types, status snapshots, results and registry records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class JobType(str, Enum):
    INGESTION = "ingestion"
    BACKFILL = "backfill"


class JobState(str, Enum):
    """Observable lifecycle state of one job type."""

    IDLE = "idle"
    LAUNCHING = "launching"        # claimed, session not yet visible on the host
    RUNNING = "running"
    FINISHING = "finishing"        # job process exited, session still draining


class ResultOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"    # neither completion nor failure reported


@dataclass
class JobSummary:
    """Record counts reported by a job run. ``fetched=None`` means unknown."""

    added: int = 0
    modified: int = 0
    fetched: Optional[int] = None
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobResult:
    """Structured outcome derived from the final log output."""

    job_type: JobType
    outcome: ResultOutcome
    message: str
    summary: JobSummary = field(default_factory=JobSummary)
    raw_tail: str = ""
    source: str = "log"            # record | log

    @property
    def success(self) -> bool:
        return self.outcome == ResultOutcome.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type.value,
            "outcome": self.outcome.value,
            "success": self.success,
            "message": self.message,
            "summary": self.summary.to_dict(),
            "raw_tail": self.raw_tail,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobResult":
        return cls(
            job_type=JobType(data["job_type"]),
            outcome=ResultOutcome(data["outcome"]),
            message=data.get("message", ""),
            summary=JobSummary(**(data.get("summary") or {})),
            raw_tail=data.get("raw_tail", ""),
            source=data.get("source", "log"),
        )


@dataclass
class JobSnapshot:
    """Status of one job type, rebuilt from the host on every query."""

    job_type: JobType
    running: bool = False
    session_active: bool = False
    output: str = ""
    started_at: Optional[str] = None
    state: JobState = JobState.IDLE
    last_result: Optional[JobResult] = None

    @property
    def terminal(self) -> bool:
        return not self.running and not self.session_active


@dataclass
class RunRecord:
    """One launch as tracked by the job registry."""

    run_id: str
    job_type: JobType
    started_at: Optional[str]     # None when adopted without a readable lock file
    claimed_ts: float
    params: dict = field(default_factory=dict)
    seen: bool = False             # session has been observed on the host
    finished_at: Optional[str] = None
    result: Optional[JobResult] = None
