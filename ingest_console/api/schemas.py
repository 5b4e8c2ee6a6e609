"""Pydantic request/response schemas for the console API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..jobs.types import JobResult, JobSnapshot, RunRecord


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(populate_by_name=True)


class LaunchRequest(BaseModel):
    """Launch parameters; only backfill accepts any."""

    months: Optional[int] = Field(default=None, description="Backfill: months of history to load (1-120, default 6)")

    def to_params(self) -> dict:
        return self.model_dump(exclude_none=True)


class LaunchResponse(CamelModel):
    """Accepted launch."""

    job_type: str = Field(..., alias="jobType")
    run_id: str = Field(..., alias="runId")
    started_at: str = Field(..., alias="startedAt")
    params: Dict[str, Any] = Field(default_factory=dict)
    status: str = Field(default="started")
    message: str = Field(default="Job started in background session")


class ConflictResponse(CamelModel):
    """A run of the same job type is already active."""

    error: str
    job_type: str = Field(..., alias="jobType")
    started_at: Optional[str] = Field(default=None, alias="startedAt")


class ErrorResponse(BaseModel):
    error: str


class SummaryModel(BaseModel):
    added: int = 0
    modified: int = 0
    fetched: Optional[int] = Field(default=None, description="None when the job did not report it")
    errors: int = 0


class ResultModel(CamelModel):
    job_type: str = Field(..., alias="jobType")
    outcome: str = Field(..., description="succeeded, failed or unconfirmed")
    success: bool
    message: str
    summary: SummaryModel
    raw_tail: str = Field(default="", alias="rawTail")
    source: str = Field(default="log", description="record, log or launch")


class StatusResponse(CamelModel):
    """Live status of one job type."""

    job_type: str = Field(..., alias="jobType")
    running: bool
    session_active: bool = Field(..., alias="sessionActive")
    output: str = ""
    started_at: Optional[str] = Field(default=None, alias="startedAt")
    state: str = Field(default="idle", description="idle, launching, running or finishing")
    last_result: Optional[ResultModel] = Field(default=None, alias="lastResult")


class RunModel(CamelModel):
    run_id: str = Field(..., alias="runId")
    job_type: str = Field(..., alias="jobType")
    started_at: Optional[str] = Field(default=None, alias="startedAt", description="None when the start time was not recoverable")
    finished_at: Optional[str] = Field(default=None, alias="finishedAt")
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[ResultModel] = None


class HistoryResponse(BaseModel):
    runs: List[RunModel] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service status")
    context: str = Field(..., description="Execution context: local or remote")
    job_types: List[str] = Field(default_factory=list, alias="jobTypes")

    model_config = ConfigDict(populate_by_name=True)


def result_model(result: Optional[JobResult]) -> Optional[ResultModel]:
    if result is None:
        return None
    return ResultModel(
        job_type=result.job_type.value,
        outcome=result.outcome.value,
        success=result.success,
        message=result.message,
        summary=SummaryModel(**result.summary.to_dict()),
        raw_tail=result.raw_tail,
        source=result.source,
    )


def status_response(snapshot: JobSnapshot) -> StatusResponse:
    return StatusResponse(
        job_type=snapshot.job_type.value,
        running=snapshot.running,
        session_active=snapshot.session_active,
        output=snapshot.output,
        started_at=snapshot.started_at,
        state=snapshot.state.value,
        last_result=result_model(snapshot.last_result),
    )


def run_model(record: RunRecord) -> RunModel:
    return RunModel(
        run_id=record.run_id,
        job_type=record.job_type.value,
        started_at=record.started_at,
        finished_at=record.finished_at,
        params=record.params,
        result=result_model(record.result),
    )
