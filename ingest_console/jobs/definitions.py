"""
Per-job-type launch definitions.

Each job type maps to one detached screen session, one lock file and one log
file on the execution host, plus the completion marker its script prints.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnknownJobType
from ..execution.commands import job_script
from .types import JobType


class IngestionParams(BaseModel):
    """The ingestion job takes no parameters."""
    model_config = ConfigDict(extra="forbid")


class BackfillParams(BaseModel):
    """Backfill loads ``months`` of history backwards from the oldest month held."""
    model_config = ConfigDict(extra="forbid")

    months: int = Field(default=6, ge=1, le=120, description="Months of history to load")


@dataclass(frozen=True)
class JobDefinition:
    job_type: JobType
    session_name: str
    completion_marker: str
    params_model: type
    command: Callable[[BaseModel], str]
    prelude: tuple = field(default_factory=tuple)
    epilogue: tuple = field(default_factory=tuple)

    def lock_file(self, app_path: str) -> str:
        return f"{app_path}/data/.{self.job_type.value}-lock.json"

    def log_file(self, app_path: str) -> str:
        return f"{app_path}/data/.{self.job_type.value}-log.txt"

    def parse_params(self, params: Optional[dict]) -> BaseModel:
        """
        Validate launch parameters.

        Raises:
            pydantic.ValidationError: On unknown keys or out-of-range values
        """
        return self.params_model.model_validate(params or {})

    def script(self, app_path: str, params: BaseModel) -> str:
        """Full bash script for the detached session."""
        return job_script(
            body=self.command(params),
            app_path=app_path,
            lock_file=self.lock_file(app_path),
            log_file=self.log_file(app_path),
            prelude=self.prelude,
            epilogue=self.epilogue,
        )


def _ingestion_command(params: IngestionParams) -> str:
    return "npx tsx scripts/ingest-beverage-receipts.ts"


def _backfill_command(params: BackfillParams) -> str:
    return f"npx tsx scripts/ingest-backfill.ts --months {int(params.months)}"


DEFINITIONS: dict = {
    JobType.INGESTION: JobDefinition(
        job_type=JobType.INGESTION,
        session_name="console-ingestion",
        completion_marker="INGESTION COMPLETE",
        params_model=IngestionParams,
        command=_ingestion_command,
    ),
    JobType.BACKFILL: JobDefinition(
        job_type=JobType.BACKFILL,
        session_name="console-backfill",
        completion_marker="BACKFILL COMPLETE",
        params_model=BackfillParams,
        command=_backfill_command,
        # The database allows a single writer: stop the web server for the
        # duration of the backfill and bring it back afterwards.
        prelude=(
            'echo "Stopping Next.js server to release DuckDB lock..."',
            'pkill -f "next start" 2>/dev/null',
            "sleep 3",
        ),
        epilogue=(
            'echo "Restarting Next.js server..."',
            "nohup node node_modules/.bin/next start -p 3000 > /tmp/next-server.log 2>&1 &",
            "sleep 2",
            'echo "Next.js server restarted (PID $!)"',
        ),
    ),
}


def parse_job_type(value: Union[str, JobType]) -> JobType:
    try:
        return JobType(value)
    except ValueError:
        raise UnknownJobType(str(value)) from None


def get_definition(job_type: Union[str, JobType]) -> JobDefinition:
    return DEFINITIONS[parse_job_type(job_type)]
