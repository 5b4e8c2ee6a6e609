"""
Job orchestration: definitions, registry, controller and result parsing.
"""

from .types import JobType, JobState, ResultOutcome, JobSummary, JobResult, JobSnapshot, RunRecord
from .definitions import DEFINITIONS, JobDefinition, BackfillParams, IngestionParams, get_definition, parse_job_type
from .registry import JobRegistry
from .results import parse_result
from .controller import JobController

__all__ = [
    "JobType",
    "JobState",
    "ResultOutcome",
    "JobSummary",
    "JobResult",
    "JobSnapshot",
    "RunRecord",
    "DEFINITIONS",
    "JobDefinition",
    "BackfillParams",
    "IngestionParams",
    "get_definition",
    "parse_job_type",
    "JobRegistry",
    "parse_result",
    "JobController",
]
