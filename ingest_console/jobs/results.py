"""
Classify job log output into a structured result.

The job's last word is a single machine-readable line::

    JOB_RESULT {"status": "success", "added": 10, "modified": 2, "fetched": 500, "errors": 0}

Older job scripts only print human-readable summaries, so when no record is
present the output is classified by marker tokens and ``Label: <n>`` scans.
"""

import json
import re
from typing import Optional, Union

from ..telemetry import get_logger
from .definitions import get_definition
from .types import JobResult, JobSummary, JobType, ResultOutcome

logger = get_logger(__name__)

RESULT_RECORD_RE = re.compile(r"^\s*JOB_RESULT\s+(\{.*\})\s*$", re.MULTILINE)

FAILURE_MARKERS = ("Fatal", "FATAL", "ERROR LIMIT", "ABORT")

COUNT_PATTERNS = {
    "added": re.compile(r"Added:\s*(\d[\d,]*)"),
    "modified": re.compile(r"Modified:\s*(\d[\d,]*)"),
    "fetched": re.compile(r"Fetched:\s*(\d[\d,]*)"),
    "errors": re.compile(r"Errors:\s*(\d[\d,]*)"),
}

DEFAULT_TAIL_CHARS = 3000


def parse_count(text: str) -> int:
    """Parse ``"1,234"`` as ``1234``."""
    return int(text.replace(",", ""))


def scan_count(output: str, name: str) -> Optional[int]:
    """First ``<Label>: <n>`` value for ``name`` anywhere in ``output``."""
    match = COUNT_PATTERNS[name].search(output)
    return parse_count(match.group(1)) if match else None


def scan_summary(output: str) -> JobSummary:
    """Extract the four counts independently; missing counts keep their defaults."""
    fetched = scan_count(output, "fetched")
    return JobSummary(
        added=scan_count(output, "added") or 0,
        modified=scan_count(output, "modified") or 0,
        fetched=fetched,
        errors=scan_count(output, "errors") or 0,
    )


def find_result_record(output: str) -> Optional[dict]:
    """
    Return the last well-formed ``JOB_RESULT`` record, if any.

    Lines that do not decode to an object with a ``status`` of ``success`` or
    ``failure`` are ignored.
    """
    record = None
    for match in RESULT_RECORD_RE.finditer(output):
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.warning("result.record_invalid", line=match.group(0)[:200])
            continue
        if isinstance(data, dict) and data.get("status") in ("success", "failure"):
            record = data
    return record


def _coerce_count(value, fallback: Optional[int]) -> Optional[int]:
    if value is None:
        return fallback
    try:
        return parse_count(value) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return fallback


def _label(job_type: JobType) -> str:
    return job_type.value.capitalize()


def _from_record(job_type: JobType, record: dict, output: str, raw_tail: str) -> JobResult:
    scanned = scan_summary(output)
    summary = JobSummary(
        added=_coerce_count(record.get("added"), scanned.added),
        modified=_coerce_count(record.get("modified"), scanned.modified),
        fetched=_coerce_count(record.get("fetched"), scanned.fetched),
        errors=_coerce_count(record.get("errors"), scanned.errors),
    )
    if record["status"] == "success":
        outcome = ResultOutcome.SUCCEEDED
        default_message = (
            f"{_label(job_type)} complete. Added: {summary.added}, Modified: {summary.modified}"
        )
    else:
        outcome = ResultOutcome.FAILED
        default_message = f"{_label(job_type)} failed."
    return JobResult(
        job_type=job_type,
        outcome=outcome,
        message=str(record.get("message") or default_message),
        summary=summary,
        raw_tail=raw_tail,
        source="record",
    )


def parse_result(
    job_type: Union[str, JobType],
    output: str,
    tail_chars: int = DEFAULT_TAIL_CHARS,
) -> JobResult:
    """
    Build the result of a finished run from its complete output.

    Precedence:
        1. The last ``JOB_RESULT`` record
        2. Any failure marker (a run that aborted after printing counts failed)
        3. The completion marker, or an ``Added: <n>`` token
        4. Otherwise the run is unconfirmed, never assumed successful

    Args:
        job_type: Job type whose completion marker applies
        output: Full captured output at termination
        tail_chars: Characters of output kept for diagnostics

    Returns:
        JobResult
    """
    definition = get_definition(job_type)
    job_type = definition.job_type
    output = output or ""
    raw_tail = output[-tail_chars:]

    record = find_result_record(output)
    if record is not None:
        return _from_record(job_type, record, output, raw_tail)

    summary = scan_summary(output)
    failed = any(marker in output for marker in FAILURE_MARKERS)
    completed = definition.completion_marker in output or scan_count(output, "added") is not None

    if failed:
        outcome = ResultOutcome.FAILED
        message = f"{_label(job_type)} failed. Check log output for details."
    elif completed:
        outcome = ResultOutcome.SUCCEEDED
        message = f"{_label(job_type)} complete. Added: {summary.added}, Modified: {summary.modified}"
    else:
        outcome = ResultOutcome.UNCONFIRMED
        message = "Job ended without confirming completion. Check log output for details."

    return JobResult(
        job_type=job_type,
        outcome=outcome,
        message=message,
        summary=summary,
        raw_tail=raw_tail,
        source="log",
    )
