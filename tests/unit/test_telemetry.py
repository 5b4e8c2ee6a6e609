"""
Unit tests for logging setup.
"""
import logging

from ingest_console.telemetry import configure_logging, get_logger


def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    configure_logging("DEBUG", json_output=True)
    handlers = len(root.handlers)
    configure_logging("WARNING", json_output=False)
    assert len(root.handlers) == handlers
    assert root.level == logging.WARNING


def test_logger_accepts_key_value_events(caplog):
    configure_logging("INFO", json_output=True)
    with caplog.at_level(logging.INFO):
        get_logger("ingest_console.test").info("job.launch.accepted", job_type="ingestion")
    out = caplog.text
    assert "job.launch.accepted" in out
    assert '"job_type": "ingestion"' in out
