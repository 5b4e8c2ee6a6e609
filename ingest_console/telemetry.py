"""
Logging setup for the console.

structlog renders key/value events on top of stdlib logging so uvicorn and
library records share the same handler.
"""

import logging
import sys

import structlog

_configured = False


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog and the root logger. Safe to call more than once.

    Args:
        level: Log level name (DEBUG, INFO, ...)
        json_output: Render JSON lines instead of the colored console format
    """
    global _configured

    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        _configured = True
    root.setLevel(log_level)


def get_logger(name: str):
    return structlog.get_logger(name)
