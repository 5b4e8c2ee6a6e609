"""
Execution context detection.

If the application install directory exists on this machine we are running
on the execution host itself and commands run locally; otherwise they are
forwarded over ssh.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path


class ExecutionContext(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


def expand_home(path: str) -> Path:
    """Resolve a leading ``~`` against the current user's home directory."""
    return Path(path).expanduser()


@lru_cache(maxsize=None)
def resolve_context(app_path: str) -> ExecutionContext:
    """
    Decide where commands run.

    Args:
        app_path: Application install path on the execution host

    Returns:
        LOCAL when ``app_path`` exists here, REMOTE otherwise
    """
    try:
        exists = expand_home(app_path).exists()
    except (OSError, RuntimeError):
        # RuntimeError: home directory cannot be determined
        exists = False
    return ExecutionContext.LOCAL if exists else ExecutionContext.REMOTE
