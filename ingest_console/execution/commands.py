"""
Command construction for local and ssh execution.

Every command is an argv list executed without an intermediate local shell.
Script bodies are passed through ``shlex.quote`` whenever they cross a shell
boundary (the remote login shell), so quotes inside a script survive intact.
"""

import shlex
from dataclasses import dataclass
from typing import Optional, Sequence

from ..config.settings import RemoteHost
from .context import ExecutionContext

LOCK_START = "===LOCK_START==="
LOCK_END = "===LOCK_END==="
LOG_START = "===LOG_START==="
LOG_END = "===LOG_END==="
SCREEN_START = "===SCREEN_START==="
SCREEN_END = "===SCREEN_END==="
NO_LOCK = "__NO_LOCK__"
NO_LOG = "__NO_LOG__"
NO_SCREEN = "__NO_SCREEN__"

_UNSAFE_PATH_CHARS = set('"$`\\\n')


@dataclass(frozen=True)
class Command:
    """A ready-to-run command."""

    argv: tuple
    timeout: float
    kind: str = "shell"            # shell | launch | probe

    def as_string(self) -> str:
        """Render as a single shell-safe string (for logs and debugging)."""
        return shlex.join(self.argv)


def shell_path(path: str) -> str:
    """
    Quote a configured path for use inside a bash script.

    A leading ``~/`` becomes ``$HOME/`` inside double quotes so tilde
    expansion still happens on the execution host.

    Raises:
        ValueError: If the path contains characters unsafe inside double quotes
    """
    if path == "~" or path.startswith("~/"):
        rest = path[1:]
        if _UNSAFE_PATH_CHARS & set(rest):
            raise ValueError(f"Unsupported characters in path: {path!r}")
        return f'"$HOME{rest}"'
    return shlex.quote(path)


class CommandBuilder:
    """Builds launch, probe and plain commands for one execution context."""

    def __init__(self, context: ExecutionContext, remote: RemoteHost):
        self.context = context
        self.remote = remote

    @property
    def is_local(self) -> bool:
        return self.context == ExecutionContext.LOCAL

    def ssh_prefix(self) -> list:
        return [
            "ssh",
            "-i", self.remote.key_path,
            "-o", "StrictHostKeyChecking=no",
            "-o", f"ConnectTimeout={self.remote.connect_timeout}",
            self.remote.target,
        ]

    def _dispatch(self, argv: Sequence[str], timeout: float, kind: str) -> Command:
        if self.is_local:
            return Command(argv=tuple(argv), timeout=timeout, kind=kind)
        # ssh hands its trailing argument to the remote login shell
        return Command(
            argv=tuple(self.ssh_prefix() + [shlex.join(argv)]),
            timeout=timeout,
            kind=kind,
        )

    def detached_launch(self, session_name: str, script: str, timeout: float) -> Command:
        """
        Start ``script`` inside a named, detached screen session.

        The session outlives both this process and the ssh connection.
        """
        argv = ["screen", "-dmS", session_name, "bash", "-c", script]
        return self._dispatch(argv, timeout, "launch")

    def status_probe(
        self,
        session_name: str,
        lock_file: str,
        log_file: str,
        tail_lines: int,
        timeout: float,
    ) -> Command:
        """
        Report lock file, log tail and session presence in delimited sections.

        See ``ingest_console.execution.host.parse_probe_output``.
        """
        lock = shell_path(lock_file)
        log = shell_path(log_file)
        session = shlex.quote(f".{session_name}")
        script = " ".join([
            f"echo '{LOCK_START}';",
            f"if [ -f {lock} ]; then cat {lock}; else echo '{NO_LOCK}'; fi;",
            f"echo '{LOCK_END}';",
            f"echo '{LOG_START}';",
            f"if [ -f {log} ]; then tail -n {int(tail_lines)} {log}; else echo '{NO_LOG}'; fi;",
            f"echo '{LOG_END}';",
            f"echo '{SCREEN_START}';",
            f"screen -ls 2>/dev/null | grep -F -- {session} || echo '{NO_SCREEN}';",
            f"echo '{SCREEN_END}'",
        ])
        return self._dispatch(["bash", "-c", script], timeout, "probe")


def job_script(
    body: str,
    app_path: str,
    lock_file: str,
    log_file: str,
    prelude: Optional[Sequence[str]] = None,
    epilogue: Optional[Sequence[str]] = None,
) -> str:
    """
    Wrap a job body with lock-file bookkeeping and log capture.

    The lock file holds ``{"startedAt", "pid"}`` while the job body runs and
    is removed as soon as it exits; ``epilogue`` steps then run while the
    session drains. The EXIT trap removes the lock on any abnormal exit.

    Args:
        body: Shell command running the job itself
        app_path: Working directory on the execution host
        lock_file: Lock file path (may start with ``~/``)
        log_file: Log file path, truncated at start
        prelude: Steps run before the job (environment setup)
        epilogue: Steps run after the job finished

    Returns:
        A bash script suitable for ``CommandBuilder.detached_launch``
    """
    lock = shell_path(lock_file)
    log = shell_path(log_file)
    steps = [
        f"release_lock() {{ rm -f {lock}; }}",
        "trap release_lock EXIT",
        f"mkdir -p \"$(dirname {lock})\" \"$(dirname {log})\"",
        "printf '{\"startedAt\": \"%s\", \"pid\": \"%s\"}\\n' "
        f"\"$(date -u +%Y-%m-%dT%H:%M:%SZ)\" \"$$\" > {lock}",
        'export NVM_DIR="$HOME/.nvm"',
        '[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh"',
        f"cd {shell_path(app_path)}",
    ]
    steps.extend(prelude or [])
    steps.append(f"{{ {body}; }} 2>&1 | tee {log}")
    steps.append("release_lock")
    steps.extend(epilogue or [])
    return " ; ".join(steps)
