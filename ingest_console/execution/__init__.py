"""
Command execution on the job host.

Resolves whether the host is this machine or a remote ssh target, builds the
launch and probe commands, and runs them.
"""

from .context import ExecutionContext, resolve_context
from .commands import Command, CommandBuilder, job_script
from .runner import CommandResult, CommandRunner
from .host import HostProbe, ShellHost, parse_probe_output

__all__ = [
    "ExecutionContext",
    "resolve_context",
    "Command",
    "CommandBuilder",
    "job_script",
    "CommandResult",
    "CommandRunner",
    "HostProbe",
    "ShellHost",
    "parse_probe_output",
]
