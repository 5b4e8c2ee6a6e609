"""Application settings and configuration schema."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, field_validator


class RemoteHost(BaseModel):
    """Execution host reached over ssh when the app path is not local."""
    host: str = "167.71.242.157"
    user: str = "master_nrbudqgaus"
    key_path: str = "~/.ssh/id_ed25519"
    connect_timeout: int = 10

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"


class Paths(BaseModel):
    """File and directory paths configuration."""
    app_path: str = "~/applications/gnhezcjyuk/public_html"
    state_dir: str = "data/console"

    @property
    def registry_db(self) -> Path:
        """SQLite file holding active claims and run history."""
        return Path(self.state_dir) / "registry.db"


class JobCfg(BaseModel):
    """Launch, probe and polling knobs."""
    poll_interval: float = 5.0
    launch_grace_seconds: float = 30.0
    command_timeout: float = 30.0
    probe_timeout: float = 15.0
    log_tail_lines: int = 200
    raw_tail_chars: int = 3000
    history_retention_hours: float = 24 * 30

    @field_validator(
        "poll_interval",
        "launch_grace_seconds",
        "command_timeout",
        "probe_timeout",
        "log_tail_lines",
        "raw_tail_chars",
        "history_retention_hours",
    )
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class LoggingCfg(BaseModel):
    level: str = "INFO"
    json_output: bool = True


class Settings(BaseModel):
    """Main application settings."""
    remote: RemoteHost = RemoteHost()
    paths: Paths = Paths()
    jobs: JobCfg = JobCfg()
    logging: LoggingCfg = LoggingCfg()

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """
        Build settings from INGEST_CONSOLE_* environment variables.

        Unset variables keep the defaults above. ``SSH_KEY_PATH`` is honored
        for the identity key when the prefixed variable is absent.
        """
        env = os.environ if environ is None else environ

        def pick(name: str) -> Optional[str]:
            return env.get(f"INGEST_CONSOLE_{name}")

        remote = {
            "host": pick("SSH_HOST"),
            "user": pick("SSH_USER"),
            "key_path": pick("SSH_KEY_PATH") or env.get("SSH_KEY_PATH"),
            "connect_timeout": pick("SSH_CONNECT_TIMEOUT"),
        }
        paths = {
            "app_path": pick("APP_PATH"),
            "state_dir": pick("STATE_DIR"),
        }
        jobs = {
            "poll_interval": pick("POLL_INTERVAL"),
            "launch_grace_seconds": pick("LAUNCH_GRACE_SECONDS"),
            "command_timeout": pick("COMMAND_TIMEOUT"),
            "probe_timeout": pick("PROBE_TIMEOUT"),
            "log_tail_lines": pick("LOG_TAIL_LINES"),
            "history_retention_hours": pick("HISTORY_RETENTION_HOURS"),
        }
        logging_cfg = {
            "level": pick("LOG_LEVEL"),
            "json_output": pick("LOG_JSON"),
        }

        def present(d: dict) -> dict:
            return {k: v for k, v in d.items() if v is not None}

        return cls(
            remote=RemoteHost(**present(remote)),
            paths=Paths(**present(paths)),
            jobs=JobCfg(**present(jobs)),
            logging=LoggingCfg(**present(logging_cfg)),
        )
