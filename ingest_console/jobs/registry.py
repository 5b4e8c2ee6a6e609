"""
SQLite-backed job registry.

Holds at most one active claim per job type plus the history of finished
runs. The claim is the single-flight guard: it is taken with a plain INSERT
against the ``job_type`` primary key, so of two concurrent launches exactly
one succeeds, including across worker processes sharing the database file.
"""

import json
import sqlite3
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .types import JobResult, JobType, RunRecord


def iso_utc(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class JobRegistry:
    """
    Persistent registry of active runs and run history.

    Thread-safe with WAL mode and a connection-level lock.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        """
        Open (or create) the registry database.

        Args:
            db_path: Path to SQLite database file
            clock: Time source in epoch seconds
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=10.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._lock = threading.Lock()

        self._init_tables()

    def _init_tables(self) -> None:
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS active_runs (
                    job_type TEXT PRIMARY KEY,
                    run_id TEXT NOT NULL,
                    started_at TEXT,
                    claimed_ts REAL NOT NULL,
                    params TEXT NOT NULL,
                    seen INTEGER NOT NULL DEFAULT 0
                )
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS run_history (
                    run_id TEXT PRIMARY KEY,
                    job_type TEXT NOT NULL,
                    started_at TEXT,
                    claimed_ts REAL NOT NULL,
                    finished_at TEXT NOT NULL,
                    finished_ts REAL NOT NULL,
                    params TEXT NOT NULL,
                    result TEXT
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_run_history_type_ts
                ON run_history(job_type, finished_ts)
            """)

    @staticmethod
    def _active_from_row(row: sqlite3.Row) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            job_type=JobType(row["job_type"]),
            started_at=row["started_at"],
            claimed_ts=row["claimed_ts"],
            params=json.loads(row["params"]),
            seen=bool(row["seen"]),
        )

    @staticmethod
    def _history_from_row(row: sqlite3.Row) -> RunRecord:
        result = json.loads(row["result"]) if row["result"] else None
        return RunRecord(
            run_id=row["run_id"],
            job_type=JobType(row["job_type"]),
            started_at=row["started_at"],
            claimed_ts=row["claimed_ts"],
            params=json.loads(row["params"]),
            finished_at=row["finished_at"],
            result=JobResult.from_dict(result) if result else None,
        )

    def active(self, job_type: JobType) -> Optional[RunRecord]:
        """Current claim for ``job_type``, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM active_runs WHERE job_type = ?",
                (JobType(job_type).value,),
            ).fetchone()
        return self._active_from_row(row) if row else None

    def _insert(self, record: RunRecord) -> bool:
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO active_runs (job_type, run_id, started_at, claimed_ts, params, seen) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        record.job_type.value,
                        record.run_id,
                        record.started_at,
                        record.claimed_ts,
                        json.dumps(record.params),
                        int(record.seen),
                    ),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def try_claim(self, job_type: JobType, params: Optional[dict] = None) -> Optional[RunRecord]:
        """
        Atomically claim ``job_type`` for a new launch if nobody holds it.

        Args:
            job_type: Job type to claim
            params: Launch parameters, stored with the run

        Returns:
            The new RunRecord (started now, not yet seen on the host), or None
            when another claim already exists
        """
        now = self.clock()
        record = RunRecord(
            run_id=uuid.uuid4().hex,
            job_type=JobType(job_type),
            started_at=iso_utc(now),
            claimed_ts=now,
            params=dict(params or {}),
        )
        return record if self._insert(record) else None

    def adopt(self, job_type: JobType, started_at: Optional[str]) -> RunRecord:
        """
        Register a run found on the execution host that holds no claim here.

        ``started_at`` stays None when the host could not report it.
        Returns whichever claim exists afterwards.
        """
        record = RunRecord(
            run_id=uuid.uuid4().hex,
            job_type=JobType(job_type),
            started_at=started_at,
            claimed_ts=self.clock(),
            params={"adopted": True},
            seen=True,
        )
        return record if self._insert(record) else self.active(job_type)

    def mark_seen(self, record: RunRecord) -> RunRecord:
        """Record that the host has shown the session for this claim."""
        if not record.seen:
            with self._lock, self._conn:
                self._conn.execute(
                    "UPDATE active_runs SET seen = 1 WHERE job_type = ? AND run_id = ?",
                    (record.job_type.value, record.run_id),
                )
            record.seen = True
        return record

    def finish(self, record: RunRecord, result: Optional[JobResult]) -> Optional[RunRecord]:
        """
        Release the claim held by ``record`` and archive it with ``result``.

        Returns:
            The archived RunRecord, or None if that claim was already released
            (the result is archived exactly once)
        """
        now = self.clock()
        finished = RunRecord(
            run_id=record.run_id,
            job_type=record.job_type,
            started_at=record.started_at,
            claimed_ts=record.claimed_ts,
            params=record.params,
            finished_at=iso_utc(now),
            result=result,
        )
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM active_runs WHERE job_type = ? AND run_id = ?",
                (record.job_type.value, record.run_id),
            )
            if cursor.rowcount == 0:
                return None
            self._conn.execute(
                "INSERT OR REPLACE INTO run_history "
                "(run_id, job_type, started_at, claimed_ts, finished_at, finished_ts, params, result) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    finished.run_id,
                    finished.job_type.value,
                    finished.started_at,
                    finished.claimed_ts,
                    finished.finished_at,
                    now,
                    json.dumps(finished.params),
                    json.dumps(result.to_dict()) if result else None,
                ),
            )
        return finished

    def history(self, job_type: Optional[JobType] = None, limit: int = 20) -> list:
        """
        Finished runs, most recent first.

        Args:
            job_type: Restrict to one job type
            limit: Maximum number of runs

        Returns:
            List of RunRecord
        """
        query = "SELECT * FROM run_history"
        args: tuple = ()
        if job_type is not None:
            query += " WHERE job_type = ?"
            args = (JobType(job_type).value,)
        query += " ORDER BY finished_ts DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, args + (int(limit),)).fetchall()
        return [self._history_from_row(r) for r in rows]

    def last_result(self, job_type: JobType) -> Optional[JobResult]:
        runs = self.history(job_type, limit=1)
        return runs[0].result if runs else None

    def cleanup_history(self, max_age_hours: float = 24 * 30) -> int:
        """
        Remove archived runs older than ``max_age_hours``.

        Returns:
            Number of runs removed
        """
        cutoff = self.clock() - max_age_hours * 3600
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM run_history WHERE finished_ts < ?", (cutoff,)
            )
        return cursor.rowcount

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
