"""
Run history for the backup runner using SQLite.

Keeps one row per finished run so schedulers and operators can ask when an
instance was last backed up and how it went, without parsing logs.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.models import RunOutcome


class StateError(Exception):
    """Raised when the history database cannot be read or written."""


_COLUMNS = (
    "instance",
    "kind",
    "status",
    "exit_code",
    "backup_errors",
    "retention_errors",
    "engine_exit_code",
    "retention_exit_code",
    "backup_log",
    "error_log",
    "retention_log",
    "message",
    "started_at",
    "finished_at",
)


class RunHistory:
    """
    Thread-safe run history store.

    Example:
        >>> history = RunHistory(Path("/var/lib/backup-runner/history.db"))
        >>> history.record_run(outcome)
        >>> history.last_run("ORCL", "full")["status"]
        'SUCCESS'
    """

    def __init__(self, db_path: Path):
        """
        Open (and create if needed) the history database.

        Raises:
            StateError: If the database cannot be created
        """
        self.db_path = Path(db_path)
        self._lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_database()
        except (OSError, sqlite3.Error) as e:
            raise StateError(f"Cannot initialize run history {self.db_path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS runs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        instance TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        status TEXT NOT NULL,
                        exit_code INTEGER NOT NULL,
                        backup_errors INTEGER NOT NULL DEFAULT 0,
                        retention_errors INTEGER NOT NULL DEFAULT 0,
                        engine_exit_code INTEGER,
                        retention_exit_code INTEGER,
                        backup_log TEXT,
                        error_log TEXT,
                        retention_log TEXT,
                        message TEXT,
                        started_at TEXT NOT NULL,
                        finished_at TEXT
                    )
                """)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_runs_instance ON runs (instance, kind)"
                )
                conn.commit()
            finally:
                conn.close()

    @staticmethod
    def _row_values(outcome: RunOutcome) -> tuple:
        def path_or_none(path: Optional[Path]) -> Optional[str]:
            return str(path) if path is not None else None

        finished = outcome.finished_at.isoformat() if outcome.finished_at else None
        return (
            outcome.instance,
            outcome.kind.value,
            outcome.status,
            int(outcome.exit_code),
            len(outcome.backup_errors),
            len(outcome.retention_errors),
            outcome.engine_exit_code,
            outcome.retention_exit_code,
            path_or_none(outcome.backup_log),
            path_or_none(outcome.error_log),
            path_or_none(outcome.retention_log),
            outcome.message,
            outcome.started_at.isoformat(),
            finished,
        )

    @staticmethod
    def _to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        for key in ("started_at", "finished_at"):
            if record.get(key):
                record[key] = datetime.fromisoformat(record[key])
        return record

    def record_run(self, outcome: RunOutcome) -> int:
        """
        Store a finished run.

        Returns:
            Row id of the new record

        Raises:
            StateError: If the insert fails
        """
        placeholders = ", ".join("?" for _ in _COLUMNS)
        sql = f"INSERT INTO runs ({', '.join(_COLUMNS)}) VALUES ({placeholders})"
        with self._lock:
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                raise StateError(f"Cannot open run history {self.db_path}: {e}") from e
            try:
                cursor = conn.execute(sql, self._row_values(outcome))
                conn.commit()
                return cursor.lastrowid
            except sqlite3.Error as e:
                raise StateError(f"Cannot record run in {self.db_path}: {e}") from e
            finally:
                conn.close()

    def _query(self, sql: str, params: tuple) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                raise StateError(f"Cannot open run history {self.db_path}: {e}") from e
            try:
                return [self._to_dict(row) for row in conn.execute(sql, params).fetchall()]
            except sqlite3.Error as e:
                raise StateError(f"Cannot query run history {self.db_path}: {e}") from e
            finally:
                conn.close()

    def last_run(self, instance: str, kind: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Most recent run for an instance, optionally of one kind.

        Example:
            >>> history.last_run("ORCL")
            {'instance': 'ORCL', 'kind': 'full', 'status': 'SUCCESS', ...}
        """
        if kind is None:
            rows = self._query(
                "SELECT * FROM runs WHERE instance = ? ORDER BY id DESC LIMIT 1",
                (instance,),
            )
        else:
            rows = self._query(
                "SELECT * FROM runs WHERE instance = ? AND kind = ? "
                "ORDER BY id DESC LIMIT 1",
                (instance, kind),
            )
        return rows[0] if rows else None

    def recent_runs(self, instance: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Latest runs for an instance, newest first."""
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        return self._query(
            "SELECT * FROM runs WHERE instance = ? ORDER BY id DESC LIMIT ?",
            (instance, limit),
        )
