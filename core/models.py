"""
Runtime records for a backup run.

These are created and consumed within one invocation; configuration lives
in core.config_loader.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union


class BackupKind(str, Enum):
    """Kind of backup a job performs."""

    FULL = "full"
    INCREMENTAL = "incremental"
    LOGONLY = "logonly"

    @classmethod
    def parse(cls, value: str) -> "BackupKind":
        """
        Parse a kind name, case-insensitively.

        Also accepts the level names used by older scripts (L0, L1, ARCH).

        Raises:
            ValueError: If the value names no known kind
        """
        aliases = {"l0": cls.FULL, "l1": cls.INCREMENTAL, "arch": cls.LOGONLY}
        normalized = str(value).strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(k.value for k in cls)
            raise ValueError(
                f"Unknown backup kind '{value}'. Must be one of: {allowed}"
            ) from None


@dataclass(frozen=True)
class BackupJob:
    """
    One requested backup.

    Frozen: the kind (and everything else) cannot change once the job
    has been handed to the runner.
    """

    target_instance: str
    kind: BackupKind
    compression: bool
    parallelism: int
    max_piece_size: str
    requested_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RetentionPolicy:
    """Recovery window applied after a successful backup."""

    recovery_window_days: int

    @property
    def enabled(self) -> bool:
        return self.recovery_window_days > 0


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one backup engine invocation."""

    exit_code: Optional[int]
    log_path: Path
    started_at: datetime
    finished_at: datetime
    timed_out: bool = False

    @property
    def duration_seconds(self) -> float:
        return round((self.finished_at - self.started_at).total_seconds(), 2)


@dataclass(frozen=True)
class ErrorRecord:
    """A distinct error code found in an engine log."""

    code: str
    occurrence_count: int
    first_context_line: str
    severity: str
    description: str
    remedy: str

    @property
    def mapped(self) -> bool:
        return self.severity != "unknown"


@dataclass
class RunOutcome:
    """Terminal state of a run, used for the summary line and history."""

    instance: str
    kind: Union[BackupKind, str]  # raw text only when the kind did not parse
    status: str
    exit_code: int
    message: str = ""
    dry_run: bool = False
    backup_errors: List[ErrorRecord] = field(default_factory=list)
    retention_errors: List[ErrorRecord] = field(default_factory=list)
    engine_exit_code: Optional[int] = None
    retention_exit_code: Optional[int] = None
    backup_log: Optional[Path] = None
    error_log: Optional[Path] = None
    retention_log: Optional[Path] = None
    plan_file: Optional[Path] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def artifacts(self) -> List[Path]:
        paths = [self.backup_log, self.error_log, self.retention_log, self.plan_file]
        return [p for p in paths if p is not None]

    def summary_line(self) -> str:
        """Single-line, grep-friendly run summary."""
        parts = [
            f"STATUS={self.status}",
            f"exit={self.exit_code}",
            f"instance={self.instance}",
            f"kind={getattr(self.kind, 'value', self.kind)}",
            f"backup_errors={len(self.backup_errors)}",
            f"retention_errors={len(self.retention_errors)}",
        ]
        if self.engine_exit_code not in (None, 0):
            parts.append(f"engine_exit={self.engine_exit_code}")
        if self.retention_exit_code not in (None, 0):
            parts.append(f"retention_exit={self.retention_exit_code}")
        for label, path in (
            ("log", self.backup_log),
            ("err", self.error_log),
            ("retention_log", self.retention_log),
            ("plan", self.plan_file),
        ):
            if path is not None:
                parts.append(f"{label}={path}")
        if self.message:
            parts.append(f"message={' '.join(self.message.split())}")
        return " ".join(parts)
