"""
Exception hierarchy and exit codes for the backup runner.

Every failure that can end a run maps to exactly one process exit code,
carried on the exception class so the orchestrator never has to keep a
separate lookup table in sync.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes of backup-run."""

    SUCCESS = 0
    USAGE = 1
    ENVIRONMENT = 2
    NOT_RUNNING = 3
    NOT_PRIMARY = 4
    BACKUP_ERRORS = 5
    RETENTION_ERRORS = 6
    LOCK_HELD = 7
    INTERRUPTED = 130


class BackupError(Exception):
    """
    Base class for failures that end a backup run.

    Used for invalid configurations, failed checks, and other problems
    that should fail fast.
    """

    exit_code = ExitCode.USAGE


class ConfigError(BackupError):
    """Missing or invalid configuration."""

    exit_code = ExitCode.USAGE


class InvalidParallelism(BackupError):
    """Channel count is not a positive integer."""

    exit_code = ExitCode.USAGE


class EnvironmentNotFound(BackupError):
    """Instance has no usable entry in the home lookup table."""

    exit_code = ExitCode.ENVIRONMENT


class BinaryNotFound(BackupError):
    """Backup engine or query client binary is missing or not executable."""

    exit_code = ExitCode.ENVIRONMENT


class InstanceNotRunning(BackupError):
    """No control process found for the target instance."""

    exit_code = ExitCode.NOT_RUNNING


class RoleNotPrimary(BackupError):
    """Instance reported a role other than the required primary role."""

    exit_code = ExitCode.NOT_PRIMARY

    def __init__(self, message: str, role: str = ""):
        super().__init__(message)
        self.role = role


class RoleIndeterminate(BackupError):
    """Role query returned nothing usable."""

    exit_code = ExitCode.NOT_PRIMARY


class LockBusy(BackupError):
    """Another live run holds the instance lock."""

    exit_code = ExitCode.LOCK_HELD

    def __init__(self, message: str, owner_pid: int = 0):
        super().__init__(message)
        self.owner_pid = owner_pid


class RunInterrupted(BaseException):
    """
    Raised from a signal handler to unwind a run.

    Derives from BaseException, like KeyboardInterrupt, so broad
    ``except Exception`` blocks in stages do not swallow it.
    """

    exit_code = ExitCode.INTERRUPTED

    def __init__(self, signum: int = 0):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum
