"""
Per-instance concurrency guard.

A run owns its instance by writing its pid into a lock file. A lock whose
recorded pid is no longer a live process is stale and is reclaimed. The
check-and-write happens under an flock on a companion guard file so two
runs racing for the same stale lock cannot both win.
"""

import fcntl
import os
from pathlib import Path
from typing import Optional

import psutil

from core.exceptions import LockBusy
from lib.logger import get_logger
from lib.utils import ensure_directory


def is_process_alive(pid: int) -> bool:
    """True if pid names a running, non-zombie process."""
    if pid <= 0:
        return False
    try:
        if not psutil.pid_exists(pid):
            return False
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but belongs to someone else
        return True


class InstanceLock:
    """
    Held lock; release() deletes the lock file if this run still owns it.

    Use as a context manager so every exit path releases it.
    """

    def __init__(self, path: Path, owner_pid: int, guard: "ConcurrencyGuard"):
        self.path = path
        self.owner_pid = owner_pid
        self._guard = guard
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._guard.release(self)
        self._released = True

    def __enter__(self) -> "InstanceLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"InstanceLock(path={self.path}, owner_pid={self.owner_pid})"


class ConcurrencyGuard:
    """
    Creates and reclaims lock files under one directory.

    Example:
        >>> guard = ConcurrencyGuard(Path("/u01/backup/logs"))
        >>> with guard.acquire("ORCL"):
        ...     run_backup()
    """

    def __init__(self, lock_dir: Path, scope: str = "instance"):
        if scope not in ("instance", "instance_kind"):
            raise ValueError(f"Unknown lock scope '{scope}'")
        self.lock_dir = Path(lock_dir)
        self.scope = scope
        self.logger = get_logger()

    def lock_path(self, instance: str, kind: Optional[str] = None) -> Path:
        """Lock file for an instance (and kind, under the instance_kind scope)."""
        if self.scope == "instance_kind" and kind:
            return self.lock_dir / f".backup_{instance}_{kind}.lock"
        return self.lock_dir / f".backup_{instance}.lock"

    @staticmethod
    def read_owner(path: Path) -> Optional[int]:
        """Pid recorded in a lock file, or None if absent or unreadable."""
        try:
            content = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def _guarded(self, path: Path):
        guard_path = path.with_name(path.name + ".guard")
        return open(guard_path, "a+", encoding="utf-8")

    def acquire(self, instance: str, kind: Optional[str] = None) -> InstanceLock:
        """
        Take the lock for an instance.

        Never waits or retries: a live owner means the caller aborts.

        Raises:
            LockBusy: If a live process already owns the lock
            OSError: If the lock directory cannot be written
        """
        ensure_directory(self.lock_dir)
        path = self.lock_path(instance, kind)
        pid = os.getpid()

        with self._guarded(path) as guard_file:
            fcntl.flock(guard_file.fileno(), fcntl.LOCK_EX)
            try:
                owner = self.read_owner(path)
                if owner is not None and is_process_alive(owner):
                    raise LockBusy(
                        f"Another backup is in progress for {instance} (pid {owner})",
                        owner_pid=owner,
                    )
                if path.exists():
                    self.logger.warning(
                        f"Reclaiming stale lock {path} (recorded pid: {owner})"
                    )

                tmp_path = path.with_name(f"{path.name}.{pid}.tmp")
                tmp_path.write_text(f"{pid}\n", encoding="utf-8")
                os.replace(tmp_path, path)
            finally:
                fcntl.flock(guard_file.fileno(), fcntl.LOCK_UN)

        self.logger.debug(f"Acquired lock {path} (pid {pid})")
        return InstanceLock(path, pid, self)

    def release(self, lock: InstanceLock) -> None:
        """Delete the lock file if it still records lock.owner_pid."""
        with self._guarded(lock.path) as guard_file:
            fcntl.flock(guard_file.fileno(), fcntl.LOCK_EX)
            try:
                owner = self.read_owner(lock.path)
                if owner == lock.owner_pid:
                    lock.path.unlink(missing_ok=True)
                    self.logger.debug(f"Released lock {lock.path}")
                else:
                    self.logger.warning(
                        f"Lock {lock.path} now records pid {owner}, leaving it in place"
                    )
            finally:
                fcntl.flock(guard_file.fileno(), fcntl.LOCK_UN)
