"""
Age-based housekeeping of run artifacts.

Compresses logs, error reports and plan files older than one horizon and
deletes compressed artifacts older than a second one. Ages are whole days
since last modification, the same rounding as ``find -mtime +N``. Nothing
here ever fails a run: problems are logged as warnings.
"""

import gzip
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from lib.logger import get_logger
from lib.utils import file_age_days

COMPRESSIBLE_SUFFIXES = (".log", ".err", ".rman")
COMPRESSED_SUFFIX = ".gz"


@dataclass
class RotationSummary:
    compressed: List[Path] = field(default_factory=list)
    deleted: List[Path] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


def _is_lock_artifact(path: Path) -> bool:
    name = path.name
    return ".lock" in name or name.endswith(".guard")


def compress_file(path: Path) -> Path:
    """
    Gzip a file next to itself and remove the original.

    The compressed file keeps the original's modification time so that
    the delete horizon counts from when the log was written.

    Raises:
        OSError: If reading, writing or removing fails
    """
    target = path.with_name(path.name + COMPRESSED_SUFFIX)
    stat = path.stat()
    try:
        with open(path, "rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    os.utime(target, (stat.st_atime, stat.st_mtime))
    path.unlink()
    return target


def rotate(
    log_dir: Path,
    compress_after_days: int,
    delete_after_days: int,
    now: Optional[float] = None,
    exclude: Optional[List[Path]] = None,
) -> RotationSummary:
    """
    Sweep a logs directory.

    Args:
        log_dir: Directory holding run artifacts (not recursed)
        compress_after_days: Compress files strictly older than this
        delete_after_days: Delete compressed files strictly older than this
        now: Reference time (epoch seconds), defaults to the current time
        exclude: Paths never touched (artifacts of the current run)

    Returns:
        What was compressed, deleted, and what failed
    """
    logger = get_logger()
    summary = RotationSummary()
    current = time.time() if now is None else now
    skip = {Path(p).resolve() for p in (exclude or [])}

    try:
        entries = sorted(Path(log_dir).iterdir())
    except OSError as e:
        logger.warning(f"Log rotation skipped, cannot list {log_dir}: {e}")
        summary.failures.append(str(e))
        return summary

    for path in entries:
        try:
            if not path.is_file() or _is_lock_artifact(path):
                continue
            if path.resolve() in skip:
                continue

            age = file_age_days(path, now=current)
            if path.suffix == COMPRESSED_SUFFIX:
                if age > delete_after_days:
                    path.unlink()
                    summary.deleted.append(path)
                    logger.debug(f"Deleted {path} ({age} days old)")
            elif path.suffix in COMPRESSIBLE_SUFFIXES and age > compress_after_days:
                summary.compressed.append(compress_file(path))
                logger.debug(f"Compressed {path} ({age} days old)")
        except OSError as e:
            logger.warning(f"Log rotation failed for {path}: {e}")
            summary.failures.append(f"{path}: {e}")

    if summary.compressed or summary.deleted:
        logger.info(
            f"Log rotation in {log_dir}: compressed {len(summary.compressed)}, "
            f"deleted {len(summary.deleted)}"
        )
    return summary
