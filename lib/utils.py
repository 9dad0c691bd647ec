"""
Utility functions for the backup runner.

Small helpers shared by the components: directory creation, timestamps
used in artifact names, durations for the summary, and name validation.
"""

import re
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Path Operations


def ensure_directory(path: Union[str, Path], mode: int = 0o755) -> Path:
    """
    Create directory if it doesn't exist (mkdir -p).

    Args:
        path: Directory path to create
        mode: Directory permissions (default: 0o755)

    Returns:
        Path object of the directory

    Raises:
        ValueError: If path is empty
        OSError: If directory creation fails
    """
    if not path:
        raise ValueError("Path cannot be empty")

    path_obj = Path(path)
    path_obj.mkdir(parents=True, exist_ok=True, mode=mode)
    return path_obj


def file_age_days(path: Path, now: Optional[float] = None) -> int:
    """
    Whole days since the file was last modified.

    Matches ``find -mtime`` rounding: a file modified 36 hours ago is
    1 day old.

    Raises:
        OSError: If the file cannot be stat'ed
    """
    current = time.time() if now is None else now
    age_seconds = current - path.stat().st_mtime
    return max(0, int(age_seconds // 86400))


# Date/Time Utilities


def artifact_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Timestamp used in artifact file names.

    Returns:
        Sortable, filesystem-safe string (e.g., "20251106_013000")
    """
    return (moment or datetime.now()).strftime("%Y%m%d_%H%M%S")


def date_tag(moment: Optional[datetime] = None) -> str:
    """Calendar-day partition label (e.g., "2025-11-06")."""
    return (moment or datetime.now()).strftime("%Y-%m-%d")


def human_readable_duration(seconds: Union[int, float]) -> str:
    """
    Convert seconds to human-readable duration.

    Example:
        >>> human_readable_duration(3665)
        '1h 1m 5s'
        >>> human_readable_duration(45)
        '45s'
    """
    if seconds < 0:
        raise ValueError("Duration cannot be negative")

    seconds = int(seconds)

    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


# Validators


def is_valid_instance_name(name: str) -> bool:
    """
    Check an instance identifier before it is used in paths and patterns.

    Letters, digits, '_', '$' and '#', starting with a letter, at most 30
    characters.

    Example:
        >>> is_valid_instance_name("ORCL")
        True
        >>> is_valid_instance_name("../etc")
        False
    """
    if not name or len(name) > 30:
        return False
    return bool(re.match(r"^[A-Za-z][A-Za-z0-9_$#]*$", name))
