"""
Logging setup for the backup runner.

Thin wrapper around loguru so every module obtains the same configured
logger through get_logger() and the CLI decides sinks and level once.
"""

import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

VALID_LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]

DEFAULT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
)

# Handler ids created by setup_logger, so set_log_level can re-add them.
_handlers: Dict[str, Dict[str, Any]] = {}


def _normalize_level(log_level: str) -> str:
    level = str(log_level).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{log_level}'. Must be one of {VALID_LOG_LEVELS}"
        )
    return level


def setup_logger(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    console: bool = True,
    rotation: Union[str, int] = "10 MB",
    retention: Union[str, int] = "30 days",
    compression: Optional[str] = "gz",
    format_string: Optional[str] = None,
) -> None:
    """
    Configure loguru sinks.

    Removes any previously registered handlers, so it is safe to call
    more than once.

    Args:
        log_level: Minimum level (case-insensitive)
        log_file: Optional file sink; parent directories are created
        console: Log to stderr
        rotation: loguru rotation for the file sink (size or interval)
        retention: loguru retention for rotated files
        compression: loguru compression for rotated files (None disables)
        format_string: Custom loguru format string

    Raises:
        ValueError: If log_level is not a known level
    """
    level = _normalize_level(log_level)
    fmt = format_string or DEFAULT_FORMAT

    logger.remove()
    _handlers.clear()

    if console:
        options = {"sink": sys.stderr, "format": fmt, "colorize": None}
        handler_id = logger.add(level=level, **options)
        _handlers["console"] = {"id": handler_id, "options": options}

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        options = {
            "sink": str(log_file),
            "format": fmt,
            "rotation": rotation,
            "retention": retention,
            "compression": compression,
            "encoding": "utf-8",
            "enqueue": False,
        }
        handler_id = logger.add(level=level, **options)
        _handlers["file"] = {"id": handler_id, "options": options}


def get_logger():
    """Return the shared loguru logger."""
    return logger


def log_context(**kwargs: Any) -> Dict[str, Any]:
    """
    Build a context dict for logger.bind().

    Example:
        >>> get_logger().bind(**log_context(instance="ORCL", kind="full"))
    """
    return dict(kwargs)


def set_log_level(log_level: str) -> None:
    """
    Change the level of every handler registered by setup_logger.

    Raises:
        ValueError: If log_level is not a known level
    """
    level = _normalize_level(log_level)

    for name, handler in list(_handlers.items()):
        try:
            logger.remove(handler["id"])
        except ValueError:
            # Already removed by someone else
            pass
        handler["id"] = logger.add(level=level, **handler["options"])
        _handlers[name] = handler
