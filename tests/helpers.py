"""
Helpers for tests that need stand-in collaborator binaries.
"""

import os
import stat
from pathlib import Path


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def engine_script(
    backup_output: str = "",
    retention_output: str = "",
    exit_code: int = 0,
    retention_exit_code: int = 0,
    sleep_seconds: int = 0,
) -> str:
    """
    Body of a fake backup engine.

    Echoes the plan it receives, then prints canned output depending on
    whether the plan is a retention plan.
    """
    return (
        'plan="$(cat)"\n'
        'printf "%s\\n" "$plan"\n'
        'case "$plan" in\n'
        "  *OBSOLETE*)\n"
        f"    cat <<'EOF'\n{retention_output}\nEOF\n"
        f"    exit {retention_exit_code}\n"
        "    ;;\n"
        "esac\n"
        + (f"sleep {sleep_seconds}\n" if sleep_seconds else "")
        + f"cat <<'EOF'\n{backup_output}\nEOF\n"
        f"exit {exit_code}\n"
    )


REPO_ROOT = Path(__file__).resolve().parents[1]


def python_env() -> dict:
    """Environment for child interpreters that import this project."""
    env = dict(os.environ)
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = f"{REPO_ROOT}{os.pathsep}{existing}" if existing else str(REPO_ROOT)
    return env
