"""
Shared pytest fixtures and configuration for backup runner tests.

This module provides common fixtures used across multiple test files,
including stand-in shell scripts for the backup engine and query client.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict

import pytest
from loguru import logger

from core.config_loader import ConfigLoader, RunnerConfig
from core.environment import InstanceEnvironment
from core.models import BackupJob, BackupKind
from helpers import engine_script, write_script


@pytest.fixture(autouse=True)
def reset_logger():
    """Start every test without loguru sinks."""
    logger.remove()
    yield
    logger.remove()


# Temporary directories with specific purposes


@pytest.fixture
def fake_home(tmp_path):
    """Installation home with stand-in engine and query client."""
    home = tmp_path / "oracle" / "19c"
    write_script(home / "bin" / "rman", engine_script("Recovery Manager complete."))
    write_script(home / "bin" / "sqlplus", "cat > /dev/null\necho PRIMARY\n")
    return home


@pytest.fixture
def oratab(tmp_path, fake_home):
    """Home lookup table with one entry for ORCL."""
    path = tmp_path / "oratab"
    path.write_text(
        "# instance:home:autostart\n"
        f"ORCL:{fake_home}:Y\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def base_dir(tmp_path):
    """Backup destination root."""
    path = tmp_path / "backup"
    path.mkdir()
    return path


@pytest.fixture
def config_data(base_dir, oratab) -> Dict[str, Any]:
    """Raw configuration mapping, camelCase as in the YAML file."""
    return {
        "baseDirectory": str(base_dir),
        "channels": 2,
        "maxPieceSize": "100G",
        "recoveryWindowDays": 7,
        "compressDefault": False,
        "compressLogsAfterDays": 7,
        "deleteLogsAfterDays": 30,
        "homeLookupTablePath": str(oratab),
    }


@pytest.fixture
def runner_config(config_data) -> RunnerConfig:
    """Validated configuration for tests."""
    return ConfigLoader.validate_dict(config_data)


@pytest.fixture
def instance_env(fake_home) -> InstanceEnvironment:
    """Resolved environment for ORCL pointing at the stand-in binaries."""
    return InstanceEnvironment(
        instance="ORCL",
        home=fake_home,
        engine_binary=fake_home / "bin" / "rman",
        query_client_binary=fake_home / "bin" / "sqlplus",
        base_env={"PATH": "/usr/bin:/bin"},
    )


# Time-related fixtures


@pytest.fixture
def fixed_timestamp():
    """Fixed timestamp for reproducible tests."""
    return datetime(2025, 11, 6, 1, 30, 0)


@pytest.fixture
def full_job(fixed_timestamp) -> BackupJob:
    """Compressed two-channel full backup of ORCL."""
    return BackupJob(
        target_instance="ORCL",
        kind=BackupKind.FULL,
        compression=True,
        parallelism=2,
        max_piece_size="100G",
        requested_at=fixed_timestamp,
    )


# Pytest configuration


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
