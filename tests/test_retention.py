"""
Tests for RetentionEnforcer.

Tests cover:
- Retention plan execution and classification
- Disabled retention (zero-day window)
- Failure reporting
"""

import pytest

from core.models import RetentionPolicy
from core.retention import RetentionEnforcer
from helpers import engine_script, write_script


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "logs" / "ORCL_retention_20251106_013000.log"


@pytest.mark.integration
class TestEnforce:
    """Test retention runs."""

    def test_clean_retention(self, runner_config, instance_env, log_path):
        report = RetentionEnforcer(runner_config).enforce(
            instance_env, RetentionPolicy(7), log_path
        )
        assert not report.skipped
        assert not report.failed
        assert report.result.exit_code == 0
        assert report.errors == []
        assert "RECOVERY WINDOW OF 7 DAYS" in log_path.read_text()

    def test_retention_errors(self, runner_config, instance_env, log_path):
        write_script(
            instance_env.engine_binary,
            engine_script(
                retention_output="RMAN-06002: command not allowed when not connected",
                retention_exit_code=1,
            ),
        )
        report = RetentionEnforcer(runner_config).enforce(
            instance_env, RetentionPolicy(7), log_path
        )
        assert report.failed
        assert [r.code for r in report.errors] == ["RMAN-06002"]
        assert report.result.exit_code == 1

    def test_nonzero_exit_without_codes_is_clean(self, runner_config, instance_env, log_path):
        write_script(
            instance_env.engine_binary,
            engine_script(retention_output="no obsolete backups found", retention_exit_code=1),
        )
        report = RetentionEnforcer(runner_config).enforce(
            instance_env, RetentionPolicy(7), log_path
        )
        assert not report.failed

    def test_zero_window_skips(self, runner_config, instance_env, log_path):
        report = RetentionEnforcer(runner_config).enforce(
            instance_env, RetentionPolicy(0), log_path
        )
        assert report.skipped
        assert not report.failed
        assert report.plan is None
        assert not log_path.exists()

    def test_policy_enabled(self):
        assert RetentionPolicy(1).enabled
        assert not RetentionPolicy(0).enabled
