"""
Tests for EnvironmentResolver.

Tests cover:
- Lookup table parsing (comments, duplicates, extra columns)
- Failure modes (missing table, missing entry, missing home)
- Binary defaults and overrides
- Child process environment
"""

import os

import pytest

from core.config_loader import ConfigLoader
from core.environment import EnvironmentResolver, InstanceEnvironment
from core.exceptions import BinaryNotFound, EnvironmentNotFound, ExitCode


@pytest.fixture
def resolver(runner_config):
    """Resolver over the ORCL lookup table."""
    return EnvironmentResolver(runner_config)


def _resolver_for(config_data, table_path):
    data = dict(config_data, homeLookupTablePath=str(table_path))
    return EnvironmentResolver(ConfigLoader.validate_dict(data))


# Test: Lookup
class TestLookup:
    """Test lookup table parsing."""

    def test_resolves_home(self, resolver, fake_home):
        """Test a matching entry resolves to its home."""
        env = resolver.resolve("ORCL")
        assert env.instance == "ORCL"
        assert env.home == fake_home

    def test_default_binaries_under_home(self, resolver, fake_home):
        """Test binaries default to <home>/bin."""
        env = resolver.resolve("ORCL")
        assert env.engine_binary == fake_home / "bin" / "rman"
        assert env.query_client_binary == fake_home / "bin" / "sqlplus"

    def test_first_entry_wins(self, tmp_path, config_data, fake_home):
        """Test later duplicate entries are ignored."""
        other = tmp_path / "other_home"
        other.mkdir()
        table = tmp_path / "dup_oratab"
        table.write_text(f"ORCL:{fake_home}:N\nORCL:{other}:Y\n")

        env = _resolver_for(config_data, table).resolve("ORCL")
        assert env.home == fake_home

    def test_comments_and_blank_lines_skipped(self, tmp_path, config_data, fake_home):
        """Test commented entries never match."""
        table = tmp_path / "commented_oratab"
        table.write_text(f"\n#ORCL:/nonexistent:N\n   \nORCL:{fake_home}:N\n")

        env = _resolver_for(config_data, table).resolve("ORCL")
        assert env.home == fake_home

    def test_name_match_is_exact(self, tmp_path, config_data, fake_home):
        """Test a prefix of another instance does not match."""
        table = tmp_path / "prefix_oratab"
        table.write_text(f"ORCL2:{fake_home}:N\n")

        with pytest.raises(EnvironmentNotFound, match="not found"):
            _resolver_for(config_data, table).resolve("ORCL")

    def test_binary_overrides(self, config_data, tmp_path):
        """Test configured binary paths win over the home defaults."""
        data = dict(
            config_data,
            backupEngineBinary=str(tmp_path / "custom_rman"),
            queryClientBinary=str(tmp_path / "custom_sqlplus"),
        )
        env = EnvironmentResolver(ConfigLoader.validate_dict(data)).resolve("ORCL")
        assert env.engine_binary == tmp_path / "custom_rman"
        assert env.query_client_binary == tmp_path / "custom_sqlplus"


# Test: Failures
class TestFailures:
    """Test fail-closed resolution."""

    def test_unknown_instance(self, resolver):
        """Test an instance without an entry."""
        with pytest.raises(EnvironmentNotFound, match="PROD"):
            resolver.resolve("PROD")

    def test_missing_home_directory(self, tmp_path, config_data):
        """Test an entry whose home does not exist on disk."""
        table = tmp_path / "stale_oratab"
        table.write_text(f"ORCL:{tmp_path / 'gone'}:N\n")

        with pytest.raises(EnvironmentNotFound, match="does not exist"):
            _resolver_for(config_data, table).resolve("ORCL")

    def test_empty_home(self, tmp_path, config_data):
        """Test an entry with an empty home column."""
        table = tmp_path / "empty_oratab"
        table.write_text("ORCL::N\n")

        with pytest.raises(EnvironmentNotFound, match="empty home"):
            _resolver_for(config_data, table).resolve("ORCL")

    def test_missing_table(self, tmp_path, config_data):
        """Test a lookup table that does not exist."""
        with pytest.raises(EnvironmentNotFound, match="table not found"):
            _resolver_for(config_data, tmp_path / "no_oratab").resolve("ORCL")

    def test_exit_code(self):
        """Test environment errors map to exit code 2."""
        assert EnvironmentNotFound.exit_code == ExitCode.ENVIRONMENT
        assert BinaryNotFound.exit_code == ExitCode.ENVIRONMENT


# Test: InstanceEnvironment
class TestInstanceEnvironment:
    """Test the resolved execution context."""

    def test_child_env(self, instance_env, fake_home):
        """Test home, instance and PATH are set for subprocesses."""
        env = instance_env.child_env()
        assert env["ORACLE_HOME"] == str(fake_home)
        assert env["ORACLE_SID"] == "ORCL"
        assert env["PATH"].split(os.pathsep)[0] == str(fake_home / "bin")
        assert env["PATH"].endswith("/usr/bin:/bin")

    def test_child_env_does_not_touch_process_env(self, instance_env):
        """Test the runner's own environment is left alone."""
        before = os.environ.get("ORACLE_SID")
        instance_env.child_env()
        assert os.environ.get("ORACLE_SID") == before

    def test_require_binaries_ok(self, instance_env):
        """Test stand-in binaries are accepted."""
        instance_env.require_binaries()

    def test_require_binaries_missing(self, instance_env, tmp_path):
        """Test a missing engine binary."""
        env = InstanceEnvironment(
            instance="ORCL",
            home=instance_env.home,
            engine_binary=tmp_path / "missing_rman",
            query_client_binary=instance_env.query_client_binary,
        )
        with pytest.raises(BinaryNotFound, match="Backup engine"):
            env.require_binaries()

    def test_require_binaries_not_executable(self, instance_env, tmp_path):
        """Test a query client without the execute bit."""
        plain = tmp_path / "sqlplus_plain"
        plain.write_text("echo PRIMARY\n")
        plain.chmod(0o644)
        env = InstanceEnvironment(
            instance="ORCL",
            home=instance_env.home,
            engine_binary=instance_env.engine_binary,
            query_client_binary=plain,
        )
        with pytest.raises(BinaryNotFound, match="Query client"):
            env.require_binaries()
