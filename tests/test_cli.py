"""
Tests for the backup-run command line.

Tests cover:
- Dry-run output
- Exit codes for real runs
- Usage and configuration errors
- Option overrides
"""

import signal
import subprocess
import sys
import time
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from core.cli import CONFIG_ENV_VAR, app, main
from helpers import REPO_ROOT, engine_script, python_env, write_script
from lib.lock import is_process_alive

STAMP_GLOB = "ORCL_full_*"


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, config_data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config_data), encoding="utf-8")
    return path


@pytest.fixture
def preflight_passes():
    """Skip the process-table and role checks."""
    with patch("core.backup_runner.PreflightValidator") as validator_cls:
        yield validator_cls


class TestDryRun:
    def test_prints_plans(self, cli_runner, config_file, base_dir):
        result = cli_runner.invoke(
            app, ["-i", "ORCL", "-t", "full", "--dry-run", "-c", str(config_file)]
        )
        assert result.exit_code == 0
        assert "# ORCL_full" in result.stdout
        assert "# ORCL_retention" in result.stdout
        assert "BACKUP AS BACKUPSET INCREMENTAL LEVEL 0 DATABASE" in result.stdout
        assert "STATUS=DRY_RUN exit=0" in result.stdout
        assert not (base_dir / "logs").exists()

    def test_compress_flag(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app,
            ["-i", "ORCL", "-t", "L0", "--compress", "--dry-run", "-c", str(config_file)],
        )
        assert result.exit_code == 0
        assert "AS COMPRESSED BACKUPSET" in result.stdout

    def test_channels_override(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app,
            ["-i", "ORCL", "-t", "full", "--channels", "3", "--dry-run", "-c", str(config_file)],
        )
        assert result.exit_code == 0
        assert "ALLOCATE CHANNEL ch3" in result.stdout
        assert "ch4" not in result.stdout

    def test_config_from_environment(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app,
            ["-i", "ORCL", "-t", "logonly", "--dry-run"],
            env={CONFIG_ENV_VAR: str(config_file)},
        )
        assert result.exit_code == 0
        assert "# ORCL_logonly" in result.stdout


@pytest.mark.integration
class TestRealRun:
    def test_success(self, cli_runner, config_file, base_dir, preflight_passes):
        result = cli_runner.invoke(app, ["-i", "ORCL", "-t", "full", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "STATUS=SUCCESS exit=0" in result.stdout
        logs_dir = base_dir / "logs"
        assert len(list(logs_dir.glob(f"{STAMP_GLOB}.log"))) == 1
        assert list(logs_dir.glob(f"{STAMP_GLOB}.rman")) == []
        assert (logs_dir / "backup_runner.log").exists()
        assert not (logs_dir / ".backup_ORCL.lock").exists()

    def test_keep_plan(self, cli_runner, config_file, base_dir, preflight_passes):
        result = cli_runner.invoke(
            app, ["-i", "ORCL", "-t", "full", "--keep-plan", "-c", str(config_file)]
        )
        assert result.exit_code == 0
        assert len(list((base_dir / "logs").glob(f"{STAMP_GLOB}.rman"))) == 1

    def test_backup_errors_exit_code(self, cli_runner, config_file, fake_home, preflight_passes):
        write_script(
            fake_home / "bin" / "rman",
            engine_script(backup_output="RMAN-03009: failure of backup command", exit_code=1),
        )
        result = cli_runner.invoke(app, ["-i", "ORCL", "-t", "full", "-c", str(config_file)])
        assert result.exit_code == 5
        assert "STATUS=FAILED exit=5" in result.stdout

    def test_unknown_instance(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["-i", "PROD", "-t", "full", "-c", str(config_file)])
        assert result.exit_code == 2


class TestUsageErrors:
    def test_missing_config(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["-i", "ORCL", "-t", "full", "-c", str(tmp_path / "missing.yaml")]
        )
        assert result.exit_code == 1

    def test_invalid_config(self, cli_runner, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("baseDirectory: relative/path\n", encoding="utf-8")
        result = cli_runner.invoke(app, ["-i", "ORCL", "-t", "full", "-c", str(path)])
        assert result.exit_code == 1

    def test_unknown_kind(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["-i", "ORCL", "-t", "weekly", "-c", str(config_file)])
        assert result.exit_code == 1

    def test_invalid_instance_name(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["-i", "OR/CL", "-t", "full", "-c", str(config_file)])
        assert result.exit_code == 1
        assert "STATUS=FAILED exit=1 instance=OR/CL kind=full" in result.stdout

    def test_missing_config_prints_summary(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["-i", "ORCL", "-t", "L1", "-c", str(tmp_path / "missing.yaml")]
        )
        assert "STATUS=FAILED exit=1 instance=ORCL kind=incremental" in result.stdout
        assert "message=Configuration file not found" in result.stdout

    def test_unknown_kind_prints_summary(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["-i", "ORCL", "-t", "weekly", "-c", str(config_file)])
        assert "STATUS=FAILED exit=1 instance=ORCL kind=weekly" in result.stdout
        assert "Unknown backup kind" in result.stdout

    def test_invalid_config_summary_is_one_line(self, tmp_path, config_data, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(dict(config_data, channels=0)), encoding="utf-8")

        assert main(["--instance", "ORCL", "--kind", "full", "--config", str(path)]) == 1

        out = capsys.readouterr().out
        lines = [line for line in out.splitlines() if line.startswith("STATUS=")]
        assert len(lines) == 1
        assert lines[0].startswith("STATUS=FAILED exit=1 instance=ORCL kind=full ")
        assert "channels" in lines[0]


class TestMain:
    """Test the console script wrapper maps click usage errors to 1."""

    def test_missing_instance(self, config_file):
        assert main(["-t", "full", "-c", str(config_file)]) == 1

    def test_unknown_option(self, config_file):
        assert main(["-i", "ORCL", "-t", "full", "--bogus", "-c", str(config_file)]) == 1

    def test_invalid_timeout(self, config_file):
        assert main(["-i", "ORCL", "-t", "full", "--timeout", "0", "-c", str(config_file)]) == 1

    def test_invalid_log_level(self, config_file):
        assert (
            main(["-i", "ORCL", "-t", "full", "--log-level", "LOUD", "-c", str(config_file)])
            == 1
        )

    def test_returns_run_exit_code(self, config_file, capsys):
        assert main(["-i", "ORCL", "-t", "full", "--dry-run", "-c", str(config_file)]) == 0
        assert "# ORCL_full" in capsys.readouterr().out


@pytest.mark.slow
@pytest.mark.integration
class TestSignals:
    """Test a real SIGTERM sent to a running backup-run process."""

    @pytest.fixture
    def control_process(self):
        """Stand-in control process: argv[0] carries the instance's pmon name."""
        process = subprocess.Popen(["ora_pmon_ORCL", "60"], executable="sleep")
        yield process
        process.kill()
        process.wait()

    def test_sigterm_stops_engine_and_releases_lock(
        self, config_file, fake_home, base_dir, tmp_path, control_process
    ):
        pid_file = tmp_path / "engine_child.pid"
        write_script(
            fake_home / "bin" / "rman",
            f'cat > /dev/null\nsleep 60 &\necho $! > "{pid_file}"\nwait\n',
        )
        cli = subprocess.Popen(
            [
                sys.executable,
                "-c",
                "import sys; from core.cli import main; sys.exit(main(sys.argv[1:]))",
                "-i",
                "ORCL",
                "-t",
                "full",
                "-c",
                str(config_file),
            ],
            cwd=REPO_ROOT,
            env=python_env(),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        deadline = time.time() + 30
        while not pid_file.exists() or not pid_file.read_text().strip():
            assert cli.poll() is None, cli.communicate()
            assert time.time() < deadline
            time.sleep(0.1)

        cli.send_signal(signal.SIGTERM)
        stdout, _ = cli.communicate(timeout=30)

        assert cli.returncode == 130
        assert "STATUS=INTERRUPTED exit=130" in stdout
        assert not (base_dir / "logs" / ".backup_ORCL.lock").exists()

        engine_child = int(pid_file.read_text())
        deadline = time.time() + 5
        while is_process_alive(engine_child) and time.time() < deadline:
            time.sleep(0.1)
        assert not is_process_alive(engine_child)
