"""
Command line entry point: ``backup-run``.

Loads the configuration, builds the job from the options, runs it, and
exits with the run's exit code. Usage errors exit 1 (click would use 2).
SIGINT and SIGTERM unwind the run through RunInterrupted so the engine is
stopped and the lock released before exiting 130.
"""

import signal
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import click
import typer

from core.backup_runner import STATUS_FAILED, BackupRunner
from core.config_loader import ConfigLoader
from core.exceptions import ConfigError, ExitCode, RunInterrupted
from core.models import BackupKind, RunOutcome
from lib.logger import get_logger, setup_logger

DEFAULT_CONFIG_PATH = Path("/etc/backup-runner/config.yaml")
CONFIG_ENV_VAR = "BACKUP_RUNNER_CONFIG"
RUNNER_LOG_NAME = "backup_runner.log"

app = typer.Typer(
    add_completion=False,
    help="Run one database backup job: plan, execute, classify, retain.",
)

INSTANCE_OPTION = typer.Option(
    ..., "--instance", "-i", help="Target instance name (as in the home lookup table)."
)
KIND_OPTION = typer.Option(
    ..., "--kind", "-t", help="Backup kind: full, incremental or logonly."
)
COMPRESS_OPTION = typer.Option(
    None,
    "--compress/--no-compress",
    help="Use compressed backup sets (default: compressDefault from config).",
)
DRY_RUN_OPTION = typer.Option(
    False, "--dry-run", help="Print the plans without locking or executing anything."
)
CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_PATH,
    "--config",
    "-c",
    envvar=CONFIG_ENV_VAR,
    dir_okay=False,
    help="Path to the YAML configuration file.",
)
CHANNELS_OPTION = typer.Option(
    None, "--channels", help="Channels to allocate (default: channels from config)."
)
TIMEOUT_OPTION = typer.Option(
    None, "--timeout", min=1, help="Kill the engine after this many seconds."
)
KEEP_PLAN_OPTION = typer.Option(
    False, "--keep-plan", help="Keep the generated plan file after the run."
)
LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", help="Console/file log level.")


def _usage_failure(label: str, instance: str, kind: str, error: Exception) -> typer.Exit:
    """Report a failure that ends the run before it starts, summary line included."""
    typer.echo(f"{label}: {error}", err=True)
    try:
        parsed_kind = BackupKind.parse(kind)
    except ValueError:
        parsed_kind = kind
    outcome = RunOutcome(
        instance=instance,
        kind=parsed_kind,
        status=STATUS_FAILED,
        exit_code=ExitCode.USAGE,
        message=str(error),
        finished_at=datetime.now(),
    )
    get_logger().error(outcome.summary_line())
    typer.echo(outcome.summary_line())
    return typer.Exit(code=int(ExitCode.USAGE))


def _raise_interrupted(signum, _frame) -> None:
    raise RunInterrupted(signum)


def _install_signal_handlers() -> Dict[int, object]:
    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _raise_interrupted)
    return previous


def _restore_signal_handlers(previous: Dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@app.command()
def run(
    instance: str = INSTANCE_OPTION,
    kind: str = KIND_OPTION,
    compress: Optional[bool] = COMPRESS_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    config: Path = CONFIG_OPTION,
    channels: Optional[int] = CHANNELS_OPTION,
    timeout: Optional[int] = TIMEOUT_OPTION,
    keep_plan: bool = KEEP_PLAN_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Back up one instance."""
    try:
        setup_logger(log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level") from e
    logger = get_logger()

    try:
        runner_config = ConfigLoader(config).config
    except ConfigError as e:
        raise _usage_failure("Configuration error", instance, kind, e) from e

    updates = {}
    if timeout is not None:
        updates["execution_timeout_seconds"] = timeout
    if keep_plan:
        updates["keep_plan_files"] = True
    if updates:
        runner_config = runner_config.model_copy(update=updates)

    if not dry_run:
        try:
            setup_logger(log_level, log_file=runner_config.logs_dir / RUNNER_LOG_NAME)
        except OSError as e:
            logger.warning(f"File logging disabled: {e}")

    runner = BackupRunner(runner_config, dry_run=dry_run)
    try:
        job = runner.build_job(instance, kind, compress=compress, parallelism=channels)
    except ConfigError as e:
        raise _usage_failure("Usage error", instance, kind, e) from e

    previous = _install_signal_handlers()
    try:
        outcome = runner.run(job)
    finally:
        _restore_signal_handlers(previous)

    if dry_run:
        for plan in runner.planned:
            typer.echo(f"# {plan.name}")
            typer.echo(plan.render(), nl=False)
    typer.echo(outcome.summary_line())
    raise typer.Exit(code=int(outcome.exit_code))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Console script entry point.

    Returns:
        Process exit code
    """
    try:
        result = app(args=argv, prog_name="backup-run", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return int(ExitCode.USAGE)
    except (click.exceptions.Abort, RunInterrupted, KeyboardInterrupt):
        return int(ExitCode.INTERRUPTED)
    return int(result or 0)


if __name__ == "__main__":
    raise SystemExit(main())
