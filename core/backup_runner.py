"""
Backup Runner for database instances.

Orchestrates one backup job end to end: environment resolution, instance
lock, preflight checks, plan generation, engine execution, log
classification, retention and log housekeeping. Every path ends in an
explicit RunOutcome carrying the exit code; the lock is released on every
path once acquired.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.config_loader import RunnerConfig
from core.environment import EnvironmentResolver, InstanceEnvironment
from core.error_classifier import ErrorClassifier, format_error_report
from core.exceptions import BackupError, ConfigError, ExitCode, RunInterrupted
from core.executor import Executor
from core.models import BackupJob, BackupKind, RetentionPolicy, RunOutcome
from core.plan_builder import ExecutionPlan, PlanBuilder
from core.preflight import PreflightValidator
from core.retention import RetentionEnforcer
from lib.lock import ConcurrencyGuard
from lib.log_lifecycle import rotate
from lib.logger import get_logger
from lib.notifier import WebhookNotifier
from lib.run_history import RunHistory, StateError
from lib.utils import (
    artifact_timestamp,
    date_tag,
    ensure_directory,
    human_readable_duration,
    is_valid_instance_name,
)

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_RETENTION_WARNINGS = "COMPLETED_WITH_WARNINGS"
STATUS_INTERRUPTED = "INTERRUPTED"
STATUS_DRY_RUN = "DRY_RUN"


class BackupRunner:
    """
    Runs backup jobs against one configuration.

    Attributes:
        config: Validated runner configuration
        dry_run: If True, only resolve the environment and build plans
        planned: Plans built by the last run (backup plan, then retention
            plan when enabled)
        logger: Logger instance
    """

    def __init__(
        self,
        config: RunnerConfig,
        dry_run: bool = False,
        resolver: Optional[EnvironmentResolver] = None,
        guard: Optional[ConcurrencyGuard] = None,
        validator: Optional[PreflightValidator] = None,
        builder: Optional[PlanBuilder] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        """
        Initialize BackupRunner.

        Collaborators default to ones built from config; tests pass their
        own.

        Example:
            >>> config = ConfigLoader(Path("config.yaml")).config
            >>> runner = BackupRunner(config)
            >>> outcome = runner.run(runner.build_job("ORCL", "full"))
            >>> outcome.exit_code
            0
        """
        self.config = config
        self.dry_run = dry_run
        self.resolver = resolver or EnvironmentResolver(config)
        self.guard = guard or ConcurrencyGuard(config.lock_dir, scope=config.lock_scope)
        self.validator = validator or PreflightValidator(config)
        self.builder = builder or PlanBuilder(config)
        self.classifier = classifier or ErrorClassifier()
        self.planned: List[ExecutionPlan] = []
        self.logger = get_logger()

        if self.dry_run:
            self.logger.info("BackupRunner initialized in DRY RUN mode")
        else:
            self.logger.debug("BackupRunner initialized")

    def build_job(
        self,
        instance: str,
        kind,
        compress: Optional[bool] = None,
        parallelism: Optional[int] = None,
        max_piece_size: Optional[str] = None,
        requested_at: Optional[datetime] = None,
    ) -> BackupJob:
        """
        Build a job, filling unset options from the configuration.

        Raises:
            ConfigError: If the instance name or kind is invalid
        """
        if not is_valid_instance_name(instance):
            raise ConfigError(f"Invalid instance name '{instance}'")
        try:
            backup_kind = kind if isinstance(kind, BackupKind) else BackupKind.parse(kind)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return BackupJob(
            target_instance=instance,
            kind=backup_kind,
            compression=self.config.compress_default if compress is None else compress,
            parallelism=self.config.channels if parallelism is None else parallelism,
            max_piece_size=max_piece_size or self.config.max_piece_size,
            requested_at=requested_at or datetime.now(),
        )

    @property
    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(self.config.recovery_window_days)

    # ========================================================================
    # Main Orchestration
    # ========================================================================

    def run(self, job: BackupJob) -> RunOutcome:
        """
        Run a job to its terminal state.

        Returns:
            The outcome; never raises for stage failures or interruption
        """
        outcome = RunOutcome(
            instance=job.target_instance,
            kind=job.kind,
            status=STATUS_SUCCESS,
            exit_code=ExitCode.SUCCESS,
            dry_run=self.dry_run,
        )
        self.planned = []
        interrupted = False
        self.logger.info(
            f"Starting {job.kind.value} backup of {job.target_instance} "
            f"(compression={'on' if job.compression else 'off'}, "
            f"channels={job.parallelism})"
        )

        try:
            if not is_valid_instance_name(job.target_instance):
                raise ConfigError(f"Invalid instance name '{job.target_instance}'")

            env = self.resolver.resolve(job.target_instance)
            if self.dry_run:
                self._preview(job, env, outcome)
            else:
                env.require_binaries()
                with self.guard.acquire(job.target_instance, job.kind.value):
                    self.validator.validate(env)
                    self._execute(job, env, outcome)

        except BackupError as e:
            self._fail(outcome, e.exit_code, str(e))
        except OSError as e:
            self._fail(outcome, ExitCode.ENVIRONMENT, f"Filesystem error: {e}")
        except (RunInterrupted, KeyboardInterrupt) as e:
            interrupted = True
            outcome.status = STATUS_INTERRUPTED
            outcome.exit_code = ExitCode.INTERRUPTED
            outcome.message = str(e) or "Interrupted"
            self.logger.error(
                f"Run for {job.target_instance} interrupted; partial artifacts kept"
            )

        outcome.finished_at = datetime.now()
        if not self.dry_run:
            self._finish(outcome, interrupted)
        self._report(outcome)
        return outcome

    def _fail(self, outcome: RunOutcome, exit_code: int, message: str) -> None:
        outcome.status = STATUS_FAILED
        outcome.exit_code = ExitCode(exit_code)
        outcome.message = message
        self.logger.error(message)

    def _preview(self, job: BackupJob, env: InstanceEnvironment, outcome: RunOutcome) -> None:
        """Build both plans without touching the lock or running anything."""
        tag = date_tag(job.requested_at)
        self.planned.append(self.builder.build(job, env.home, tag))
        if self.retention_policy.enabled:
            self.planned.append(
                self.builder.build_retention(job.target_instance, self.retention_policy)
            )
        outcome.status = STATUS_DRY_RUN
        outcome.message = f"Built {len(self.planned)} plan(s), nothing executed"
        self.logger.info(f"DRY RUN: {outcome.message}")

    def _execute(self, job: BackupJob, env: InstanceEnvironment, outcome: RunOutcome) -> None:
        """Backup, classification and retention stages, in that order."""
        tag = date_tag(job.requested_at)
        stamp = artifact_timestamp(job.requested_at)
        logs_dir = ensure_directory(self.config.logs_dir)

        plan = self.builder.build(job, env.home, tag)
        self.planned.append(plan)
        for directory in plan.output_directories:
            ensure_directory(directory)

        stem = f"{job.target_instance}_{job.kind.value}_{stamp}"
        outcome.plan_file = plan.write(logs_dir / f"{stem}.rman")
        outcome.backup_log = logs_dir / f"{stem}.log"
        error_log = logs_dir / f"{stem}.err"

        executor = Executor(
            env,
            args=self.config.backup_engine_args,
            timeout_seconds=self.config.execution_timeout_seconds,
        )
        result = executor.run(plan, outcome.backup_log)
        outcome.engine_exit_code = result.exit_code

        outcome.backup_errors = self.classifier.classify(outcome.backup_log)
        error_log.write_text(
            format_error_report("BACKUP", outcome.backup_log, outcome.backup_errors),
            encoding="utf-8",
        )
        outcome.error_log = error_log

        if result.timed_out:
            self._fail(
                outcome,
                ExitCode.BACKUP_ERRORS,
                f"Backup timed out after {self.config.execution_timeout_seconds}s",
            )
            return
        if outcome.backup_errors:
            codes = ", ".join(r.code for r in outcome.backup_errors)
            self._fail(outcome, ExitCode.BACKUP_ERRORS, f"Backup reported errors: {codes}")
            return
        if result.exit_code != 0:
            self.logger.warning(
                f"Engine exited with {result.exit_code} but the log has no error codes; "
                f"treating backup as successful"
            )

        self._enforce_retention(env, outcome, logs_dir, stamp)

    def _enforce_retention(
        self,
        env: InstanceEnvironment,
        outcome: RunOutcome,
        logs_dir: Path,
        stamp: str,
    ) -> None:
        enforcer = RetentionEnforcer(self.config, self.builder, self.classifier)
        retention_log = logs_dir / f"{env.instance}_retention_{stamp}.log"
        report = enforcer.enforce(env, self.retention_policy, retention_log)

        if report.skipped:
            outcome.message = "Backup completed; retention disabled"
            return

        self.planned.append(report.plan)
        outcome.retention_log = retention_log
        outcome.retention_exit_code = report.result.exit_code
        outcome.retention_errors = report.errors

        block = format_error_report("RETENTION", retention_log, report.errors)
        if block:
            with open(outcome.error_log, "a", encoding="utf-8") as f:
                f.write(block)

        if report.failed:
            outcome.status = STATUS_RETENTION_WARNINGS
            outcome.exit_code = ExitCode.RETENTION_ERRORS
            if report.result.timed_out:
                outcome.message = (
                    f"Backup completed; retention timed out after "
                    f"{self.config.execution_timeout_seconds}s"
                )
            else:
                codes = ", ".join(r.code for r in report.errors)
                outcome.message = f"Backup completed; retention reported errors: {codes}"
            self.logger.warning(outcome.message)
        else:
            outcome.message = "Backup and retention completed"

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def _finish(self, outcome: RunOutcome, interrupted: bool) -> None:
        """Plan file cleanup, log rotation, history and notification."""
        if interrupted:
            # Partial artifacts stay for inspection
            return

        if outcome.plan_file is not None and not self.config.keep_plan_files:
            try:
                outcome.plan_file.unlink(missing_ok=True)
                outcome.plan_file = None
            except OSError as e:
                self.logger.warning(f"Could not delete plan file {outcome.plan_file}: {e}")

        if self.config.logs_dir.is_dir():
            rotate(
                self.config.logs_dir,
                self.config.compress_logs_after_days,
                self.config.delete_logs_after_days,
                exclude=outcome.artifacts,
            )

        self._record_history(outcome)
        if self.config.notification is not None:
            WebhookNotifier(self.config.notification).notify(outcome)

    def _record_history(self, outcome: RunOutcome) -> None:
        if self.config.state_database_path is None:
            return
        try:
            RunHistory(self.config.state_database_path).record_run(outcome)
        except StateError as e:
            self.logger.warning(f"Run history not updated: {e}")

    def _report(self, outcome: RunOutcome) -> None:
        elapsed = (outcome.finished_at - outcome.started_at).total_seconds()
        line = f"{outcome.summary_line()} elapsed={human_readable_duration(max(elapsed, 0))}"
        if outcome.exit_code == ExitCode.SUCCESS:
            self.logger.info(line)
        elif outcome.exit_code == ExitCode.RETENTION_ERRORS:
            self.logger.warning(line)
        else:
            self.logger.error(line)
