"""
Retention enforcement after a clean backup.

Applies the recovery window through the backup engine's own obsolete-backup
deletion. The core never removes backup pieces itself.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from core.config_loader import RunnerConfig
from core.environment import InstanceEnvironment
from core.error_classifier import ErrorClassifier
from core.executor import Executor
from core.models import ErrorRecord, ExecutionResult, RetentionPolicy
from core.plan_builder import ExecutionPlan, PlanBuilder
from lib.logger import get_logger


@dataclass
class RetentionReport:
    """Result of a retention pass; skipped when the policy is disabled."""

    policy: RetentionPolicy
    plan: Optional[ExecutionPlan] = None
    result: Optional[ExecutionResult] = None
    errors: List[ErrorRecord] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.result is None

    @property
    def failed(self) -> bool:
        if self.result is None:
            return False
        return bool(self.errors) or self.result.timed_out


class RetentionEnforcer:
    """
    Runs the retention plan and classifies its log.

    Example:
        >>> enforcer = RetentionEnforcer(config)
        >>> report = enforcer.enforce(env, RetentionPolicy(7), log_path)
        >>> report.failed
        False
    """

    def __init__(
        self,
        config: RunnerConfig,
        builder: Optional[PlanBuilder] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        self.config = config
        self.builder = builder or PlanBuilder(config)
        self.classifier = classifier or ErrorClassifier()
        self.logger = get_logger()

    def enforce(
        self,
        env: InstanceEnvironment,
        policy: RetentionPolicy,
        log_path: Path,
    ) -> RetentionReport:
        """
        Build, execute and classify the retention plan for an instance.

        A recovery window of 0 disables retention: nothing is executed
        and the report is marked skipped.

        Raises:
            BinaryNotFound: If the engine cannot be started
        """
        report = RetentionReport(policy=policy)
        if not policy.enabled:
            self.logger.info(
                f"Retention disabled for {env.instance} (recovery window 0 days)"
            )
            return report

        report.plan = self.builder.build_retention(env.instance, policy)
        self.logger.info(
            f"Enforcing {policy.recovery_window_days}-day recovery window for {env.instance}"
        )

        executor = Executor(
            env,
            args=self.config.backup_engine_args,
            timeout_seconds=self.config.execution_timeout_seconds,
        )
        report.result = executor.run(report.plan, log_path)
        report.errors = self.classifier.classify(log_path)

        if report.failed:
            self.logger.warning(
                f"Retention for {env.instance} reported {len(report.errors)} error code(s)"
                + (" and timed out" if report.result.timed_out else "")
            )
        else:
            self.logger.info(f"Retention for {env.instance} completed cleanly")
        return report
