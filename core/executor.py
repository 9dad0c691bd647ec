"""
Executor for backup engine runs.

Feeds a rendered plan to the engine on standard input and captures
standard output and standard error, interleaved in order, into one log
file. The engine's exit code is returned as-is; deciding whether the run
failed is the error classifier's job.
"""

import os
import signal
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.environment import InstanceEnvironment
from core.exceptions import BinaryNotFound
from core.models import ExecutionResult
from core.plan_builder import ExecutionPlan
from lib.logger import get_logger

# Seconds to wait for the engine after SIGTERM before SIGKILL
TERMINATE_GRACE_SECONDS = 10


class Executor:
    """
    Runs plans through the backup engine.

    Example:
        >>> executor = Executor(env, args=[], timeout_seconds=7200)
        >>> result = executor.run(plan, Path("/u01/backup/logs/ORCL_full.log"))
        >>> result.exit_code
        0
    """

    def __init__(
        self,
        env: InstanceEnvironment,
        args: Optional[List[str]] = None,
        timeout_seconds: Optional[int] = None,
    ):
        self.env = env
        self.args = list(args or [])
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger()

    def command(self) -> List[str]:
        return [str(self.env.engine_binary), *self.args]

    @staticmethod
    def _signal_group(process: subprocess.Popen, signum: int) -> None:
        try:
            os.killpg(process.pid, signum)
        except ProcessLookupError:
            pass

    def _stop(self, process: subprocess.Popen) -> None:
        """Terminate the engine and everything it started, escalating to kill."""
        if process.returncode is not None:
            # Already reaped; its pid may belong to someone else by now
            return
        # The engine leads its own session, so its pid is also the group id
        self._signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Engine pid {process.pid} ignored SIGTERM, killing")
            self._signal_group(process, signal.SIGKILL)
            process.wait()

    def run(self, plan: ExecutionPlan, log_path: Path) -> ExecutionResult:
        """
        Execute a plan and capture its output.

        Blocks until the engine exits or the timeout expires. On timeout
        the engine is stopped and the result is marked timed_out. If the
        run is interrupted (KeyboardInterrupt, RunInterrupted) the engine
        is stopped and the interruption propagates; the partial log stays.

        Raises:
            BinaryNotFound: If the engine cannot be started
        """
        command = self.command()
        plan_text = plan.render()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Executing {plan.name}: {' '.join(command)} -> {log_path}")
        started_at = datetime.now()
        timed_out = False

        with open(log_path, "wb") as log_file:
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.PIPE,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=self.env.child_env(),
                    start_new_session=True,
                )
            except FileNotFoundError as e:
                raise BinaryNotFound(
                    f"Backup engine not found: {self.env.engine_binary}"
                ) from e
            except PermissionError as e:
                raise BinaryNotFound(
                    f"Backup engine not executable: {self.env.engine_binary}"
                ) from e

            try:
                process.communicate(
                    input=plan_text.encode("utf-8"), timeout=self.timeout_seconds
                )
            except subprocess.TimeoutExpired:
                timed_out = True
                self.logger.error(
                    f"{plan.name} exceeded {self.timeout_seconds}s, stopping engine "
                    f"pid {process.pid}"
                )
                self._stop(process)
            except BaseException:
                self.logger.warning(
                    f"{plan.name} interrupted, stopping engine pid {process.pid}"
                )
                self._stop(process)
                raise

        finished_at = datetime.now()
        exit_code = process.returncode
        result = ExecutionResult(
            exit_code=exit_code,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
            timed_out=timed_out,
        )

        if timed_out:
            self.logger.error(f"{plan.name} timed out after {result.duration_seconds}s")
        elif exit_code != 0:
            self.logger.warning(
                f"{plan.name} engine exited with code {exit_code} "
                f"after {result.duration_seconds}s; log content decides the outcome"
            )
        else:
            self.logger.info(f"{plan.name} finished in {result.duration_seconds}s")
        return result
