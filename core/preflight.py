"""
Preflight checks run before any plan is executed.

Two checks, in order: the instance's control process must be running, and
the instance must positively report the primary role. Anything the role
query cannot confirm is a failure.
"""

import os
import re
import subprocess
from typing import Iterable, List

import psutil

from core.config_loader import RunnerConfig
from core.environment import InstanceEnvironment
from core.exceptions import (
    BinaryNotFound,
    InstanceNotRunning,
    RoleIndeterminate,
    RoleNotPrimary,
)
from lib.logger import get_logger

ROLE_QUERY_SCRIPT = (
    "SET PAGESIZE 0 FEEDBACK OFF VERIFY OFF HEADING OFF ECHO OFF\n"
    "SELECT database_role FROM v$database;\n"
    "EXIT;\n"
)

# Any error token from the query client makes the response unusable
_ERROR_TOKEN = re.compile(r"(?<![A-Z])(ORA|SP2|TNS)-\d{4,5}")


def parse_role_response(output: str, primary_role: str) -> str:
    """
    Interpret the query client's role output.

    Args:
        output: Raw standard output of the role query
        primary_role: Required role token (exact, case-sensitive)

    Returns:
        The confirmed role

    Raises:
        RoleIndeterminate: Empty, multi-line or error output
        RoleNotPrimary: A single clean token other than primary_role
    """
    lines = [line.strip() for line in (output or "").splitlines() if line.strip()]
    if not lines:
        raise RoleIndeterminate("Role query returned no output")
    if any(_ERROR_TOKEN.search(line) for line in lines):
        raise RoleIndeterminate(f"Role query returned an error: {lines[0]}")
    if len(lines) != 1:
        raise RoleIndeterminate(
            f"Role query returned {len(lines)} lines, expected exactly one"
        )

    role = lines[0]
    if role != primary_role:
        raise RoleNotPrimary(
            f"Database role is '{role}'; backups are only taken on {primary_role}",
            role=role,
        )
    return role


class PreflightValidator:
    """Liveness and role checks for a resolved instance."""

    def __init__(self, config: RunnerConfig):
        self.config = config
        self.logger = get_logger()

    def control_process_name(self, instance: str) -> str:
        return self.config.control_process_pattern.format(instance=instance)

    @staticmethod
    def _process_names(processes: Iterable) -> Iterable[str]:
        for proc in processes:
            try:
                info = proc.info
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            yield info.get("name") or ""
            cmdline = info.get("cmdline") or []
            # argv[0] only; the control process rewrites it to its own name
            if cmdline and cmdline[0].strip():
                yield os.path.basename(cmdline[0].split()[0])

    def check_running(self, instance: str) -> None:
        """
        Look for the instance's control process.

        Raises:
            InstanceNotRunning: If no process matches the naming convention
        """
        wanted = self.control_process_name(instance)
        processes = psutil.process_iter(["name", "cmdline"])
        for candidate in self._process_names(processes):
            if candidate == wanted:
                self.logger.info(f"Instance {instance} is running ({wanted} found)")
                return
        raise InstanceNotRunning(
            f"Instance {instance} is not running: no {wanted} process found"
        )

    def query_role(self, env: InstanceEnvironment) -> str:
        """
        Run the role query through the query client.

        Returns:
            Raw standard output

        Raises:
            BinaryNotFound: If the query client cannot be started
            RoleIndeterminate: On timeout or non-zero exit
        """
        command: List[str] = [str(env.query_client_binary), *self.config.query_client_args]
        self.logger.debug(f"Querying role: {' '.join(command)}")
        try:
            completed = subprocess.run(
                command,
                input=ROLE_QUERY_SCRIPT,
                capture_output=True,
                text=True,
                env=env.child_env(),
                timeout=self.config.query_timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise BinaryNotFound(
                f"Query client not found: {env.query_client_binary}"
            ) from e
        except PermissionError as e:
            raise BinaryNotFound(
                f"Query client not executable: {env.query_client_binary}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise RoleIndeterminate(
                f"Role query timed out after {self.config.query_timeout_seconds}s"
            ) from e

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise RoleIndeterminate(
                f"Role query failed with exit code {completed.returncode}: {detail}"
            )
        return completed.stdout

    def check_role(self, env: InstanceEnvironment) -> str:
        """
        Confirm the instance is primary.

        Raises:
            RoleNotPrimary: Instance reported another role
            RoleIndeterminate: Role could not be confirmed
        """
        role = parse_role_response(self.query_role(env), self.config.primary_role)
        self.logger.info(f"Database role for {env.instance} confirmed: {role}")
        return role

    def validate(self, env: InstanceEnvironment) -> None:
        """Run both checks, stopping at the first failure."""
        self.check_running(env.instance)
        self.check_role(env)
