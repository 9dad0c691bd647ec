"""
Environment resolution for a target instance.

Maps an instance name to its installation home through a flat
``name:home:flags`` lookup table and derives the collaborator binaries
and the child-process environment from it. Nothing here touches the
runner's own process environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from core.config_loader import RunnerConfig
from core.exceptions import BinaryNotFound, EnvironmentNotFound
from lib.logger import get_logger

ENGINE_BINARY_NAME = "rman"
QUERY_CLIENT_BINARY_NAME = "sqlplus"


@dataclass(frozen=True)
class InstanceEnvironment:
    """Resolved execution context for one instance."""

    instance: str
    home: Path
    engine_binary: Path
    query_client_binary: Path
    base_env: Dict[str, str] = field(default_factory=dict, compare=False)

    def child_env(self) -> Dict[str, str]:
        """Environment for collaborator subprocesses."""
        env = dict(self.base_env)
        env["ORACLE_HOME"] = str(self.home)
        env["ORACLE_SID"] = self.instance
        bin_dir = str(self.home / "bin")
        existing = env.get("PATH", "")
        env["PATH"] = f"{bin_dir}{os.pathsep}{existing}" if existing else bin_dir
        return env

    def require_binaries(self) -> None:
        """
        Ensure both collaborator binaries exist and are executable.

        Raises:
            BinaryNotFound: Naming the first missing binary
        """
        for label, path in (
            ("Backup engine", self.engine_binary),
            ("Query client", self.query_client_binary),
        ):
            if not path.is_file() or not os.access(path, os.X_OK):
                raise BinaryNotFound(
                    f"{label} binary not found or not executable: {path}"
                )


class EnvironmentResolver:
    """
    Resolves instance homes from the lookup table.

    Example:
        >>> resolver = EnvironmentResolver(config)
        >>> env = resolver.resolve("ORCL")
        >>> env.home
        PosixPath('/u01/app/oracle/product/19c/dbhome_1')
    """

    def __init__(self, config: RunnerConfig):
        self.config = config
        self.table_path = config.home_lookup_table_path
        self.logger = get_logger()

    def lookup_home(self, instance: str) -> Optional[str]:
        """
        Find the home column for an instance.

        The first non-comment line whose name matches wins; later duplicates
        are ignored.

        Raises:
            EnvironmentNotFound: If the table cannot be read
        """
        try:
            with open(self.table_path, "r", encoding="utf-8", errors="replace") as f:
                for line_number, raw_line in enumerate(f, start=1):
                    line = raw_line.strip()
                    if not line or line.startswith("#"):
                        continue
                    fields = line.split(":")
                    if fields[0].strip() != instance:
                        continue
                    home = fields[1].strip() if len(fields) > 1 else ""
                    self.logger.debug(
                        f"Lookup table {self.table_path}:{line_number} matched "
                        f"'{instance}' -> '{home}'"
                    )
                    return home
        except FileNotFoundError as e:
            raise EnvironmentNotFound(
                f"Home lookup table not found: {self.table_path}"
            ) from e
        except OSError as e:
            raise EnvironmentNotFound(
                f"Cannot read home lookup table {self.table_path}: {e}"
            ) from e
        return None

    def resolve(self, instance: str) -> InstanceEnvironment:
        """
        Resolve the execution context for an instance.

        Raises:
            EnvironmentNotFound: If the instance has no entry, an empty home,
                or a home directory that does not exist
        """
        home = self.lookup_home(instance)
        if home is None:
            raise EnvironmentNotFound(
                f"Instance '{instance}' not found in {self.table_path}"
            )
        if not home:
            raise EnvironmentNotFound(
                f"Instance '{instance}' has an empty home in {self.table_path}"
            )

        home_path = Path(home)
        if not home_path.is_dir():
            raise EnvironmentNotFound(
                f"Home directory for instance '{instance}' does not exist: {home_path}"
            )

        engine = self.config.backup_engine_binary or (
            home_path / "bin" / ENGINE_BINARY_NAME
        )
        query_client = self.config.query_client_binary or (
            home_path / "bin" / QUERY_CLIENT_BINARY_NAME
        )

        self.logger.info(f"Environment for '{instance}': home={home_path}")
        return InstanceEnvironment(
            instance=instance,
            home=home_path,
            engine_binary=Path(engine),
            query_client_binary=Path(query_client),
            base_env=dict(os.environ),
        )
