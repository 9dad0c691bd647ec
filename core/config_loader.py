"""
Configuration loader for the backup runner.

This module provides YAML configuration loading, validation using Pydantic,
and convenient dot-notation access to configuration values. Options are
accepted under their camelCase names (baseDirectory, maxPieceSize, ...)
or the equivalent snake_case names.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.exceptions import ConfigError

# Engine MAXPIECESIZE: integer with optional K/M/G unit
PIECE_SIZE_PATTERN = re.compile(r"^[1-9][0-9]*[KMG]?$")

_TEMPLATE_SAMPLE = {
    "base_directory": "/b",
    "instance": "I",
    "date_tag": "D",
    "date_compact": "C",
}


def _check_placeholders(value: str, what: str) -> str:
    """Reject templates using placeholders other than the supported ones."""
    try:
        value.format(**_TEMPLATE_SAMPLE)
    except (KeyError, IndexError, ValueError) as e:
        raise ValueError(
            f"{what} '{value}' uses an unsupported placeholder ({e}). "
            f"Supported: {', '.join('{' + k + '}' for k in _TEMPLATE_SAMPLE)}"
        ) from e
    return value


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )


class KindTemplate(_ConfigModel):
    """Output locations and optional backup tags for one backup kind."""

    directory: str = Field(..., description="Piece directory, partitioned by day")
    piece: str = Field(..., description="Piece name for the main backup directive")
    controlfile_piece: Optional[str] = Field(
        None, description="Piece name for the control file companion backup"
    )
    spfile_piece: Optional[str] = Field(
        None, description="Piece name for the parameter file companion backup"
    )
    tag: Optional[str] = Field(None, description="Backup tag for the main backup directive")
    controlfile_tag: Optional[str] = Field(None, description="Backup tag for the control file")
    spfile_tag: Optional[str] = Field(None, description="Backup tag for the parameter file")

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        """Directories must partition by day."""
        if "{date_tag}" not in v:
            raise ValueError("Template directory must contain '{date_tag}'")
        return _check_placeholders(v, "Template directory")

    @field_validator("piece", "controlfile_piece", "spfile_piece")
    @classmethod
    def validate_piece(cls, v: Optional[str]) -> Optional[str]:
        """Piece names need the engine's unique token."""
        if v is None:
            return v
        if "%U" not in v:
            raise ValueError(f"Piece name '{v}' must contain the unique token '%U'")
        if "/" in v:
            raise ValueError(f"Piece name '{v}' must not contain '/'")
        return _check_placeholders(v, "Piece name")

    @field_validator("tag", "controlfile_tag", "spfile_tag")
    @classmethod
    def validate_tag(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v or any(c.isspace() or c in "'\"/" for c in v):
            raise ValueError(f"Tag '{v}' must be non-empty without quotes, slashes or spaces")
        return _check_placeholders(v, "Tag")


def _default_full() -> KindTemplate:
    return KindTemplate(
        directory="{base_directory}/L0/{date_tag}",
        piece="{instance}_L0_%U",
        controlfile_piece="{instance}_L0_CF_%U",
        spfile_piece="{instance}_L0_SPFILE_%U",
    )


def _default_incremental() -> KindTemplate:
    return KindTemplate(
        directory="{base_directory}/L1/{date_tag}",
        piece="{instance}_L1_%U",
        controlfile_piece="{instance}_L1_CF_%U",
        spfile_piece="{instance}_L1_SPFILE_%U",
    )


def _default_logonly() -> KindTemplate:
    return KindTemplate(
        directory="{base_directory}/ARCH/{date_tag}",
        piece="{instance}_ARCH_%U",
    )


class TemplatesConfig(_ConfigModel):
    """Per-kind output path templates."""

    full: KindTemplate = Field(default_factory=_default_full)
    incremental: KindTemplate = Field(default_factory=_default_incremental)
    logonly: KindTemplate = Field(default_factory=_default_logonly)

    @model_validator(mode="after")
    def validate_companions(self) -> "TemplatesConfig":
        """Full and incremental plans always back up control file and spfile."""
        for name in ("full", "incremental"):
            template = getattr(self, name)
            if not template.controlfile_piece or not template.spfile_piece:
                raise ValueError(
                    f"Template '{name}' requires 'controlfilePiece' and 'spfilePiece'"
                )
        return self


class NotificationConfig(_ConfigModel):
    """Completion webhook."""

    enabled: bool = Field(True, description="Send a notification after each run")
    url: str = Field(..., description="Webhook URL receiving the JSON summary")
    timeout_seconds: int = Field(30, description="HTTP timeout")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Only http(s) endpoints."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Notification url must start with http:// or https://")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1 or v > 300:
            raise ValueError("Notification timeout must be between 1 and 300 seconds")
        return v


class RunnerConfig(_ConfigModel):
    """Root configuration model for the backup runner."""

    base_directory: Path = Field(..., description="Root of backup piece directories")
    logs_directory: Optional[Path] = Field(
        None, description="Run artifacts directory (default: <baseDirectory>/logs)"
    )
    lock_directory: Optional[Path] = Field(
        None, description="Lock file directory (default: logs directory)"
    )
    channels: int = Field(1, description="Channels to allocate (parallelism)")
    max_piece_size: str = Field("100G", description="MAXPIECESIZE per channel")
    recovery_window_days: int = Field(7, description="Retention recovery window")
    compress_default: bool = Field(False, description="Compress when CLI is silent")
    compress_logs_after_days: int = Field(7, description="Gzip artifacts after N days")
    delete_logs_after_days: int = Field(30, description="Delete .gz after N days")
    home_lookup_table_path: Path = Field(
        Path("/etc/oratab"), description="instance:home lookup table"
    )
    backup_engine_binary: Optional[Path] = Field(
        None, description="Backup engine path (default: <home>/bin/rman)"
    )
    query_client_binary: Optional[Path] = Field(
        None, description="Query client path (default: <home>/bin/sqlplus)"
    )
    backup_engine_args: List[str] = Field(default_factory=list)
    query_client_args: List[str] = Field(
        default_factory=lambda: ["-s", "/", "as", "sysdba"]
    )
    lock_scope: Literal["instance", "instance_kind"] = Field(
        "instance", description="Lock per instance, or per (instance, kind)"
    )
    execution_timeout_seconds: Optional[int] = Field(
        None, description="Kill the engine after this many seconds"
    )
    query_timeout_seconds: int = Field(60, description="Role query timeout")
    keep_plan_files: bool = Field(False, description="Keep plan files after the run")
    backup_optimization: bool = Field(True, description="CONFIGURE BACKUP OPTIMIZATION")
    control_process_pattern: str = Field(
        "ora_pmon_{instance}", description="Control process naming convention"
    )
    primary_role: str = Field("PRIMARY", description="Required role token")
    templates: TemplatesConfig = Field(default_factory=TemplatesConfig)
    state_database_path: Optional[Path] = Field(None, description="Run history DB")
    notification: Optional[NotificationConfig] = None

    @field_validator("base_directory", "home_lookup_table_path")
    @classmethod
    def validate_absolute(cls, v: Path) -> Path:
        """Ensure path is absolute."""
        if not v.is_absolute():
            raise ValueError(f"Path must be absolute: {v}")
        return v

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: int) -> int:
        if v < 1:
            raise ValueError("channels must be at least 1")
        return v

    @field_validator("max_piece_size")
    @classmethod
    def validate_piece_size(cls, v: str) -> str:
        normalized = v.strip().upper()
        if not PIECE_SIZE_PATTERN.match(normalized):
            raise ValueError(
                f"maxPieceSize must be a positive integer with optional K, M or G "
                f"unit (e.g. '100G'), got '{v}'"
            )
        return normalized

    @field_validator(
        "recovery_window_days", "compress_logs_after_days", "delete_logs_after_days"
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Day counts cannot be negative")
        return v

    @field_validator("execution_timeout_seconds", "query_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("Timeouts must be at least 1 second")
        return v

    @field_validator("control_process_pattern")
    @classmethod
    def validate_process_pattern(cls, v: str) -> str:
        if "{instance}" not in v:
            raise ValueError("controlProcessPattern must contain '{instance}'")
        return v

    @field_validator("primary_role")
    @classmethod
    def validate_primary_role(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("primaryRole cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_log_horizons(self) -> "RunnerConfig":
        """Compressed artifacts must not be deleted before they are created."""
        if self.delete_logs_after_days < self.compress_logs_after_days:
            raise ValueError(
                "deleteLogsAfterDays must be greater than or equal to "
                "compressLogsAfterDays"
            )
        return self

    @property
    def logs_dir(self) -> Path:
        return self.logs_directory or (self.base_directory / "logs")

    @property
    def lock_dir(self) -> Path:
        return self.lock_directory or self.logs_dir


def format_validation_error(error: ValidationError) -> str:
    """Aggregate pydantic errors into one readable message."""
    error_count = len(error.errors())
    error_msg = f"Configuration validation failed with {error_count} error(s):\n"
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"]) or "<root>"
        error_msg += f"  - {loc}: {item['msg']}\n"
    return error_msg.rstrip()


class ConfigLoader:
    """
    Configuration loader with YAML parsing, Pydantic validation, and dot-notation access.

    Example:
        >>> loader = ConfigLoader(Path("/etc/backup-runner/config.yaml"))
        >>> loader.config.channels
        4
        >>> loader.get("templates.full.directory")
        '{base_directory}/L0/{date_tag}'
    """

    MAX_DOT_DEPTH = 5

    def __init__(self, config_path: Path):
        """
        Load and validate a configuration file.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigError: If the file is missing, unparsable or invalid
        """
        self.config_path = Path(config_path)
        self._validated_config: Optional[RunnerConfig] = None

        self._validated_config = self.validate_dict(self._load_yaml(self.config_path))

    @staticmethod
    def _load_yaml(path: Path) -> Dict[str, Any]:
        """
        Load a YAML file and return parsed content.

        Raises:
            ConfigError: If file doesn't exist or YAML parsing fails
        """
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError(
                f"Configuration must be a YAML mapping, got {type(content).__name__}"
            )
        return content

    @staticmethod
    def validate_dict(data: Dict[str, Any]) -> RunnerConfig:
        """
        Validate a raw mapping.

        Raises:
            ConfigError: With every validation problem listed
        """
        try:
            return RunnerConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(format_validation_error(e)) from e

    @property
    def config(self) -> RunnerConfig:
        assert self._validated_config is not None
        return self._validated_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Keys use the snake_case field names.

        Raises:
            ValueError: If key depth exceeds MAX_DOT_DEPTH

        Example:
            >>> loader.get("templates.logonly.piece")
            '{instance}_ARCH_%U'
        """
        keys = key.split(".")
        if len(keys) > self.MAX_DOT_DEPTH:
            raise ValueError(
                f"Dot notation depth exceeds maximum of {self.MAX_DOT_DEPTH} levels: {key}"
            )

        current: Union[BaseModel, Dict[str, Any], Any] = self._validated_config
        for part in keys:
            if isinstance(current, BaseModel):
                if part not in type(current).model_fields:
                    return default
                current = getattr(current, part)
            elif isinstance(current, dict):
                if part not in current:
                    return default
                current = current[part]
            else:
                return default
        return current
