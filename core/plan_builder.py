"""
Plan builder for backup engine command scripts.

A plan is a list of typed directives rendered to text only when it is
written for the engine. Building is a pure function of the job, the
resolved home, the day tag and the configured templates: the same inputs
always give byte-identical text.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from core.config_loader import KindTemplate, RunnerConfig
from core.exceptions import InvalidParallelism
from core.models import BackupJob, BackupKind, RetentionPolicy
from lib.logger import get_logger

INDENT = "  "


class BackupTarget(str, Enum):
    """What a backup directive copies."""

    DATABASE = "DATABASE"
    CONTROLFILE = "CURRENT CONTROLFILE"
    SPFILE = "SPFILE"
    ARCHIVELOG = "ARCHIVELOG ALL NOT BACKED UP"


# Directives


@dataclass(frozen=True)
class Directive:
    """Base class; subclasses render one line of engine script."""

    def render(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class ConnectTarget(Directive):
    """Connect with operating-system authentication."""

    def render(self) -> str:
        return "CONNECT TARGET /;"


@dataclass(frozen=True)
class ConfigureOptimization(Directive):
    enabled: bool

    def render(self) -> str:
        return f"CONFIGURE BACKUP OPTIMIZATION {'ON' if self.enabled else 'OFF'};"


@dataclass(frozen=True)
class RunBlockOpen(Directive):
    def render(self) -> str:
        return "RUN {"


@dataclass(frozen=True)
class RunBlockClose(Directive):
    def render(self) -> str:
        return "}"


@dataclass(frozen=True)
class AllocateChannel(Directive):
    channel: str
    max_piece_size: str

    def render(self) -> str:
        return (
            f"{INDENT}ALLOCATE CHANNEL {self.channel} DEVICE TYPE DISK "
            f"MAXPIECESIZE {self.max_piece_size};"
        )


@dataclass(frozen=True)
class ReleaseChannel(Directive):
    channel: str

    def render(self) -> str:
        return f"{INDENT}RELEASE CHANNEL {self.channel};"


@dataclass(frozen=True)
class BackupDirective(Directive):
    target: BackupTarget
    format: str
    compressed: bool = False
    incremental_level: Optional[int] = None
    tag: Optional[str] = None

    def render(self) -> str:
        qualifier = "AS COMPRESSED BACKUPSET" if self.compressed else "AS BACKUPSET"
        parts = ["BACKUP", qualifier]
        if self.incremental_level is not None:
            parts.append(f"INCREMENTAL LEVEL {self.incremental_level}")
        parts.append(self.target.value)
        parts.append(f"FORMAT '{self.format}'")
        if self.tag:
            parts.append(f"TAG '{self.tag}'")
        return INDENT + " ".join(parts) + ";"


@dataclass(frozen=True)
class ConfigureRetention(Directive):
    recovery_window_days: int

    def render(self) -> str:
        return (
            "CONFIGURE RETENTION POLICY TO RECOVERY WINDOW OF "
            f"{self.recovery_window_days} DAYS;"
        )


@dataclass(frozen=True)
class ReportObsolete(Directive):
    def render(self) -> str:
        return "REPORT OBSOLETE;"


@dataclass(frozen=True)
class DeleteObsolete(Directive):
    def render(self) -> str:
        return "DELETE NOPROMPT OBSOLETE;"


@dataclass(frozen=True)
class ExitEngine(Directive):
    def render(self) -> str:
        return "EXIT;"


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered directives plus the directories their pieces land in."""

    name: str
    directives: Tuple[Directive, ...]
    output_directories: Tuple[Path, ...] = ()

    def render(self) -> str:
        return "\n".join(d.render() for d in self.directives) + "\n"

    def of_type(self, directive_type: type) -> List[Directive]:
        return [d for d in self.directives if isinstance(d, directive_type)]

    def write(self, path: Path) -> Path:
        """Write the rendered plan to a file."""
        path.write_text(self.render(), encoding="utf-8")
        return path


def validate_parallelism(value) -> int:
    """
    Return value if it is a positive integer.

    Raises:
        InvalidParallelism: For booleans, non-integers and values below 1
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParallelism(
            f"Parallelism must be a positive integer, got {value!r}"
        )
    if value < 1:
        raise InvalidParallelism(f"Parallelism must be at least 1, got {value}")
    return value


class PlanBuilder:
    """
    Builds backup and retention plans.

    Example:
        >>> builder = PlanBuilder(config)
        >>> plan = builder.build(job, Path("/u01/app/oracle/19c"), "2025-11-06")
        >>> print(plan.render())
    """

    def __init__(self, config: RunnerConfig):
        self.config = config
        self.logger = get_logger()

    def template_for(self, kind: BackupKind) -> KindTemplate:
        return getattr(self.config.templates, kind.value)

    def _expand(self, template: str, job: BackupJob, date_tag: str) -> str:
        return template.format(
            base_directory=str(self.config.base_directory).rstrip("/"),
            instance=job.target_instance,
            date_tag=date_tag,
            date_compact=date_tag.replace("-", ""),
        )

    def output_directory(self, job: BackupJob, date_tag: str) -> Path:
        """Day-partitioned directory for a job's pieces."""
        return Path(self._expand(self.template_for(job.kind).directory, job, date_tag))

    def _backup_directives(
        self, job: BackupJob, directory: Path, date_tag: str
    ) -> List[BackupDirective]:
        template = self.template_for(job.kind)

        def fmt(piece: str) -> str:
            return str(directory / self._expand(piece, job, date_tag))

        def tag(value: Optional[str]) -> Optional[str]:
            return self._expand(value, job, date_tag) if value else None

        if job.kind is BackupKind.LOGONLY:
            return [
                BackupDirective(
                    target=BackupTarget.ARCHIVELOG,
                    format=fmt(template.piece),
                    compressed=job.compression,
                    tag=tag(template.tag),
                )
            ]

        level = 0 if job.kind is BackupKind.FULL else 1
        return [
            BackupDirective(
                target=BackupTarget.DATABASE,
                format=fmt(template.piece),
                compressed=job.compression,
                incremental_level=level,
                tag=tag(template.tag),
            ),
            BackupDirective(
                target=BackupTarget.CONTROLFILE,
                format=fmt(template.controlfile_piece),
                compressed=job.compression,
                tag=tag(template.controlfile_tag),
            ),
            BackupDirective(
                target=BackupTarget.SPFILE,
                format=fmt(template.spfile_piece),
                compressed=job.compression,
                tag=tag(template.spfile_tag),
            ),
        ]

    def build(self, job: BackupJob, home_dir: Path, date_tag: str) -> ExecutionPlan:
        """
        Build the backup plan for a job.

        Args:
            job: The requested backup
            home_dir: Resolved installation home of the instance
            date_tag: Calendar-day partition label

        Raises:
            InvalidParallelism: Before any directive is generated
        """
        parallelism = validate_parallelism(job.parallelism)
        channels = [f"ch{i}" for i in range(1, parallelism + 1)]
        directory = self.output_directory(job, date_tag)

        directives: List[Directive] = [ConnectTarget()]
        if self.config.backup_optimization:
            directives.append(ConfigureOptimization(enabled=True))
        directives.append(RunBlockOpen())
        directives.extend(AllocateChannel(c, job.max_piece_size) for c in channels)
        directives.extend(self._backup_directives(job, directory, date_tag))
        directives.extend(ReleaseChannel(c) for c in channels)
        directives.append(RunBlockClose())
        directives.append(ExitEngine())

        self.logger.debug(
            f"Built {job.kind.value} plan for {job.target_instance} "
            f"(home {home_dir}, {parallelism} channel(s), "
            f"compression={'on' if job.compression else 'off'}, day {date_tag})"
        )
        return ExecutionPlan(
            name=f"{job.target_instance}_{job.kind.value}",
            directives=tuple(directives),
            output_directories=(directory,),
        )

    def build_retention(self, instance: str, policy: RetentionPolicy) -> ExecutionPlan:
        """Plan that applies the recovery window and deletes obsolete backups."""
        directives = (
            ConnectTarget(),
            ConfigureRetention(policy.recovery_window_days),
            ReportObsolete(),
            DeleteObsolete(),
            ExitEngine(),
        )
        return ExecutionPlan(name=f"{instance}_retention", directives=directives)
