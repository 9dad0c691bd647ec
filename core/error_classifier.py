"""
Error classifier for backup engine logs.

Scans a log for engine-internal (ORA-nnnnn) and tool-specific
(RMAN-nnnnn) error codes, counts each distinct code, and maps it to a
severity, description and remedy. Codes missing from the table are still
reported, with a generic remedy. The log is only read, never modified.
"""

import re
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional

from core.models import ErrorRecord
from lib.logger import get_logger

ERROR_CODE_PATTERN = re.compile(r"(?<![A-Za-z0-9])(?:ORA|RMAN)-\d{5}(?!\d)")

UNMAPPED_SEVERITY = "unknown"
UNMAPPED_DESCRIPTION = "Unmapped error code"
UNMAPPED_REMEDY = (
    "Unmapped error, consult vendor documentation, the alert log and the "
    "full engine output."
)


class ErrorMapping(NamedTuple):
    severity: str
    description: str
    remedy: str


ERROR_MAPPINGS: Dict[str, ErrorMapping] = {
    # Engine-internal
    "ORA-00257": ErrorMapping(
        "critical",
        "Archive log destination full or quota exceeded",
        "Free space in the archive destination or increase its quota.",
    ),
    "ORA-01031": ErrorMapping(
        "critical",
        "Insufficient privileges",
        "Run as the software owner with operating-system authentication.",
    ),
    "ORA-01034": ErrorMapping(
        "critical",
        "Instance not available",
        "Start the instance or check the instance name and home.",
    ),
    "ORA-19502": ErrorMapping(
        "error",
        "Write error on backup piece",
        "Check filesystem health and free space at the backup destination.",
    ),
    "ORA-19505": ErrorMapping(
        "error",
        "Failed to create backup file",
        "Check disk path, permissions and free space in the backup destination.",
    ),
    "ORA-19511": ErrorMapping(
        "error",
        "I/O error in backup operation on media",
        "Review media manager or storage logs and I/O health.",
    ),
    "ORA-19514": ErrorMapping(
        "error",
        "Media manager error",
        "Check media manager configuration and logs.",
    ),
    "ORA-19804": ErrorMapping(
        "error",
        "Cannot reclaim space from recovery area limit",
        "Delete obsolete backups or increase the recovery area size.",
    ),
    "ORA-19809": ErrorMapping(
        "error",
        "Limit exceeded for recovery files",
        "Increase the recovery area size or back up and delete archived logs.",
    ),
    "ORA-27026": ErrorMapping(
        "error",
        "File not open or write error",
        "Ensure the file is openable and not locked; check permissions.",
    ),
    "ORA-27037": ErrorMapping(
        "error",
        "Write error on backup file",
        "Verify filesystem health, mount options and permissions.",
    ),
    "ORA-27040": ErrorMapping(
        "error",
        "Unable to open file (operating-system error)",
        "Confirm the directory exists and permissions allow access.",
    ),
    # Tool-specific
    "RMAN-00569": ErrorMapping(
        "info",
        "Error message stack follows",
        "Banner line; the codes after it carry the cause.",
    ),
    "RMAN-00571": ErrorMapping(
        "info",
        "Error message stack separator",
        "Banner line; the codes after it carry the cause.",
    ),
    "RMAN-01009": ErrorMapping(
        "error",
        "Syntax error in command script",
        "Review the generated plan file for invalid directives.",
    ),
    "RMAN-03002": ErrorMapping(
        "error",
        "Failure of command",
        "Inspect the following codes in the log for the failing step.",
    ),
    "RMAN-03009": ErrorMapping(
        "error",
        "Failure during backup command on a channel",
        "Inspect the engine output for the failing step and channel.",
    ),
    "RMAN-03030": ErrorMapping(
        "error",
        "Backup component not found",
        "Validate target files and database components.",
    ),
    "RMAN-03031": ErrorMapping(
        "error",
        "Could not allocate channel",
        "Reduce channels or fix the device configuration.",
    ),
    "RMAN-06002": ErrorMapping(
        "error",
        "No backup in the control file",
        "Crosscheck backups and ensure control file records are intact.",
    ),
    "RMAN-06010": ErrorMapping(
        "error",
        "DBID mismatch or DBID not set",
        "Set the correct DBID or connect to the right target.",
    ),
    "RMAN-06059": ErrorMapping(
        "critical",
        "Expected archived log not found",
        "Crosscheck archived logs; recoverability may be compromised.",
    ),
    "RMAN-08137": ErrorMapping(
        "warning",
        "Archived log not deleted, still needed by standby or capture",
        "Usually transient; verify standby apply is progressing.",
    ),
}


class _Occurrence:
    __slots__ = ("count", "first_line")

    def __init__(self, first_line: str):
        self.count = 0
        self.first_line = first_line


def scan_lines(lines: Iterable[str]) -> "OrderedDict[str, _Occurrence]":
    """Count code tokens in order of first appearance."""
    found: "OrderedDict[str, _Occurrence]" = OrderedDict()
    for line in lines:
        for token in ERROR_CODE_PATTERN.findall(line):
            occurrence = found.get(token)
            if occurrence is None:
                occurrence = found[token] = _Occurrence(line.strip())
            occurrence.count += 1
    return found


class ErrorClassifier:
    """
    Classifies engine logs.

    Example:
        >>> records = ErrorClassifier().classify(Path("ORCL_full.log"))
        >>> [(r.code, r.occurrence_count) for r in records]
        [('RMAN-03009', 2), ('ORA-19511', 1)]
    """

    def __init__(self, mappings: Optional[Dict[str, ErrorMapping]] = None):
        self.mappings = dict(ERROR_MAPPINGS if mappings is None else mappings)
        self.logger = get_logger()

    def _record(self, code: str, occurrence: _Occurrence) -> ErrorRecord:
        mapping = self.mappings.get(code)
        if mapping is None:
            return ErrorRecord(
                code=code,
                occurrence_count=occurrence.count,
                first_context_line=occurrence.first_line,
                severity=UNMAPPED_SEVERITY,
                description=UNMAPPED_DESCRIPTION,
                remedy=UNMAPPED_REMEDY,
            )
        return ErrorRecord(
            code=code,
            occurrence_count=occurrence.count,
            first_context_line=occurrence.first_line,
            severity=mapping.severity,
            description=mapping.description,
            remedy=mapping.remedy,
        )

    def classify_text(self, text: str) -> List[ErrorRecord]:
        """Classify log content already in memory."""
        found = scan_lines(text.splitlines())
        return [self._record(code, occ) for code, occ in found.items()]

    def classify(self, log_path: Path) -> List[ErrorRecord]:
        """
        Classify a log file.

        Undecodable bytes are replaced rather than failing the scan. A
        missing or unreadable log yields no records and a warning.

        Returns:
            One record per distinct code, in order of first appearance;
            empty when the log is clean
        """
        try:
            with open(log_path, "r", encoding="utf-8", errors="replace") as f:
                found = scan_lines(f)
        except OSError as e:
            self.logger.warning(f"Cannot read log {log_path} for classification: {e}")
            return []

        records = [self._record(code, occ) for code, occ in found.items()]
        if records:
            codes = ", ".join(f"{r.code}x{r.occurrence_count}" for r in records)
            self.logger.warning(f"Classified {len(records)} error code(s) in {log_path}: {codes}")
        else:
            self.logger.debug(f"No error codes in {log_path}")
        return records


def format_error_report(phase: str, log_path: Path, records: List[ErrorRecord]) -> str:
    """Text block for the .err artifact; empty string when records is empty."""
    if not records:
        return ""
    lines = [f"=== {phase} errors ({log_path}) ==="]
    for record in records:
        lines.append(
            f"[{phase}] {record.code} x{record.occurrence_count} "
            f"severity={record.severity} | {record.description} | "
            f"Action: {record.remedy}"
        )
        lines.append(f"    first: {record.first_context_line}")
    return "\n".join(lines) + "\n"
