"""asset_hierarchy_etl.shared

Shared types used across the import pipeline.
Includes the exception hierarchy, RowError, RunCounters, the lazy
row-error CSV writer, and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from asset_hierarchy_etl.normalize import truncate_value


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AssetImportError(Exception):
    """Base class for asset import failures."""


class EmptyUploadError(AssetImportError):
    """Raised when an upload file contains no data rows."""


class ColumnMappingValidationError(AssetImportError, ValueError):
    """Raised when a column mapping is malformed or does not fit the file."""


class UploadProcessingError(AssetImportError):
    """Raised when the write phase fails and the upload was rolled back.

    `original_message` keeps the store's message for diagnostics;
    `user_message` is the summarized text shown to uploaders.
    """

    def __init__(self, user_message: str, original_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.original_message = original_message


# ---------------------------------------------------------------------------
# RowError
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowError:
    """One validation problem.  `row` is None for errors spanning rows (cycles)."""

    row: int | None
    field: str | None
    value: str | None
    message: str

    @classmethod
    def create(
        cls,
        row: int | None,
        field: str | None,
        value: Any,
        message: str,
    ) -> "RowError":
        return cls(row=row, field=field, value=truncate_value(value), message=message)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# ErrorReportWriter
# ---------------------------------------------------------------------------

class ErrorReportWriter:
    """Lazy-open CSV writer for row-level validation errors."""

    FIELDNAMES = ["row", "field", "value", "message"]

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, error: RowError) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=self.FIELDNAMES)
            self._writer.writeheader()
        self._writer.writerow(error.to_dict())
        self._fh.flush()

    def write_all(self, errors: list[RowError]) -> None:
        for error in errors:
            self.write(error)

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    rows_rejected: int = 0
    validation_errors: int = 0
    cycle_errors: int = 0
    assets_created: int = 0
    assets_updated: int = 0
    assets_unchanged: int = 0
    assets_resurrected: int = 0
    levels_recalculated: int = 0
    db_phase_errors: int = 0
    notifications_sent: int = 0
    notification_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_rejected": self.rows_rejected,
            "validation_errors": self.validation_errors,
            "cycle_errors": self.cycle_errors,
            "assets_created": self.assets_created,
            "assets_updated": self.assets_updated,
            "assets_unchanged": self.assets_unchanged,
            "assets_resurrected": self.assets_resurrected,
            "levels_recalculated": self.levels_recalculated,
            "db_phase_errors": self.db_phase_errors,
            "notifications_sent": self.notifications_sent,
            "notification_errors": self.notification_errors,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    tenant_id: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "tenant_id": tenant_id,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
