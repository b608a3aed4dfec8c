"""asset_hierarchy_etl.orchestrator

Runs one upload end to end for a tenant:

    fetch existing state → validate → categorize → insert new
    → update changed → recalculate levels (only if anything was written)

Transaction model:
  - The caller owns the connection and its transaction (non-autocommit).
  - The existing-state read runs under the `existing_state` SAVEPOINT.
  - All writes happen under the `asset_upload` SAVEPOINT.  Any failure rolls
    back to it and is re-raised as UploadProcessingError, so no partial tree
    is ever left behind in the caller's transaction.
  - Validation failures are returned as data, never raised.

Notifications are a side channel: a notifier that raises is logged and
ignored, and never changes the outcome of the upload.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import psycopg
from psycopg import errors as pg_errors

from asset_hierarchy_etl.bulk_writer import (
    INSERT_CHUNK_SIZE,
    UPDATE_CHUNK_SIZE,
    bulk_insert_assets,
    bulk_update_assets,
)
from asset_hierarchy_etl.existing_state import ExistingState, fetch_existing_state
from asset_hierarchy_etl.levels import recalculate_hierarchy_levels
from asset_hierarchy_etl.reconcile import categorize_assets
from asset_hierarchy_etl.rows import AssetRow
from asset_hierarchy_etl.shared import UploadProcessingError
from asset_hierarchy_etl.validator import (
    AssetRecord,
    ValidationResult,
    generate_error_report,
    validate_upload_data,
)

log = logging.getLogger(__name__)

LONG_RUNNING_THRESHOLD_SECONDS = 30.0

# (status, file_name, details) with status 'success' or 'error'.
Notifier = Callable[[str, str, dict[str, Any]], None]


# ---------------------------------------------------------------------------
# Settings + results
# ---------------------------------------------------------------------------

@dataclass
class UploadSettings:
    insert_chunk_size: int = INSERT_CHUNK_SIZE
    update_chunk_size: int = UPDATE_CHUNK_SIZE
    long_running_threshold_seconds: float = LONG_RUNNING_THRESHOLD_SECONDS


@dataclass
class UploadResult:
    created_count: int
    updated_count: int
    unchanged_count: int
    total_processed: int
    processing_time: str
    resurrected_count: int = 0
    levels_recalculated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "createdCount": self.created_count,
            "updatedCount": self.updated_count,
            "unchangedCount": self.unchanged_count,
            "totalProcessed": self.total_processed,
            "processingTime": self.processing_time,
        }


@dataclass
class UploadOutcome:
    validation: ValidationResult
    result: UploadResult | None = None
    error_report: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


# ---------------------------------------------------------------------------
# Error summaries
# ---------------------------------------------------------------------------

def summarize_system_error(exc: BaseException) -> str:
    """Turn a store failure into a message an uploader can act on."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, pg_errors.UniqueViolation):
        if "external_id" in message:
            return "Duplicate asset IDs found. Each asset must have a unique ID."
        return "Duplicate values found. Check that all required fields have unique values."
    if isinstance(exc, pg_errors.ForeignKeyViolation):
        return "Invalid parent reference found. Ensure all parent IDs exist in the file or database."
    if isinstance(exc, pg_errors.QueryCanceled) or "timeout" in message.lower():
        return "Processing timeout. Try uploading a smaller file or split large files into multiple uploads."
    return f"Processing error: {message.splitlines()[0]}. Contact support if this persists."


# ---------------------------------------------------------------------------
# Write phase
# ---------------------------------------------------------------------------

def _format_elapsed(seconds: float) -> str:
    return f"{seconds:.1f}s"


def process_asset_upload(
    conn: psycopg.Connection,
    tenant_id: str,
    asset_data: Sequence[AssetRecord],
    existing: ExistingState,
    settings: UploadSettings | None = None,
) -> UploadResult:
    """Apply validated records for `tenant_id` under a savepoint.

    Raises:
        UploadProcessingError: Any write failed; nothing from this upload
            remains in the caller's transaction.
    """
    settings = settings or UploadSettings()
    started = time.perf_counter()

    conn.execute("SAVEPOINT asset_upload")
    try:
        categorized = categorize_assets(asset_data, existing.by_external_id)

        new_keys = bulk_insert_assets(
            conn,
            categorized.new_assets,
            tenant_id,
            existing.internal_ids,
            chunk_size=settings.insert_chunk_size,
        )
        updated_count = bulk_update_assets(
            conn,
            categorized.changed_assets,
            tenant_id,
            existing.internal_ids,
            new_keys=new_keys,
            chunk_size=settings.update_chunk_size,
        )

        levels: dict[uuid.UUID, int] = {}
        if new_keys or updated_count:
            levels = recalculate_hierarchy_levels(conn, tenant_id)

        conn.execute("RELEASE SAVEPOINT asset_upload")
    except Exception as exc:
        conn.execute("ROLLBACK TO SAVEPOINT asset_upload")
        log.exception("Asset upload for tenant %s rolled back", tenant_id)
        raise UploadProcessingError(summarize_system_error(exc), str(exc)) from exc

    return UploadResult(
        created_count=len(new_keys),
        updated_count=updated_count,
        unchanged_count=categorized.unchanged_count,
        total_processed=len(asset_data),
        processing_time=_format_elapsed(time.perf_counter() - started),
        resurrected_count=categorized.resurrected_count,
        levels_recalculated=len(levels),
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def build_notification(status: str, file_name: str, details: dict[str, Any]) -> tuple[str, str]:
    """Return (title, message) for an upload notification."""
    if status == "success":
        parts = []
        if details.get("created_count"):
            parts.append(f"{details['created_count']} created")
        if details.get("updated_count"):
            parts.append(f"{details['updated_count']} updated")
        if details.get("unchanged_count"):
            parts.append(f"{details['unchanged_count']} unchanged")
        summary = ", ".join(parts) if parts else "No changes"
        return (
            "Asset Upload Complete",
            f'Your file "{file_name}" was processed successfully. {summary}.',
        )
    error_summary = details.get("error_summary") or "Please check the upload status for details."
    return (
        "Asset Upload Failed",
        f'Your file "{file_name}" failed to process. {error_summary}',
    )


class DbNotifier:
    """Notifier that records messages in asset_upload_notification.

    Writes on the upload's own connection inside a savepoint; a failed insert
    is rolled back, logged, and counted in `failed`.
    """

    def __init__(self, conn: psycopg.Connection, tenant_id: str, user_id: str | None) -> None:
        self._conn = conn
        self._tenant_id = tenant_id
        self._user_id = user_id
        self.sent = 0
        self.failed = 0

    def __call__(self, status: str, file_name: str, details: dict[str, Any]) -> None:
        if create_upload_notification(
            self._conn, self._tenant_id, self._user_id, status, file_name, details
        ):
            self.sent += 1
        else:
            self.failed += 1


def create_upload_notification(
    conn: psycopg.Connection,
    tenant_id: str,
    user_id: str | None,
    status: str,
    file_name: str,
    details: dict[str, Any],
) -> bool:
    """Insert an upload notification; return False (and log) on failure."""
    title, message = build_notification(status, file_name, details)
    conn.execute("SAVEPOINT upload_notification")
    try:
        conn.execute(
            """
            INSERT INTO asset_upload_notification
              (tenant_id, user_id, title, message, notification_type, is_read)
            VALUES (%s, %s, %s, %s, 'system', false)
            """,
            (tenant_id, user_id, title, message),
        )
        conn.execute("RELEASE SAVEPOINT upload_notification")
    except psycopg.Error:
        conn.execute("ROLLBACK TO SAVEPOINT upload_notification")
        log.exception("Failed to create upload notification for tenant %s", tenant_id)
        return False
    return True


def _notify(notifier: Notifier | None, status: str, file_name: str, details: dict[str, Any]) -> None:
    if notifier is None:
        return
    try:
        notifier(status, file_name, details)
    except Exception:
        log.exception("Upload notifier raised; ignoring")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_asset_upload(
    conn: psycopg.Connection,
    tenant_id: str,
    rows: Sequence[AssetRow],
    settings: UploadSettings | None = None,
    notifier: Notifier | None = None,
    file_name: str = "upload.csv",
) -> UploadOutcome:
    """Validate `rows` against the tenant's persisted hierarchy and apply them.

    Returns an UploadOutcome whose `result` is None when validation failed.

    Raises:
        UploadProcessingError: The write phase failed and was rolled back.
    """
    settings = settings or UploadSettings()
    started = time.perf_counter()

    conn.execute("SAVEPOINT existing_state")
    try:
        existing = fetch_existing_state(conn, tenant_id)
        conn.execute("RELEASE SAVEPOINT existing_state")
    except psycopg.Error as exc:
        # Leave the connection usable so a notifier can still write on it.
        conn.execute("ROLLBACK TO SAVEPOINT existing_state")
        log.exception("Loading existing assets for tenant %s failed", tenant_id)
        error = UploadProcessingError(summarize_system_error(exc), str(exc))
        _notify(notifier, "error", file_name, {"error_summary": error.user_message})
        raise error from exc

    validation = validate_upload_data(rows, existing.active_ids, existing.parent_map)
    if not validation.valid:
        report = generate_error_report(validation.errors, validation.total_rows)
        log.info(
            "Upload for tenant %s rejected: %d validation error(s)",
            tenant_id, validation.error_count,
        )
        _notify(notifier, "error", file_name, {"error_summary": report.splitlines()[0]})
        return UploadOutcome(validation=validation, error_report=report)

    try:
        result = process_asset_upload(conn, tenant_id, validation.asset_data, existing, settings)
    except UploadProcessingError as exc:
        _notify(notifier, "error", file_name, {"error_summary": exc.user_message})
        raise

    log.info(
        "Processed %d assets for tenant %s: %d created, %d updated, %d unchanged in %s",
        result.total_processed, tenant_id,
        result.created_count, result.updated_count, result.unchanged_count,
        result.processing_time,
    )
    if time.perf_counter() - started > settings.long_running_threshold_seconds:
        _notify(notifier, "success", file_name, {
            "created_count": result.created_count,
            "updated_count": result.updated_count,
            "unchanged_count": result.unchanged_count,
        })
    return UploadOutcome(validation=validation, result=result)
