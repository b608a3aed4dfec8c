"""asset_hierarchy_etl.cli

Command-line entry point: read an asset CSV, validate it against the
tenant's persisted hierarchy, and apply it in one transaction.

    asset-import --db-dsn ... --tenant-id acme --csv-path assets.csv \
        [--column-mapping config/column_mappings/default.yml] [--dry-run]

Exit codes: 0 on success, 1 on validation failure or any fatal error.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from asset_hierarchy_etl.column_mapping import load_column_mapping
from asset_hierarchy_etl.orchestrator import (
    DbNotifier,
    UploadOutcome,
    UploadSettings,
    run_asset_upload,
)
from asset_hierarchy_etl.rows import read_csv_rows
from asset_hierarchy_etl.shared import (
    ColumnMappingValidationError,
    EmptyUploadError,
    ErrorReportWriter,
    RunCounters,
    UploadProcessingError,
    write_run_report,
)


def _record_outcome(outcome: UploadOutcome, counters: RunCounters, errors: ErrorReportWriter) -> None:
    validation = outcome.validation
    if not validation.valid:
        errors.write_all(validation.errors)
        counters.validation_errors = validation.error_count
        counters.rows_rejected = len({e.row for e in validation.errors if e.row is not None})
        counters.cycle_errors = sum(1 for e in validation.errors if e.row is None)
        return
    result = outcome.result
    counters.assets_created = result.created_count
    counters.assets_updated = result.updated_count
    counters.assets_unchanged = result.unchanged_count
    counters.assets_resurrected = result.resurrected_count
    counters.levels_recalculated = result.levels_recalculated


@click.command()
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
@click.option("--tenant-id", required=True, help="Tenant (company) that owns the hierarchy")
@click.option("--csv-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Asset CSV to upload")
@click.option(
    "--column-mapping",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML column mapping; headers are auto-detected when omitted",
)
@click.option("--insert-chunk-size", default=500, type=click.IntRange(min=1), show_default=True)
@click.option("--update-chunk-size", default=100, type=click.IntRange(min=1), show_default=True)
@click.option(
    "--long-running-threshold-seconds",
    default=30.0,
    type=float,
    show_default=True,
    help="Notify on success only when processing takes longer than this",
)
@click.option("--user-id", default=None, help="Uploader to notify")
@click.option("--notify/--no-notify", default=False, show_default=True, help="Record upload notifications")
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/asset_upload_errors.csv",
    show_default=True,
    help="CSV of row-level validation errors",
)
@click.option("--reports-dir", default="./artifacts/reports", show_default=True, type=click.Path(file_okay=False))
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False, help="Debug logging")
def main(
    db_dsn: str,
    tenant_id: str,
    csv_path: str,
    column_mapping: str | None,
    insert_chunk_size: int,
    update_chunk_size: int,
    long_running_threshold_seconds: float,
    user_id: str | None,
    notify: bool,
    dry_run: bool,
    rejects_path: str,
    reports_dir: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Bulk asset hierarchy upload."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()
    errors = ErrorReportWriter(Path(rejects_path))
    csv_file = Path(csv_path)
    settings = UploadSettings(
        insert_chunk_size=insert_chunk_size,
        update_chunk_size=update_chunk_size,
        long_running_threshold_seconds=long_running_threshold_seconds,
    )

    click.echo(f"[{run_id}] Starting asset upload for tenant {tenant_id} (dry_run={dry_run})")

    # Pre-scan
    try:
        mapping = load_column_mapping(Path(column_mapping)) if column_mapping else None
        rows, mapping = read_csv_rows(csv_file, mapping)
    except (EmptyUploadError, ColumnMappingValidationError) as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    counters.rows_read = len(rows)
    if mapping.yaml_hash is None:
        counters.warnings.append(f"column mapping auto-detected: {sorted(mapping.columns)}")
    click.echo(
        f"[{run_id}] Pre-scan: {counters.rows_read} rows read "
        f"(column mapping: {mapping.source}, version {mapping.version})"
    )

    source_paths = {
        "csv_path": str(csv_file),
        "column_mapping": mapping.source,
        "column_mapping_hash": mapping.yaml_hash or "",
    }

    notifier: DbNotifier | None = None

    def _finish_report() -> None:
        if notifier is not None:
            counters.notifications_sent = notifier.sent
            counters.notification_errors = notifier.failed
        report_path = write_run_report(
            run_id, started_at, tenant_id, dry_run, source_paths, counters,
            reports_dir=Path(reports_dir),
        )
        click.echo(f"[{run_id}] Run report: {report_path}")

    # DB phase
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        notifier = DbNotifier(conn, tenant_id, user_id) if notify else None
        try:
            outcome = run_asset_upload(
                conn, tenant_id, rows,
                settings=settings,
                notifier=notifier,
                file_name=csv_file.name,
            )
        except UploadProcessingError as exc:
            counters.db_phase_errors += 1
            # Asset writes are already rolled back; only a notification may remain.
            if dry_run:
                conn.rollback()
            else:
                conn.commit()
            click.echo(f"[{run_id}] FATAL: {exc.user_message}", err=True)
            click.echo(f"[{run_id}] Store error: {exc.original_message}", err=True)
            _finish_report()
            sys.exit(1)

        _record_outcome(outcome, counters, errors)

        if not outcome.succeeded:
            if dry_run:
                conn.rollback()
            else:
                conn.commit()
            click.echo(outcome.error_report, err=True)
            click.echo(f"[{run_id}] Row errors written to {rejects_path}", err=True)
            _finish_report()
            sys.exit(1)

        result = outcome.result
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            conn.commit()

        click.echo(
            f"[{run_id}] Processed {result.total_processed} assets: "
            f"{result.created_count} created, {result.updated_count} updated, "
            f"{result.unchanged_count} unchanged. Time: {result.processing_time}"
        )
        _finish_report()
    except Exception as e:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: run failed with DB error: {e}", err=True)
        sys.exit(1)
    finally:
        conn.close()
        errors.close()


if __name__ == "__main__":
    main()
