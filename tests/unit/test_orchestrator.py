"""Unit tests for asset_hierarchy_etl.orchestrator.

The connection is a MagicMock; store access is patched out.
"""

from __future__ import annotations

from unittest.mock import MagicMock, call, patch

import pytest
from psycopg import errors as pg_errors

from asset_hierarchy_etl.existing_state import ExistingState
from asset_hierarchy_etl.orchestrator import (
    UploadResult,
    UploadSettings,
    _notify,
    build_notification,
    process_asset_upload,
    run_asset_upload,
    summarize_system_error,
)
from asset_hierarchy_etl.rows import AssetRow
from asset_hierarchy_etl.shared import UploadProcessingError
from asset_hierarchy_etl.validator import build_asset_records

MODULE = "asset_hierarchy_etl.orchestrator"


def _rows():
    return [
        AssetRow(row_number=2, id="P1", name="Plant"),
        AssetRow(row_number=3, id="A1", name="Area", parent_id="P1"),
    ]


def _result(**overrides):
    values = dict(
        created_count=2, updated_count=0, unchanged_count=0,
        total_processed=2, processing_time="0.1s",
    )
    values.update(overrides)
    return UploadResult(**values)


# ---------------------------------------------------------------------------
# summarize_system_error
# ---------------------------------------------------------------------------

class TestSummarizeSystemError:
    def test_unique_violation_on_external_id(self):
        exc = pg_errors.UniqueViolation(
            'duplicate key value violates unique constraint "asset_hierarchy_tenant_external_id_active_key"'
        )
        assert summarize_system_error(exc) == "Duplicate asset IDs found. Each asset must have a unique ID."

    def test_other_unique_violation(self):
        exc = pg_errors.UniqueViolation("duplicate key value violates unique constraint \"x_key\"")
        assert summarize_system_error(exc).startswith("Duplicate values found")

    def test_foreign_key_violation(self):
        exc = pg_errors.ForeignKeyViolation("insert violates foreign key constraint")
        assert summarize_system_error(exc).startswith("Invalid parent reference found")

    def test_timeout(self):
        assert summarize_system_error(pg_errors.QueryCanceled("canceling statement")).startswith(
            "Processing timeout"
        )
        assert summarize_system_error(RuntimeError("lock timeout exceeded")).startswith(
            "Processing timeout"
        )

    def test_generic_uses_first_line(self):
        message = summarize_system_error(RuntimeError("disk full\nDETAIL: more"))
        assert message == "Processing error: disk full. Contact support if this persists."


# ---------------------------------------------------------------------------
# build_notification / _notify
# ---------------------------------------------------------------------------

class TestBuildNotification:
    def test_success_summary(self):
        title, message = build_notification(
            "success", "assets.csv",
            {"created_count": 3, "updated_count": 0, "unchanged_count": 7},
        )
        assert title == "Asset Upload Complete"
        assert message == 'Your file "assets.csv" was processed successfully. 3 created, 7 unchanged.'

    def test_success_no_changes(self):
        _, message = build_notification("success", "a.csv", {})
        assert message.endswith("No changes.")

    def test_failure(self):
        title, message = build_notification("error", "a.csv", {"error_summary": "Boom."})
        assert title == "Asset Upload Failed"
        assert message == 'Your file "a.csv" failed to process. Boom.'

    def test_failure_without_summary(self):
        _, message = build_notification("error", "a.csv", {})
        assert "Please check the upload status" in message


class TestNotify:
    def test_none_notifier(self):
        _notify(None, "success", "a.csv", {})

    def test_notifier_exception_swallowed(self):
        notifier = MagicMock(side_effect=RuntimeError("mail down"))
        _notify(notifier, "error", "a.csv", {"error_summary": "x"})
        notifier.assert_called_once_with("error", "a.csv", {"error_summary": "x"})


# ---------------------------------------------------------------------------
# process_asset_upload
# ---------------------------------------------------------------------------

class TestProcessAssetUpload:
    @patch(f"{MODULE}.recalculate_hierarchy_levels", return_value={})
    @patch(f"{MODULE}.bulk_update_assets", return_value=0)
    @patch(f"{MODULE}.bulk_insert_assets", side_effect=RuntimeError("connection lost"))
    def test_failure_rolls_back_savepoint(self, mock_insert, mock_update, mock_levels):
        conn = MagicMock()
        with pytest.raises(UploadProcessingError) as exc_info:
            process_asset_upload(conn, "t1", build_asset_records(_rows()), ExistingState())

        assert exc_info.value.original_message == "connection lost"
        assert exc_info.value.user_message.startswith("Processing error: connection lost")
        assert conn.execute.call_args_list[0] == call("SAVEPOINT asset_upload")
        assert conn.execute.call_args_list[-1] == call("ROLLBACK TO SAVEPOINT asset_upload")
        mock_update.assert_not_called()
        mock_levels.assert_not_called()

    @patch(f"{MODULE}.recalculate_hierarchy_levels")
    @patch(f"{MODULE}.bulk_update_assets", return_value=0)
    @patch(f"{MODULE}.bulk_insert_assets", return_value={})
    def test_no_writes_skips_level_recalculation(self, mock_insert, mock_update, mock_levels):
        conn = MagicMock()
        result = process_asset_upload(conn, "t1", [], ExistingState())
        mock_levels.assert_not_called()
        assert result.created_count == 0
        assert result.total_processed == 0
        assert conn.execute.call_args_list[-1] == call("RELEASE SAVEPOINT asset_upload")

    @patch(f"{MODULE}.recalculate_hierarchy_levels", return_value={"x": 0, "y": 1})
    @patch(f"{MODULE}.bulk_update_assets", return_value=0)
    @patch(f"{MODULE}.bulk_insert_assets", return_value={"P1": "k1", "A1": "k2"})
    def test_chunk_sizes_passed_through(self, mock_insert, mock_update, mock_levels):
        conn = MagicMock()
        settings = UploadSettings(insert_chunk_size=7, update_chunk_size=3)
        result = process_asset_upload(conn, "t1", build_asset_records(_rows()), ExistingState(), settings)

        assert mock_insert.call_args.kwargs["chunk_size"] == 7
        assert mock_update.call_args.kwargs["chunk_size"] == 3
        assert result.created_count == 2
        assert result.levels_recalculated == 2


# ---------------------------------------------------------------------------
# run_asset_upload
# ---------------------------------------------------------------------------

class TestRunAssetUpload:
    @patch(f"{MODULE}.process_asset_upload")
    @patch(f"{MODULE}.fetch_existing_state", return_value=ExistingState())
    def test_validation_failure_notifies_and_skips_writes(self, mock_fetch, mock_process):
        notifier = MagicMock()
        rows = [AssetRow(row_number=2, id="A", name=None)]

        outcome = run_asset_upload(MagicMock(), "t1", rows, notifier=notifier, file_name="bad.csv")

        assert not outcome.succeeded
        assert outcome.error_report.startswith("Validation failed: 1 error(s) found in 1 rows")
        mock_process.assert_not_called()
        status, file_name, details = notifier.call_args.args
        assert (status, file_name) == ("error", "bad.csv")
        assert details["error_summary"].startswith("Validation failed")

    @patch(f"{MODULE}.process_asset_upload", return_value=_result())
    @patch(f"{MODULE}.fetch_existing_state", return_value=ExistingState())
    def test_fast_success_not_notified(self, mock_fetch, mock_process):
        notifier = MagicMock()
        settings = UploadSettings(long_running_threshold_seconds=1e9)
        outcome = run_asset_upload(MagicMock(), "t1", _rows(), settings=settings, notifier=notifier)
        assert outcome.succeeded
        notifier.assert_not_called()

    @patch(f"{MODULE}.process_asset_upload", return_value=_result())
    @patch(f"{MODULE}.fetch_existing_state", return_value=ExistingState())
    def test_long_running_success_notified(self, mock_fetch, mock_process):
        notifier = MagicMock()
        settings = UploadSettings(long_running_threshold_seconds=-1.0)
        run_asset_upload(MagicMock(), "t1", _rows(), settings=settings, notifier=notifier)
        status, _, details = notifier.call_args.args
        assert status == "success"
        assert details["created_count"] == 2

    @patch(f"{MODULE}.process_asset_upload")
    @patch(f"{MODULE}.fetch_existing_state", return_value=ExistingState())
    def test_processing_error_notifies_and_reraises(self, mock_fetch, mock_process):
        mock_process.side_effect = UploadProcessingError("Processing timeout.", "statement timeout")
        notifier = MagicMock()
        with pytest.raises(UploadProcessingError):
            run_asset_upload(MagicMock(), "t1", _rows(), notifier=notifier)
        assert notifier.call_args.args[2] == {"error_summary": "Processing timeout."}

    @patch(f"{MODULE}.process_asset_upload", return_value=_result())
    @patch(f"{MODULE}.fetch_existing_state", return_value=ExistingState())
    def test_failing_notifier_does_not_change_outcome(self, mock_fetch, mock_process):
        notifier = MagicMock(side_effect=RuntimeError("boom"))
        settings = UploadSettings(long_running_threshold_seconds=-1.0)
        outcome = run_asset_upload(MagicMock(), "t1", _rows(), settings=settings, notifier=notifier)
        assert outcome.succeeded
        assert outcome.result.created_count == 2

    @patch(f"{MODULE}.fetch_existing_state", side_effect=pg_errors.QueryCanceled("canceling statement"))
    def test_fetch_failure_wrapped_and_notified(self, mock_fetch):
        conn = MagicMock()
        notifier = MagicMock()
        with pytest.raises(UploadProcessingError) as exc_info:
            run_asset_upload(conn, "t1", _rows(), notifier=notifier, file_name="big.csv")

        assert exc_info.value.user_message.startswith("Processing timeout")
        notifier.assert_called_once_with(
            "error", "big.csv", {"error_summary": exc_info.value.user_message}
        )
        assert conn.execute.call_args_list == [
            call("SAVEPOINT existing_state"),
            call("ROLLBACK TO SAVEPOINT existing_state"),
        ]
