"""Unit tests for asset_hierarchy_etl.rows (CSV reading + column mapping)."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from asset_hierarchy_etl.column_mapping import ColumnMapping
from asset_hierarchy_etl.rows import (
    AssetRow,
    apply_column_mapping,
    read_csv_file,
    read_csv_rows,
)
from asset_hierarchy_etl.shared import ColumnMappingValidationError, EmptyUploadError
from asset_hierarchy_etl.validator import validate_upload_data


def _csv(tmp_path: Path, text: str, name: str = "assets.csv") -> Path:
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# AssetRow.from_mapping
# ---------------------------------------------------------------------------

class TestAssetRowFromMapping:
    def test_trims_values(self):
        row = AssetRow.from_mapping(2, {"id": "  P1 ", "name": " Plant "})
        assert row.id == "P1"
        assert row.name == "Plant"

    def test_blank_becomes_none(self):
        row = AssetRow.from_mapping(2, {"id": "P1", "name": "Plant", "parent_id": "   "})
        assert row.parent_id is None

    def test_unknown_keys_ignored(self):
        row = AssetRow.from_mapping(5, {"id": "P1", "colour": "red"})
        assert row.row_number == 5
        assert not hasattr(row, "colour")


# ---------------------------------------------------------------------------
# apply_column_mapping
# ---------------------------------------------------------------------------

class TestApplyColumnMapping:
    def test_row_numbers_start_at_two(self):
        raw = [{"ID": "A"}, {"ID": "B"}]
        rows = apply_column_mapping(raw, {"id": "ID"})
        assert [r.row_number for r in rows] == [2, 3]

    def test_maps_headers_to_fields(self):
        raw = [{"Asset ID": "A1", "Asset Name": "Pump", "Parent": "P1"}]
        rows = apply_column_mapping(raw, {"id": "Asset ID", "name": "Asset Name", "parent_id": "Parent"})
        assert rows[0].id == "A1"
        assert rows[0].name == "Pump"
        assert rows[0].parent_id == "P1"

    def test_unmapped_fields_are_none(self):
        rows = apply_column_mapping([{"ID": "A", "Make": "Acme"}], {"id": "ID"})
        assert rows[0].make is None

    def test_empty_mapping_rejected(self):
        with pytest.raises(ColumnMappingValidationError, match="Column mappings are required"):
            apply_column_mapping([{"ID": "A"}], {})


# ---------------------------------------------------------------------------
# read_csv_file / read_csv_rows
# ---------------------------------------------------------------------------

class TestReadCsv:
    def test_strips_header_whitespace_and_bom(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_text("\ufeff id , name \nA,Pump\n", encoding="utf-8")
        headers, rows, line_numbers = read_csv_file(path)
        assert headers == ["id", "name"]
        assert rows == [{"id": "A", "name": "Pump"}]
        assert line_numbers == [2]

    def test_skips_empty_lines_keeps_blank_cells(self, tmp_path):
        path = tmp_path / "gaps.csv"
        path.write_text("id,name\nA,Pump\n\n,\nB,Valve\n", encoding="utf-8")
        _, rows, line_numbers = read_csv_file(path)
        assert [r["id"] for r in rows] == ["A", "", "B"]
        assert line_numbers == [2, 4, 5]

    def test_row_numbers_follow_file_lines(self, tmp_path):
        path = tmp_path / "assets.csv"
        path.write_text("id,name,parent_id\nP1,Plant,\n,,\nA1,,P1\n", encoding="utf-8")
        rows, _ = read_csv_rows(path)
        assert [(r.row_number, r.id) for r in rows] == [(2, "P1"), (3, None), (4, "A1")]

        result = validate_upload_data(rows, set(), {})
        assert [(e.row, e.field) for e in result.errors] == [(3, "id"), (3, "name"), (4, "name")]

    def test_row_numbers_after_empty_line(self, tmp_path):
        path = tmp_path / "assets.csv"
        path.write_text("id,name\nP1,Plant\n\nA1,\n", encoding="utf-8")
        rows, _ = read_csv_rows(path)
        assert [r.row_number for r in rows] == [2, 4]

    def test_auto_detects_mapping(self, tmp_path):
        path = _csv(tmp_path, """\
            Asset_ID,Name,Parent
            P1,Plant,
            A1,Area,P1
        """)
        rows, mapping = read_csv_rows(path)
        assert mapping.source == "auto_detect"
        assert [(r.id, r.parent_id) for r in rows] == [("P1", None), ("A1", "P1")]

    def test_explicit_mapping(self, tmp_path):
        path = _csv(tmp_path, """\
            Tag,Title
            T1,Tank
        """)
        mapping = ColumnMapping(columns={"id": "Tag", "name": "Title"}, version="v1")
        rows, used = read_csv_rows(path, mapping)
        assert used is mapping
        assert rows[0].id == "T1"
        assert rows[0].name == "Tank"

    def test_header_only_file_is_empty(self, tmp_path):
        path = _csv(tmp_path, "id,name\n")
        with pytest.raises(EmptyUploadError, match="File is empty"):
            read_csv_rows(path)

    def test_mapping_to_missing_header(self, tmp_path):
        path = _csv(tmp_path, """\
            id,name
            A,Pump
        """)
        mapping = ColumnMapping(columns={"id": "id", "name": "name", "make": "Make"})
        with pytest.raises(ColumnMappingValidationError) as exc_info:
            read_csv_rows(path, mapping)
        assert "Column mappings invalid" in str(exc_info.value)
        assert "'Make'" in str(exc_info.value)

    def test_undetectable_id_column(self, tmp_path):
        path = _csv(tmp_path, """\
            tag,name
            A,Pump
        """)
        with pytest.raises(ColumnMappingValidationError, match="'id'"):
            read_csv_rows(path)
