"""asset_hierarchy_etl.rows

Reads an upload file into AssetRow records, one per data line, with the
recognized columns pulled out through a column mapping.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from asset_hierarchy_etl.column_mapping import (
    ColumnMapping,
    RECOGNIZED_FIELDS,
    auto_detect_column_mapping,
    validate_column_mapping,
)
from asset_hierarchy_etl.normalize import trim
from asset_hierarchy_etl.shared import ColumnMappingValidationError, EmptyUploadError

# Data rows start on line 2 of the file (line 1 is the header).
FIRST_DATA_ROW = 2


@dataclass(frozen=True)
class AssetRow:
    """One upload row.  Every recognized column is an optional trimmed string."""

    row_number: int
    id: str | None = None
    name: str | None = None
    description: str | None = None
    cmms_internal_id: str | None = None
    functional_location: str | None = None
    functional_location_desc: str | None = None
    functional_location_long_desc: str | None = None
    maintenance_plant: str | None = None
    cmms_system: str | None = None
    object_type: str | None = None
    system_status: str | None = None
    make: str | None = None
    manufacturer: str | None = None
    serial_number: str | None = None
    parent_id: str | None = None

    @classmethod
    def from_mapping(cls, row_number: int, values: Mapping[str, str | None]) -> "AssetRow":
        """Build a row from a field → value mapping, trimming every value.

        Keys outside the recognized columns are ignored.
        """
        kwargs = {name: trim(values.get(name)) for name in RECOGNIZED_FIELDS}
        return cls(row_number=row_number, **kwargs)


def apply_column_mapping(
    raw_rows: list[dict[str, str]],
    columns: Mapping[str, str],
    row_numbers: Sequence[int] | None = None,
) -> list[AssetRow]:
    """Map raw header-keyed rows onto AssetRow records.

    `row_numbers` gives the file line of each raw row; without it rows are
    numbered consecutively from FIRST_DATA_ROW.  Unmapped fields and mapped
    columns missing from a row become None.
    """
    if not columns:
        raise ColumnMappingValidationError("Column mappings are required")
    if row_numbers is None:
        row_numbers = range(FIRST_DATA_ROW, FIRST_DATA_ROW + len(raw_rows))

    rows: list[AssetRow] = []
    for row_number, raw in zip(row_numbers, raw_rows):
        values: dict[str, str | None] = {}
        for system_field, file_column in columns.items():
            if file_column and file_column in raw:
                cell = raw[file_column]
                values[system_field] = str(cell) if cell is not None else None
        rows.append(AssetRow.from_mapping(row_number, values))
    return rows


def read_csv_file(csv_path: Path) -> tuple[list[str], list[dict[str, str]], list[int]]:
    """Return (headers, rows, line_numbers) for a CSV file.

    Header keys are whitespace-stripped.  Empty lines are skipped, but a row
    of blank cells (",,") is kept so that validation reports it.
    line_numbers[i] is the file line on which rows[i] ends.
    """
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        headers = [h.strip() for h in (reader.fieldnames or [])]
        raw_rows: list[dict[str, str]] = []
        line_numbers: list[int] = []
        for raw in reader:
            raw_rows.append({(k or "").strip(): v for k, v in raw.items() if k is not None})
            line_numbers.append(reader.line_num)
    return headers, raw_rows, line_numbers


def read_csv_rows(
    csv_path: Path,
    column_mapping: ColumnMapping | None = None,
) -> tuple[list[AssetRow], ColumnMapping]:
    """Read a CSV upload into AssetRows numbered by their line in the file.

    With no mapping, one is auto-detected from the headers.  Returns the rows
    together with the mapping actually applied.

    Raises:
        EmptyUploadError: The file has no data rows.
        ColumnMappingValidationError: The mapping does not fit the headers.
    """
    headers, raw_rows, line_numbers = read_csv_file(csv_path)
    if not raw_rows:
        raise EmptyUploadError("File is empty or contains no valid data rows.")

    mapping = column_mapping or auto_detect_column_mapping(headers, raw_rows)
    problems = validate_column_mapping(mapping.columns, headers)
    if problems:
        raise ColumnMappingValidationError(
            "Column mappings invalid:\n" + "\n".join(problems)
        )
    return apply_column_mapping(raw_rows, mapping.columns, line_numbers), mapping
