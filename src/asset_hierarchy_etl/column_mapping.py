"""asset_hierarchy_etl.column_mapping

Column mappings tie the headers of an uploaded file to the recognized
asset fields.

Responsibilities:
  - Load and validate YAML mapping files from config/column_mappings/*.yml
  - Check a mapping against the headers actually present in a file
  - Auto-detect a mapping from headers when no file is supplied
  - Hash YAML content for traceability in run reports

Usage:
    from pathlib import Path
    from asset_hierarchy_etl.column_mapping import load_column_mapping

    mapping = load_column_mapping(Path("config/column_mappings/default.yml"))
    problems = validate_column_mapping(mapping.columns, headers)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from asset_hierarchy_etl.normalize import normalize_header, trim
from asset_hierarchy_etl.shared import ColumnMappingValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RECOGNIZED_FIELDS = (
    "id",
    "name",
    "description",
    "cmms_internal_id",
    "functional_location",
    "functional_location_desc",
    "functional_location_long_desc",
    "maintenance_plant",
    "cmms_system",
    "object_type",
    "system_status",
    "make",
    "manufacturer",
    "serial_number",
    "parent_id",
)

REQUIRED_FIELDS = ("id", "name")

REQUIRED_YAML_KEYS = frozenset({"version", "columns"})

# Header aliases tried in order during auto-detection.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "asset_id", "assetid"),
    "name": ("name", "asset_name", "assetname", "functional_location_desc"),
    "parent_id": ("parent_id", "parentid", "parent", "parent_functional_location"),
    "description": ("description", "desc", "asset_description"),
    "cmms_internal_id": ("cmms_internal_id", "cmmsinternalid", "cmms_id"),
    "functional_location": ("functional_location", "functionallocation", "func_loc"),
    "functional_location_desc": ("functional_location_desc", "func_loc_desc"),
    "functional_location_long_desc": ("functional_location_long_desc", "long_desc"),
    "maintenance_plant": ("maintenance_plant", "plant"),
    "cmms_system": ("cmms_system", "system"),
    "object_type": ("object_type", "type", "asset_type"),
    "system_status": ("system_status", "status"),
    "make": ("make",),
    "manufacturer": ("manufacturer",),
    "serial_number": ("serial_number", "serialnumber", "serial"),
}

# Columns that may stand in for a missing id column when their values are unique.
ID_FALLBACK_FIELDS = ("cmms_internal_id", "functional_location")


# ---------------------------------------------------------------------------
# ColumnMapping dataclass
# ---------------------------------------------------------------------------

@dataclass
class ColumnMapping:
    """Validated field → header mapping, loaded from YAML or auto-detected."""

    columns: dict[str, str]
    version: str = "auto"
    yaml_hash: str | None = None
    source: str = "auto_detect"
    raw_yaml: str = field(repr=False, default="")


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_column_mapping(yaml_path: Path) -> ColumnMapping:
    """Load, validate, and return a ColumnMapping from a YAML file.

    Raises:
        ColumnMappingValidationError: If the file is not valid YAML or does not
            match the schema.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    try:
        data: dict[str, Any] = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ColumnMappingValidationError(f"Invalid YAML in {yaml_path}: {exc}") from exc
    validate_mapping_document(data)
    columns = {
        system_field: str(header).strip()
        for system_field, header in data["columns"].items()
        if header is not None and str(header).strip()
    }
    return ColumnMapping(
        columns=columns,
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        source=str(yaml_path),
        raw_yaml=raw,
    )


def validate_mapping_document(data: Any) -> None:
    """Raise ColumnMappingValidationError if a parsed YAML document is malformed.

    Validates:
      - Required top-level keys present
      - columns is a mapping of recognized field names to header strings
      - id and name are mapped
    """
    if not isinstance(data, dict):
        raise ColumnMappingValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ColumnMappingValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    columns = data.get("columns")
    if not isinstance(columns, dict) or not columns:
        raise ColumnMappingValidationError("'columns' must be a non-empty mapping.")

    unknown = sorted(set(columns) - set(RECOGNIZED_FIELDS))
    if unknown:
        raise ColumnMappingValidationError(f"Unknown system fields in 'columns': {unknown}")

    for system_field, header in columns.items():
        if header is not None and not isinstance(header, (str, int)):
            raise ColumnMappingValidationError(
                f"Column for field '{system_field}' must be a header string, got {header!r}."
            )

    for required in REQUIRED_FIELDS:
        if not trim(str(columns.get(required) or "")):
            raise ColumnMappingValidationError(f"Required field '{required}' is not mapped.")


def validate_column_mapping(
    columns: Mapping[str, str],
    file_headers: Iterable[str],
) -> list[str]:
    """Return a list of problems with `columns` for a file with `file_headers`.

    An empty list means the mapping can be applied.
    """
    errors: list[str] = []
    for required in REQUIRED_FIELDS:
        if not columns.get(required):
            errors.append(f"Required field '{required}' is not mapped to any column")

    header_set = set(file_headers)
    for system_field, file_column in columns.items():
        if system_field not in RECOGNIZED_FIELDS:
            errors.append(f"Unknown field '{system_field}' in column mapping")
            continue
        if file_column and file_column not in header_set:
            errors.append(
                f"Mapped column '{file_column}' for field '{system_field}' does not exist in file"
            )
    return errors


# ---------------------------------------------------------------------------
# Auto-detection
# ---------------------------------------------------------------------------

def auto_detect_column_mapping(
    headers: list[str],
    rows: list[dict[str, str]],
) -> ColumnMapping:
    """Guess a mapping from header names.

    Each field takes the first header that matches one of its aliases
    (case-insensitive).  With no id column, a cmms_internal_id or
    functional_location column is promoted to id if its values are unique.
    """
    by_normalized: dict[str, str] = {}
    for header in headers:
        key = normalize_header(header)
        if key is not None and key not in by_normalized:
            by_normalized[key] = header

    columns: dict[str, str] = {}
    for system_field, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in by_normalized:
                columns[system_field] = by_normalized[alias]
                break

    if "id" not in columns:
        for candidate in ID_FALLBACK_FIELDS:
            header = columns.get(candidate)
            if not header:
                continue
            values = [trim(r.get(header)) for r in rows]
            present = [v for v in values if v]
            if len(present) == len(rows) and len(set(present)) == len(rows):
                columns["id"] = header
                break

    return ColumnMapping(columns=columns)
