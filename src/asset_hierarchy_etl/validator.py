"""asset_hierarchy_etl.validator

Structural validation of an asset upload before anything is written.

Checks run in order, each collecting its own errors:
  1. id present and unique within the file
  2. name present
  3. parent_id resolvable (in the file, or an existing active asset)
  4. no cycles across file + persisted parent links (only when 3 is clean)

Errors come back as data (ValidationResult.errors), sorted by row with
row-less cycle errors last.  AssetRecords are built only when the error list
is empty.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from asset_hierarchy_etl.rows import AssetRow
from asset_hierarchy_etl.shared import RowError

MAX_ERRORS_IN_REPORT = 20

DEFAULT_MAINTENANCE_PLANT = "Default Plant"
DEFAULT_CMMS_SYSTEM = "Default System"
DEFAULT_OBJECT_TYPE = "Equipment"
DEFAULT_SYSTEM_STATUS = "Active"

# Descriptive fields compared for change detection, in column order.
COMPARABLE_FIELDS = (
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
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class AssetRecord:
    """A validated asset, defaults applied, ready for persistence.

    internal_id is None for new assets and carries the persisted key for
    changed ones.
    """

    external_id: str
    name: str
    upload_order: int
    parent_external_id: str | None = None
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
    internal_id: uuid.UUID | None = None

    def comparable_values(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in COMPARABLE_FIELDS}


@dataclass
class ValidationResult:
    valid: bool
    errors: list[RowError] = field(default_factory=list)
    asset_data: list[AssetRecord] = field(default_factory=list)
    total_rows: int = 0

    @property
    def error_count(self) -> int:
        return len(self.errors)


# ---------------------------------------------------------------------------
# Check 1: id presence + uniqueness
# ---------------------------------------------------------------------------

def validate_id_uniqueness(rows: Sequence[AssetRow]) -> list[RowError]:
    """Missing ids, plus one error per occurrence of every duplicated id."""
    errors: list[RowError] = []
    occurrences: dict[str, list[int]] = {}

    for row in rows:
        if not row.id:
            errors.append(RowError.create(
                row.row_number, "id", row.id,
                "ID is required but missing or empty",
            ))
            continue
        occurrences.setdefault(row.id, []).append(row.row_number)

    for asset_id, row_numbers in occurrences.items():
        if len(row_numbers) < 2:
            continue
        for row_number in row_numbers:
            others = [r for r in row_numbers if r != row_number]
            plural = "s" if len(others) > 1 else ""
            errors.append(RowError.create(
                row_number, "id", asset_id,
                f"Duplicate ID - this value also appears on row{plural} "
                f"{', '.join(str(r) for r in others)}",
            ))
    return errors


# ---------------------------------------------------------------------------
# Check 2: required fields
# ---------------------------------------------------------------------------

def validate_required_fields(rows: Sequence[AssetRow]) -> list[RowError]:
    return [
        RowError.create(row.row_number, "name", row.name, "Name is required but missing or empty")
        for row in rows
        if not row.name
    ]


# ---------------------------------------------------------------------------
# Check 3: parent references
# ---------------------------------------------------------------------------

def validate_parent_references(
    rows: Sequence[AssetRow],
    existing_active_ids: Iterable[str],
) -> tuple[list[RowError], dict[str, str]]:
    """Return (errors, parent_map) where parent_map is child id → parent id.

    parent_map only holds rows that have an id and a resolvable parent.
    """
    existing = set(existing_active_ids)
    upload_ids = {row.id for row in rows if row.id}

    errors: list[RowError] = []
    parent_map: dict[str, str] = {}
    for row in rows:
        parent_id = row.parent_id
        if not parent_id:
            continue
        if parent_id not in upload_ids and parent_id not in existing:
            errors.append(RowError.create(
                row.row_number, "parent_id", parent_id,
                f'Parent asset "{parent_id}" does not exist in the file or database',
            ))
        elif row.id:
            parent_map[row.id] = parent_id
    return errors, parent_map


# ---------------------------------------------------------------------------
# Check 4: cycles
# ---------------------------------------------------------------------------

def find_cycle(start: str, parent_links: Mapping[str, str]) -> list[str] | None:
    """Walk ancestors of `start`; return the cycle path if one is reached.

    The path is closed, e.g. ['A', 'B', 'C', 'A'].  Each node has at most one
    parent, so the walk is a single chain tracked with an explicit path list.
    """
    path: list[str] = []
    position: dict[str, int] = {}
    node: str | None = start
    while node:
        if node in position:
            return path[position[node]:] + [node]
        position[node] = len(path)
        path.append(node)
        node = parent_links.get(node)
    return None


def detect_cyclic_dependencies(
    parent_map: Mapping[str, str],
    existing_parent_map: Mapping[str, str],
) -> list[RowError]:
    """One error per distinct cycle reachable from an uploaded child.

    Upload links override persisted links for the same child.  Cycles are
    deduplicated by their member set, so the same loop entered from
    different rows is reported once.
    """
    full_links = dict(existing_parent_map)
    full_links.update(parent_map)

    errors: list[RowError] = []
    seen: set[tuple[str, ...]] = set()
    for child_id in parent_map:
        cycle = find_cycle(child_id, full_links)
        if cycle is None:
            continue
        key = tuple(sorted(set(cycle)))
        if key in seen:
            continue
        seen.add(key)
        errors.append(RowError.create(
            None, None, None,
            f"Cyclic dependency detected: {' → '.join(cycle)}",
        ))
    return errors


# ---------------------------------------------------------------------------
# AssetRecord construction
# ---------------------------------------------------------------------------

def build_asset_records(rows: Sequence[AssetRow]) -> list[AssetRecord]:
    """Apply field defaults; upload_order is the 0-based position in `rows`."""
    records: list[AssetRecord] = []
    for idx, row in enumerate(rows):
        asset_id = row.id
        name = row.name
        records.append(AssetRecord(
            external_id=asset_id,
            name=name,
            upload_order=idx,
            parent_external_id=row.parent_id or None,
            description=row.description or None,
            cmms_internal_id=row.cmms_internal_id or asset_id,
            functional_location=row.functional_location or asset_id,
            functional_location_desc=row.functional_location_desc or name,
            functional_location_long_desc=(
                row.functional_location_long_desc or row.functional_location_desc or name
            ),
            maintenance_plant=row.maintenance_plant or DEFAULT_MAINTENANCE_PLANT,
            cmms_system=row.cmms_system or DEFAULT_CMMS_SYSTEM,
            object_type=row.object_type or DEFAULT_OBJECT_TYPE,
            system_status=row.system_status or DEFAULT_SYSTEM_STATUS,
            make=row.make or None,
            manufacturer=row.manufacturer or None,
            serial_number=row.serial_number or None,
        ))
    return records


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _error_sort_key(error: RowError) -> tuple[bool, int]:
    return (error.row is None, error.row or 0)


def validate_upload_data(
    rows: Sequence[AssetRow],
    existing_active_ids: Iterable[str],
    existing_parent_map: Mapping[str, str],
) -> ValidationResult:
    """Run all structural checks and build asset records if they pass."""
    all_errors: list[RowError] = []
    all_errors.extend(validate_id_uniqueness(rows))
    all_errors.extend(validate_required_fields(rows))

    parent_errors, parent_map = validate_parent_references(rows, existing_active_ids)
    all_errors.extend(parent_errors)

    if not parent_errors:
        all_errors.extend(detect_cyclic_dependencies(parent_map, existing_parent_map))

    all_errors.sort(key=_error_sort_key)

    asset_data = build_asset_records(rows) if not all_errors else []
    return ValidationResult(
        valid=not all_errors,
        errors=all_errors,
        asset_data=asset_data,
        total_rows=len(rows),
    )


# ---------------------------------------------------------------------------
# Human-readable report
# ---------------------------------------------------------------------------

def generate_error_report(
    errors: Sequence[RowError],
    total_rows: int,
    max_errors: int = MAX_ERRORS_IN_REPORT,
) -> str | None:
    """Multi-line summary of validation errors, or None when there are none."""
    if not errors:
        return None

    lines = [f"Validation failed: {len(errors)} error(s) found in {total_rows} rows", ""]
    for error in errors[:max_errors]:
        if error.row:
            line = f"Row {error.row}"
            if error.field:
                line += f" [{error.field}]"
            if error.value:
                line += f' "{error.value}"'
            lines.append(f"{line}: {error.message}")
        else:
            lines.append(f"• {error.message}")

    if len(errors) > max_errors:
        lines.append("")
        lines.append(f"... and {len(errors) - max_errors} more error(s).")

    lines.append("")
    lines.append("Please fix these issues and re-upload the file.")
    return "\n".join(lines)
