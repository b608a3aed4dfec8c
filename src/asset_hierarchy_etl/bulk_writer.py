"""asset_hierarchy_etl.bulk_writer

Chunked writes of new and changed assets.

The parent_internal_id foreign key is checked per statement, so both
operations write in dependency order: a parent row always exists before a
child that points at it.  Caller manages transaction.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterator, Mapping, Sequence, TypeVar

import psycopg

from asset_hierarchy_etl.reconcile import sort_by_dependency_order
from asset_hierarchy_etl.validator import COMPARABLE_FIELDS, AssetRecord

log = logging.getLogger(__name__)

INSERT_CHUNK_SIZE = 500
UPDATE_CHUNK_SIZE = 100

T = TypeVar("T")

_INSERT_SQL = f"""
    INSERT INTO asset_hierarchy
      (internal_id, tenant_id, external_id, parent_internal_id,
       {", ".join(COMPARABLE_FIELDS)},
       level, upload_order, deleted_at)
    VALUES (%s, %s, %s, %s, {", ".join(["%s"] * len(COMPARABLE_FIELDS))}, 0, %s, NULL)
"""

_UPDATE_SQL = f"""
    UPDATE asset_hierarchy SET
      parent_internal_id = %s,
      {", ".join(f"{name} = %s" for name in COMPARABLE_FIELDS)},
      upload_order = %s,
      deleted_at = NULL,
      updated_at = now()
    WHERE internal_id = %s AND tenant_id = %s
"""


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def resolve_parent_internal_id(
    record: AssetRecord,
    batch_keys: Mapping[str, uuid.UUID],
    persisted_keys: Mapping[str, uuid.UUID],
) -> uuid.UUID | None:
    """Parent surrogate key: this batch's new keys first, then persisted ones."""
    parent_id = record.parent_external_id
    if not parent_id:
        return None
    if parent_id in batch_keys:
        return batch_keys[parent_id]
    return persisted_keys.get(parent_id)


def bulk_insert_assets(
    conn: psycopg.Connection,
    new_assets: Sequence[AssetRecord],
    tenant_id: str,
    existing_internal_ids: Mapping[str, uuid.UUID],
    chunk_size: int = INSERT_CHUNK_SIZE,
) -> dict[str, uuid.UUID]:
    """Insert new assets; return external id → generated internal id."""
    if not new_assets:
        return {}

    ordered = sort_by_dependency_order(new_assets)
    new_keys = {record.external_id: uuid.uuid4() for record in ordered}

    params = [
        (
            new_keys[record.external_id],
            tenant_id,
            record.external_id,
            resolve_parent_internal_id(record, new_keys, existing_internal_ids),
            *(getattr(record, name) for name in COMPARABLE_FIELDS),
            record.upload_order,
        )
        for record in ordered
    ]

    with conn.cursor() as cur:
        for n, chunk in enumerate(chunked(params, chunk_size), start=1):
            cur.executemany(_INSERT_SQL, chunk)
            log.debug("Inserted chunk %d (%d assets) for tenant %s", n, len(chunk), tenant_id)
    return new_keys


def bulk_update_assets(
    conn: psycopg.Connection,
    changed_assets: Sequence[AssetRecord],
    tenant_id: str,
    internal_ids: Mapping[str, uuid.UUID],
    new_keys: Mapping[str, uuid.UUID] | None = None,
    chunk_size: int = UPDATE_CHUNK_SIZE,
) -> int:
    """Update changed assets in place, clearing any soft-delete marker.

    `internal_ids` is the persisted external → internal mapping; `new_keys`
    holds assets inserted earlier in the same upload, which a changed asset
    may have adopted as its parent.
    """
    if not changed_assets:
        return 0

    ordered = sort_by_dependency_order(changed_assets)
    batch_keys = dict(new_keys or {})

    updated = 0
    for n, chunk in enumerate(chunked(ordered, chunk_size), start=1):
        for record in chunk:
            if record.internal_id is None:
                raise ValueError(
                    f"changed asset {record.external_id!r} has no internal_id"
                )
            conn.execute(
                _UPDATE_SQL,
                (
                    resolve_parent_internal_id(record, batch_keys, internal_ids),
                    *(getattr(record, name) for name in COMPARABLE_FIELDS),
                    record.upload_order,
                    record.internal_id,
                    tenant_id,
                ),
            )
            updated += 1
        log.debug("Updated chunk %d (%d assets) for tenant %s", n, len(chunk), tenant_id)
    return updated
