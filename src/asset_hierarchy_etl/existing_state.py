"""asset_hierarchy_etl.existing_state

Loads everything persisted for a tenant in one query and builds the lookup
maps that validation, categorization and writing all share.

Soft-deleted assets are loaded too: they are not valid parents, but a row
that reuses their identifier resurrects them instead of inserting a twin.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import psycopg

from asset_hierarchy_etl.validator import COMPARABLE_FIELDS

_SELECT_COLUMNS = ", ".join(f"a.{name}" for name in COMPARABLE_FIELDS)


@dataclass
class ExistingAsset:
    internal_id: uuid.UUID
    external_id: str
    parent_external_id: str | None
    values: dict[str, Any]
    is_soft_deleted: bool = False


@dataclass
class ExistingState:
    """Per-invocation view of a tenant's persisted hierarchy."""

    active_ids: set[str] = field(default_factory=set)
    by_external_id: dict[str, ExistingAsset] = field(default_factory=dict)
    internal_ids: dict[str, uuid.UUID] = field(default_factory=dict)
    parent_map: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.by_external_id)


def build_existing_state(assets: list[ExistingAsset]) -> ExistingState:
    """Index assets by external id; an active row wins over a deleted one."""
    state = ExistingState()
    for asset in assets:
        current = state.by_external_id.get(asset.external_id)
        if current is not None and not current.is_soft_deleted and asset.is_soft_deleted:
            continue
        state.by_external_id[asset.external_id] = asset
        state.internal_ids[asset.external_id] = asset.internal_id

    for external_id, asset in state.by_external_id.items():
        if asset.is_soft_deleted:
            continue
        state.active_ids.add(external_id)
        if asset.parent_external_id:
            state.parent_map[external_id] = asset.parent_external_id
    return state


def fetch_existing_state(conn: psycopg.Connection, tenant_id: str) -> ExistingState:
    """Read every asset of `tenant_id`, active and soft-deleted.

    Caller manages transaction.
    """
    rows = conn.execute(
        f"""
        SELECT a.internal_id, a.external_id, p.external_id AS parent_external_id,
               a.deleted_at IS NOT NULL AS is_soft_deleted,
               {_SELECT_COLUMNS}
        FROM asset_hierarchy a
        LEFT JOIN asset_hierarchy p ON p.internal_id = a.parent_internal_id
        WHERE a.tenant_id = %s
        ORDER BY a.upload_order NULLS LAST, a.created_at
        """,
        (tenant_id,),
    ).fetchall()

    assets = [
        ExistingAsset(
            internal_id=row[0],
            external_id=row[1],
            parent_external_id=row[2],
            is_soft_deleted=bool(row[3]),
            values=dict(zip(COMPARABLE_FIELDS, row[4:])),
        )
        for row in rows
    ]
    return build_existing_state(assets)
