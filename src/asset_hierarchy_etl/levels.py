"""asset_hierarchy_etl.levels

Recomputes hierarchy depth for a whole tenant after structural writes.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from typing import Iterable

import psycopg

log = logging.getLogger(__name__)


def compute_levels(
    links: Iterable[tuple[uuid.UUID, uuid.UUID | None]],
) -> dict[uuid.UUID, int]:
    """Breadth-first depth from the roots for (internal_id, parent_internal_id) pairs.

    Roots are level 0.  Assets not reachable from a root (parent outside the
    set) also get level 0.
    """
    links = list(links)
    children: dict[uuid.UUID | None, list[uuid.UUID]] = {}
    for internal_id, parent_id in links:
        children.setdefault(parent_id, []).append(internal_id)

    levels: dict[uuid.UUID, int] = {}
    queue = deque((root_id, 0) for root_id in children.get(None, []))
    while queue:
        internal_id, level = queue.popleft()
        if internal_id in levels:
            continue
        levels[internal_id] = level
        for child_id in children.get(internal_id, []):
            queue.append((child_id, level + 1))

    for internal_id, _ in links:
        levels.setdefault(internal_id, 0)
    return levels


def group_by_level(levels: dict[uuid.UUID, int]) -> dict[int, list[uuid.UUID]]:
    groups: dict[int, list[uuid.UUID]] = {}
    for internal_id, level in levels.items():
        groups.setdefault(level, []).append(internal_id)
    return groups


def recalculate_hierarchy_levels(
    conn: psycopg.Connection,
    tenant_id: str,
) -> dict[uuid.UUID, int]:
    """Recompute and persist `level` for every active asset of the tenant.

    One UPDATE per distinct level value.  Caller manages transaction.
    """
    links = conn.execute(
        """
        SELECT internal_id, parent_internal_id
        FROM asset_hierarchy
        WHERE tenant_id = %s AND deleted_at IS NULL
        """,
        (tenant_id,),
    ).fetchall()
    if not links:
        return {}

    levels = compute_levels((row[0], row[1]) for row in links)
    for level, ids in sorted(group_by_level(levels).items()):
        conn.execute(
            """
            UPDATE asset_hierarchy
            SET level = %s
            WHERE tenant_id = %s AND internal_id = ANY(%s) AND level IS DISTINCT FROM %s
            """,
            (level, tenant_id, ids, level),
        )
    log.debug("Recalculated levels for %d assets of tenant %s", len(levels), tenant_id)
    return levels
