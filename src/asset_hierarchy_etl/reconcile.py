"""asset_hierarchy_etl.reconcile

Diffs validated upload records against persisted state and orders them so
that parents are always written before their children.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence, TypeVar

from asset_hierarchy_etl.existing_state import ExistingAsset
from asset_hierarchy_etl.normalize import values_equal
from asset_hierarchy_etl.validator import COMPARABLE_FIELDS, AssetRecord

log = logging.getLogger(__name__)

T = TypeVar("T", bound=AssetRecord)


@dataclass
class CategorizedAssets:
    new_assets: list[AssetRecord] = field(default_factory=list)
    changed_assets: list[AssetRecord] = field(default_factory=list)
    unchanged_count: int = 0
    resurrected_count: int = 0


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------

def has_changes(record: AssetRecord, existing: ExistingAsset) -> bool:
    """True when `record` differs from what is stored.

    A soft-deleted match always counts as changed so that it is restored.
    """
    if existing.is_soft_deleted:
        return True
    if not values_equal(record.parent_external_id, existing.parent_external_id):
        return True
    for name in COMPARABLE_FIELDS:
        if not values_equal(getattr(record, name), existing.values.get(name)):
            return True
    return False


def categorize_assets(
    asset_data: Sequence[AssetRecord],
    existing_by_external_id: Mapping[str, ExistingAsset],
) -> CategorizedAssets:
    """Split records into new, changed (with internal_id set) and unchanged."""
    result = CategorizedAssets()
    for record in asset_data:
        existing = existing_by_external_id.get(record.external_id)
        if existing is None:
            result.new_assets.append(record)
        elif has_changes(record, existing):
            result.changed_assets.append(
                dataclasses.replace(record, internal_id=existing.internal_id)
            )
            if existing.is_soft_deleted:
                result.resurrected_count += 1
        else:
            result.unchanged_count += 1

    log.info(
        "Categorized %d assets: %d new, %d changed, %d unchanged",
        len(asset_data),
        len(result.new_assets),
        len(result.changed_assets),
        result.unchanged_count,
    )
    return result


# ---------------------------------------------------------------------------
# Dependency order
# ---------------------------------------------------------------------------

def sort_by_dependency_order(assets: Sequence[T]) -> list[T]:
    """Stable topological sort: every parent in the batch precedes its children.

    Assets are taken in input order; before emitting one, its not-yet-emitted
    ancestors inside the batch are emitted, oldest first.  Unrelated assets
    keep their relative order.  Parents outside the batch are ignored.

    Raises:
        ValueError: The batch contains a parent cycle.
    """
    by_id = {asset.external_id: asset for asset in assets}
    emitted: set[str] = set()
    ordered: list[T] = []

    for asset in assets:
        if asset.external_id in emitted:
            continue
        # Collect the chain of pending ancestors, child first.
        chain: list[T] = []
        on_chain: set[str] = set()
        current: T | None = asset
        while current is not None and current.external_id not in emitted:
            if current.external_id in on_chain:
                raise ValueError(
                    f"Cyclic parent chain in batch at asset {current.external_id!r}"
                )
            chain.append(current)
            on_chain.add(current.external_id)
            parent_id = current.parent_external_id
            current = by_id.get(parent_id) if parent_id else None

        for pending in reversed(chain):
            emitted.add(pending.external_id)
            ordered.append(pending)
    return ordered
