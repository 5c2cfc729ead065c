"""PickListGenerator — turns allocations into a sequenced walking order.

Items are grouped by zone, then sorted by aisle and shelf ascending, and
numbered from 1 in that order. Estimated time is a per-item constant times
the item count plus a fixed cost for every zone change.

Batch generation clusters orders whose bin sets overlap by at least the
configured coverage ratio and merges lines that share a (bin, SKU) into a
single item that records every order it services.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

import structlog

from warehouse.config import WarehouseSettings, get_settings
from warehouse.picking.pick_list import PickList
from warehouse.utils.time import as_utc

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PickCandidate:
    """One allocation offered for picking, with the bin coordinates needed to route it."""

    order_id: str
    allocation_id: str
    sku: str
    bin_id: str
    bin_code: str
    zone_name: str
    aisle: int
    shelf: int
    quantity: int
    priority: int = 3
    order_created_at: datetime | None = None

    @property
    def route_key(self) -> tuple:
        return (self.zone_name, self.aisle, self.shelf, self.bin_code, self.sku)


@dataclass(frozen=True)
class PlannedSource:
    order_id: str
    allocation_id: str
    quantity: int


@dataclass(frozen=True)
class PlannedItem:
    pick_sequence: int
    bin_id: str
    bin_code: str
    zone_name: str
    aisle: int
    shelf: int
    sku: str
    quantity: int
    sources: tuple[PlannedSource, ...]

    def as_dict(self) -> dict:
        return {
            "pick_sequence": self.pick_sequence,
            "bin_id": self.bin_id,
            "bin_code": self.bin_code,
            "zone_name": self.zone_name,
            "aisle": self.aisle,
            "shelf": self.shelf,
            "sku": self.sku,
            "quantity_requested": self.quantity,
            "sources": [
                {"order_id": s.order_id, "allocation_id": s.allocation_id, "quantity": s.quantity}
                for s in self.sources
            ],
        }


@dataclass(frozen=True)
class PickPlan:
    items: tuple[PlannedItem, ...]
    estimated_seconds: int
    zone_count: int
    order_ids: tuple[str, ...]
    skipped: tuple[str, ...] = ()
    merged: bool = False

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


def _source_order(candidate: PickCandidate) -> tuple:
    created = as_utc(candidate.order_created_at)
    return (candidate.priority, created is None, created.timestamp() if created else 0.0, candidate.order_id)


class PickListGenerator:
    def __init__(self, settings: WarehouseSettings | None = None):
        self.settings = settings or get_settings()

    def estimate_seconds(self, item_count: int, zone_count: int) -> int:
        transitions = max(zone_count - 1, 0)
        return self.settings.per_item_pick_seconds * item_count + self.settings.zone_transition_seconds * transitions

    def plan(self, candidates: list[PickCandidate], merge: bool = False) -> PickPlan:
        """Sequence candidates into pick items. Zero-quantity candidates are skipped."""
        live = []
        skipped = []
        for candidate in candidates:
            if candidate.quantity <= 0:
                logger.info(
                    "Skipping empty allocation",
                    allocation_id=candidate.allocation_id,
                    order_id=candidate.order_id,
                    sku=candidate.sku,
                )
                skipped.append(candidate.allocation_id)
                continue
            live.append(candidate)

        groups: OrderedDict[tuple, list[PickCandidate]] = OrderedDict()
        for candidate in sorted(live, key=lambda c: (c.route_key, _source_order(c))):
            key = (candidate.bin_id, candidate.sku) if merge else (candidate.allocation_id,)
            groups.setdefault(key, []).append(candidate)

        items = []
        for sequence, group in enumerate(groups.values(), start=1):
            head = group[0]
            items.append(
                PlannedItem(
                    pick_sequence=sequence,
                    bin_id=head.bin_id,
                    bin_code=head.bin_code,
                    zone_name=head.zone_name,
                    aisle=head.aisle,
                    shelf=head.shelf,
                    sku=head.sku,
                    quantity=sum(c.quantity for c in group),
                    sources=tuple(PlannedSource(c.order_id, c.allocation_id, c.quantity) for c in group),
                )
            )

        zone_count = len({item.zone_name for item in items})
        order_ids = tuple(sorted({c.order_id for c in live}))
        return PickPlan(
            items=tuple(items),
            estimated_seconds=self.estimate_seconds(len(items), zone_count),
            zone_count=zone_count,
            order_ids=order_ids,
            skipped=tuple(skipped),
            merged=merge,
        )

    def plan_batches(self, candidates: list[PickCandidate]) -> list[PickPlan]:
        """Cluster orders by bin overlap and plan one merged list per cluster."""
        by_order: OrderedDict[str, list[PickCandidate]] = OrderedDict()
        for candidate in sorted(candidates, key=_source_order):
            by_order.setdefault(candidate.order_id, []).append(candidate)

        clusters: list[dict] = []
        for order_id, order_candidates in by_order.items():
            bins = {c.bin_id for c in order_candidates if c.quantity > 0}
            best = None
            best_ratio = 0.0
            for cluster in clusters:
                if not bins:
                    break
                ratio = len(bins & cluster["bins"]) / len(bins)
                if ratio >= self.settings.batch_overlap_threshold and ratio > best_ratio:
                    best, best_ratio = cluster, ratio
            if best is None:
                clusters.append({"bins": set(bins), "candidates": list(order_candidates), "orders": [order_id]})
            else:
                best["bins"] |= bins
                best["candidates"].extend(order_candidates)
                best["orders"].append(order_id)
                logger.debug("Order joined batch", order_id=order_id, overlap=round(best_ratio, 2))

        return [self.plan(cluster["candidates"], merge=True) for cluster in clusters]

    def build(self, plan: PickPlan, list_name: str | None = None, now: datetime | None = None) -> PickList:
        """Create the (unsaved) PickList aggregate for a plan."""
        name = list_name or f"{'Batch' if plan.merged else 'Pick'} list {', '.join(plan.order_ids)[:150]}"
        return PickList.create(
            list_name=name,
            items_data=[item.as_dict() for item in plan.items],
            estimated_time_seconds=plan.estimated_seconds,
            zone_count=plan.zone_count,
            is_batch=plan.merged and len(plan.order_ids) > 1,
            now=now,
        )

    def generate(
        self,
        candidates: list[PickCandidate],
        list_name: str | None = None,
        merge: bool = False,
        now: datetime | None = None,
    ) -> PickList:
        return self.build(self.plan(candidates, merge=merge), list_name, now)

    def generate_batches(
        self,
        candidates: list[PickCandidate],
        name_prefix: str | None = None,
        now: datetime | None = None,
    ) -> list[PickList]:
        plans = [plan for plan in self.plan_batches(candidates) if plan.items]
        return [
            self.build(plan, f"{name_prefix} #{index}" if name_prefix else None, now)
            for index, plan in enumerate(plans, start=1)
        ]
