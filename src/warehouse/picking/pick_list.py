"""PickList aggregate — a sequenced walk through the warehouse for one picker.

Pick sequence is fixed when the list is generated and never reordered. Each
item remembers which order allocations it services (``sources``), so picked
units can be attributed back to those allocations in priority order.
"""

import json
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from warehouse.domain import warehouse
from warehouse.exceptions import InvalidStateTransition
from warehouse.picking.events import (
    ItemPicked,
    ItemShortPicked,
    PickListCancelled,
    PickListCompleted,
    PickListGenerated,
    PickListStarted,
)
from warehouse.utils.time import utcnow


class PickListStatus(Enum):
    DRAFT = "Draft"
    IN_PROGRESS = "In_Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PickItemStatus(Enum):
    PENDING = "Pending"
    PICKING = "Picking"
    PICKED = "Picked"
    SHORT_PICK = "Short_Pick"
    SKIPPED = "Skipped"


CLOSED_ITEM_STATUSES = {
    PickItemStatus.PICKED.value,
    PickItemStatus.SHORT_PICK.value,
    PickItemStatus.SKIPPED.value,
}

OPEN_LIST_STATUSES = {PickListStatus.DRAFT.value, PickListStatus.IN_PROGRESS.value}


@warehouse.entity(part_of="PickList")
class PickItem:
    pick_sequence = Integer(required=True, min_value=1)
    bin_id = Identifier(required=True)
    bin_code = String(max_length=50)
    zone_name = String(max_length=50)
    aisle = Integer(default=0)
    shelf = Integer(default=0)
    sku = String(required=True, max_length=100)
    quantity_requested = Integer(required=True, min_value=0)
    quantity_picked = Integer(default=0, min_value=0)
    status = String(
        max_length=20,
        choices=PickItemStatus,
        default=PickItemStatus.PENDING.value,
    )
    sources = Text()  # JSON list of {"order_id", "allocation_id", "quantity", "picked"}
    notes = String(max_length=500)
    picked_at = DateTime()
    picked_by = String(max_length=100)

    def source_list(self) -> list[dict]:
        return json.loads(self.sources or "[]")

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_ITEM_STATUSES


@warehouse.aggregate
class PickList:
    list_name = String(required=True, max_length=200)
    status = String(
        max_length=20,
        choices=PickListStatus,
        default=PickListStatus.DRAFT.value,
    )
    pick_session_id = Identifier()
    assigned_picker_id = String(max_length=100)
    total_items = Integer(default=0)
    total_quantity = Integer(default=0)
    estimated_time_seconds = Integer(default=0)
    zone_count = Integer(default=0)
    is_batch = Boolean(default=False)
    order_ids = Text()  # JSON list of order IDs
    items = HasMany(PickItem)
    created_at = DateTime()
    started_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    cancellation_reason = String(max_length=500)

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        list_name: str,
        items_data: list[dict],
        estimated_time_seconds: int,
        zone_count: int,
        is_batch: bool = False,
        now: datetime | None = None,
    ):
        """Create a draft list from already sequenced item dicts."""
        if not items_data:
            raise ValidationError({"items": ["A pick list needs at least one item"]})

        now = now or utcnow()
        order_ids = sorted({source["order_id"] for item in items_data for source in item["sources"]})
        pick_list = cls(
            list_name=list_name,
            status=PickListStatus.DRAFT.value,
            total_items=len(items_data),
            total_quantity=sum(item["quantity_requested"] for item in items_data),
            estimated_time_seconds=estimated_time_seconds,
            zone_count=zone_count,
            is_batch=is_batch,
            order_ids=json.dumps(order_ids),
            created_at=now,
        )
        for item in items_data:
            pick_list.add_items(
                PickItem(
                    pick_sequence=item["pick_sequence"],
                    bin_id=item["bin_id"],
                    bin_code=item.get("bin_code"),
                    zone_name=item.get("zone_name"),
                    aisle=item.get("aisle", 0),
                    shelf=item.get("shelf", 0),
                    sku=item["sku"],
                    quantity_requested=item["quantity_requested"],
                    quantity_picked=0,
                    status=PickItemStatus.PENDING.value,
                    sources=json.dumps([{**source, "picked": 0} for source in item["sources"]]),
                )
            )

        pick_list.raise_(
            PickListGenerated(
                pick_list_id=str(pick_list.id),
                list_name=list_name,
                total_items=pick_list.total_items,
                total_quantity=pick_list.total_quantity,
                estimated_time_seconds=estimated_time_seconds,
                zone_count=zone_count,
                is_batch=is_batch,
                order_ids=pick_list.order_ids,
                generated_at=now,
            )
        )
        return pick_list

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def order_id_list(self) -> list[str]:
        return json.loads(self.order_ids or "[]")

    def sorted_items(self) -> list[PickItem]:
        return sorted(self.items or [], key=lambda i: i.pick_sequence)

    def item(self, item_id: str) -> PickItem:
        found = next((i for i in (self.items or []) if str(i.id) == str(item_id)), None)
        if found is None:
            raise ValidationError({"pick_item_id": [f"Pick item {item_id} not found on pick list {self.id}"]})
        return found

    def allocation_ids_for(self, order_id: str) -> list[str]:
        return [
            source["allocation_id"]
            for item in (self.items or [])
            for source in item.source_list()
            if source["order_id"] == order_id
        ]

    def allocation_ids(self) -> list[str]:
        return [source["allocation_id"] for item in (self.items or []) for source in item.source_list()]

    def all_closed(self) -> bool:
        return all(item.is_closed for item in (self.items or []))

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def _assert_status(self, expected: PickListStatus, target: PickListStatus) -> None:
        if self.status != expected.value:
            raise InvalidStateTransition("pick list", self.status, target.value, [expected.value])

    def start(self, pick_session_id: str, picker_id: str | None = None, now: datetime | None = None) -> None:
        self._assert_status(PickListStatus.DRAFT, PickListStatus.IN_PROGRESS)
        now = now or utcnow()
        self.status = PickListStatus.IN_PROGRESS.value
        self.pick_session_id = pick_session_id
        self.assigned_picker_id = picker_id
        self.started_at = now
        self.raise_(
            PickListStarted(
                pick_list_id=str(self.id),
                pick_session_id=pick_session_id,
                picker_id=picker_id,
                started_at=now,
            )
        )

    def _open_item(self, item_id: str) -> PickItem:
        if self.status != PickListStatus.IN_PROGRESS.value:
            raise ValidationError({"pick_list": [f"Pick list {self.id} is {self.status}, not In_Progress"]})
        item = self.item(item_id)
        if item.is_closed:
            raise ValidationError({"pick_item_id": [f"Pick item {item_id} is already {item.status}"]})
        return item

    @staticmethod
    def _distribute(item: PickItem, quantity: int) -> list[dict]:
        """Attribute picked units to the item's sources, first source first."""
        sources = item.source_list()
        shares = []
        remaining = quantity
        for source in sources:
            if remaining == 0:
                break
            room = source["quantity"] - source["picked"]
            if room <= 0:
                continue
            take = min(room, remaining)
            source["picked"] += take
            remaining -= take
            shares.append({"order_id": source["order_id"], "allocation_id": source["allocation_id"], "quantity": take})
        item.sources = json.dumps(sources)
        return shares

    def record_pick(
        self,
        item_id: str,
        quantity: int,
        picker_id: str | None = None,
        now: datetime | None = None,
    ) -> list[dict]:
        """Add scanned units to an item; returns how they split across allocations."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Picked quantity must be positive"]})
        item = self._open_item(item_id)
        picked = (item.quantity_picked or 0) + quantity
        if picked > item.quantity_requested:
            raise ValidationError(
                {"quantity": [f"Picking {quantity} would exceed the {item.quantity_requested} requested for {item.sku}"]}
            )

        now = now or utcnow()
        shares = self._distribute(item, quantity)
        item.quantity_picked = picked
        item.status = PickItemStatus.PICKED.value if picked == item.quantity_requested else PickItemStatus.PICKING.value
        item.picked_at = now
        item.picked_by = picker_id
        self.raise_(
            ItemPicked(
                pick_list_id=str(self.id),
                pick_item_id=str(item.id),
                pick_session_id=self.pick_session_id,
                sku=item.sku,
                bin_id=item.bin_id,
                quantity=quantity,
                quantity_picked=picked,
                quantity_requested=item.quantity_requested,
                picked_by=picker_id,
                picked_at=now,
            )
        )
        self.complete_if_done(now)
        return shares

    def short_pick(
        self,
        item_id: str,
        quantity_found: int,
        notes: str | None = None,
        picker_id: str | None = None,
        now: datetime | None = None,
    ) -> tuple[list[dict], list[dict]]:
        """Close an item below its requested quantity.

        Returns the split of the found units and the sources left short.
        """
        item = self._open_item(item_id)
        already = item.quantity_picked or 0
        if quantity_found < 0 or already + quantity_found >= item.quantity_requested:
            raise ValidationError(
                {"quantity": [f"A short pick must leave {item.sku} below the {item.quantity_requested} requested"]}
            )

        now = now or utcnow()
        shares = self._distribute(item, quantity_found) if quantity_found else []
        shorted = [
            {"order_id": s["order_id"], "allocation_id": s["allocation_id"], "missing": s["quantity"] - s["picked"]}
            for s in item.source_list()
            if s["quantity"] > s["picked"]
        ]
        item.quantity_picked = already + quantity_found
        item.status = PickItemStatus.SHORT_PICK.value
        item.notes = notes
        item.picked_at = now
        item.picked_by = picker_id
        self.raise_(
            ItemShortPicked(
                pick_list_id=str(self.id),
                pick_item_id=str(item.id),
                sku=item.sku,
                bin_id=item.bin_id,
                quantity_picked=item.quantity_picked,
                quantity_requested=item.quantity_requested,
                notes=notes,
                reported_at=now,
            )
        )
        self.complete_if_done(now)
        return shares, shorted

    def withdraw_order(self, order_id: str, now: datetime | None = None) -> bool:
        """Stop picking for a cancelled order; items left with nothing to pick are skipped."""
        return self._withdraw(lambda source: source["order_id"] == order_id, "order cancelled", now)

    def withdraw_allocations(
        self, allocation_ids: list[str], note: str = "allocation expired", now: datetime | None = None
    ) -> bool:
        """Stop picking units whose reservation was given back to the ledger."""
        wanted = {str(allocation_id) for allocation_id in allocation_ids}
        return self._withdraw(lambda source: source["allocation_id"] in wanted, note, now)

    def _withdraw(self, matches: Callable[[dict], bool], note: str, now: datetime | None) -> bool:
        """Cut matching sources back to what was already picked.

        Totals shrink with them. An in-progress list may complete as a
        result; a draft list left with nothing to pick is cancelled.
        """
        if self.status not in OPEN_LIST_STATUSES:
            return False
        now = now or utcnow()
        changed = False
        for item in self.items or []:
            if item.is_closed:
                continue
            sources = item.source_list()
            withdrawn = 0
            for source in sources:
                if matches(source) and source["quantity"] > source["picked"]:
                    withdrawn += source["quantity"] - source["picked"]
                    source["quantity"] = source["picked"]
            if not withdrawn:
                continue
            changed = True
            item.sources = json.dumps(sources)
            item.quantity_requested -= withdrawn
            self.total_quantity = max((self.total_quantity or 0) - withdrawn, 0)
            if item.quantity_requested == 0:
                item.status = PickItemStatus.SKIPPED.value
                item.notes = note
                self.total_items = max((self.total_items or 0) - 1, 0)
            elif (item.quantity_picked or 0) >= item.quantity_requested:
                item.status = PickItemStatus.PICKED.value
        if not changed:
            return False
        if self.status == PickListStatus.IN_PROGRESS.value:
            self.complete_if_done(now)
        elif self.all_closed():
            self.cancel(note, now)
        return True

    def complete_if_done(self, now: datetime) -> None:
        if self.status == PickListStatus.IN_PROGRESS.value and self.all_closed():
            self.status = PickListStatus.COMPLETED.value
            self.completed_at = now
            self.raise_(
                PickListCompleted(
                    pick_list_id=str(self.id),
                    pick_session_id=self.pick_session_id,
                    total_items=self.total_items,
                    completed_at=now,
                )
            )

    def cancel(self, reason: str, now: datetime | None = None) -> list[dict]:
        """Abandon the list; returns the sources that still had units to pick."""
        if self.status not in OPEN_LIST_STATUSES:
            raise InvalidStateTransition(
                "pick list",
                self.status,
                PickListStatus.CANCELLED.value,
                sorted(OPEN_LIST_STATUSES),
            )
        now = now or utcnow()
        unpicked = []
        for item in self.items or []:
            if item.is_closed:
                continue
            for source in item.source_list():
                if source["quantity"] > source["picked"]:
                    unpicked.append(
                        {
                            "order_id": source["order_id"],
                            "allocation_id": source["allocation_id"],
                            "missing": source["quantity"] - source["picked"],
                        }
                    )
            item.status = PickItemStatus.SKIPPED.value
        self.status = PickListStatus.CANCELLED.value
        self.cancelled_at = now
        self.cancellation_reason = reason
        self.raise_(
            PickListCancelled(
                pick_list_id=str(self.id),
                pick_session_id=self.pick_session_id,
                reason=reason,
                cancelled_at=now,
            )
        )
        return unpicked
