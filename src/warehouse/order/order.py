"""FulfillmentOrder aggregate — the order's lifecycle inside the warehouse.

State Machine:
    PENDING → ALLOCATED | ALLOCATED_PARTIAL → PICKING → PICKED → PACKED → SHIPPED
    ALLOCATED ⇄ ALLOCATED_PARTIAL  (top-ups and expiries change coverage)
    any non-terminal state → CANCELLED  (PICKING and PICKED need an override)

The aggregate owns the transition graph; the allocation engine, the pick
session scheduler and the state machine service drive it. Nothing here talks
to the inventory ledger.
"""

import json
import math
from datetime import datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, Text

from warehouse.domain import warehouse
from warehouse.exceptions import InvalidStateTransition
from warehouse.order.events import (
    AllocationExpired,
    AllocationReleased,
    FulfillmentOrderAccepted,
    InventoryAllocated,
    OrderStateChanged,
)
from warehouse.utils.time import as_utc, utcnow


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    ALLOCATED = "Allocated"
    ALLOCATED_PARTIAL = "Allocated_Partial"
    PICKING = "Picking"
    PICKED = "Picked"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"


class AllocationStatus(Enum):
    RESERVED = "Reserved"
    PICKING = "Picking"
    PICKED = "Picked"
    RELEASED = "Released"
    EXPIRED = "Expired"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.ALLOCATED, OrderStatus.ALLOCATED_PARTIAL, OrderStatus.CANCELLED},
    OrderStatus.ALLOCATED: {OrderStatus.ALLOCATED_PARTIAL, OrderStatus.PICKING, OrderStatus.CANCELLED},
    OrderStatus.ALLOCATED_PARTIAL: {OrderStatus.ALLOCATED, OrderStatus.PICKING, OrderStatus.CANCELLED},
    OrderStatus.PICKING: {OrderStatus.PICKED, OrderStatus.CANCELLED},
    OrderStatus.PICKED: {OrderStatus.PACKED, OrderStatus.CANCELLED},
    OrderStatus.PACKED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: set(),  # terminal
    OrderStatus.CANCELLED: set(),  # terminal
}

# Stock may already be in a picker's tote
_CANCEL_NEEDS_OVERRIDE = {OrderStatus.PICKING, OrderStatus.PICKED}

# Statuses from which a further allocate call is a duplicate
ALLOCATED_STATUSES = {
    OrderStatus.ALLOCATED,
    OrderStatus.PICKING,
    OrderStatus.PICKED,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
}

# Allocations still holding ledger stock
LIVE_ALLOCATION_STATUSES = {AllocationStatus.RESERVED.value, AllocationStatus.PICKING.value}

# Allocations counting towards the order's demand
COVERING_ALLOCATION_STATUSES = LIVE_ALLOCATION_STATUSES | {AllocationStatus.PICKED.value}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@warehouse.entity(part_of="FulfillmentOrder")
class OrderLine:
    """Requested quantity of one SKU."""

    sku = String(required=True, max_length=100)
    quantity = Integer(required=True, min_value=1)


@warehouse.entity(part_of="FulfillmentOrder")
class InventoryAllocation:
    """Stock reserved in one bin for one of the order's SKUs."""

    sku = String(required=True, max_length=100)
    bin_id = Identifier(required=True)
    quantity_allocated = Integer(required=True, min_value=0)
    quantity_picked = Integer(default=0, min_value=0)
    priority = Integer(default=3)
    status = String(
        max_length=20,
        choices=AllocationStatus,
        default=AllocationStatus.RESERVED.value,
    )
    reservation_id = Identifier(required=True)
    pick_list_id = Identifier()
    allocated_at = DateTime()
    expires_at = DateTime()
    released_at = DateTime()
    notes = String(max_length=500)

    @property
    def unpicked(self) -> int:
        return self.quantity_allocated - (self.quantity_picked or 0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@warehouse.aggregate
class FulfillmentOrder:
    order_reference = String(required=True, max_length=100)
    priority_level = Integer(required=True, min_value=1, default=3)
    status = String(
        max_length=20,
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    special_instructions = Text()
    estimated_pick_time_minutes = Integer(default=0)
    lines = HasMany(OrderLine)
    allocations = HasMany(InventoryAllocation)
    pick_started_at = DateTime()
    pick_completed_at = DateTime()
    packed_at = DateTime()
    shipped_at = DateTime()
    cancelled_at = DateTime()
    cancellation_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def accept(
        cls,
        order_reference: str,
        lines_data: list[dict],
        priority_level: int = 3,
        special_instructions: str | None = None,
        created_at: datetime | None = None,
    ):
        """Accept an order for fulfillment; repeated SKUs are folded into one line."""
        if not lines_data:
            raise ValidationError({"lines": ["An order needs at least one line"]})

        merged: dict[str, int] = {}
        for line in lines_data:
            quantity = int(line["quantity"])
            if quantity < 1:
                raise ValidationError({"lines": [f"Quantity for {line['sku']} must be positive"]})
            merged[line["sku"]] = merged.get(line["sku"], 0) + quantity

        now = created_at or utcnow()
        order = cls(
            order_reference=order_reference,
            priority_level=priority_level,
            status=OrderStatus.PENDING.value,
            special_instructions=special_instructions,
            created_at=now,
            updated_at=now,
        )
        for sku, quantity in merged.items():
            order.add_lines(OrderLine(sku=sku, quantity=quantity))

        order.raise_(
            FulfillmentOrderAccepted(
                order_id=str(order.id),
                order_reference=order_reference,
                priority_level=priority_level,
                lines=json.dumps([{"sku": sku, "quantity": qty} for sku, qty in merged.items()]),
                line_count=len(merged),
                accepted_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Demand and coverage
    # -------------------------------------------------------------------
    def demand_for(self, sku: str) -> int:
        return sum(line.quantity for line in (self.lines or []) if line.sku == sku)

    def covered_for(self, sku: str) -> int:
        return sum(
            a.quantity_allocated
            for a in (self.allocations or [])
            if a.sku == sku and a.status in COVERING_ALLOCATION_STATUSES
        )

    def shortfall_for(self, sku: str) -> int:
        return max(self.demand_for(sku) - self.covered_for(sku), 0)

    def is_fully_covered(self) -> bool:
        return all(self.shortfall_for(line.sku) == 0 for line in (self.lines or []))

    def allocation(self, allocation_id: str) -> InventoryAllocation:
        found = next((a for a in (self.allocations or []) if str(a.id) == str(allocation_id)), None)
        if found is None:
            raise ValidationError({"allocation_id": [f"Allocation {allocation_id} not found on order {self.id}"]})
        return found

    def live_allocations(self) -> list[InventoryAllocation]:
        return [a for a in (self.allocations or []) if a.status in LIVE_ALLOCATION_STATUSES]

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def assert_can_transition(self, target: OrderStatus, override: bool = False) -> None:
        current = OrderStatus(self.status)
        allowed = _VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidStateTransition("order", current.value, target.value, [s.value for s in allowed])
        if target == OrderStatus.CANCELLED and current in _CANCEL_NEEDS_OVERRIDE and not override:
            raise InvalidStateTransition(
                "order",
                current.value,
                target.value,
                [s.value for s in allowed - {OrderStatus.CANCELLED}],
            )

    def _transition(self, target: OrderStatus, now: datetime, reason: str | None = None, override: bool = False):
        self.assert_can_transition(target, override=override)
        previous = self.status
        self.status = target.value
        self.updated_at = now
        self.raise_(
            OrderStateChanged(
                order_id=str(self.id),
                order_reference=self.order_reference,
                previous_status=previous,
                new_status=target.value,
                reason=reason,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------
    def add_allocation(
        self,
        sku: str,
        bin_id: str,
        quantity: int,
        reservation_id: str,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> InventoryAllocation:
        current = OrderStatus(self.status)
        if current not in (OrderStatus.PENDING, OrderStatus.ALLOCATED_PARTIAL):
            raise InvalidStateTransition("order", current.value, OrderStatus.ALLOCATED.value)
        if quantity > self.shortfall_for(sku):
            raise ValidationError({"quantity": [f"Allocating {quantity} of {sku} exceeds the open demand"]})

        now = now or utcnow()
        allocation = InventoryAllocation(
            sku=sku,
            bin_id=bin_id,
            quantity_allocated=quantity,
            quantity_picked=0,
            priority=self.priority_level,
            status=AllocationStatus.RESERVED.value,
            reservation_id=reservation_id,
            allocated_at=now,
            expires_at=expires_at,
        )
        self.add_allocations(allocation)
        self.updated_at = now
        self.raise_(
            InventoryAllocated(
                order_id=str(self.id),
                allocation_id=str(allocation.id),
                sku=sku,
                bin_id=bin_id,
                quantity=quantity,
                reservation_id=reservation_id,
                allocated_at=now,
                expires_at=expires_at,
            )
        )
        return allocation

    def settle_allocation(self, now: datetime | None = None) -> None:
        """Move to ALLOCATED or ALLOCATED_PARTIAL depending on coverage."""
        target = OrderStatus.ALLOCATED if self.is_fully_covered() else OrderStatus.ALLOCATED_PARTIAL
        if OrderStatus(self.status) == target:
            return
        self._transition(target, now or utcnow(), reason="allocation")

    def expired_allocations(self, now: datetime) -> list[InventoryAllocation]:
        now = as_utc(now)
        return [
            a
            for a in (self.allocations or [])
            if a.status == AllocationStatus.RESERVED.value and a.expires_at and as_utc(a.expires_at) <= now
        ]

    def expire_allocation(self, allocation_id: str, now: datetime | None = None) -> None:
        allocation = self.allocation(allocation_id)
        if allocation.status != AllocationStatus.RESERVED.value:
            raise ValidationError({"allocation_id": [f"Only reserved allocations can expire, not {allocation.status}"]})
        now = now or utcnow()
        allocation.status = AllocationStatus.EXPIRED.value
        allocation.released_at = now
        self.updated_at = now
        self.raise_(
            AllocationExpired(
                order_id=str(self.id),
                allocation_id=str(allocation.id),
                sku=allocation.sku,
                bin_id=allocation.bin_id,
                quantity=allocation.quantity_allocated,
                expired_at=now,
            )
        )
        if OrderStatus(self.status) == OrderStatus.ALLOCATED and not self.is_fully_covered():
            self._transition(OrderStatus.ALLOCATED_PARTIAL, now, reason="allocation expired")

    def release_allocation(self, allocation_id: str, reason: str, now: datetime | None = None) -> int:
        """Close an allocation; returns the unpicked units given back. Released allocations are skipped."""
        allocation = self.allocation(allocation_id)
        if allocation.status in (AllocationStatus.RELEASED.value, AllocationStatus.EXPIRED.value):
            return 0
        now = now or utcnow()
        returned = allocation.unpicked if allocation.status in LIVE_ALLOCATION_STATUSES else 0
        allocation.status = AllocationStatus.RELEASED.value
        allocation.released_at = now
        self.updated_at = now
        self.raise_(
            AllocationReleased(
                order_id=str(self.id),
                allocation_id=str(allocation.id),
                sku=allocation.sku,
                bin_id=allocation.bin_id,
                quantity=returned,
                reason=reason,
                released_at=now,
            )
        )
        return returned

    # -------------------------------------------------------------------
    # Picking
    # -------------------------------------------------------------------
    def begin_picking(
        self,
        pick_list_id: str,
        allocation_ids: list[str],
        estimated_seconds: int = 0,
        now: datetime | None = None,
    ) -> None:
        """A pick list covering these allocations was started."""
        now = now or utcnow()
        current = OrderStatus(self.status)
        if current not in (OrderStatus.ALLOCATED, OrderStatus.ALLOCATED_PARTIAL, OrderStatus.PICKING):
            raise InvalidStateTransition(
                "order",
                current.value,
                OrderStatus.PICKING.value,
                [OrderStatus.ALLOCATED.value, OrderStatus.ALLOCATED_PARTIAL.value],
            )
        for allocation_id in allocation_ids:
            allocation = self.allocation(allocation_id)
            if allocation.status != AllocationStatus.RESERVED.value:
                raise ValidationError(
                    {"allocation_id": [f"Allocation {allocation_id} is {allocation.status}, not Reserved"]}
                )
            allocation.status = AllocationStatus.PICKING.value
            allocation.pick_list_id = pick_list_id

        self.estimated_pick_time_minutes = (self.estimated_pick_time_minutes or 0) + math.ceil(estimated_seconds / 60)
        if current != OrderStatus.PICKING:
            self.pick_started_at = now
            self._transition(OrderStatus.PICKING, now, reason=f"pick list {pick_list_id} started")
        else:
            self.updated_at = now

    def record_allocation_pick(self, allocation_id: str, quantity: int, now: datetime | None = None) -> None:
        allocation = self.allocation(allocation_id)
        if allocation.status != AllocationStatus.PICKING.value:
            raise ValidationError({"allocation_id": [f"Allocation {allocation_id} is not being picked"]})
        picked = (allocation.quantity_picked or 0) + quantity
        if picked > allocation.quantity_allocated:
            raise ValidationError(
                {"quantity": [f"Picking {quantity} would exceed the {allocation.quantity_allocated} allocated"]}
            )
        allocation.quantity_picked = picked
        if picked == allocation.quantity_allocated:
            allocation.status = AllocationStatus.PICKED.value
        self.updated_at = now or utcnow()

    def close_short(self, allocation_id: str, now: datetime | None = None, reason: str = "short pick") -> int:
        """Stop picking an allocation at what was found; returns the units given back."""
        allocation = self.allocation(allocation_id)
        if allocation.status != AllocationStatus.PICKING.value:
            return 0
        now = now or utcnow()
        missing = allocation.unpicked
        picked = allocation.quantity_picked or 0
        if picked == 0:
            return self.release_allocation(allocation_id, reason, now)
        allocation.quantity_allocated = picked
        allocation.status = AllocationStatus.PICKED.value
        allocation.notes = f"short by {missing}"
        self.updated_at = now
        return missing

    def picking_finished(self) -> bool:
        """True once no allocation is waiting to be picked and something was picked."""
        allocations = self.allocations or []
        if any(a.status in LIVE_ALLOCATION_STATUSES for a in allocations):
            return False
        return any(a.status == AllocationStatus.PICKED.value for a in allocations)

    def picking_abandoned(self) -> bool:
        """True for a picking order whose every allocation closed with nothing picked."""
        if OrderStatus(self.status) != OrderStatus.PICKING:
            return False
        allocations = self.allocations or []
        return not any(a.status in COVERING_ALLOCATION_STATUSES for a in allocations)

    def complete_picking(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self._transition(OrderStatus.PICKED, now, reason="all pick items closed")
        self.pick_completed_at = now

    # -------------------------------------------------------------------
    # Packing / shipping confirmations
    # -------------------------------------------------------------------
    def mark_packed(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self._transition(OrderStatus.PACKED, now, reason="packing confirmed")
        self.packed_at = now

    def mark_shipped(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self._transition(OrderStatus.SHIPPED, now, reason="shipment confirmed")
        self.shipped_at = now

    # -------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------
    def cancel(self, reason: str | None = None, override: bool = False, now: datetime | None = None) -> bool:
        """Cancel the order. Returns False when it was already cancelled."""
        if OrderStatus(self.status) == OrderStatus.CANCELLED:
            return False
        now = now or utcnow()
        self._transition(OrderStatus.CANCELLED, now, reason=reason or "cancelled", override=override)
        self.cancelled_at = now
        self.cancellation_reason = reason
        return True
