"""Tests for the FulfillmentOrder aggregate and its transition graph."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError
from warehouse.exceptions import InvalidStateTransition
from warehouse.order.events import (
    AllocationExpired,
    AllocationReleased,
    FulfillmentOrderAccepted,
    OrderStateChanged,
)
from warehouse.order.order import AllocationStatus, FulfillmentOrder, OrderStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _make_order(lines=None, priority_level=3):
    return FulfillmentOrder.accept(
        order_reference="ORD-001",
        lines_data=lines or [{"sku": "SKU-A", "quantity": 5}],
        priority_level=priority_level,
        created_at=T0,
    )


def _allocate(order, sku="SKU-A", quantity=5, bin_id="bin-1", reservation_id="res-1"):
    allocation = order.add_allocation(sku, bin_id, quantity, reservation_id, T0 + timedelta(minutes=30), now=T0)
    order.settle_allocation(now=T0)
    return allocation


def _state_changes(order):
    return [e.new_status for e in order._events if isinstance(e, OrderStateChanged)]


class TestAcceptance:
    def test_accept_order(self):
        order = _make_order()
        assert order.status == OrderStatus.PENDING.value
        assert [(line.sku, line.quantity) for line in order.lines] == [("SKU-A", 5)]

    def test_repeated_skus_are_folded(self):
        order = _make_order([{"sku": "SKU-A", "quantity": 2}, {"sku": "SKU-A", "quantity": 3}])
        assert len(order.lines) == 1
        assert order.demand_for("SKU-A") == 5

    def test_accept_raises_event(self):
        order = _make_order([{"sku": "SKU-A", "quantity": 2}, {"sku": "SKU-B", "quantity": 1}])
        accepted = [e for e in order._events if isinstance(e, FulfillmentOrderAccepted)]
        assert len(accepted) == 1
        assert accepted[0].line_count == 2
        assert json.loads(accepted[0].lines) == [{"sku": "SKU-A", "quantity": 2}, {"sku": "SKU-B", "quantity": 1}]

    def test_order_needs_lines(self):
        with pytest.raises(ValidationError):
            FulfillmentOrder.accept(order_reference="ORD-001", lines_data=[])

    def test_line_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            _make_order([{"sku": "SKU-A", "quantity": 0}])


class TestAllocation:
    def test_full_allocation_moves_to_allocated(self):
        order = _make_order()
        _allocate(order)
        assert order.status == OrderStatus.ALLOCATED.value
        assert order.is_fully_covered()

    def test_partial_allocation(self):
        order = _make_order()
        _allocate(order, quantity=3)
        assert order.status == OrderStatus.ALLOCATED_PARTIAL.value
        assert order.shortfall_for("SKU-A") == 2

    def test_cannot_allocate_beyond_demand(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.add_allocation("SKU-A", "bin-1", 6, "res-1", T0, now=T0)

    def test_top_up_completes_partial_order(self):
        order = _make_order()
        _allocate(order, quantity=3)
        _allocate(order, quantity=2, bin_id="bin-2", reservation_id="res-2")
        assert order.status == OrderStatus.ALLOCATED.value
        assert _state_changes(order) == [OrderStatus.ALLOCATED_PARTIAL.value, OrderStatus.ALLOCATED.value]

    def test_allocated_order_accepts_no_more_allocations(self):
        order = _make_order()
        _allocate(order)
        with pytest.raises(InvalidStateTransition):
            order.add_allocation("SKU-A", "bin-2", 1, "res-2", T0, now=T0)

    def test_expired_allocations_due(self):
        order = _make_order()
        _allocate(order)
        assert order.expired_allocations(T0 + timedelta(minutes=29)) == []
        assert len(order.expired_allocations(T0 + timedelta(minutes=30))) == 1

    def test_expiry_downgrades_coverage(self):
        order = _make_order()
        allocation = _allocate(order)
        order.expire_allocation(allocation.id, now=T0 + timedelta(minutes=31))

        assert allocation.status == AllocationStatus.EXPIRED.value
        assert order.status == OrderStatus.ALLOCATED_PARTIAL.value
        assert any(isinstance(e, AllocationExpired) for e in order._events)

    def test_release_is_idempotent(self):
        order = _make_order()
        allocation = _allocate(order)
        assert order.release_allocation(allocation.id, "cancelled", now=T0) == 5
        assert order.release_allocation(allocation.id, "cancelled", now=T0) == 0
        assert len([e for e in order._events if isinstance(e, AllocationReleased)]) == 1

    def test_unknown_allocation(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.allocation("missing")


class TestPicking:
    def _picking_order(self):
        order = _make_order()
        allocation = _allocate(order)
        order.begin_picking("pl-1", [allocation.id], estimated_seconds=150, now=T0)
        return order, allocation

    def test_begin_picking(self):
        order, allocation = self._picking_order()
        assert order.status == OrderStatus.PICKING.value
        assert order.pick_started_at is not None
        assert order.estimated_pick_time_minutes == 3
        assert allocation.status == AllocationStatus.PICKING.value
        assert allocation.pick_list_id == "pl-1"

    def test_pending_order_cannot_start_picking(self):
        order = _make_order()
        with pytest.raises(InvalidStateTransition):
            order.begin_picking("pl-1", [], now=T0)

    def test_pick_all_finishes_picking(self):
        order, allocation = self._picking_order()
        order.record_allocation_pick(allocation.id, 2, now=T0)
        assert not order.picking_finished()
        order.record_allocation_pick(allocation.id, 3, now=T0)
        assert allocation.status == AllocationStatus.PICKED.value
        assert order.picking_finished()

    def test_over_pick_rejected(self):
        order, allocation = self._picking_order()
        with pytest.raises(ValidationError):
            order.record_allocation_pick(allocation.id, 6, now=T0)

    def test_close_short_keeps_what_was_found(self):
        order, allocation = self._picking_order()
        order.record_allocation_pick(allocation.id, 3, now=T0)
        assert order.close_short(allocation.id, now=T0) == 2
        assert allocation.quantity_allocated == 3
        assert allocation.status == AllocationStatus.PICKED.value
        assert order.picking_finished()

    def test_close_short_with_nothing_found_abandons(self):
        order, allocation = self._picking_order()
        assert order.close_short(allocation.id, now=T0) == 5
        assert allocation.status == AllocationStatus.RELEASED.value
        assert order.picking_abandoned()

    def test_full_lifecycle(self):
        order, allocation = self._picking_order()
        order.record_allocation_pick(allocation.id, 5, now=T0)
        order.complete_picking(now=T0)
        order.mark_packed(now=T0)
        order.mark_shipped(now=T0)
        assert order.status == OrderStatus.SHIPPED.value
        assert _state_changes(order)[-4:] == ["Picking", "Picked", "Packed", "Shipped"]

    def test_cannot_pack_before_picked(self):
        order = _make_order()
        _allocate(order)
        with pytest.raises(InvalidStateTransition) as exc_info:
            order.mark_packed(now=T0)
        assert exc_info.value.current == "Allocated"
        assert exc_info.value.target == "Packed"


class TestCancellation:
    def test_cancel_pending_order(self):
        order = _make_order()
        assert order.cancel("customer request", now=T0) is True
        assert order.status == OrderStatus.CANCELLED.value
        assert order.cancellation_reason == "customer request"

    def test_cancel_twice_is_a_no_op(self):
        order = _make_order()
        order.cancel(now=T0)
        assert order.cancel(now=T0) is False

    def test_picking_order_needs_override(self):
        order = _make_order()
        allocation = _allocate(order)
        order.begin_picking("pl-1", [allocation.id], now=T0)

        with pytest.raises(InvalidStateTransition):
            order.cancel("customer request", now=T0)
        assert order.cancel("customer request", override=True, now=T0) is True

    def test_shipped_order_cannot_be_cancelled(self):
        order = _make_order()
        allocation = _allocate(order)
        order.begin_picking("pl-1", [allocation.id], now=T0)
        order.record_allocation_pick(allocation.id, 5, now=T0)
        order.complete_picking(now=T0)
        order.mark_packed(now=T0)
        order.mark_shipped(now=T0)

        with pytest.raises(InvalidStateTransition):
            order.cancel(override=True, now=T0)


LEGAL_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.ALLOCATED, OrderStatus.ALLOCATED_PARTIAL, OrderStatus.CANCELLED},
    OrderStatus.ALLOCATED: {OrderStatus.ALLOCATED_PARTIAL, OrderStatus.PICKING, OrderStatus.CANCELLED},
    OrderStatus.ALLOCATED_PARTIAL: {OrderStatus.ALLOCATED, OrderStatus.PICKING, OrderStatus.CANCELLED},
    OrderStatus.PICKING: {OrderStatus.PICKED, OrderStatus.CANCELLED},
    OrderStatus.PICKED: {OrderStatus.PACKED, OrderStatus.CANCELLED},
    OrderStatus.PACKED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: set(),
    OrderStatus.CANCELLED: set(),
}

ILLEGAL_TRANSITIONS = [
    (current, target) for current in OrderStatus for target in OrderStatus if target not in LEGAL_TRANSITIONS[current]
]


def _order_in(status):
    order = _make_order()
    order.status = status.value
    return order


class TestTransitionGraph:
    @pytest.mark.parametrize(
        ("current", "target"), ILLEGAL_TRANSITIONS, ids=[f"{c.value}->{t.value}" for c, t in ILLEGAL_TRANSITIONS]
    )
    def test_illegal_transition_rejected(self, current, target):
        order = _order_in(current)

        with pytest.raises(InvalidStateTransition) as exc_info:
            order._transition(target, T0, override=True)

        assert order.status == current.value
        assert _state_changes(order) == []
        assert exc_info.value.current == current.value
        assert exc_info.value.target == target.value

    @pytest.mark.parametrize("current", list(OrderStatus), ids=lambda s: s.value)
    def test_legal_transitions_accepted(self, current):
        for target in LEGAL_TRANSITIONS[current]:
            order = _order_in(current)
            order._transition(target, T0, override=True)
            assert order.status == target.value
            assert _state_changes(order) == [target.value]

    @pytest.mark.parametrize("current", [OrderStatus.PICKING, OrderStatus.PICKED], ids=lambda s: s.value)
    def test_cancel_from_the_floor_needs_override(self, current):
        order = _order_in(current)
        with pytest.raises(InvalidStateTransition):
            order._transition(OrderStatus.CANCELLED, T0)
        assert order.status == current.value
