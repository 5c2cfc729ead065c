"""Tests for the PickList aggregate."""

from datetime import UTC, datetime

import pytest
from protean.exceptions import ValidationError
from warehouse.exceptions import InvalidStateTransition
from warehouse.picking.events import ItemPicked, PickListCompleted
from warehouse.picking.pick_list import PickItemStatus, PickList, PickListStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _make_list(sources=None, quantity=4, start=True):
    sources = sources or [{"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": quantity}]
    pick_list = PickList.create(
        list_name="Test list",
        items_data=[
            {
                "pick_sequence": 1,
                "bin_id": "bin-1",
                "bin_code": "A-01-01",
                "zone_name": "A",
                "sku": "SKU-A",
                "quantity_requested": sum(s["quantity"] for s in sources),
                "sources": sources,
            }
        ],
        estimated_time_seconds=45,
        zone_count=1,
        now=T0,
    )
    if start:
        pick_list.start("session-1", picker_id="picker-1", now=T0)
    return pick_list


def _only_item(pick_list):
    return pick_list.sorted_items()[0]


class TestLifecycle:
    def test_list_needs_items(self):
        with pytest.raises(ValidationError):
            PickList.create("Empty", [], 0, 0)

    def test_start_draft_list(self):
        pick_list = _make_list()
        assert pick_list.status == PickListStatus.IN_PROGRESS.value
        assert pick_list.pick_session_id == "session-1"

    def test_cannot_start_twice(self):
        pick_list = _make_list()
        with pytest.raises(InvalidStateTransition):
            pick_list.start("session-2", now=T0)

    def test_draft_list_rejects_picks(self):
        pick_list = _make_list(start=False)
        with pytest.raises(ValidationError):
            pick_list.record_pick(_only_item(pick_list).id, 1, now=T0)


class TestRecordPick:
    def test_partial_pick(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        shares = pick_list.record_pick(item.id, 2, picker_id="picker-1", now=T0)

        assert item.quantity_picked == 2
        assert item.status == PickItemStatus.PICKING.value
        assert shares == [{"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2}]
        assert pick_list.status == PickListStatus.IN_PROGRESS.value

    def test_picking_everything_completes_list(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        pick_list.record_pick(item.id, 2, now=T0)
        pick_list.record_pick(item.id, 2, now=T0)

        assert item.status == PickItemStatus.PICKED.value
        assert pick_list.status == PickListStatus.COMPLETED.value
        assert len([e for e in pick_list._events if isinstance(e, ItemPicked)]) == 2
        assert any(isinstance(e, PickListCompleted) for e in pick_list._events)

    def test_over_pick_rejected(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        pick_list.record_pick(item.id, 3, now=T0)
        with pytest.raises(ValidationError):
            pick_list.record_pick(item.id, 2, now=T0)
        assert item.quantity_picked == 3

    def test_closed_item_rejects_picks(self):
        pick_list = _make_list(quantity=1)
        item = _only_item(pick_list)
        pick_list.record_pick(item.id, 1, now=T0)
        with pytest.raises(ValidationError):
            pick_list.record_pick(item.id, 1, now=T0)

    def test_units_go_to_first_source_first(self):
        pick_list = _make_list(
            sources=[
                {"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2},
                {"order_id": "ord-2", "allocation_id": "alloc-2", "quantity": 3},
            ]
        )
        item = _only_item(pick_list)
        shares = pick_list.record_pick(item.id, 3, now=T0)
        assert shares == [
            {"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2},
            {"order_id": "ord-2", "allocation_id": "alloc-2", "quantity": 1},
        ]


class TestShortPick:
    def test_short_pick_closes_item(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        shares, shorted = pick_list.short_pick(item.id, 1, notes="damaged", now=T0)

        assert item.status == PickItemStatus.SHORT_PICK.value
        assert item.quantity_picked == 1
        assert shares == [{"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 1}]
        assert shorted == [{"order_id": "ord-1", "allocation_id": "alloc-1", "missing": 3}]
        assert pick_list.status == PickListStatus.COMPLETED.value

    def test_short_pick_must_be_short(self):
        pick_list = _make_list()
        with pytest.raises(ValidationError):
            pick_list.short_pick(_only_item(pick_list).id, 4, now=T0)


class TestWithdrawAndCancel:
    def test_withdraw_only_order_skips_item(self):
        pick_list = _make_list()
        assert pick_list.withdraw_order("ord-1", now=T0) is True

        item = _only_item(pick_list)
        assert item.status == PickItemStatus.SKIPPED.value
        assert item.quantity_requested == 0
        assert pick_list.status == PickListStatus.COMPLETED.value

    def test_withdraw_one_of_two_orders(self):
        pick_list = _make_list(
            sources=[
                {"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2},
                {"order_id": "ord-2", "allocation_id": "alloc-2", "quantity": 3},
            ]
        )
        pick_list.withdraw_order("ord-2", now=T0)

        item = _only_item(pick_list)
        assert item.quantity_requested == 2
        assert item.status == PickItemStatus.PENDING.value
        assert pick_list.status == PickListStatus.IN_PROGRESS.value

    def test_withdraw_unknown_order_changes_nothing(self):
        pick_list = _make_list()
        assert pick_list.withdraw_order("ord-9", now=T0) is False

    def test_withdraw_shrinks_totals(self):
        pick_list = _make_list(
            sources=[
                {"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2},
                {"order_id": "ord-2", "allocation_id": "alloc-2", "quantity": 3},
            ]
        )
        pick_list.withdraw_order("ord-2", now=T0)
        assert pick_list.total_items == 1
        assert pick_list.total_quantity == 2

        pick_list.withdraw_order("ord-1", now=T0)
        assert pick_list.total_items == 0
        assert pick_list.total_quantity == 0

    def test_withdraw_keeps_picked_units(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        pick_list.record_pick(item.id, 1, now=T0)

        pick_list.withdraw_order("ord-1", now=T0)

        assert item.quantity_requested == 1
        assert item.status == PickItemStatus.PICKED.value
        assert pick_list.total_items == 1
        assert pick_list.total_quantity == 1

    def test_withdraw_expired_allocation_from_draft(self):
        pick_list = _make_list(
            sources=[
                {"order_id": "ord-1", "allocation_id": "alloc-1", "quantity": 2},
                {"order_id": "ord-2", "allocation_id": "alloc-2", "quantity": 3},
            ],
            start=False,
        )
        assert pick_list.withdraw_allocations(["alloc-1"], now=T0) is True

        assert pick_list.status == PickListStatus.DRAFT.value
        assert _only_item(pick_list).quantity_requested == 3
        assert pick_list.total_quantity == 3

    def test_draft_left_empty_is_cancelled(self):
        pick_list = _make_list(start=False)
        pick_list.withdraw_allocations(["alloc-1"], now=T0)

        assert pick_list.status == PickListStatus.CANCELLED.value
        assert pick_list.cancellation_reason == "allocation expired"
        assert _only_item(pick_list).notes == "allocation expired"

    def test_withdraw_from_closed_list_changes_nothing(self):
        pick_list = _make_list(quantity=1)
        pick_list.record_pick(_only_item(pick_list).id, 1, now=T0)
        assert pick_list.withdraw_allocations(["alloc-1"], now=T0) is False
        assert pick_list.total_quantity == 1

    def test_cancel_reports_unpicked_sources(self):
        pick_list = _make_list()
        item = _only_item(pick_list)
        pick_list.record_pick(item.id, 1, now=T0)
        unpicked = pick_list.cancel("picker went home", now=T0)

        assert unpicked == [{"order_id": "ord-1", "allocation_id": "alloc-1", "missing": 3}]
        assert pick_list.status == PickListStatus.CANCELLED.value
        assert item.status == PickItemStatus.SKIPPED.value

    def test_completed_list_cannot_be_cancelled(self):
        pick_list = _make_list(quantity=1)
        pick_list.record_pick(_only_item(pick_list).id, 1, now=T0)
        with pytest.raises(InvalidStateTransition):
            pick_list.cancel("too late", now=T0)
