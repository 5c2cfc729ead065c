"""Tests for pick routing, time estimates and batch merging."""

from datetime import UTC, datetime

from warehouse.config import WarehouseSettings
from warehouse.picking.generator import PickCandidate, PickListGenerator
from warehouse.picking.pick_list import PickListStatus

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _candidate(allocation_id, bin_code, zone, aisle, shelf=1, sku="SKU-A", quantity=2, order_id="ord-1", priority=3):
    return PickCandidate(
        order_id=order_id,
        allocation_id=allocation_id,
        sku=sku,
        bin_id=f"bin-{bin_code}",
        bin_code=bin_code,
        zone_name=zone,
        aisle=aisle,
        shelf=shelf,
        quantity=quantity,
        priority=priority,
        order_created_at=T0,
    )


def _generator(**overrides):
    return PickListGenerator(WarehouseSettings(**overrides))


class TestRouting:
    def test_items_grouped_by_zone_then_aisle(self):
        candidates = [
            _candidate("alloc-a", "A", "Z1", aisle=4),
            _candidate("alloc-b", "B", "Z2", aisle=1),
            _candidate("alloc-c", "C", "Z1", aisle=2),
        ]
        plan = _generator().plan(candidates)

        assert [item.bin_code for item in plan.items] == ["C", "A", "B"]
        assert [item.pick_sequence for item in plan.items] == [1, 2, 3]
        assert plan.zone_count == 2

    def test_shelf_breaks_aisle_ties(self):
        candidates = [
            _candidate("alloc-1", "A-2", "Z1", aisle=1, shelf=2),
            _candidate("alloc-2", "A-1", "Z1", aisle=1, shelf=1),
        ]
        plan = _generator().plan(candidates)
        assert [item.shelf for item in plan.items] == [1, 2]

    def test_estimate_counts_items_and_zone_changes(self):
        candidates = [
            _candidate("alloc-a", "A", "Z1", aisle=1),
            _candidate("alloc-b", "B", "Z2", aisle=1),
            _candidate("alloc-c", "C", "Z3", aisle=1),
        ]
        plan = _generator(per_item_pick_seconds=30, zone_transition_seconds=100).plan(candidates)
        assert plan.estimated_seconds == 3 * 30 + 2 * 100

    def test_single_zone_has_no_transition_cost(self):
        generator = _generator()
        assert generator.estimate_seconds(4, 1) == 4 * 45

    def test_zero_quantity_candidates_are_skipped(self):
        candidates = [
            _candidate("alloc-a", "A", "Z1", aisle=1),
            _candidate("alloc-b", "B", "Z1", aisle=2, quantity=0),
        ]
        plan = _generator().plan(candidates)
        assert plan.total_items == 1
        assert plan.skipped == ("alloc-b",)

    def test_unmerged_plan_keeps_one_item_per_allocation(self):
        candidates = [
            _candidate("alloc-1", "A", "Z1", aisle=1, order_id="ord-1"),
            _candidate("alloc-2", "A", "Z1", aisle=1, order_id="ord-2"),
        ]
        plan = _generator().plan(candidates)
        assert plan.total_items == 2


class TestBuild:
    def test_generate_creates_draft_pick_list(self):
        candidates = [
            _candidate("alloc-a", "A", "Z1", aisle=1, quantity=3),
            _candidate("alloc-b", "B", "Z2", aisle=1, quantity=2),
        ]
        pick_list = _generator().generate(candidates, list_name="Morning", now=T0)

        assert pick_list.status == PickListStatus.DRAFT.value
        assert pick_list.list_name == "Morning"
        assert pick_list.total_items == 2
        assert pick_list.total_quantity == 5
        assert pick_list.zone_count == 2
        assert pick_list.is_batch is False
        assert pick_list.order_id_list() == ["ord-1"]
        assert [item.sku for item in pick_list.sorted_items()] == ["SKU-A", "SKU-A"]

    def test_default_name_lists_orders(self):
        pick_list = _generator().generate([_candidate("alloc-a", "A", "Z1", aisle=1)])
        assert pick_list.list_name == "Pick list ord-1"


class TestBatching:
    def test_overlapping_orders_merge_into_one_item(self):
        candidates = [
            _candidate("alloc-1", "A", "Z1", aisle=1, quantity=2, order_id="ord-1", priority=1),
            _candidate("alloc-2", "A", "Z1", aisle=1, quantity=3, order_id="ord-2", priority=2),
        ]
        plans = _generator().plan_batches(candidates)

        assert len(plans) == 1
        (item,) = plans[0].items
        assert item.quantity == 5
        assert [s.order_id for s in item.sources] == ["ord-1", "ord-2"]

    def test_disjoint_orders_get_separate_lists(self):
        candidates = [
            _candidate("alloc-1", "A", "Z1", aisle=1, order_id="ord-1"),
            _candidate("alloc-2", "B", "Z2", aisle=3, order_id="ord-2"),
        ]
        lists = _generator().generate_batches(candidates, name_prefix="Wave", now=T0)

        assert [pl.list_name for pl in lists] == ["Wave #1", "Wave #2"]
        assert all(pl.is_batch is False for pl in lists)

    def test_overlap_below_threshold_is_not_batched(self):
        candidates = [
            _candidate("alloc-1", "A", "Z1", aisle=1, order_id="ord-1"),
            _candidate("alloc-2", "A", "Z1", aisle=1, order_id="ord-2"),
            _candidate("alloc-3", "B", "Z1", aisle=2, order_id="ord-2"),
            _candidate("alloc-4", "C", "Z1", aisle=3, order_id="ord-2"),
        ]
        plans = _generator(batch_overlap_threshold=0.5).plan_batches(candidates)
        assert len(plans) == 2

    def test_batched_list_is_flagged(self):
        candidates = [
            _candidate("alloc-1", "A", "Z1", aisle=1, order_id="ord-1"),
            _candidate("alloc-2", "A", "Z1", aisle=1, order_id="ord-2"),
        ]
        (pick_list,) = _generator().generate_batches(candidates, now=T0)
        assert pick_list.is_batch is True
        assert pick_list.order_id_list() == ["ord-1", "ord-2"]
        assert pick_list.list_name.startswith("Batch list")
