"""Tests that the fulfillment queue and session history projections follow domain events."""

from datetime import UTC, datetime, timedelta

from protean import current_domain
from warehouse.picking.pick_list import PickList
from warehouse.projections.fulfillment_queue import FulfillmentQueue
from warehouse.projections.session_history import PickSessionHistory

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class TestFulfillmentQueue:
    def test_accepted_order_is_queued(self, accept_order):
        order_id = accept_order([("SKU-1", 2), ("SKU-2", 3)], reference="ORD-Q1", priority_level=2)

        row = current_domain.repository_for(FulfillmentQueue).get(order_id)
        assert row.order_reference == "ORD-Q1"
        assert row.status == "Pending"
        assert row.priority_level == 2
        assert row.line_count == 2
        assert row.units_requested == 5

    def test_queue_follows_state_changes(self, services, make_bin, accept_order):
        make_bin("A-01-01", sku="SKU-1", quantity=10)
        order_id = accept_order([("SKU-1", 2)])
        services.engine.allocate(order_id, now=T0)

        row = current_domain.repository_for(FulfillmentQueue).get(order_id)
        assert row.status == "Allocated"
        assert row.last_reason == "allocation"

        services.state_machine.cancel(order_id, reason="customer request")
        row = current_domain.repository_for(FulfillmentQueue).get(order_id)
        assert row.status == "Cancelled"
        assert row.last_reason == "customer request"

    def test_queue_endpoint_filters_by_status(self, client, placed_order):
        first = placed_order([("SKU-1", 1)], reference="ORD-A", priority_level=2)
        second = placed_order([("SKU-1", 1)], reference="ORD-B", priority_level=1)
        client.post(f"/orders/{first}/cancel", json={"reason": "duplicate"})

        pending = client.get("/orders/queue", params={"status": "Pending"}).json()
        assert [row["order_id"] for row in pending] == [second]

        everything = client.get("/orders/queue").json()
        assert [row["order_reference"] for row in everything] == ["ORD-B", "ORD-A"]


class TestPickSessionHistory:
    def _started_session(self, services, make_bin, accept_order, generate_pick_lists):
        make_bin("A-01-01", sku="SKU-1", quantity=10)
        order_id = accept_order([("SKU-1", 2)])
        services.engine.allocate(order_id, now=T0)
        (pick_list_id,) = generate_pick_lists(order_ids=[order_id])
        session = services.scheduler.start_session([pick_list_id], picker_id="picker-9", now=T0)
        return session, pick_list_id

    def test_history_tracks_session_to_completion(self, services, make_bin, accept_order, generate_pick_lists):
        session, pick_list_id = self._started_session(services, make_bin, accept_order, generate_pick_lists)
        repo = current_domain.repository_for(PickSessionHistory)
        assert repo.get(str(session.id)).status == "Planning"

        item_id = str(current_domain.repository_for(PickList).get(pick_list_id).sorted_items()[0].id)
        services.scheduler.record_pick(str(session.id), item_id, 2, now=T0 + timedelta(minutes=1))
        assert repo.get(str(session.id)).status == "Active"

        services.scheduler.complete_session(str(session.id), now=T0 + timedelta(minutes=2))
        row = repo.get(str(session.id))
        assert row.status == "Completed"
        assert row.units_picked == 2
        assert row.efficiency_score == 0.5

    def test_history_records_cancellation(self, services, make_bin, accept_order, generate_pick_lists):
        session, _ = self._started_session(services, make_bin, accept_order, generate_pick_lists)

        services.scheduler.cancel_session(str(session.id), reason="shift over", now=T0)

        row = current_domain.repository_for(PickSessionHistory).get(str(session.id))
        assert row.status == "Cancelled"
        assert row.closed_at is not None

    def test_history_endpoint_filters_by_picker(
        self, client, services, make_bin, accept_order, generate_pick_lists
    ):
        session, _ = self._started_session(services, make_bin, accept_order, generate_pick_lists)

        rows = client.get("/sessions/history", params={"picker_id": "picker-9"}).json()
        assert [row["pick_session_id"] for row in rows] == [str(session.id)]
        assert client.get("/sessions/history", params={"picker_id": "someone-else"}).json() == []
