"""Fulfillment queue — one row per order, for the dashboard's work queue."""

import json

from protean.core.projector import on
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from warehouse.domain import warehouse
from warehouse.order.events import FulfillmentOrderAccepted, OrderStateChanged
from warehouse.order.order import FulfillmentOrder


@warehouse.projection
class FulfillmentQueue:
    order_id: Identifier(identifier=True, required=True)
    order_reference: String(required=True)
    priority_level: Integer(default=3)
    status: String(required=True)
    line_count: Integer(default=0)
    units_requested: Integer(default=0)
    last_reason: String()
    accepted_at: DateTime()
    updated_at: DateTime()


@warehouse.projector(projector_for=FulfillmentQueue, aggregates=[FulfillmentOrder])
class FulfillmentQueueProjector:
    @on(FulfillmentOrderAccepted)
    def on_order_accepted(self, event):
        lines = json.loads(event.lines)
        current_domain.repository_for(FulfillmentQueue).add(
            FulfillmentQueue(
                order_id=event.order_id,
                order_reference=event.order_reference,
                priority_level=event.priority_level,
                status="Pending",
                line_count=event.line_count,
                units_requested=sum(line["quantity"] for line in lines),
                accepted_at=event.accepted_at,
                updated_at=event.accepted_at,
            )
        )

    @on(OrderStateChanged)
    def on_state_changed(self, event):
        repo = current_domain.repository_for(FulfillmentQueue)
        row = repo.get(event.order_id)
        row.status = event.new_status
        row.last_reason = event.reason
        row.updated_at = event.changed_at
        repo.add(row)
