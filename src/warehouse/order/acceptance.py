"""Order intake and external packing/shipping confirmations — commands and handler."""

import json

from protean import handle
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from warehouse.domain import warehouse
from warehouse.order.order import FulfillmentOrder


@warehouse.command(part_of="FulfillmentOrder")
class AcceptOrder:
    """Accept an order for fulfillment."""

    order_reference = String(required=True, max_length=100)
    lines = Text(required=True)  # JSON list of {"sku", "quantity"}
    priority_level = Integer(default=3, min_value=1)
    special_instructions = Text()
    created_at = DateTime()


@warehouse.command(part_of="FulfillmentOrder")
class RecordOrderPacked:
    """The packing station confirmed the order is packed."""

    order_id = Identifier(required=True)


@warehouse.command(part_of="FulfillmentOrder")
class RecordOrderShipped:
    """The carrier handoff confirmed the order has shipped."""

    order_id = Identifier(required=True)


@warehouse.command_handler(part_of=FulfillmentOrder)
class OrderLifecycleHandler:
    @handle(AcceptOrder)
    def accept_order(self, command):
        order = FulfillmentOrder.accept(
            order_reference=command.order_reference,
            lines_data=json.loads(command.lines),
            priority_level=command.priority_level or 3,
            special_instructions=command.special_instructions,
            created_at=command.created_at,
        )
        current_domain.repository_for(FulfillmentOrder).add(order)
        return str(order.id)

    @handle(RecordOrderPacked)
    def record_packed(self, command):
        from warehouse.services import get_services

        get_services().state_machine.mark_packed(command.order_id)

    @handle(RecordOrderShipped)
    def record_shipped(self, command):
        from warehouse.services import get_services

        get_services().state_machine.mark_shipped(command.order_id)
