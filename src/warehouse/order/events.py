"""Fulfillment order events — immutable facts about order and allocation changes.

All events are past tense, versioned, and carry enough data for projectors
and external alerting collaborators.
"""

from protean.fields import DateTime, Identifier, Integer, String, Text

from warehouse.domain import warehouse


@warehouse.event(part_of="FulfillmentOrder")
class FulfillmentOrderAccepted:
    """An order was accepted for fulfillment."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_reference = String(required=True)
    priority_level = Integer(required=True)
    lines = Text(required=True)  # JSON list of {"sku", "quantity"}
    line_count = Integer(required=True)
    accepted_at = DateTime(required=True)


@warehouse.event(part_of="FulfillmentOrder")
class InventoryAllocated:
    """Bin stock was reserved against one of the order's lines."""

    __version__ = 1

    order_id = Identifier(required=True)
    allocation_id = Identifier(required=True)
    sku = String(required=True)
    bin_id = Identifier(required=True)
    quantity = Integer(required=True)
    reservation_id = Identifier(required=True)
    allocated_at = DateTime(required=True)
    expires_at = DateTime(required=True)


@warehouse.event(part_of="FulfillmentOrder")
class AllocationExpired:
    """An unpicked allocation outlived its expiry and its stock went back to the bin."""

    __version__ = 1

    order_id = Identifier(required=True)
    allocation_id = Identifier(required=True)
    sku = String(required=True)
    bin_id = Identifier(required=True)
    quantity = Integer(required=True)
    expired_at = DateTime(required=True)


@warehouse.event(part_of="FulfillmentOrder")
class AllocationReleased:
    """An allocation was released (cancellation, short pick, abandoned session)."""

    __version__ = 1

    order_id = Identifier(required=True)
    allocation_id = Identifier(required=True)
    sku = String(required=True)
    bin_id = Identifier(required=True)
    quantity = Integer(required=True)  # unpicked units returned to the bin
    reason = String(required=True)
    released_at = DateTime(required=True)


@warehouse.event(part_of="FulfillmentOrder")
class OrderStateChanged:
    """The order moved along its lifecycle."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_reference = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    reason = String()
    changed_at = DateTime(required=True)
