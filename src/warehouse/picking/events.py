"""Pick list events."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from warehouse.domain import warehouse


@warehouse.event(part_of="PickList")
class PickListGenerated:
    """A sequenced pick list was generated from allocations."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    list_name = String(required=True)
    total_items = Integer(required=True)
    total_quantity = Integer(required=True)
    estimated_time_seconds = Integer(required=True)
    zone_count = Integer(required=True)
    is_batch = Boolean(default=False)
    order_ids = Text(required=True)  # JSON list
    generated_at = DateTime(required=True)


@warehouse.event(part_of="PickList")
class PickListStarted:
    """A picker session started working the list."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    pick_session_id = Identifier(required=True)
    picker_id = String()
    started_at = DateTime(required=True)


@warehouse.event(part_of="PickList")
class ItemPicked:
    """Units were scanned for a pick item."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    pick_item_id = Identifier(required=True)
    pick_session_id = Identifier()
    sku = String(required=True)
    bin_id = Identifier(required=True)
    quantity = Integer(required=True)
    quantity_picked = Integer(required=True)
    quantity_requested = Integer(required=True)
    picked_by = String()
    picked_at = DateTime(required=True)


@warehouse.event(part_of="PickList")
class ItemShortPicked:
    """A picker closed an item with fewer units than requested."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    pick_item_id = Identifier(required=True)
    sku = String(required=True)
    bin_id = Identifier(required=True)
    quantity_picked = Integer(required=True)
    quantity_requested = Integer(required=True)
    notes = String()
    reported_at = DateTime(required=True)


@warehouse.event(part_of="PickList")
class PickListCompleted:
    """Every item on the list is closed."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    pick_session_id = Identifier()
    total_items = Integer(required=True)
    completed_at = DateTime(required=True)


@warehouse.event(part_of="PickList")
class PickListCancelled:
    """The list was abandoned; unpicked allocations go back to the ledger."""

    __version__ = 1

    pick_list_id = Identifier(required=True)
    pick_session_id = Identifier()
    reason = String(required=True)
    cancelled_at = DateTime(required=True)
