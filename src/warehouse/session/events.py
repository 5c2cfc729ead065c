"""Pick session events."""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from warehouse.domain import warehouse


@warehouse.event(part_of="PickSession")
class PickSessionStarted:
    """Pick lists were grouped into a session for a picker."""

    __version__ = 1

    pick_session_id = Identifier(required=True)
    session_name = String(required=True)
    session_type = String(required=True)
    pick_list_ids = Text(required=True)  # JSON list
    total_orders = Integer(required=True)
    total_items = Integer(required=True)
    total_pick_lists = Integer(required=True)
    assigned_picker_id = String()
    started_at = DateTime(required=True)


@warehouse.event(part_of="PickSession")
class PickSessionActivated:
    """The first pick of the session was recorded."""

    __version__ = 1

    pick_session_id = Identifier(required=True)
    first_pick_at = DateTime(required=True)


@warehouse.event(part_of="PickSession")
class PickSessionCompleted:
    """The session closed; efficiency is items per elapsed minute."""

    __version__ = 1

    pick_session_id = Identifier(required=True)
    session_name = String(required=True)
    session_type = String(required=True)
    assigned_picker_id = String()
    total_orders = Integer(required=True)
    total_items = Integer(required=True)
    total_pick_lists = Integer(required=True)
    units_picked = Integer(required=True)
    elapsed_minutes = Float(required=True)
    efficiency_score = Float(required=True)
    started_at = DateTime(required=True)
    completed_at = DateTime(required=True)


@warehouse.event(part_of="PickSession")
class PickSessionCancelled:
    __version__ = 1

    pick_session_id = Identifier(required=True)
    reason = String()
    units_picked = Integer(default=0)
    cancelled_at = DateTime(required=True)
