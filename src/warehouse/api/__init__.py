"""Warehouse domain API package."""

from warehouse.api.routes import (
    inventory_router,
    maintenance_router,
    order_router,
    pick_list_router,
    session_router,
)

__all__ = ["inventory_router", "order_router", "pick_list_router", "session_router", "maintenance_router"]
