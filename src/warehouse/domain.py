"""Warehouse bounded context — Inventory Allocation and Picker Operations.

Turns accepted orders into reserved bin inventory, sequenced pick lists and
batched pick sessions, and owns the fulfillment order's status progression
up to the packing/shipping handoff.
"""

from protean.domain import Domain

from warehouse.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

logger = get_logger(__name__)

# Domain Composition Root
warehouse = Domain(name="warehouse")
