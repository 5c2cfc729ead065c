"""Low-stock alert events."""

from protean.fields import DateTime, Identifier, Integer, String

from warehouse.domain import warehouse


@warehouse.event(part_of="LowStockAlert")
class LowStockDetected:
    """A SKU's warehouse-wide availability dropped into a lower alert level."""

    __version__ = 1

    alert_id = Identifier(required=True)
    sku = String(required=True)
    bin_id = Identifier()
    previous_available = Integer(required=True)
    current_available = Integer(required=True)
    threshold = Integer(required=True)
    alert_level = String(required=True)
    detected_at = DateTime(required=True)


@warehouse.event(part_of="LowStockAlert")
class LowStockAlertAcknowledged:
    """An operator acknowledged a low-stock alert."""

    __version__ = 1

    alert_id = Identifier(required=True)
    sku = String(required=True)
    acknowledged_by = String(required=True)
    acknowledged_at = DateTime(required=True)
