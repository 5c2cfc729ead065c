"""LowStockAlert aggregate — one open alert per SKU, refreshed as stock keeps falling."""

from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String

from warehouse.alert.events import LowStockAlertAcknowledged, LowStockDetected
from warehouse.domain import warehouse
from warehouse.utils.time import utcnow


class AlertLevel(Enum):
    LOW = "Low"
    CRITICAL = "Critical"
    OUT_OF_STOCK = "Out_Of_Stock"


@warehouse.aggregate
class LowStockAlert:
    sku = String(required=True, max_length=100)
    bin_id = Identifier()
    previous_available = Integer(default=0)
    current_available = Integer(default=0)
    threshold = Integer(default=10)
    alert_level = String(choices=AlertLevel, default=AlertLevel.LOW.value)
    is_acknowledged = Boolean(default=False)
    acknowledged_by = String(max_length=100)
    acknowledged_at = DateTime()
    detected_at = DateTime()

    @classmethod
    def detect(cls, sku, bin_id, previous_available, current_available, threshold, alert_level, detected_at=None):
        alert = cls(sku=sku, is_acknowledged=False)
        alert.refresh(bin_id, previous_available, current_available, threshold, alert_level, detected_at)
        return alert

    def refresh(self, bin_id, previous_available, current_available, threshold, alert_level, detected_at=None):
        """Record a newer crossing on a still-open alert."""
        if self.is_acknowledged:
            raise ValidationError({"alert": ["Acknowledged alerts cannot be refreshed"]})
        detected_at = detected_at or utcnow()
        self.bin_id = bin_id
        self.previous_available = previous_available
        self.current_available = current_available
        self.threshold = threshold
        self.alert_level = AlertLevel(alert_level).value
        self.detected_at = detected_at
        self.raise_(
            LowStockDetected(
                alert_id=str(self.id),
                sku=self.sku,
                bin_id=bin_id,
                previous_available=previous_available,
                current_available=current_available,
                threshold=threshold,
                alert_level=self.alert_level,
                detected_at=detected_at,
            )
        )

    def acknowledge(self, acknowledged_by: str) -> None:
        if self.is_acknowledged:
            raise ValidationError({"alert": [f"Alert was already acknowledged by {self.acknowledged_by}"]})
        now = utcnow()
        self.is_acknowledged = True
        self.acknowledged_by = acknowledged_by
        self.acknowledged_at = now
        self.raise_(
            LowStockAlertAcknowledged(
                alert_id=str(self.id),
                sku=self.sku,
                acknowledged_by=acknowledged_by,
                acknowledged_at=now,
            )
        )
