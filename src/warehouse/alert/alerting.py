"""Low-stock alerting — commands, handler, and the ledger sink that feeds them."""

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from warehouse.alert.alert import LowStockAlert
from warehouse.domain import warehouse
from warehouse.ledger.port import AlertSink, LowStockSignal

logger = structlog.get_logger(__name__)


@warehouse.command(part_of="LowStockAlert")
class RaiseLowStockAlert:
    """Open, or refresh, the low-stock alert for a SKU."""

    sku = String(required=True, max_length=100)
    bin_id = Identifier()
    previous_available = Integer(required=True)
    current_available = Integer(required=True)
    threshold = Integer(required=True)
    alert_level = String(required=True, max_length=20)
    detected_at = DateTime()


@warehouse.command(part_of="LowStockAlert")
class AcknowledgeLowStockAlert:
    alert_id = Identifier(required=True)
    acknowledged_by = String(required=True, max_length=100)


@warehouse.command_handler(part_of=LowStockAlert)
class LowStockAlertHandler:
    @handle(RaiseLowStockAlert)
    def raise_alert(self, command):
        repo = current_domain.repository_for(LowStockAlert)
        open_alerts = repo._dao.query.filter(sku=command.sku, is_acknowledged=False).all().items
        if open_alerts:
            alert = open_alerts[0]
            alert.refresh(
                command.bin_id,
                command.previous_available,
                command.current_available,
                command.threshold,
                command.alert_level,
                command.detected_at,
            )
        else:
            alert = LowStockAlert.detect(
                command.sku,
                command.bin_id,
                command.previous_available,
                command.current_available,
                command.threshold,
                command.alert_level,
                command.detected_at,
            )
        repo.add(alert)
        return str(alert.id)

    @handle(AcknowledgeLowStockAlert)
    def acknowledge(self, command):
        repo = current_domain.repository_for(LowStockAlert)
        alert = repo.get(command.alert_id)
        alert.acknowledge(command.acknowledged_by)
        repo.add(alert)


class DomainAlertSink(AlertSink):
    """Turns ledger low-stock signals into LowStockAlert aggregates."""

    def emit(self, signal: LowStockSignal) -> None:
        current_domain.process(
            RaiseLowStockAlert(
                sku=signal.sku,
                bin_id=signal.bin_id,
                previous_available=signal.previous_available,
                current_available=signal.current_available,
                threshold=signal.threshold,
                alert_level=signal.level,
                detected_at=signal.detected_at,
            ),
            asynchronous=False,
        )
