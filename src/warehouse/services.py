"""Process-wide wiring of the warehouse services.

The ledger, allocation engine, order state machine, pick list generator and
session scheduler share one set of per-order locks, so they are built
together and handed out as a single bundle.
"""

from dataclasses import dataclass

from warehouse.alert.alerting import DomainAlertSink
from warehouse.allocation.engine import AllocationEngine
from warehouse.config import WarehouseSettings, get_settings
from warehouse.ledger import get_ledger_store
from warehouse.ledger.ledger import InventoryLedger
from warehouse.ledger.port import AlertSink, LedgerStore
from warehouse.ledger.recording_sink import RecordingAlertSink
from warehouse.locking import KeyedLocks
from warehouse.order.state_machine import FulfillmentOrderStateMachine
from warehouse.picking.generator import PickListGenerator
from warehouse.session.scheduler import PickSessionScheduler


@dataclass
class WarehouseServices:
    settings: WarehouseSettings
    ledger: InventoryLedger
    engine: AllocationEngine
    state_machine: FulfillmentOrderStateMachine
    generator: PickListGenerator
    scheduler: PickSessionScheduler
    alert_sink: AlertSink


def _alert_sink_for(settings: WarehouseSettings) -> AlertSink:
    if settings.alert_sink == "domain":
        return DomainAlertSink()
    if settings.alert_sink == "recording":
        return RecordingAlertSink()
    raise ValueError(f"Unknown alert sink: {settings.alert_sink}")


def build_services(
    settings: WarehouseSettings | None = None,
    store: LedgerStore | None = None,
    alert_sink: AlertSink | None = None,
) -> WarehouseServices:
    settings = settings or get_settings()
    alert_sink = alert_sink or _alert_sink_for(settings)
    ledger = InventoryLedger(store or get_ledger_store(), settings, alert_sink)

    order_locks = KeyedLocks()
    engine = AllocationEngine(ledger, settings, order_locks)
    state_machine = FulfillmentOrderStateMachine(engine, order_locks)
    scheduler = PickSessionScheduler(state_machine, settings)
    state_machine.on_cancelled(scheduler.withdraw_order)
    engine.on_expired(scheduler.withdraw_expired)

    return WarehouseServices(
        settings=settings,
        ledger=ledger,
        engine=engine,
        state_machine=state_machine,
        generator=PickListGenerator(settings),
        scheduler=scheduler,
        alert_sink=alert_sink,
    )


_services_instance = None


def get_services() -> WarehouseServices:
    """Return the process-wide services, built on first use."""
    global _services_instance
    if _services_instance is None:
        _services_instance = build_services()
    return _services_instance


def reset_services():
    """Drop the services singleton (useful for testing)."""
    global _services_instance
    _services_instance = None
