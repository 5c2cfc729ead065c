import json
from datetime import UTC, date, datetime

import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture
from warehouse.order.acceptance import AcceptOrder
from warehouse.picking.generation import GeneratePickLists


@pytest.fixture(scope="session")
def warehouse_bed():
    from warehouse.domain import warehouse

    bed = DomainFixture(warehouse)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(warehouse_bed):
    with warehouse_bed.domain_context():
        yield


@pytest.fixture()
def services():
    from warehouse.services import get_services

    return get_services()


@pytest.fixture()
def ledger(services):
    return services.ledger


@pytest.fixture()
def make_bin(ledger):
    """Register a bin and optionally stock it with one SKU."""

    def _make(
        bin_code,
        zone_name="Z1",
        aisle=1,
        shelf=1,
        sku=None,
        quantity=0,
        expires_on: date | None = None,
        max_capacity=1000,
    ):
        slot = ledger.register_bin(bin_code, zone_name, aisle, shelf, max_capacity)
        if sku and quantity:
            ledger.receive(sku, slot.bin_id, quantity, reference=f"PO-{bin_code}", expires_on=expires_on)
        return slot.bin_id

    return _make


@pytest.fixture()
def accept_order():
    """Accept an order through the command and return its id."""

    def _accept(lines, reference="ORD-001", priority_level=3, created_at: datetime | None = None):
        command = AcceptOrder(
            order_reference=reference,
            lines=json.dumps([{"sku": sku, "quantity": quantity} for sku, quantity in lines]),
            priority_level=priority_level,
            created_at=created_at or datetime.now(UTC),
        )
        return current_domain.process(command, asynchronous=False)

    return _accept


@pytest.fixture()
def generate_pick_lists():
    """Generate pick lists through the command and return their ids."""

    def _generate(order_ids=None, allocation_ids=None, batch=False, list_name=None):
        command = GeneratePickLists(
            order_ids=json.dumps(order_ids) if order_ids else None,
            allocation_ids=json.dumps(allocation_ids) if allocation_ids else None,
            list_name=list_name,
            batch=batch,
        )
        return current_domain.process(command, asynchronous=False)

    return _generate
