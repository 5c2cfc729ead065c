"""Shared BDD fixtures and step definitions for warehouse fulfillment."""

from datetime import UTC, datetime

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then, when
from warehouse.order.order import FulfillmentOrder
from warehouse.picking.pick_list import PickList

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture()
def floor():
    """Names used in scenarios mapped to the ids they stand for."""
    return {"bins": {}, "orders": {}, "pick_list_id": None, "session_id": None, "error": None}


def order_for(floor, name) -> FulfillmentOrder:
    return current_domain.repository_for(FulfillmentOrder).get(floor["orders"][name])


def pick_list_for(floor) -> PickList:
    return current_domain.repository_for(PickList).get(floor["pick_list_id"])


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('bin "{code}" in zone "{zone}" aisle {aisle:d} holds {quantity:d} units of "{sku}"'))
def _(floor, make_bin, code, zone, aisle, quantity, sku):
    floor["bins"][code] = make_bin(code, zone_name=zone, aisle=aisle, sku=sku, quantity=quantity)


@given(parsers.cfparse('order "{name}" requests {quantity:d} units of "{sku}" at priority {priority:d}'))
def _(floor, accept_order, name, quantity, sku, priority):
    floor["orders"][name] = accept_order([(sku, quantity)], reference=name, priority_level=priority, created_at=T0)


@given(parsers.cfparse('order "{name}" requests the lines {lines}'))
def _(floor, accept_order, name, lines):
    # e.g. 1 "SKU-A", 2 "SKU-B"
    requested = []
    for part in lines.split(","):
        quantity, sku = part.strip().split(" ", 1)
        requested.append((sku.strip('"'), int(quantity)))
    floor["orders"][name] = accept_order(requested, reference=name, created_at=T0)


@given(parsers.cfparse('order "{name}" was allocated'))
def _(floor, services, name):
    services.engine.allocate(floor["orders"][name], now=T0)


@given(parsers.cfparse('a picker has started a session for order "{name}"'))
def _(floor, services, generate_pick_lists, name):
    (floor["pick_list_id"],) = generate_pick_lists(order_ids=[floor["orders"][name]])
    session = services.scheduler.start_session([floor["pick_list_id"]], picker_id="picker-1", now=T0)
    floor["session_id"] = str(session.id)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('a pick list is generated for order "{name}"'))
def _(floor, generate_pick_lists, name):
    (floor["pick_list_id"],) = generate_pick_lists(order_ids=[floor["orders"][name]])


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('order "{name}" is "{status}"'))
def _(floor, name, status):
    assert order_for(floor, name).status == status


@then(parsers.cfparse('order "{name}" has {quantity:d} units of "{sku}" allocated'))
def _(floor, name, quantity, sku):
    assert order_for(floor, name).covered_for(sku) == quantity


@then(parsers.cfparse('bin "{code}" has {quantity:d} units of "{sku}" allocated'))
def _(floor, services, code, quantity, sku):
    assert services.ledger.position(sku, floor["bins"][code]).allocated == quantity


@then(parsers.cfparse('bin "{code}" has {quantity:d} units of "{sku}" on hand'))
def _(floor, services, code, quantity, sku):
    assert services.ledger.position(sku, floor["bins"][code]).on_hand == quantity


@then(parsers.cfparse('the pick list is "{status}"'))
def _(floor, status):
    assert pick_list_for(floor).status == status

