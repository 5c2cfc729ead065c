import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from warehouse.api import (
    inventory_router,
    maintenance_router,
    order_router,
    pick_list_router,
    session_router,
)
from warehouse.api.errors import register_exception_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(inventory_router)
    app.include_router(order_router)
    app.include_router(pick_list_router)
    app.include_router(session_router)
    app.include_router(maintenance_router)
    register_exception_handlers(app)
    return TestClient(app)


@pytest.fixture()
def stocked_bin(client):
    """POST a bin and receive stock into it; returns a helper."""

    def _stock(bin_code, sku, quantity, zone_name="A", aisle=1, shelf=1):
        response = client.post(
            "/inventory/bins",
            json={"bin_code": bin_code, "zone_name": zone_name, "aisle": aisle, "shelf": shelf, "max_capacity": 500},
        )
        assert response.status_code == 201
        bin_id = response.json()["bin_id"]
        response = client.post("/inventory/receive", json={"sku": sku, "bin_id": bin_id, "quantity": quantity})
        assert response.status_code == 200
        return bin_id

    return _stock


@pytest.fixture()
def placed_order(client):
    """POST an order and return its id."""

    def _place(lines, reference="ORD-API-1", priority_level=3):
        response = client.post(
            "/orders",
            json={
                "order_reference": reference,
                "lines": [{"sku": sku, "quantity": quantity} for sku, quantity in lines],
                "priority_level": priority_level,
            },
        )
        assert response.status_code == 201
        return response.json()["order_id"]

    return _place
