"""Integration tests for inventory endpoints via TestClient."""

from protean import current_domain
from warehouse.alert.alert import LowStockAlert


class TestBinEndpoints:
    def test_register_and_fetch_bin(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 40)

        response = client.get(f"/inventory/bins/{bin_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["bin_code"] == "A-01-01"
        assert body["occupied"] == 40
        assert body["free_capacity"] == 460
        assert body["positions"][0]["available"] == 40

    def test_duplicate_bin_code_returns_400(self, client, stocked_bin):
        stocked_bin("A-01-01", "SKU-1", 1)
        response = client.post(
            "/inventory/bins",
            json={"bin_code": "A-01-01", "zone_name": "A", "max_capacity": 10},
        )
        assert response.status_code == 400

    def test_unknown_bin_returns_404(self, client):
        assert client.get("/inventory/bins/nope").status_code == 404

    def test_occupied_bin_cannot_be_deactivated(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 5)
        response = client.put(f"/inventory/bins/{bin_id}/deactivate")
        assert response.status_code == 422
        assert response.json()["type"] == "InvalidAdjustment"


class TestStockEndpoints:
    def test_receive_over_capacity_returns_422(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 450)
        response = client.post("/inventory/receive", json={"sku": "SKU-1", "bin_id": bin_id, "quantity": 51})
        assert response.status_code == 422

    def test_adjust(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 40)
        response = client.post(
            "/inventory/adjust",
            json={"sku": "SKU-1", "bin_id": bin_id, "delta": -5, "reason": "cycle count"},
        )
        assert response.status_code == 200
        assert response.json()["on_hand"] == 35

    def test_adjust_below_zero_returns_422(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 4)
        response = client.post(
            "/inventory/adjust",
            json={"sku": "SKU-1", "bin_id": bin_id, "delta": -5, "reason": "cycle count"},
        )
        assert response.status_code == 422
        assert response.json()["sku"] == "SKU-1"

    def test_move(self, client, stocked_bin):
        source = stocked_bin("A-01-01", "SKU-1", 10)
        target = stocked_bin("A-01-02", "SKU-2", 1)
        response = client.post(
            "/inventory/move",
            json={"sku": "SKU-1", "from_bin_id": source, "to_bin_id": target, "quantity": 4},
        )
        assert response.status_code == 200
        moved_from, moved_to = response.json()
        assert moved_from["on_hand"] == 6
        assert moved_to["on_hand"] == 4

    def test_movement_history(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 10)
        client.post(
            "/inventory/adjust",
            json={"sku": "SKU-1", "bin_id": bin_id, "delta": -1, "reason": "damaged"},
        )

        response = client.get("/inventory/movements", params={"sku": "SKU-1"})
        assert [m["movement_type"] for m in response.json()] == ["receipt", "adjustment"]


class TestAlertEndpoints:
    def test_list_and_acknowledge_alert(self, client, stocked_bin):
        bin_id = stocked_bin("A-01-01", "SKU-1", 20)
        client.post(
            "/inventory/adjust",
            json={"sku": "SKU-1", "bin_id": bin_id, "delta": -15, "reason": "damaged"},
        )

        alerts = client.get("/inventory/alerts").json()
        assert len(alerts) == 1
        assert alerts[0]["alert_level"] == "Critical"

        response = client.put(
            f"/inventory/alerts/{alerts[0]['alert_id']}/acknowledge",
            json={"acknowledged_by": "supervisor"},
        )
        assert response.status_code == 200
        assert response.json()["is_acknowledged"] is True
        assert client.get("/inventory/alerts").json() == []
        assert len(client.get("/inventory/alerts", params={"include_acknowledged": True}).json()) == 1

        alert = current_domain.repository_for(LowStockAlert).get(alerts[0]["alert_id"])
        assert alert.acknowledged_by == "supervisor"
