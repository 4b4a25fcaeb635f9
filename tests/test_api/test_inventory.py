"""
Tests for Inventory API
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient


class TestInventory:

    @pytest.mark.api
    def test_get_inventory(self, client: TestClient, auth_headers, test_medication):
        response = client.get(f"/api/v1/medications/{test_medication.id}/inventory", headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["current_qty"] == 30

    @pytest.mark.api
    def test_low_stock_and_restock(self, client: TestClient, auth_headers, test_medication):
        url = f"/api/v1/medications/{test_medication.id}/inventory"

        drained = client.put(url, json={"current_qty": 4, "unit": "TAB", "low_threshold": 10}, headers=auth_headers)
        assert drained.status_code == status.HTTP_200_OK
        assert drained.json()["last_restocked_at"] is None

        low = client.get("/api/v1/inventory/low-stock", headers=auth_headers).json()
        assert low["total"] == 1
        assert low["items"][0]["name"] == "Metformin"

        restocked = client.put(url, json={"current_qty": 60, "unit": "TAB", "low_threshold": 10}, headers=auth_headers)
        assert restocked.json()["last_restocked_at"] is not None
        assert client.get("/api/v1/inventory/low-stock", headers=auth_headers).json()["total"] == 0

    @pytest.mark.api
    def test_negative_quantity(self, client: TestClient, auth_headers, test_medication):
        response = client.put(
            f"/api/v1/medications/{test_medication.id}/inventory",
            json={"current_qty": -3, "unit": "TAB"},
            headers=auth_headers
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_foreign_medication(self, client: TestClient, other_user, test_medication):
        response = client.get(
            f"/api/v1/medications/{test_medication.id}/inventory",
            headers={"X-User-Id": str(other_user.id)}
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
