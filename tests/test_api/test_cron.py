"""
Tests for Cron API and health endpoints
"""

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from config import settings


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    return {"Authorization": "Bearer s3cret"}


class TestCronAuth:

    @pytest.mark.api
    def test_rejects_missing_secret(self, client: TestClient, cron_secret):
        response = client.post("/api/v1/cron/mark-missed")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.api
    def test_rejects_wrong_secret(self, client: TestClient, cron_secret):
        response = client.post("/api/v1/cron/mark-missed", headers={"Authorization": "Bearer guess"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.api
    def test_open_without_configured_secret(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", None)
        response = client.post("/api/v1/cron/mark-missed")
        assert response.status_code == status.HTTP_200_OK


class TestCronJobs:

    @pytest.mark.api
    def test_generate_doses(self, client: TestClient, cron_secret, test_schedule):
        response = client.post("/api/v1/cron/generate-doses", headers=cron_secret)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["job"] == "generate_doses"
        assert data["success"] is True
        # Default two-week horizon of MON/WED/FRI at two times
        assert data["total"] == 12

    @pytest.mark.api
    def test_send_notifications_without_due_doses(self, client: TestClient, cron_secret, test_user):
        data = client.post("/api/v1/cron/send-notifications", headers=cron_secret).json()
        assert data["total"] == 0
        assert data["errors"] == []

    @pytest.mark.api
    def test_low_stock_alerts(self, client: TestClient, cron_secret, test_medication):
        data = client.post("/api/v1/cron/low-stock-alerts", headers=cron_secret).json()
        assert data["job"] == "low_stock_alerts"
        assert data["total"] == 0


class TestHealth:

    @pytest.mark.api
    def test_root(self, client: TestClient):
        assert client.get("/").json()["status"] == "healthy"

    @pytest.mark.api
    def test_health(self, client: TestClient):
        data = client.get("/health").json()
        assert "database" in data["checks"]
        assert "notifications" in data["checks"]
