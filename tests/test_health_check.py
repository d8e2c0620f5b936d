import pytest


class TestHealthCheck:
    def test_health_check_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert "services" in data

    def test_health_check_reports_database_status(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["database"]["status"] == "up"
        assert "response_time_ms" in data["services"]["database"]

    def test_health_check_reports_cache_status(self, client):
        response = client.get("/health")
        data = response.json()
        assert data["services"]["cache"]["status"] == "up"
        assert "response_time_ms" in data["services"]["cache"]

    def test_health_check_reports_unpaid_order_reaper(self, client, settings):
        settings.ORDERS = {**settings.ORDERS, "HOLD_STOCK_MINUTES": 45}
        response = client.get("/health")
        reaper = response.json()["services"]["unpaid_order_reaper"]
        assert reaper["enabled"] is True
        assert reaper["hold_stock_minutes"] == 45
        assert reaper["scheduled_task_id"] is None

    def test_disabled_reaper_does_not_affect_health(self, client, settings):
        settings.ORDERS = {**settings.ORDERS, "MANAGE_STOCK": False}
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["services"]["unpaid_order_reaper"]["enabled"] is False
