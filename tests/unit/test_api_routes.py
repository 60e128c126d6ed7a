"""Unit tests for API routes."""
import dataclasses
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from src.portal_core.main import create_app
from src.portal_core.schemas.integrations import DailyMetric
from src.portal_core.schemas.metrics import ClientMetric, PeriodType
from src.portal_core.storage.repository import (
    count_daily_metrics,
    create_integration,
    upsert_client_metric,
    upsert_daily_metrics,
)
from src.portal_core.storage.schema import connect, init_database


API_HEADERS = {"X-PORTAL-API-KEY": "test-api-key"}
CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "portal.db"


@pytest.fixture
def client(monkeypatch, db_path):
    """Create test client with mocked environment."""
    monkeypatch.setenv("PORTAL_API_KEY", "test-api-key")
    monkeypatch.setenv("CRON_SECRET", "test-cron-secret")
    monkeypatch.setenv("PORTAL_DB_PATH", str(db_path))
    monkeypatch.setenv("METRICS_TIMEZONE", "UTC")
    monkeypatch.delenv("METRICS_RAW_DIR", raising=False)
    monkeypatch.delenv("REPORT_WEBHOOK_URL", raising=False)
    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def store(db_path):
    conn = connect(db_path)
    init_database(conn)
    yield conn
    conn.close()


def test_cron_sync_requires_bearer(client):
    assert client.get("/api/v1/cron/sync-metrics").status_code == 401
    response = client.get(
        "/api/v1/cron/sync-metrics", headers={"Authorization": "Bearer wrong"}
    )
    assert response.status_code == 401


def test_cron_sync_with_no_integrations(client):
    response = client.get("/api/v1/cron/sync-metrics", headers=CRON_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert (data["total"], data["succeeded"], data["failed"]) == (0, 0, 0)
    assert data["error"] is None


def test_cron_aggregate_runs_last_week(client):
    response = client.get("/api/v1/cron/aggregate-platform-metrics", headers=CRON_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["results"][0]["period_type"] == "weekly"


def test_create_integration_starts_inactive_and_hides_credentials(client):
    response = client.post(
        "/api/v1/admin/integrations",
        json={
            "client_id": "client-a",
            "platform": "meta_ads",
            "display_name": "Acme Meta",
            "credentials": {"accessToken": "very-secret-token"},
            "config": {"adAccountId": "123"},
        },
        headers=API_HEADERS,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "inactive"
    assert data["config"] == {"adAccountId": "123"}
    assert "credentials" not in data
    assert "very-secret-token" not in response.text


def test_create_integration_rejects_malformed_credentials(client):
    response = client.post(
        "/api/v1/admin/integrations",
        json={
            "client_id": "client-a",
            "platform": "naver_searchad",
            "display_name": "Naver",
            "credentials": {"apiKey": "k"},
        },
        headers=API_HEADERS,
    )

    assert response.status_code == 422
    assert "Malformed credentials" in response.json()["detail"]


def test_create_integration_rejects_unknown_platform(client):
    response = client.post(
        "/api/v1/admin/integrations",
        json={"client_id": "client-a", "platform": "tiktok_ads", "display_name": "TikTok"},
        headers=API_HEADERS,
    )

    assert response.status_code == 422


def test_admin_routes_require_api_key(client):
    response = client.post(
        "/api/v1/admin/metrics/aggregate", json={}, headers={"X-PORTAL-API-KEY": "nope"}
    )

    assert response.status_code == 401
    assert "Invalid API key" in response.json()["detail"]


def test_delete_integration_cascades(client, store):
    integration = create_integration(store, "client-a", "meta_ads", "Meta")
    upsert_daily_metrics(
        store,
        integration,
        [DailyMetric(metric_date=date(2024, 12, 1), clicks=3)],
        datetime(2024, 12, 2, tzinfo=timezone.utc),
    )
    store.commit()

    response = client.delete(f"/api/v1/admin/integrations/{integration.id}", headers=API_HEADERS)

    assert response.status_code == 204
    assert count_daily_metrics(store, integration.id) == 0
    again = client.delete(f"/api/v1/admin/integrations/{integration.id}", headers=API_HEADERS)
    assert again.status_code == 404


def test_connection_test_with_unknown_platform(client):
    response = client.post(
        "/api/v1/admin/integrations/test",
        json={"platform": "tiktok_ads", "credentials": {"token": "x"}},
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["message"].startswith("config:")


def test_manual_sync_unknown_integration(client):
    response = client.post("/api/v1/admin/integrations/missing/sync", headers=API_HEADERS)

    assert response.status_code == 404


def test_manual_sync_reports_item_failure(client, store):
    integration = create_integration(store, "client-a", "legacy_platform", "Legacy")

    response = client.post(
        f"/api/v1/admin/integrations/{integration.id}/sync",
        json={"date_from": "2024-12-01", "date_to": "2024-12-07"},
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["error_kind"] == "config"
    assert "Unsupported platform" in data["error"]


def test_manual_sync_rejects_inverted_range(client, store):
    integration = create_integration(store, "client-a", "meta_ads", "Meta")

    response = client.post(
        f"/api/v1/admin/integrations/{integration.id}/sync",
        json={"date_from": "2024-12-07", "date_to": "2024-12-01"},
        headers=API_HEADERS,
    )

    assert response.status_code == 422


def test_admin_aggregate_explicit_period(client, store):
    integration = create_integration(store, "client-a", "meta_ads", "Meta")
    upsert_daily_metrics(
        store,
        integration,
        [
            DailyMetric(metric_date=date(2024, 12, 2), impressions=100, clicks=20),
            DailyMetric(metric_date=date(2024, 12, 3), impressions=400, clicks=20),
        ],
        datetime(2024, 12, 9, tzinfo=timezone.utc),
    )
    store.commit()

    response = client.post(
        "/api/v1/admin/metrics/aggregate",
        json={"period_type": "weekly", "date_from": "2024-12-02", "date_to": "2024-12-08"},
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    result = response.json()["results"][0]
    assert result["success"] is True
    assert result["inserted"] == 1

    metric = client.get(
        "/api/v1/clients/client-a/metrics/weekly/2024-12-02", headers=API_HEADERS
    )
    assert metric.status_code == 200
    assert metric.json()["ctr"] == pytest.approx(0.08)


def test_admin_aggregate_rejects_open_period(client):
    response = client.post(
        "/api/v1/admin/metrics/aggregate",
        json={"date_from": "2099-01-05", "date_to": "2099-01-11"},
        headers=API_HEADERS,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert "not closed" in data["results"][0]["message"]


def test_get_client_metric(client, store):
    missing = client.get("/api/v1/clients/client-a/metrics/monthly/2024-11-01", headers=API_HEADERS)
    assert missing.status_code == 404

    upsert_client_metric(
        store,
        ClientMetric(
            client_id="client-a",
            period_type=PeriodType.MONTHLY,
            period_start=date(2024, 11, 1),
            period_end=date(2024, 11, 30),
            spend=1200.0,
            platforms=["google_ads"],
        ),
    )

    response = client.get("/api/v1/clients/client-a/metrics/monthly/2024-11-01", headers=API_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["spend"] == 1200.0
    assert data["platforms"] == ["google_ads"]
    assert data["ctr"] is None


def test_cron_weekly_reports_requires_bearer(client):
    assert client.get("/api/v1/cron/weekly-reports").status_code == 401


def test_cron_weekly_reports_hands_off_last_week(client, store):
    create_integration(store, "client-a", "meta_ads", "Meta")
    create_integration(store, "client-b", "meta_ads", "Meta")
    response = client.get("/api/v1/cron/weekly-reports", headers=CRON_HEADERS)
    assert response.status_code == 200
    week_start = date.fromisoformat(response.json()["period_start"])

    upsert_client_metric(
        store,
        ClientMetric(
            client_id="client-a",
            period_type=PeriodType.WEEKLY,
            period_start=week_start,
            period_end=date.fromisoformat(response.json()["period_end"]),
            clicks=12,
        ),
    )

    data = client.get("/api/v1/cron/weekly-reports", headers=CRON_HEADERS).json()

    assert data["delivered"] == ["client-a"]
    assert data["missing"] == ["client-b"]
    assert data["failed"] == {}


def test_list_client_metrics(client, store):
    for period_type, start, end in (
        (PeriodType.WEEKLY, date(2024, 11, 25), date(2024, 12, 1)),
        (PeriodType.MONTHLY, date(2024, 11, 1), date(2024, 11, 30)),
        (PeriodType.WEEKLY, date(2024, 12, 2), date(2024, 12, 8)),
    ):
        upsert_client_metric(
            store,
            ClientMetric(
                client_id="client-a",
                period_type=period_type,
                period_start=start,
                period_end=end,
                clicks=1,
            ),
        )

    everything = client.get("/api/v1/clients/client-a/metrics", headers=API_HEADERS)
    weekly = client.get(
        "/api/v1/clients/client-a/metrics", params={"period_type": "weekly"}, headers=API_HEADERS
    )

    assert everything.status_code == 200
    assert [item["period_start"] for item in everything.json()] == [
        "2024-11-01",
        "2024-11-25",
        "2024-12-02",
    ]
    assert [item["period_start"] for item in weekly.json()] == ["2024-11-25", "2024-12-02"]


def test_create_app_uses_given_settings(settings, caplog):
    with caplog.at_level("INFO", logger="src.portal_core.main"):
        app = create_app(
            dataclasses.replace(settings, report_webhook_url="https://reports.example.com/hook")
        )

    assert "report sink=webhook" in caplog.text
    paths = {route.path for route in app.routes}
    assert "/api/v1/cron/weekly-reports" in paths
    assert "/api/v1/clients/{client_id}/metrics" in paths
