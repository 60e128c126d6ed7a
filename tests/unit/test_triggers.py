"""Unit tests for reporting periods and scheduled triggers."""
import dataclasses
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from src.portal_core.metrics.aggregator import MetricsAggregator
from src.portal_core.metrics.periods import (
    is_period_closed,
    last_completed_month,
    last_completed_week,
    month_bounds,
    today_in,
    trailing_sync_window,
)
from src.portal_core.scheduler import triggers
from src.portal_core.scheduler.reports import (
    LoggingReportSink,
    ReportDeliveryError,
    WebhookReportSink,
)
from src.portal_core.scheduler.triggers import (
    aggregation_job,
    aggregation_scopes,
    report_job,
    run_daily_aggregation,
    run_daily_sync,
    run_weekly_reports,
    sync_job,
)
from src.portal_core.schemas.integrations import DailyMetric
from src.portal_core.schemas.metrics import ClientMetric, PeriodType
from src.portal_core.storage.repository import (
    create_integration,
    get_client_metric,
    upsert_client_metric,
    upsert_daily_metrics,
)
from src.portal_core.storage.schema import connect, init_database


def test_last_completed_week():
    # Monday
    assert last_completed_week(date(2024, 12, 9)) == (date(2024, 12, 2), date(2024, 12, 8))
    # Sunday: the current week is still open
    assert last_completed_week(date(2024, 12, 8)) == (date(2024, 11, 25), date(2024, 12, 1))


def test_last_completed_month_across_year():
    assert last_completed_month(date(2024, 1, 5)) == (date(2023, 12, 1), date(2023, 12, 31))
    assert last_completed_month(date(2024, 3, 1)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_month_bounds_december():
    assert month_bounds(date(2024, 12, 15)) == (date(2024, 12, 1), date(2024, 12, 31))


def test_trailing_sync_window():
    assert trailing_sync_window(date(2024, 12, 10), 7) == (date(2024, 12, 3), date(2024, 12, 10))


def test_today_in_reporting_timezone():
    now = datetime(2024, 12, 31, 16, 30, tzinfo=timezone.utc)

    assert today_in(ZoneInfo("Asia/Seoul"), now) == date(2025, 1, 1)
    assert today_in(ZoneInfo("UTC"), now) == date(2024, 12, 31)


def test_scheduler_never_produces_open_period():
    today = date(2024, 1, 1)
    for _ in range(800):
        scopes = aggregation_scopes(today, 7)
        assert scopes, today
        for scope in scopes:
            assert is_period_closed(scope.date_to, today), (today, scope)
            assert scope.date_from <= scope.date_to
        today += timedelta(days=1)


def test_monthly_scope_only_while_window_reaches_previous_month():
    for day in range(1, 8):
        kinds = [scope.period_type for scope in aggregation_scopes(date(2024, 12, day), 7)]
        assert kinds == [PeriodType.WEEKLY, PeriodType.MONTHLY]

    kinds = [scope.period_type for scope in aggregation_scopes(date(2024, 12, 8), 7)]
    assert kinds == [PeriodType.WEEKLY]

    monthly = aggregation_scopes(date(2024, 12, 3), 7)[1]
    assert (monthly.date_from, monthly.date_to) == (date(2024, 11, 1), date(2024, 11, 30))


@pytest.mark.asyncio
async def test_run_daily_sync_uses_trailing_window():
    engine = MagicMock()
    engine.sync_all_active = AsyncMock(return_value="batch")

    result = await run_daily_sync(engine, date(2024, 12, 10), 7)

    assert result == "batch"
    engine.sync_all_active.assert_awaited_once_with(date(2024, 12, 3), date(2024, 12, 10))


def test_run_daily_aggregation_writes_last_week(conn):
    integration = create_integration(conn, "client-a", "meta_ads", "Meta")
    upsert_daily_metrics(
        conn,
        integration,
        [DailyMetric(metric_date=date(2024, 12, 4), impressions=100, clicks=8)],
        datetime(2024, 12, 9, tzinfo=timezone.utc),
    )
    conn.commit()

    outcomes = run_daily_aggregation(
        MetricsAggregator(conn, ZoneInfo("UTC")), date(2024, 12, 10), 7
    )

    assert [scope.period_type for scope, _ in outcomes] == [PeriodType.WEEKLY]
    assert all(result.success for _, result in outcomes)
    metric = get_client_metric(conn, "client-a", PeriodType.WEEKLY, date(2024, 12, 2))
    assert metric.ctr == pytest.approx(0.08)


class RecordingSink:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.delivered = []

    async def deliver(self, metric):
        if metric.client_id in self.fail_for:
            raise RuntimeError("template render failed")
        self.delivered.append(metric.client_id)


@pytest.mark.asyncio
async def test_weekly_reports_isolate_failures(conn):
    for client_id in ("client-a", "client-b", "client-c"):
        create_integration(conn, client_id, "meta_ads", "Meta")
    for client_id in ("client-a", "client-b"):
        upsert_client_metric(
            conn,
            ClientMetric(
                client_id=client_id,
                period_type=PeriodType.WEEKLY,
                period_start=date(2024, 12, 2),
                period_end=date(2024, 12, 8),
                clicks=10,
            ),
        )
    sink = RecordingSink(fail_for={"client-a"})

    result = await run_weekly_reports(conn, sink, date(2024, 12, 10))

    assert result.delivered == ["client-b"]
    assert list(result.failed) == ["client-a"]
    assert result.missing == ["client-c"]
    assert sink.delivered == ["client-b"]


def _weekly(client_id, clicks=10):
    return ClientMetric(
        client_id=client_id,
        period_type=PeriodType.WEEKLY,
        period_start=date(2024, 12, 2),
        period_end=date(2024, 12, 8),
        clicks=clicks,
    )


@pytest.fixture
def file_settings(settings, tmp_path):
    return dataclasses.replace(settings, db_path=tmp_path / "portal.db")


@pytest.fixture
def file_store(file_settings):
    db_conn = connect(file_settings.db_path)
    init_database(db_conn)
    yield db_conn
    db_conn.close()


def test_aggregation_scopes_carry_client_filter():
    scopes = aggregation_scopes(date(2024, 12, 3), 7, client_id="client-b")

    assert [scope.client_id for scope in scopes] == ["client-b", "client-b"]


def test_aggregation_job_limits_scheduled_run_to_one_client(file_settings, file_store):
    for client_id in ("client-a", "client-b"):
        integration = create_integration(file_store, client_id, "meta_ads", "Meta")
        upsert_daily_metrics(
            file_store,
            integration,
            [DailyMetric(metric_date=date(2024, 12, 4), impressions=100, clicks=8)],
            datetime(2024, 12, 9, tzinfo=timezone.utc),
        )
    file_store.commit()

    outcomes = aggregation_job(file_settings, today=date(2024, 12, 10), client_id="client-b")

    assert [result.inserted for _, result in outcomes] == [1]
    assert get_client_metric(file_store, "client-a", PeriodType.WEEKLY, date(2024, 12, 2)) is None
    assert get_client_metric(file_store, "client-b", PeriodType.WEEKLY, date(2024, 12, 2)) is not None


@pytest.mark.asyncio
async def test_sync_job_without_arguments_runs_daily_sync(file_settings, monkeypatch):
    daily = AsyncMock(return_value="batch")
    monkeypatch.setattr(triggers, "run_daily_sync", daily)

    result = await sync_job(file_settings, today=date(2024, 12, 10))

    assert result == "batch"
    _, today, window_days = daily.await_args.args
    assert (today, window_days) == (date(2024, 12, 10), 7)


@pytest.mark.asyncio
async def test_sync_job_reports_inverted_range(file_settings):
    batch = await sync_job(
        file_settings, date_from=date(2024, 12, 10), date_to=date(2024, 12, 1)
    )

    assert batch.error is not None
    assert batch.total == 0


@pytest.mark.asyncio
async def test_report_job_logs_when_no_webhook(file_settings, file_store, caplog):
    create_integration(file_store, "client-a", "meta_ads", "Meta")
    upsert_client_metric(file_store, _weekly("client-a"))

    with caplog.at_level("INFO", logger="src.portal_core.scheduler.reports"):
        result = await report_job(file_settings, today=date(2024, 12, 10))

    assert result.delivered == ["client-a"]
    assert "Weekly metrics client-a" in caplog.text


@pytest.mark.asyncio
async def test_logging_sink_accepts_metric():
    await LoggingReportSink().deliver(_weekly("client-a"))


@pytest.mark.asyncio
async def test_webhook_sink_posts_metric(make_response):
    session = MagicMock()
    session.post = MagicMock(return_value=make_response(204))
    sink = WebhookReportSink(session, "https://reports.example.com/hook")

    await sink.deliver(_weekly("client-a", clicks=42))

    args, kwargs = session.post.call_args
    assert args[0] == "https://reports.example.com/hook"
    assert kwargs["json"]["event"] == "weekly_client_metrics"
    assert kwargs["json"]["metric"]["clicks"] == 42
    assert kwargs["json"]["metric"]["period_start"] == "2024-12-02"


@pytest.mark.asyncio
async def test_webhook_rejection_is_isolated_per_client(conn, make_response):
    for client_id in ("client-a", "client-b"):
        create_integration(conn, client_id, "meta_ads", "Meta")
        upsert_client_metric(conn, _weekly(client_id))
    session = MagicMock()
    session.post = MagicMock(
        side_effect=[make_response(500, text="generator down"), make_response(200)]
    )

    result = await run_weekly_reports(
        conn, WebhookReportSink(session, "https://reports.example.com/hook"), date(2024, 12, 10)
    )

    assert result.delivered == ["client-b"]
    assert "HTTP 500" in result.failed["client-a"]


def test_report_delivery_error_carries_status():
    exc = ReportDeliveryError("client-a", 502, "bad gateway")

    assert exc.status == 502
    assert "client-a" in str(exc)
