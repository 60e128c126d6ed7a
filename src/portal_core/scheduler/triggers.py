"""Scheduled and manual entry points for sync, aggregation and report hand-off.

Triggers are stateless: overlapping runs rely on idempotent upserts, not locks.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Protocol

import aiohttp

from ..config import Settings
from ..integrations.registry import build_adapter_registry
from ..metrics.aggregator import AggregateResult, AggregateScope, MetricsAggregator
from ..metrics.periods import (
    is_period_closed,
    last_completed_month,
    last_completed_week,
    today_in,
    trailing_sync_window,
)
from ..schemas.metrics import ClientMetric, PeriodType
from ..storage.repository import get_client_metric, list_client_ids
from ..storage.schema import connect, init_database
from ..sync.engine import BatchSyncResult, SyncEngine
from .reports import LoggingReportSink, WebhookReportSink


logger = logging.getLogger(__name__)


class ReportSink(Protocol):
    """Downstream consumer of weekly client metrics (report/notification builder)."""

    async def deliver(self, metric: ClientMetric) -> None:
        ...


@dataclass
class ReportHandoffResult:
    period_start: date
    period_end: date
    delivered: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def aggregation_scopes(
    today: date, window_days: int, client_id: Optional[str] = None
) -> list[AggregateScope]:
    """Periods the daily aggregation run should (re)compute.

    The last completed week always; the last completed month while the
    trailing sync window still reaches into it. Every scope is closed.
    With client_id, every scope is limited to that client.
    """
    week_start, week_end = last_completed_week(today)
    scopes = [AggregateScope(PeriodType.WEEKLY, week_start, week_end, client_id)]

    month_start, month_end = last_completed_month(today)
    window_start, _ = trailing_sync_window(today, window_days)
    if window_start <= month_end:
        scopes.append(AggregateScope(PeriodType.MONTHLY, month_start, month_end, client_id))

    return [scope for scope in scopes if is_period_closed(scope.date_to, today)]


async def run_daily_sync(
    engine: SyncEngine, today: date, window_days: int
) -> BatchSyncResult:
    """Re-sync the trailing window for every active integration."""
    date_from, date_to = trailing_sync_window(today, window_days)
    logger.info("Daily sync for %s..%s", date_from, date_to)
    return await engine.sync_all_active(date_from, date_to)


def run_daily_aggregation(
    aggregator: MetricsAggregator,
    today: date,
    window_days: int,
    client_id: Optional[str] = None,
) -> list[tuple[AggregateScope, AggregateResult]]:
    outcomes = []
    for scope in aggregation_scopes(today, window_days, client_id):
        outcomes.append((scope, aggregator.aggregate(scope, today=today)))
    return outcomes


async def run_weekly_reports(
    conn: sqlite3.Connection, sink: ReportSink, today: date
) -> ReportHandoffResult:
    """Hand each client's last-completed-week metrics to the report sink.

    A failing client is recorded and does not stop the others.
    """
    week_start, week_end = last_completed_week(today)
    result = ReportHandoffResult(period_start=week_start, period_end=week_end)

    for client_id in list_client_ids(conn):
        metric = get_client_metric(conn, client_id, PeriodType.WEEKLY, week_start)
        if metric is None:
            result.missing.append(client_id)
            continue
        try:
            await sink.deliver(metric)
        except Exception as exc:
            logger.error(
                "Weekly report hand-off failed for client %s: %s",
                client_id,
                exc,
                exc_info=True,
            )
            result.failed[client_id] = str(exc)
            continue
        result.delivered.append(client_id)

    logger.info(
        "Weekly reports %s..%s: delivered=%s missing=%s failed=%s",
        week_start,
        week_end,
        len(result.delivered),
        len(result.missing),
        len(result.failed),
    )
    return result


def open_store(settings: Settings) -> sqlite3.Connection:
    conn = connect(settings.db_path)
    init_database(conn)
    return conn


async def sync_job(
    settings: Settings,
    today: Optional[date] = None,
    client_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> BatchSyncResult:
    """Open the store and an HTTP session, then run a batch sync.

    Without arguments this is the scheduled daily sync. An explicit range
    overrides either end of the trailing window; with client_id only that
    client's active integrations are synced.
    """
    today = today or today_in(settings.tzinfo)

    conn = open_store(settings)
    try:
        async with aiohttp.ClientSession() as session:
            engine = SyncEngine(conn, build_adapter_registry(session, settings), settings)
            if client_id is None and date_from is None and date_to is None:
                return await run_daily_sync(engine, today, settings.sync_window_days)

            default_from, default_to = trailing_sync_window(today, settings.sync_window_days)
            date_from = date_from or default_from
            date_to = date_to or default_to
            if client_id is not None:
                return await engine.sync_client(client_id, date_from, date_to)
            return await engine.sync_all_active(date_from, date_to)
    finally:
        conn.close()


def aggregation_job(
    settings: Settings,
    today: Optional[date] = None,
    scope: Optional[AggregateScope] = None,
    client_id: Optional[str] = None,
) -> list[tuple[AggregateScope, AggregateResult]]:
    """Run the scheduled aggregation, or a single explicit scope.

    client_id limits the scheduled scopes to one client; an explicit scope
    carries its own client filter.
    """
    today = today or today_in(settings.tzinfo)
    conn = open_store(settings)
    try:
        aggregator = MetricsAggregator(conn, settings.tzinfo)
        if scope is not None:
            return [(scope, aggregator.aggregate(scope, today=today))]
        return run_daily_aggregation(
            aggregator, today, settings.sync_window_days, client_id=client_id
        )
    finally:
        conn.close()


async def report_job(
    settings: Settings, today: Optional[date] = None
) -> ReportHandoffResult:
    """Hand last week's client metrics to the configured report sink.

    Posts to REPORT_WEBHOOK_URL when set, otherwise logs each summary.
    """
    today = today or today_in(settings.tzinfo)
    conn = open_store(settings)
    try:
        if not settings.report_webhook_url:
            return await run_weekly_reports(conn, LoggingReportSink(), today)
        async with aiohttp.ClientSession() as session:
            sink = WebhookReportSink(
                session, settings.report_webhook_url, settings.sync_request_timeout_s
            )
            return await run_weekly_reports(conn, sink, today)
    finally:
        conn.close()
