"""Rolls daily platform rows up into client-facing weekly/monthly metrics.

Additive figures are summed first; every rate is derived from the sums,
never averaged across days.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from ..schemas.metrics import ClientMetric, PeriodType
from ..storage.exceptions import StoreError
from ..storage.repository import (
    list_client_ids,
    load_daily_metrics,
    upsert_client_metric,
)
from .periods import is_period_closed, today_in


logger = logging.getLogger(__name__)


ADDITIVE_FIELDS = (
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "reach",
    "sessions",
    "users",
    "new_users",
    "pageviews",
)

# Averaged per session, weighted by each day's session count.
SESSION_WEIGHTED_FIELDS = ("bounce_rate", "avg_session_duration")


@dataclass(frozen=True)
class AggregateScope:
    """One aggregation request; [date_from, date_to] is a single bucket."""

    period_type: PeriodType
    date_from: date
    date_to: date
    client_id: Optional[str] = None


@dataclass
class AggregateResult:
    success: bool
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    message: Optional[str] = None


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or not denominator:
        return None
    return numerator / denominator


def sum_daily_rows(rows: Iterable[dict]) -> dict[str, Any]:
    """Sum additive fields; NULLs are ignored and an all-NULL column stays None."""
    totals: dict[str, Any] = {name: None for name in ADDITIVE_FIELDS}
    weighted: dict[str, float] = {name: 0.0 for name in SESSION_WEIGHTED_FIELDS}
    weights: dict[str, int] = {name: 0 for name in SESSION_WEIGHTED_FIELDS}

    for row in rows:
        for name in ADDITIVE_FIELDS:
            value = row.get(name)
            if value is None:
                continue
            totals[name] = (totals[name] or 0) + value

        sessions = row.get("sessions") or 0
        for name in SESSION_WEIGHTED_FIELDS:
            value = row.get(name)
            if value is None or sessions <= 0:
                continue
            weighted[name] += value * sessions
            weights[name] += sessions

    for name in SESSION_WEIGHTED_FIELDS:
        totals[name] = weighted[name] / weights[name] if weights[name] else None
    return totals


def derive_rates(totals: dict[str, Any]) -> dict[str, Optional[float]]:
    """Derive rates from summed figures; a zero denominator yields None."""
    impressions = totals.get("impressions")
    clicks = totals.get("clicks")
    spend = totals.get("spend")
    conversions = totals.get("conversions")

    cpm = _ratio(spend, impressions)
    return {
        "ctr": _ratio(clicks, impressions),
        "cpc": _ratio(spend, clicks),
        "cpm": cpm * 1000 if cpm is not None else None,
        "cost_per_conversion": _ratio(spend, conversions),
        "conversion_rate": _ratio(conversions, clicks),
    }


def build_client_metric(
    client_id: str, scope: AggregateScope, rows: list[dict]
) -> ClientMetric:
    totals = sum_daily_rows(rows)
    return ClientMetric(
        client_id=client_id,
        period_type=scope.period_type,
        period_start=scope.date_from,
        period_end=scope.date_to,
        source_record_count=len(rows),
        platforms=sorted({row["platform"] for row in rows}),
        **totals,
        **derive_rates(totals),
    )


class MetricsAggregator:
    """Aggregates stored daily rows into client_metrics rows."""

    def __init__(self, conn: sqlite3.Connection, tzinfo: ZoneInfo) -> None:
        self.conn = conn
        self.tzinfo = tzinfo

    def aggregate(
        self, scope: AggregateScope, today: Optional[date] = None
    ) -> AggregateResult:
        """Aggregate every client (or one) for the scope's period.

        Args:
            scope: Period bucket and optional client filter
            today: Override for the reporting-timezone current day

        Returns:
            AggregateResult; per-client failures are collected, not raised
        """
        today = today or today_in(self.tzinfo)

        if scope.date_from > scope.date_to:
            return AggregateResult(
                success=False,
                message=f"date_from {scope.date_from} is after date_to {scope.date_to}",
            )
        if not is_period_closed(scope.date_to, today):
            return AggregateResult(
                success=False,
                message=f"Period ending {scope.date_to} is not closed (today is {today})",
            )

        if scope.client_id is not None:
            client_ids = [scope.client_id]
        else:
            try:
                client_ids = list_client_ids(self.conn)
            except StoreError as exc:
                logger.error("Could not resolve clients for aggregation: %s", exc)
                return AggregateResult(success=False, message=str(exc))

        result = AggregateResult(success=True)
        for client_id in client_ids:
            try:
                rows = load_daily_metrics(
                    self.conn, client_id, scope.date_from, scope.date_to
                )
                if not rows:
                    result.skipped += 1
                    continue

                metric = build_client_metric(client_id, scope, rows)
                if upsert_client_metric(self.conn, metric):
                    result.inserted += 1
                else:
                    result.updated += 1
            except Exception as exc:
                logger.error(
                    "Aggregation failed for client %s (%s %s..%s): %s",
                    client_id,
                    scope.period_type.value,
                    scope.date_from,
                    scope.date_to,
                    exc,
                    exc_info=True,
                )
                result.errors.append(f"{client_id}: {exc}")

        aggregated = result.inserted + result.updated
        result.success = aggregated > 0 or not result.errors

        logger.info(
            "Aggregated %s %s..%s: inserted=%s updated=%s skipped=%s errors=%s",
            scope.period_type.value,
            scope.date_from,
            scope.date_to,
            result.inserted,
            result.updated,
            result.skipped,
            len(result.errors),
        )
        return result
