"""GA4 Data API adapter.

bounceRate is returned as a fraction and stored unchanged.
"""
import logging
from datetime import date, timedelta
from typing import Optional

import aiohttp

from ..config import Settings
from ..schemas.integrations import DailyMetric, GA4Config, GA4Credentials
from .base import PlatformAdapter, compact_to_iso, normalize_series, safe_float, safe_int
from .google_auth import GoogleTokenProvider, classify_google_error
from .http import PlatformHttpClient


logger = logging.getLogger(__name__)


GA4_DATA_API_URL = "https://analyticsdata.googleapis.com/v1beta"
GA4_ADMIN_API_URL = "https://analyticsadmin.googleapis.com/v1beta"

# Order matters: metricValues come back positionally.
REPORT_METRICS = (
    "sessions",
    "totalUsers",
    "screenPageViews",
    "bounceRate",
    "averageSessionDuration",
    "newUsers",
)

PAGE_SIZE = 366


def report_row_to_daily_metric(row: dict) -> Optional[DailyMetric]:
    """Convert one runReport row (dimension 'date') into a DailyMetric."""
    dimension_values = row.get("dimensionValues") or []
    if not dimension_values:
        return None
    metric_date = compact_to_iso(dimension_values[0].get("value", ""))
    if metric_date is None:
        return None

    values = [item.get("value") for item in row.get("metricValues") or []]
    values += [None] * (len(REPORT_METRICS) - len(values))
    by_name = dict(zip(REPORT_METRICS, values))

    return DailyMetric(
        metric_date=metric_date,
        sessions=safe_int(by_name["sessions"]) or 0,
        users=safe_int(by_name["totalUsers"]) or 0,
        pageviews=safe_int(by_name["screenPageViews"]) or 0,
        bounce_rate=safe_float(by_name["bounceRate"]),
        avg_session_duration=safe_float(by_name["averageSessionDuration"]),
        new_users=safe_int(by_name["newUsers"]) or 0,
        raw=row,
    )


class GA4Adapter(PlatformAdapter):
    """Async adapter for GA4 property-level daily metrics."""

    platform = "google_analytics"

    def __init__(self, session: aiohttp.ClientSession, settings: Settings) -> None:
        self.settings = settings
        self.http = PlatformHttpClient(
            self.platform,
            session,
            request_timeout_s=settings.sync_request_timeout_s,
            classify_error=classify_google_error(self.platform),
        )
        self.tokens = GoogleTokenProvider(self.http, settings)

    async def _auth_headers(self, credentials: GA4Credentials) -> dict:
        access_token = await self.tokens.access_token(credentials.refresh_token)
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def _run_report(self, headers: dict, property_number: str, body: dict) -> dict:
        return await self.http.request_json(
            "POST",
            f"{GA4_DATA_API_URL}/properties/{property_number}:runReport",
            headers=headers,
            json_body=body,
        ) or {}

    async def _probe(self, credentials: GA4Credentials, config: Optional[GA4Config]) -> None:
        headers = await self._auth_headers(credentials)
        if config is None:
            await self.http.request_json(
                "GET",
                f"{GA4_ADMIN_API_URL}/accountSummaries",
                params={"pageSize": "1"},
                headers=headers,
            )
            return

        yesterday = (date.today() - timedelta(days=1)).isoformat()
        await self._run_report(
            headers,
            config.property_number,
            {
                "dateRanges": [{"startDate": yesterday, "endDate": yesterday}],
                "metrics": [{"name": "sessions"}],
                "limit": 1,
            },
        )

    async def fetch_daily_metrics(
        self,
        credentials: GA4Credentials,
        config: GA4Config,
        date_from: date,
        date_to: date,
    ) -> list[DailyMetric]:
        headers = await self._auth_headers(credentials)
        body = {
            "dateRanges": [
                {"startDate": date_from.isoformat(), "endDate": date_to.isoformat()}
            ],
            "dimensions": [{"name": "date"}],
            "metrics": [{"name": name} for name in REPORT_METRICS],
            "orderBys": [{"dimension": {"dimensionName": "date"}}],
            "limit": PAGE_SIZE,
            "offset": 0,
        }

        raw_rows: list[dict] = []
        while True:
            report = await self._run_report(headers, config.property_number, body)
            page = report.get("rows") or []
            raw_rows.extend(page)
            total = safe_int(report.get("rowCount")) or 0
            if not page or len(raw_rows) >= total:
                break
            body = {**body, "offset": len(raw_rows)}

        rows = []
        for raw in raw_rows:
            metric = report_row_to_daily_metric(raw)
            if metric is None:
                logger.warning("Skipping GA4 row without a parseable date")
                continue
            rows.append(metric)

        logger.info(
            "Fetched %s GA4 daily rows for property %s (%s..%s)",
            len(rows),
            config.property_number,
            date_from,
            date_to,
        )
        return normalize_series(self.platform, rows, date_from, date_to)

    async def list_accounts(self, credentials: GA4Credentials) -> list[dict]:
        headers = await self._auth_headers(credentials)
        properties = []
        params = {"pageSize": "200"}

        while True:
            data = await self.http.request_json(
                "GET",
                f"{GA4_ADMIN_API_URL}/accountSummaries",
                params=params,
                headers=headers,
            ) or {}
            for summary in data.get("accountSummaries", []):
                for prop in summary.get("propertySummaries", []):
                    properties.append(
                        {
                            "id": prop.get("property", ""),
                            "name": prop.get("displayName", ""),
                            "account": summary.get("displayName", ""),
                        }
                    )
            token = data.get("nextPageToken")
            if not token:
                break
            params = {"pageSize": "200", "pageToken": token}

        return properties
