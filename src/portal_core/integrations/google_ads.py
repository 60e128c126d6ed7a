"""Google Ads API adapter (searchStream over GAQL).

Cost and average CPC come back in micros. ctr is already a fraction.
"""
import logging
from datetime import date
from typing import Any, Optional

import aiohttp

from ..config import Settings
from ..schemas.integrations import DailyMetric, GoogleAdsConfig, GoogleAdsCredentials
from .base import PlatformAdapter, compact_to_iso, normalize_series, safe_float, safe_int
from .exceptions import InvalidConfigError
from .google_auth import GoogleTokenProvider, classify_google_error
from .http import PlatformHttpClient


logger = logging.getLogger(__name__)


GOOGLE_ADS_API_URL = "https://googleads.googleapis.com/v17"

MICROS = 1_000_000

DAILY_METRICS_QUERY = """
SELECT
  segments.date,
  metrics.impressions,
  metrics.clicks,
  metrics.cost_micros,
  metrics.conversions,
  metrics.ctr,
  metrics.average_cpc
FROM customer
WHERE segments.date BETWEEN '{date_from}' AND '{date_to}'
ORDER BY segments.date
""".strip()


def result_to_daily_metric(result: dict) -> Optional[DailyMetric]:
    """Convert one searchStream result row into a DailyMetric."""
    metric_date = compact_to_iso((result.get("segments") or {}).get("date", ""))
    if metric_date is None:
        return None

    metrics = result.get("metrics") or {}
    cost_micros = safe_float(metrics.get("costMicros")) or 0.0
    average_cpc = safe_float(metrics.get("averageCpc"))

    return DailyMetric(
        metric_date=metric_date,
        impressions=safe_int(metrics.get("impressions")) or 0,
        clicks=safe_int(metrics.get("clicks")) or 0,
        spend=cost_micros / MICROS,
        conversions=safe_float(metrics.get("conversions")) or 0.0,
        ctr=safe_float(metrics.get("ctr")),
        cpc=average_cpc / MICROS if average_cpc is not None else None,
        raw=result,
    )


class GoogleAdsAdapter(PlatformAdapter):
    """Async adapter for Google Ads account-level daily metrics."""

    platform = "google_ads"

    def __init__(self, session: aiohttp.ClientSession, settings: Settings) -> None:
        self.settings = settings
        self.http = PlatformHttpClient(
            self.platform,
            session,
            request_timeout_s=settings.sync_request_timeout_s,
            classify_error=classify_google_error(self.platform),
        )
        self.tokens = GoogleTokenProvider(self.http, settings)

    def _developer_token(self, credentials: GoogleAdsCredentials) -> str:
        token = credentials.developer_token or self.settings.google_developer_token
        if not token:
            raise InvalidConfigError(self.platform, "Google Ads developer token not configured")
        return token

    async def _headers(
        self,
        credentials: GoogleAdsCredentials,
        config: Optional[GoogleAdsConfig] = None,
    ) -> dict:
        developer_token = self._developer_token(credentials)
        access_token = await self.tokens.access_token(credentials.refresh_token)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "developer-token": developer_token,
            "Content-Type": "application/json",
        }
        if config is not None and config.login_customer_id:
            headers["login-customer-id"] = config.login_customer_id.replace("-", "")
        return headers

    async def _probe(
        self,
        credentials: GoogleAdsCredentials,
        config: Optional[GoogleAdsConfig],
    ) -> None:
        headers = await self._headers(credentials, config)
        if config is None:
            await self.http.request_json(
                "GET", f"{GOOGLE_ADS_API_URL}/customers:listAccessibleCustomers", headers=headers
            )
            return

        await self.http.request_json(
            "POST",
            f"{GOOGLE_ADS_API_URL}/customers/{config.customer_digits}/googleAds:search",
            headers=headers,
            json_body={"query": "SELECT customer.id FROM customer LIMIT 1"},
        )

    async def fetch_daily_metrics(
        self,
        credentials: GoogleAdsCredentials,
        config: GoogleAdsConfig,
        date_from: date,
        date_to: date,
    ) -> list[DailyMetric]:
        headers = await self._headers(credentials, config)
        query = DAILY_METRICS_QUERY.format(
            date_from=date_from.isoformat(), date_to=date_to.isoformat()
        )

        batches = await self.http.request_json(
            "POST",
            f"{GOOGLE_ADS_API_URL}/customers/{config.customer_digits}/googleAds:searchStream",
            headers=headers,
            json_body={"query": query},
        )
        if isinstance(batches, dict):
            batches = [batches]

        rows = []
        for batch in batches or []:
            for result in batch.get("results", []):
                metric = result_to_daily_metric(result)
                if metric is None:
                    logger.warning("Skipping Google Ads row without segments.date")
                    continue
                rows.append(metric)

        logger.info(
            "Fetched %s Google Ads daily rows for %s (%s..%s)",
            len(rows),
            config.customer_digits,
            date_from,
            date_to,
        )
        return normalize_series(self.platform, rows, date_from, date_to)

    async def list_accounts(self, credentials: GoogleAdsCredentials) -> list[dict]:
        headers = await self._headers(credentials)
        data: Any = await self.http.request_json(
            "GET", f"{GOOGLE_ADS_API_URL}/customers:listAccessibleCustomers", headers=headers
        )
        accounts = []
        for resource_name in (data or {}).get("resourceNames", []):
            accounts.append(
                {"id": resource_name.split("/")[-1], "resource_name": resource_name}
            )
        return accounts
