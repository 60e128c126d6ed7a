"""Naver Search Ads API adapter (API key + HMAC signature).

Stats are returned per campaign per day; the campaign id becomes the record's
dimension key. Naver reports ctr as a percentage.
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from datetime import date
from typing import Any, Optional

import aiohttp

from ..config import Settings
from ..schemas.integrations import DailyMetric, NaverConfig, NaverCredentials
from .base import PlatformAdapter, compact_to_iso, normalize_series, safe_float, safe_int
from .http import PlatformHttpClient


logger = logging.getLogger(__name__)


NAVER_API_URL = "https://api.searchad.naver.com"

STAT_FIELDS = ["impCnt", "clkCnt", "salesAmt", "ctr", "cpc", "ccnt"]


def sign_request(secret_key: str, timestamp_ms: str, method: str, uri: str) -> str:
    """Base64 HMAC-SHA256 of '{timestamp}.{METHOD}.{uri}' keyed by the secret."""
    message = f"{timestamp_ms}.{method}.{uri}"
    digest = hmac.new(
        secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def stat_to_daily_metric(entry: dict) -> Optional[DailyMetric]:
    """Convert one /stats entry into a DailyMetric keyed by campaign."""
    metric_date = compact_to_iso(entry.get("statDt", ""))
    if metric_date is None:
        return None

    ctr_pct = safe_float(entry.get("ctr"))

    return DailyMetric(
        metric_date=metric_date,
        dimension_key=str(entry.get("id") or ""),
        impressions=safe_int(entry.get("impCnt")) or 0,
        clicks=safe_int(entry.get("clkCnt")) or 0,
        spend=safe_float(entry.get("salesAmt")) or 0.0,
        conversions=safe_float(entry.get("ccnt")) or 0.0,
        ctr=ctr_pct / 100.0 if ctr_pct is not None else None,
        cpc=safe_float(entry.get("cpc")),
        raw=entry,
    )


class NaverSearchAdAdapter(PlatformAdapter):
    """Async adapter for Naver Search Ads campaign stats.

    Serves both the ``naver_ads`` and ``naver_searchad`` platform strings.
    """

    platform = "naver_searchad"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Settings,
        platform: str = "naver_searchad",
    ) -> None:
        self.platform = platform
        self.settings = settings
        self.http = PlatformHttpClient(
            platform,
            session,
            request_timeout_s=settings.sync_request_timeout_s,
        )

    def _headers(self, credentials: NaverCredentials, method: str, uri: str) -> dict:
        timestamp_ms = str(int(time.time() * 1000))
        return {
            "Content-Type": "application/json; charset=UTF-8",
            "X-Timestamp": timestamp_ms,
            "X-API-KEY": credentials.api_key,
            "X-Customer": str(credentials.customer_id),
            "X-Signature": sign_request(credentials.secret_key, timestamp_ms, method, uri),
        }

    async def _get(
        self, credentials: NaverCredentials, uri: str, params: Optional[dict] = None
    ) -> Any:
        # Signature covers the path only, never the query string.
        return await self.http.request_json(
            "GET",
            f"{NAVER_API_URL}{uri}",
            params=params,
            headers=self._headers(credentials, "GET", uri),
        )

    async def _campaigns(self, credentials: NaverCredentials) -> list[dict]:
        data = await self._get(credentials, "/ncc/campaigns")
        return [item for item in (data or []) if isinstance(item, dict)]

    async def _probe(
        self, credentials: NaverCredentials, config: Optional[NaverConfig]
    ) -> None:
        await self._get(credentials, "/ncc/campaigns")

    async def fetch_daily_metrics(
        self,
        credentials: NaverCredentials,
        config: NaverConfig,
        date_from: date,
        date_to: date,
    ) -> list[DailyMetric]:
        campaign_ids = [
            item["nccCampaignId"]
            for item in await self._campaigns(credentials)
            if item.get("nccCampaignId")
        ]
        if config.campaign_ids:
            wanted = set(config.campaign_ids)
            campaign_ids = [cid for cid in campaign_ids if cid in wanted]

        if not campaign_ids:
            logger.info("No Naver campaigns for customer %s", credentials.customer_id)
            return []

        params = {
            "ids": ",".join(campaign_ids),
            "fields": json.dumps(STAT_FIELDS),
            "timeRange": json.dumps(
                {
                    "since": date_from.strftime("%Y%m%d"),
                    "until": date_to.strftime("%Y%m%d"),
                }
            ),
            "datePreset": "custom",
            "timeIncrement": "1",
        }
        result = await self._get(credentials, "/stats", params)
        entries = result.get("data", []) if isinstance(result, dict) else (result or [])

        rows = []
        for entry in entries:
            metric = stat_to_daily_metric(entry)
            if metric is None:
                logger.warning("Skipping Naver stat entry without statDt")
                continue
            rows.append(metric)

        logger.info(
            "Fetched %s Naver daily rows across %s campaigns (%s..%s)",
            len(rows),
            len(campaign_ids),
            date_from,
            date_to,
        )
        return normalize_series(self.platform, rows, date_from, date_to)

    async def list_accounts(self, credentials: NaverCredentials) -> list[dict]:
        return [
            {
                "id": item.get("nccCampaignId", ""),
                "name": item.get("name", ""),
                "status": item.get("status", ""),
            }
            for item in await self._campaigns(credentials)
        ]
