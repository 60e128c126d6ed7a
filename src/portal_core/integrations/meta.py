"""Meta Marketing API adapter.

Fetches account-level daily insights and manages long-lived user tokens.
Meta reports ctr as a percentage; it is stored as a fraction.
"""
import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

import aiohttp

from ..config import Settings
from ..schemas.integrations import DailyMetric, MetaConfig, MetaCredentials
from .base import PlatformAdapter, normalize_series, safe_float, safe_int
from .exceptions import (
    AuthExpiredError,
    InvalidConfigError,
    PlatformError,
    RateLimitedError,
)
from .http import PlatformHttpClient


logger = logging.getLogger(__name__)


META_GRAPH_URL = "https://graph.facebook.com/v21.0"

PURCHASE_ACTION_TYPES = ("purchase", "offsite_conversion.fb_pixel_purchase")

# Graph API error codes
_TOKEN_ERROR_CODES = {190, 102}
_THROTTLE_ERROR_CODES = {4, 17, 32, 613, 80004}


def _classify_meta_error(status: int, body: Any) -> Optional[PlatformError]:
    error = (body or {}).get("error") if isinstance(body, dict) else None
    if not error:
        return None

    code = error.get("code")
    message = error.get("message", "")
    if code in _TOKEN_ERROR_CODES:
        return AuthExpiredError("meta_ads", f"Token rejected (code {code}): {message}")
    if code in _THROTTLE_ERROR_CODES:
        return RateLimitedError("meta_ads", f"Throttled (code {code}): {message}")
    if code == 100 or status == 404:
        return InvalidConfigError("meta_ads", f"Invalid request (code {code}): {message}")
    return None


def _purchase_conversions(actions: Optional[list]) -> float:
    for action in actions or []:
        if action.get("action_type") in PURCHASE_ACTION_TYPES:
            return safe_float(action.get("value")) or 0.0
    return 0.0


def insight_to_daily_metric(entry: dict) -> Optional[DailyMetric]:
    """Convert one daily insights entry into a DailyMetric."""
    date_start = entry.get("date_start")
    if not date_start:
        return None

    ctr_pct = safe_float(entry.get("ctr"))

    return DailyMetric(
        metric_date=date.fromisoformat(date_start),
        impressions=safe_int(entry.get("impressions")) or 0,
        clicks=safe_int(entry.get("clicks")) or 0,
        spend=safe_float(entry.get("spend")) or 0.0,
        conversions=_purchase_conversions(entry.get("actions")),
        reach=safe_int(entry.get("reach")),
        ctr=ctr_pct / 100.0 if ctr_pct is not None else None,
        cpc=safe_float(entry.get("cpc")),
        cpm=safe_float(entry.get("cpm")),
        raw=entry,
    )


class MetaAdsAdapter(PlatformAdapter):
    """Async adapter for Meta Ads insights."""

    platform = "meta_ads"

    TOKEN_REFRESH_WINDOW = timedelta(days=7)
    DEFAULT_LONG_LIVED_SECONDS = 5184000  # ~60 days

    def __init__(self, session: aiohttp.ClientSession, settings: Settings) -> None:
        """Initialize Meta adapter.

        Args:
            session: aiohttp session for requests
            settings: Agency-wide settings (Meta app id/secret)
        """
        self.settings = settings
        self.http = PlatformHttpClient(
            self.platform,
            session,
            request_timeout_s=settings.sync_request_timeout_s,
            classify_error=_classify_meta_error,
        )

    async def _get(self, access_token: str, path: str, params: Optional[dict] = None) -> Any:
        query = {"access_token": access_token, **(params or {})}
        return await self.http.request_json("GET", f"{META_GRAPH_URL}{path}", params=query)

    async def _probe(self, credentials: MetaCredentials, config: Optional[MetaConfig]) -> None:
        if config is not None:
            await self._get(
                credentials.access_token,
                f"/{config.account_path}",
                {"fields": "name,account_status"},
            )
        else:
            await self._get(credentials.access_token, "/me", {"fields": "id"})

    async def fetch_daily_metrics(
        self,
        credentials: MetaCredentials,
        config: MetaConfig,
        date_from: date,
        date_to: date,
    ) -> list[DailyMetric]:
        """Fetch account-level daily insights for the inclusive range."""
        params = {
            "fields": "impressions,clicks,spend,cpc,cpm,ctr,actions,reach",
            "time_range": json.dumps(
                {"since": date_from.isoformat(), "until": date_to.isoformat()}
            ),
            "time_increment": "1",
            "level": "account",
            "limit": "500",
        }

        result = await self._get(
            credentials.access_token, f"/{config.account_path}/insights", params
        )
        entries: list[dict] = list((result or {}).get("data", []))

        # A failed page fails the whole range; partial ranges are never returned.
        while (result or {}).get("paging", {}).get("next"):
            result = await self.http.request_json("GET", result["paging"]["next"])
            entries.extend((result or {}).get("data", []))

        rows = []
        for entry in entries:
            metric = insight_to_daily_metric(entry)
            if metric is None:
                logger.warning("Skipping Meta insight without date_start")
                continue
            rows.append(metric)

        logger.info(
            "Fetched %s Meta daily rows for %s (%s..%s)",
            len(rows),
            config.account_path,
            date_from,
            date_to,
        )
        return normalize_series(self.platform, rows, date_from, date_to)

    async def exchange_long_lived_token(self, token: str) -> tuple[str, int]:
        """Exchange a short-lived (or expiring) token for a long-lived one.

        Returns:
            (access_token, expires_in_seconds)
        """
        if not self.settings.meta_app_id or not self.settings.meta_app_secret:
            raise InvalidConfigError(
                self.platform, "META_APP_ID/META_APP_SECRET not configured"
            )

        data = await self.http.request_json(
            "GET",
            f"{META_GRAPH_URL}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.meta_app_id,
                "client_secret": self.settings.meta_app_secret,
                "fb_exchange_token": token,
            },
        )
        access_token = (data or {}).get("access_token")
        if not access_token:
            raise AuthExpiredError(self.platform, "Token exchange returned no access_token")
        expires_in = safe_int((data or {}).get("expires_in")) or self.DEFAULT_LONG_LIVED_SECONDS
        return access_token, expires_in

    async def refresh_credentials(
        self, credentials: MetaCredentials, now: Optional[datetime] = None
    ) -> MetaCredentials:
        """Extend the token when it is close to expiry.

        Raises:
            AuthExpiredError: If the token has already expired
        """
        now = now or datetime.now(timezone.utc)
        expires_at = credentials.token_expires_at
        if expires_at is None:
            return credentials
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        if expires_at <= now:
            raise AuthExpiredError(
                self.platform,
                f"Access token expired at {expires_at.isoformat()}; re-authorization required",
            )

        if expires_at - now > self.TOKEN_REFRESH_WINDOW:
            return credentials

        if not self.settings.meta_app_id or not self.settings.meta_app_secret:
            logger.warning(
                "Meta token expires at %s but app credentials are not configured",
                expires_at.isoformat(),
            )
            return credentials

        access_token, expires_in = await self.exchange_long_lived_token(
            credentials.access_token
        )
        logger.info("Exchanged Meta token, new expiry in %s days", expires_in // 86400)
        return credentials.model_copy(
            update={
                "access_token": access_token,
                "token_expires_at": now + timedelta(seconds=expires_in),
            }
        )

    async def list_accounts(self, credentials: MetaCredentials) -> list[dict]:
        data = await self._get(
            credentials.access_token,
            "/me/adaccounts",
            {"fields": "id,name,account_status,currency", "limit": "100"},
        )
        return list((data or {}).get("data", []))
