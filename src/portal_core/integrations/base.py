"""Platform adapter contract and helpers shared by all adapters."""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Iterable, Optional

from pydantic import TypeAdapter, ValidationError

from ..schemas.integrations import DailyMetric, PlatformConfig, PlatformCredentials
from .exceptions import AuthExpiredError, InvalidConfigError


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

_CREDENTIALS_ADAPTER: TypeAdapter = TypeAdapter(PlatformCredentials)
_CONFIG_ADAPTER: TypeAdapter = TypeAdapter(PlatformConfig)


def _describe_validation_error(exc: ValidationError) -> str:
    # include_input=False keeps secret values out of the message
    parts = []
    for error in exc.errors(include_input=False, include_url=False):
        location = ".".join(str(item) for item in error["loc"][1:]) or "bundle"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_credentials(platform: str, raw: Optional[dict]) -> PlatformCredentials:
    """Validate an opaque credential bundle into the platform's typed model.

    Raises:
        InvalidConfigError: If required fields are missing or malformed
    """
    try:
        return _CREDENTIALS_ADAPTER.validate_python({**(raw or {}), "platform": platform})
    except ValidationError as exc:
        raise InvalidConfigError(
            platform, f"Malformed credentials: {_describe_validation_error(exc)}"
        ) from exc


def parse_config(
    platform: str, raw: Optional[dict], credentials_raw: Optional[dict] = None
) -> PlatformConfig:
    """Validate a config bundle into the platform's typed model.

    Older integrations keep identifiers (adAccountId, propertyId, customerId)
    inside the credential bundle, so those are accepted as a fallback.

    Raises:
        InvalidConfigError: If required identifiers are missing
    """
    merged = {**(credentials_raw or {}), **(raw or {}), "platform": platform}
    try:
        return _CONFIG_ADAPTER.validate_python(merged)
    except ValidationError as exc:
        raise InvalidConfigError(
            platform, f"Malformed config: {_describe_validation_error(exc)}"
        ) from exc


def safe_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(str(value).replace(",", "")))
    except (TypeError, ValueError):
        return None


def safe_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return None


def compact_to_iso(value: str) -> Optional[date]:
    """Parse 'YYYYMMDD' or 'YYYY-MM-DD' (optionally with a time part)."""
    if not value:
        return None
    value = str(value).strip()
    try:
        if len(value) == 8 and value.isdigit():
            return date(int(value[:4]), int(value[4:6]), int(value[6:8]))
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def normalize_series(
    platform: str,
    rows: Iterable[DailyMetric],
    date_from: date,
    date_to: date,
) -> list[DailyMetric]:
    """Enforce one record per (day, dimension) inside the requested range.

    Duplicate keys are merged by summing additive fields; platform-reported
    rates are dropped on merged rows since they no longer match the sums.
    """
    merged: dict[tuple[date, str], DailyMetric] = {}

    for row in rows:
        if row.metric_date < date_from or row.metric_date > date_to:
            logger.warning(
                "%s returned out-of-range date %s (range %s..%s), dropping",
                platform,
                row.metric_date,
                date_from,
                date_to,
            )
            continue

        key = (row.metric_date, row.dimension_key)
        existing = merged.get(key)
        if existing is None:
            merged[key] = row
            continue

        logger.warning("%s returned duplicate row for %s, merging", platform, key)
        update: dict[str, Any] = {"ctr": None, "cpc": None, "cpm": None}
        for name in ADDITIVE_FIELDS:
            left = getattr(existing, name)
            right = getattr(row, name)
            if left is None and right is None:
                continue
            update[name] = (left or 0) + (right or 0)
        merged[key] = existing.model_copy(update=update)

    return [merged[key] for key in sorted(merged)]


class PlatformAdapter(ABC):
    """Contract every platform adapter implements.

    Adapters are stateless: they hold an injected HTTP session and agency-wide
    settings, never per-integration state.
    """

    platform: str = ""

    async def test_connection(
        self,
        credentials: PlatformCredentials,
        config: Optional[PlatformConfig] = None,
    ) -> bool:
        """Run a minimal read-only call to validate credentials.

        Ordinary auth/config failures return False; retryable errors propagate
        so the caller can tell "wrong key" apart from "platform down".
        """
        try:
            await self._probe(credentials, config)
        except (AuthExpiredError, InvalidConfigError) as exc:
            logger.info("%s connection test failed: %s", self.platform, exc.message[:200])
            return False
        return True

    @abstractmethod
    async def _probe(
        self,
        credentials: PlatformCredentials,
        config: Optional[PlatformConfig],
    ) -> None:
        """Cheapest authenticated call for the platform; raises on failure."""

    @abstractmethod
    async def fetch_daily_metrics(
        self,
        credentials: PlatformCredentials,
        config: PlatformConfig,
        date_from: date,
        date_to: date,
    ) -> list[DailyMetric]:
        """Fetch one normalized record per day (per sub-dimension).

        The whole range succeeds or the call raises a PlatformError.
        """

    async def refresh_credentials(
        self, credentials: PlatformCredentials, now: Optional[datetime] = None
    ) -> PlatformCredentials:
        """Return credentials valid for a fetch, refreshed if the platform needs it."""
        return credentials

    @abstractmethod
    async def list_accounts(self, credentials: PlatformCredentials) -> list[dict]:
        """List selectable accounts/properties/campaigns for admin setup."""
