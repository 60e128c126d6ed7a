"""Environment-driven settings for the sync and aggregation pipeline."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default
    return max(minimum, parsed)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning("Invalid %s '%s', using %s", name, raw, default)
        return default


def resolve_timezone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid METRICS_TIMEZONE '%s', using UTC", tz_name)
        return ZoneInfo("UTC")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration.

    Platform app credentials (Meta app, Google OAuth client) are agency-wide;
    per-client tokens live on the integration row.
    """

    db_path: Path
    raw_dir: Optional[Path]
    timezone: str

    meta_app_id: Optional[str]
    meta_app_secret: Optional[str]
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_developer_token: Optional[str]

    sync_window_days: int = 7
    sync_concurrency: int = 4
    sync_batch_budget_s: float = 280.0
    sync_request_timeout_s: float = 60.0
    sync_failure_threshold: int = 3

    report_webhook_url: Optional[str] = None
    log_level: str = "INFO"

    # Resolved once from `timezone`
    tzinfo: ZoneInfo = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tzinfo", resolve_timezone(self.timezone))

    def secrets(self) -> list[Optional[str]]:
        """Values that must never reach logs or stored error messages."""
        return [
            self.meta_app_secret,
            self.google_client_secret,
            self.google_developer_token,
        ]


def load_settings() -> Settings:
    """Load settings from environment variables."""
    raw_dir = os.getenv("METRICS_RAW_DIR")

    return Settings(
        db_path=Path(os.getenv("PORTAL_DB_PATH", "data/portal.db")),
        raw_dir=Path(raw_dir) if raw_dir else None,
        timezone=os.getenv("METRICS_TIMEZONE", "Asia/Seoul"),
        meta_app_id=os.getenv("META_APP_ID"),
        meta_app_secret=os.getenv("META_APP_SECRET"),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
        google_developer_token=os.getenv("GOOGLE_DEVELOPER_TOKEN"),
        sync_window_days=_env_int("SYNC_WINDOW_DAYS", 7, minimum=1),
        sync_concurrency=_env_int("SYNC_CONCURRENCY", 4, minimum=1),
        sync_batch_budget_s=_env_float("SYNC_BATCH_BUDGET_SECONDS", 280.0),
        sync_request_timeout_s=_env_float("SYNC_REQUEST_TIMEOUT_SECONDS", 60.0),
        sync_failure_threshold=_env_int("SYNC_FAILURE_THRESHOLD", 3, minimum=1),
        report_webhook_url=os.getenv("REPORT_WEBHOOK_URL") or None,
        log_level=os.getenv("PORTAL_LOG_LEVEL", "INFO").upper(),
    )
