"""Platform adapters for ad and analytics APIs."""
from .base import PlatformAdapter, normalize_series, parse_config, parse_credentials
from .exceptions import (
    AuthExpiredError,
    InvalidConfigError,
    PlatformError,
    RateLimitedError,
    TransientNetworkError,
    UnknownPlatformError,
)
from .ga4 import GA4Adapter
from .google_ads import GoogleAdsAdapter
from .meta import MetaAdsAdapter
from .naver import NaverSearchAdAdapter
from .registry import AdapterRegistry, build_adapter_registry, check_registry, get_adapter

__all__ = [
    "AdapterRegistry",
    "AuthExpiredError",
    "GA4Adapter",
    "GoogleAdsAdapter",
    "InvalidConfigError",
    "MetaAdsAdapter",
    "NaverSearchAdAdapter",
    "PlatformAdapter",
    "PlatformError",
    "RateLimitedError",
    "TransientNetworkError",
    "UnknownPlatformError",
    "build_adapter_registry",
    "check_registry",
    "get_adapter",
    "normalize_series",
    "parse_config",
    "parse_credentials",
]
