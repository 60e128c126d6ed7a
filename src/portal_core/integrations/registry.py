"""Platform string to adapter lookup."""
import logging

import aiohttp

from ..config import Settings
from ..schemas.integrations import Platform
from .base import PlatformAdapter
from .exceptions import UnknownPlatformError
from .ga4 import GA4Adapter
from .google_ads import GoogleAdsAdapter
from .meta import MetaAdsAdapter
from .naver import NaverSearchAdAdapter


logger = logging.getLogger(__name__)


AdapterRegistry = dict[str, PlatformAdapter]


def build_adapter_registry(
    session: aiohttp.ClientSession, settings: Settings
) -> AdapterRegistry:
    """Build one adapter per supported platform.

    Raises:
        RuntimeError: If a Platform member has no adapter
    """
    registry: AdapterRegistry = {
        Platform.META_ADS.value: MetaAdsAdapter(session, settings),
        Platform.GOOGLE_ADS.value: GoogleAdsAdapter(session, settings),
        Platform.GOOGLE_ANALYTICS.value: GA4Adapter(session, settings),
        Platform.NAVER_ADS.value: NaverSearchAdAdapter(
            session, settings, platform=Platform.NAVER_ADS.value
        ),
        Platform.NAVER_SEARCHAD.value: NaverSearchAdAdapter(
            session, settings, platform=Platform.NAVER_SEARCHAD.value
        ),
    }
    check_registry(registry)
    return registry


def check_registry(registry: AdapterRegistry) -> None:
    """Fail at startup when a known platform has no adapter."""
    missing = [member.value for member in Platform if member.value not in registry]
    if missing:
        raise RuntimeError(f"No adapter registered for platform(s): {', '.join(missing)}")


def get_adapter(registry: AdapterRegistry, platform: str) -> PlatformAdapter:
    """Look up the adapter for a raw platform string.

    Raises:
        UnknownPlatformError: If nothing is registered for the string
    """
    adapter = registry.get(platform)
    if adapter is None:
        raise UnknownPlatformError(platform)
    return adapter
