"""Unit tests for the platform adapter registry."""
from unittest.mock import MagicMock

import pytest

from src.portal_core.integrations.exceptions import UnknownPlatformError
from src.portal_core.integrations.ga4 import GA4Adapter
from src.portal_core.integrations.naver import NaverSearchAdAdapter
from src.portal_core.integrations.registry import (
    build_adapter_registry,
    check_registry,
    get_adapter,
)
from src.portal_core.schemas.integrations import Platform


def test_registry_covers_every_platform(settings):
    registry = build_adapter_registry(MagicMock(), settings)

    assert set(registry) == {member.value for member in Platform}
    assert isinstance(registry["google_analytics"], GA4Adapter)
    assert isinstance(registry["naver_ads"], NaverSearchAdAdapter)
    assert registry["naver_ads"].platform == "naver_ads"
    assert registry["naver_searchad"].platform == "naver_searchad"


def test_check_registry_rejects_gaps(settings):
    registry = build_adapter_registry(MagicMock(), settings)
    del registry["meta_ads"]

    with pytest.raises(RuntimeError) as exc_info:
        check_registry(registry)

    assert "meta_ads" in str(exc_info.value)


def test_get_adapter_unknown_platform(settings):
    registry = build_adapter_registry(MagicMock(), settings)

    with pytest.raises(UnknownPlatformError) as exc_info:
        get_adapter(registry, "tiktok_ads")

    assert exc_info.value.kind == "config"
    assert exc_info.value.retryable is False
    assert "Unsupported platform" in exc_info.value.message
