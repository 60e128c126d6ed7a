"""Unit tests for environment-driven settings."""
import dataclasses
from zoneinfo import ZoneInfo

from src.portal_core import config
from src.portal_core.config import load_settings


def test_load_settings_defaults(monkeypatch):
    for name in ("PORTAL_DB_PATH", "METRICS_TIMEZONE", "REPORT_WEBHOOK_URL", "PORTAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.tzinfo == ZoneInfo("Asia/Seoul")
    assert settings.sync_failure_threshold == 3
    assert settings.report_webhook_url is None
    assert settings.log_level == "INFO"


def test_invalid_timezone_resolved_once(monkeypatch, caplog):
    monkeypatch.setenv("METRICS_TIMEZONE", "Mars/Olympus")
    calls = []
    real_resolve = config.resolve_timezone

    def counting_resolve(tz_name):
        calls.append(tz_name)
        return real_resolve(tz_name)

    monkeypatch.setattr(config, "resolve_timezone", counting_resolve)

    settings = load_settings()
    zones = {settings.tzinfo for _ in range(5)}

    assert zones == {ZoneInfo("UTC")}
    assert calls == ["Mars/Olympus"]
    assert caplog.text.count("Invalid METRICS_TIMEZONE") == 1


def test_replace_recomputes_timezone(settings):
    seoul = dataclasses.replace(settings, timezone="Asia/Seoul")

    assert settings.tzinfo == ZoneInfo("UTC")
    assert seoul.tzinfo == ZoneInfo("Asia/Seoul")


def test_invalid_numeric_knob_falls_back(monkeypatch):
    monkeypatch.setenv("SYNC_FAILURE_THRESHOLD", "three")
    monkeypatch.setenv("SYNC_CONCURRENCY", "0")

    settings = load_settings()

    assert settings.sync_failure_threshold == 3
    assert settings.sync_concurrency == 1
