"""Unit tests for the Meta Ads adapter with a mocked aiohttp session."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from src.portal_core.integrations.exceptions import AuthExpiredError, RateLimitedError
from src.portal_core.integrations.meta import MetaAdsAdapter, insight_to_daily_metric
from src.portal_core.schemas.integrations import MetaConfig, MetaCredentials


CREDENTIALS = MetaCredentials(access_token="meta-user-token")
CONFIG = MetaConfig(ad_account_id="123456")


def _insight(day, impressions, clicks, spend, ctr, actions=None):
    return {
        "date_start": day,
        "date_stop": day,
        "impressions": str(impressions),
        "clicks": str(clicks),
        "spend": str(spend),
        "ctr": str(ctr),
        "cpc": "0.5",
        "cpm": "5.0",
        "reach": "80",
        "actions": actions or [],
    }


def test_insight_to_daily_metric_converts_ctr_and_conversions():
    metric = insight_to_daily_metric(
        _insight(
            "2024-12-01",
            1000,
            25,
            12.5,
            2.5,
            actions=[
                {"action_type": "link_click", "value": "25"},
                {"action_type": "offsite_conversion.fb_pixel_purchase", "value": "3"},
            ],
        )
    )

    assert metric.metric_date == date(2024, 12, 1)
    assert metric.impressions == 1000
    assert metric.spend == 12.5
    assert metric.ctr == pytest.approx(0.025)
    assert metric.conversions == 3.0
    assert metric.reach == 80
    assert metric.dimension_key == ""


@pytest.mark.asyncio
async def test_fetch_daily_metrics_follows_paging(settings, make_response):
    mock_session = MagicMock()
    mock_session.request.side_effect = [
        make_response(
            200,
            {
                "data": [_insight("2024-12-01", 100, 20, 10, 20.0)],
                "paging": {"next": "https://graph.facebook.com/v21.0/next-page"},
            },
        ),
        make_response(200, {"data": [_insight("2024-12-02", 400, 20, 30, 5.0)]}),
    ]
    adapter = MetaAdsAdapter(mock_session, settings)

    rows = await adapter.fetch_daily_metrics(
        CREDENTIALS, CONFIG, date(2024, 12, 1), date(2024, 12, 7)
    )

    assert [row.metric_date for row in rows] == [date(2024, 12, 1), date(2024, 12, 2)]
    first_call = mock_session.request.call_args_list[0]
    assert first_call.args[1].endswith("/act_123456/insights")
    params = first_call.kwargs["params"]
    assert params["level"] == "account"
    assert params["time_increment"] == "1"
    assert params["access_token"] == "meta-user-token"
    assert mock_session.request.call_args_list[1].args[1].endswith("next-page")


@pytest.mark.asyncio
async def test_fetch_token_error_raises_auth_expired(settings, make_response):
    mock_session = MagicMock()
    mock_session.request.return_value = make_response(
        400, {"error": {"code": 190, "message": "Error validating access token"}}
    )
    adapter = MetaAdsAdapter(mock_session, settings)

    with pytest.raises(AuthExpiredError):
        await adapter.fetch_daily_metrics(
            CREDENTIALS, CONFIG, date(2024, 12, 1), date(2024, 12, 7)
        )


@pytest.mark.asyncio
async def test_throttle_code_raises_rate_limited(settings, make_response):
    mock_session = MagicMock()
    mock_session.request.return_value = make_response(
        400, {"error": {"code": 17, "message": "User request limit reached"}}
    )
    adapter = MetaAdsAdapter(mock_session, settings)

    with pytest.raises(RateLimitedError):
        await adapter.fetch_daily_metrics(
            CREDENTIALS, CONFIG, date(2024, 12, 1), date(2024, 12, 7)
        )


@pytest.mark.asyncio
async def test_test_connection(settings, make_response):
    mock_session = MagicMock()
    adapter = MetaAdsAdapter(mock_session, settings)

    mock_session.request.return_value = make_response(200, {"id": "act_123456"})
    assert await adapter.test_connection(CREDENTIALS, CONFIG) is True

    mock_session.request.return_value = make_response(
        400, {"error": {"code": 190, "message": "bad token"}}
    )
    assert await adapter.test_connection(CREDENTIALS, CONFIG) is False


@pytest.mark.asyncio
async def test_refresh_credentials_expired_token(settings):
    adapter = MetaAdsAdapter(MagicMock(), settings)
    now = datetime(2024, 12, 10, tzinfo=timezone.utc)
    expired = CREDENTIALS.model_copy(update={"token_expires_at": now - timedelta(hours=1)})

    with pytest.raises(AuthExpiredError):
        await adapter.refresh_credentials(expired, now=now)


@pytest.mark.asyncio
async def test_refresh_credentials_far_from_expiry_is_noop(settings):
    mock_session = MagicMock()
    adapter = MetaAdsAdapter(mock_session, settings)
    now = datetime(2024, 12, 10, tzinfo=timezone.utc)
    fresh = CREDENTIALS.model_copy(update={"token_expires_at": now + timedelta(days=30)})

    assert await adapter.refresh_credentials(fresh, now=now) is fresh
    mock_session.request.assert_not_called()


@pytest.mark.asyncio
async def test_refresh_credentials_exchanges_near_expiry(settings, make_response):
    mock_session = MagicMock()
    mock_session.request.return_value = make_response(
        200, {"access_token": "long-lived-token", "expires_in": 5184000}
    )
    adapter = MetaAdsAdapter(mock_session, settings)
    now = datetime(2024, 12, 10, tzinfo=timezone.utc)
    expiring = CREDENTIALS.model_copy(update={"token_expires_at": now + timedelta(days=2)})

    refreshed = await adapter.refresh_credentials(expiring, now=now)

    assert refreshed.access_token == "long-lived-token"
    assert refreshed.token_expires_at == now + timedelta(seconds=5184000)
    params = mock_session.request.call_args.kwargs["params"]
    assert params["grant_type"] == "fb_exchange_token"
    assert params["fb_exchange_token"] == "meta-user-token"


@pytest.mark.asyncio
async def test_list_accounts(settings, make_response):
    mock_session = MagicMock()
    mock_session.request.return_value = make_response(
        200, {"data": [{"id": "act_1", "name": "Acme"}, {"id": "act_2", "name": "Beta"}]}
    )
    adapter = MetaAdsAdapter(mock_session, settings)

    accounts = await adapter.list_accounts(CREDENTIALS)

    assert [account["id"] for account in accounts] == ["act_1", "act_2"]
