"""Pydantic models for integrations, typed credentials and daily metric records."""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Platform(str, Enum):
    """External ad/analytics platforms a client can connect."""

    NAVER_ADS = "naver_ads"
    NAVER_SEARCHAD = "naver_searchad"
    META_ADS = "meta_ads"
    GOOGLE_ADS = "google_ads"
    GOOGLE_ANALYTICS = "google_analytics"


class IntegrationStatus(str, Enum):
    """Integration health status."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    ERROR = "error"


class _Bundle(BaseModel):
    # Portal forms submit camelCase keys (accessToken, adAccountId).
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MetaCredentials(_Bundle):
    """Meta Marketing API user token."""

    platform: Literal["meta_ads"] = "meta_ads"
    access_token: str = Field(..., min_length=1, description="Long-lived user access token")
    token_expires_at: Optional[datetime] = Field(
        None, description="Token expiry (UTC); None when unknown"
    )


class GoogleAdsCredentials(_Bundle):
    """Google Ads OAuth refresh token (+ optional per-client developer token)."""

    platform: Literal["google_ads"] = "google_ads"
    refresh_token: str = Field(..., min_length=1)
    developer_token: Optional[str] = Field(
        None, description="Falls back to GOOGLE_DEVELOPER_TOKEN when absent"
    )


class GA4Credentials(_Bundle):
    """GA4 Data API OAuth refresh token."""

    platform: Literal["google_analytics"] = "google_analytics"
    refresh_token: str = Field(..., min_length=1)


class NaverCredentials(_Bundle):
    """Naver Search Ads API key pair and advertiser customer id."""

    platform: Literal["naver_ads", "naver_searchad"] = "naver_searchad"
    api_key: str = Field(..., min_length=1)
    secret_key: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)


PlatformCredentials = Annotated[
    Union[MetaCredentials, GoogleAdsCredentials, GA4Credentials, NaverCredentials],
    Field(discriminator="platform"),
]


class MetaConfig(_Bundle):
    platform: Literal["meta_ads"] = "meta_ads"
    ad_account_id: str = Field(..., min_length=1, description="With or without 'act_' prefix")

    @property
    def account_path(self) -> str:
        if self.ad_account_id.startswith("act_"):
            return self.ad_account_id
        return f"act_{self.ad_account_id}"


class GoogleAdsConfig(_Bundle):
    platform: Literal["google_ads"] = "google_ads"
    customer_id: str = Field(..., min_length=1, description="CID, e.g. 123-456-7890")
    login_customer_id: Optional[str] = Field(None, description="Manager account CID")

    @property
    def customer_digits(self) -> str:
        return self.customer_id.replace("-", "")


class GA4Config(_Bundle):
    platform: Literal["google_analytics"] = "google_analytics"
    property_id: str = Field(..., min_length=1, description="e.g. properties/123456789")

    @property
    def property_number(self) -> str:
        return self.property_id.replace("properties/", "")


class NaverConfig(_Bundle):
    platform: Literal["naver_ads", "naver_searchad"] = "naver_searchad"
    campaign_ids: list[str] = Field(
        default_factory=list, description="Restrict stats to these campaigns (all if empty)"
    )


PlatformConfig = Annotated[
    Union[MetaConfig, GoogleAdsConfig, GA4Config, NaverConfig],
    Field(discriminator="platform"),
]


class Integration(BaseModel):
    """A client's stored connection to one external platform."""

    id: str
    client_id: str
    platform: str = Field(..., description="Raw platform string; may be unknown")
    display_name: str
    credentials: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    status: IntegrationStatus = IntegrationStatus.INACTIVE
    error_message: Optional[str] = None
    consecutive_failures: int = 0
    last_synced_at: Optional[datetime] = None
    created_by: str = "system"
    created_at: Optional[datetime] = None


class DailyMetric(BaseModel):
    """One calendar day of normalized metrics from one integration.

    Field set is a superset across platforms; fields a platform does not
    report stay None.
    """

    metric_date: date
    dimension_key: str = Field("", description="'' for account level, campaign id otherwise")

    impressions: Optional[int] = None
    clicks: Optional[int] = None
    spend: Optional[float] = None
    conversions: Optional[float] = None
    reach: Optional[int] = None

    sessions: Optional[int] = None
    users: Optional[int] = None
    new_users: Optional[int] = None
    pageviews: Optional[int] = None
    bounce_rate: Optional[float] = Field(None, description="Fraction 0..1")
    avg_session_duration: Optional[float] = Field(None, description="Seconds")

    ctr: Optional[float] = Field(None, description="Platform-reported, fraction 0..1")
    cpc: Optional[float] = None
    cpm: Optional[float] = None

    raw: dict[str, Any] = Field(default_factory=dict)
