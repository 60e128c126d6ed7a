"""Pydantic models for client-facing aggregated metrics."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PeriodType(str, Enum):
    """Client-facing aggregation bucket."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ClientMetric(BaseModel):
    """Aggregated weekly/monthly figures for one client.

    Rates are derived from the summed additive figures; a zero denominator
    yields None.
    """

    client_id: str
    period_type: PeriodType
    period_start: date
    period_end: date

    impressions: Optional[int] = None
    clicks: Optional[int] = None
    spend: Optional[float] = None
    conversions: Optional[float] = None
    reach: Optional[int] = None
    sessions: Optional[int] = None
    users: Optional[int] = None
    new_users: Optional[int] = None
    pageviews: Optional[int] = None

    ctr: Optional[float] = Field(None, description="clicks / impressions")
    cpc: Optional[float] = Field(None, description="spend / clicks")
    cpm: Optional[float] = Field(None, description="spend / impressions * 1000")
    cost_per_conversion: Optional[float] = Field(None, description="spend / conversions")
    conversion_rate: Optional[float] = Field(None, description="conversions / clicks")
    bounce_rate: Optional[float] = Field(None, description="Session-weighted, fraction 0..1")
    avg_session_duration: Optional[float] = Field(None, description="Session-weighted seconds")

    source_record_count: int = 0
    platforms: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
