"""Client metrics aggregation layer.

Rolls per-integration daily rows (platform_metrics_daily) into one
client-facing row per client and period (client_metrics).
"""
from .aggregator import (
    AggregateResult,
    AggregateScope,
    MetricsAggregator,
    build_client_metric,
    derive_rates,
    sum_daily_rows,
)
from .periods import last_completed_month, last_completed_week, trailing_sync_window

__all__ = [
    "AggregateResult",
    "AggregateScope",
    "MetricsAggregator",
    "build_client_metric",
    "derive_rates",
    "last_completed_month",
    "last_completed_week",
    "sum_daily_rows",
    "trailing_sync_window",
]
