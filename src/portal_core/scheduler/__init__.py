"""Cron and manual triggers."""
from .reports import LoggingReportSink, ReportDeliveryError, WebhookReportSink
from .triggers import (
    ReportHandoffResult,
    ReportSink,
    aggregation_job,
    aggregation_scopes,
    report_job,
    run_daily_aggregation,
    run_daily_sync,
    run_weekly_reports,
    sync_job,
)

__all__ = [
    "LoggingReportSink",
    "ReportDeliveryError",
    "ReportHandoffResult",
    "ReportSink",
    "WebhookReportSink",
    "aggregation_job",
    "aggregation_scopes",
    "report_job",
    "run_daily_aggregation",
    "run_daily_sync",
    "run_weekly_reports",
    "sync_job",
]
