"""Report sinks for the weekly hand-off.

The report builder itself lives downstream; these sinks only deliver each
client's closed-week metrics to it.
"""
import logging

import aiohttp

from ..schemas.metrics import ClientMetric


logger = logging.getLogger(__name__)


class ReportDeliveryError(Exception):
    """Raised when the downstream report endpoint rejects a delivery."""

    def __init__(self, client_id: str, status: int, detail: str):
        self.client_id = client_id
        self.status = status
        self.detail = detail
        super().__init__(f"Report delivery for {client_id} failed: HTTP {status} {detail}")


class LoggingReportSink:
    """Logs a one-line summary per client; used when no webhook is configured."""

    async def deliver(self, metric: ClientMetric) -> None:
        logger.info(
            "Weekly metrics %s %s..%s: impressions=%s clicks=%s spend=%s ctr=%s sessions=%s",
            metric.client_id,
            metric.period_start,
            metric.period_end,
            metric.impressions,
            metric.clicks,
            metric.spend,
            metric.ctr,
            metric.sessions,
        )


class WebhookReportSink:
    """POSTs each client metric as JSON to the report generator."""

    def __init__(self, session: aiohttp.ClientSession, url: str, timeout_s: float = 30.0):
        self.session = session
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def deliver(self, metric: ClientMetric) -> None:
        payload = {
            "event": "weekly_client_metrics",
            "metric": metric.model_dump(mode="json"),
        }
        async with self.session.post(self.url, json=payload, timeout=self.timeout) as response:
            if response.status >= 400:
                text = await response.text()
                raise ReportDeliveryError(metric.client_id, response.status, text[:200])

        logger.debug("Delivered weekly metrics for %s", metric.client_id)
