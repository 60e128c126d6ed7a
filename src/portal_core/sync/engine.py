"""Sync engine: pulls daily metrics for integrations and persists them.

Each integration is synced independently. A failure is recorded on that
integration (status, failure streak, sync log) and never aborts a batch.
Store writes for one integration run without an await in between, so
concurrent syncs sharing one SQLite connection never interleave inside a
transaction.
"""
import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import aiofiles

from ..config import Settings
from ..integrations.base import parse_config, parse_credentials
from ..integrations.exceptions import PlatformError
from ..integrations.registry import AdapterRegistry, get_adapter
from ..schemas.integrations import DailyMetric, Integration, IntegrationStatus
from ..storage.exceptions import StoreReadError, StoreWriteError
from ..storage.repository import (
    SyncLogEntry,
    append_sync_log,
    list_integrations,
    record_sync_failure,
    record_sync_success,
    upsert_daily_metrics,
    utc_now,
)


logger = logging.getLogger(__name__)


_SECRET_KEY_MARKERS = ("token", "secret", "key", "password")


def _range_error(date_from: date, date_to: date) -> str:
    return f"date_from {date_from} is after date_to {date_to}"


def _redact_text(text: str, secrets: list[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


@dataclass
class SyncResult:
    """Outcome of syncing one integration."""

    integration_id: str
    client_id: str
    platform: str
    success: bool
    record_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class BatchSyncResult:
    """Outcome of a batch; failures never abort sibling integrations.

    `error` is set only when the batch could not start (bad range, store
    unreadable); item failures live in `results`.
    """

    date_from: date
    date_to: date
    results: list[SyncResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded


class SyncEngine:
    """Runs platform fetches and writes the results into the store."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        registry: AdapterRegistry,
        settings: Settings,
    ) -> None:
        """Initialize engine.

        Args:
            conn: Open store connection (shared by concurrent syncs)
            registry: Platform string to adapter mapping
            settings: Runtime settings (concurrency, budget, failure threshold)
        """
        self.conn = conn
        self.registry = registry
        self.settings = settings
        self.raw_dir: Optional[Path] = settings.raw_dir
        if self.raw_dir is not None:
            self.raw_dir.mkdir(parents=True, exist_ok=True)

    def _secrets_for(self, integration: Integration) -> list[Optional[str]]:
        secrets = list(self.settings.secrets())
        for name, value in integration.credentials.items():
            if isinstance(value, str) and any(
                marker in name.lower() for marker in _SECRET_KEY_MARKERS
            ):
                secrets.append(value)
        return secrets

    def _redact_error(self, integration: Integration, text: str) -> str:
        return _redact_text(text, self._secrets_for(integration))

    async def sync_integration(
        self,
        integration: Integration,
        date_from: date,
        date_to: date,
    ) -> SyncResult:
        """Fetch and persist one integration's metrics for the inclusive range.

        Re-running the same range overwrites the same daily rows. An inverted
        range is rejected without touching the store or the integration.
        """
        if date_from > date_to:
            return SyncResult(
                integration_id=integration.id,
                client_id=integration.client_id,
                platform=integration.platform,
                success=False,
                error=_range_error(date_from, date_to),
                error_kind="invalid_range",
            )

        started_at = utc_now()
        logger.info(
            "Syncing integration %s (%s) %s..%s",
            integration.id,
            integration.platform,
            date_from,
            date_to,
        )

        try:
            adapter = get_adapter(self.registry, integration.platform)
            credentials = parse_credentials(integration.platform, integration.credentials)
            config = parse_config(
                integration.platform, integration.config, integration.credentials
            )
            refreshed = await adapter.refresh_credentials(credentials)
            rows = await adapter.fetch_daily_metrics(refreshed, config, date_from, date_to)
        except PlatformError as exc:
            return self._record_failure(
                integration,
                exc.kind,
                exc.message,
                retryable=exc.retryable,
                started_at=started_at,
                date_from=date_from,
                date_to=date_to,
            )
        except Exception as exc:
            logger.error(
                "Unexpected error syncing integration %s: %s",
                integration.id,
                self._redact_error(integration, repr(exc)),
                exc_info=True,
            )
            return self._record_failure(
                integration,
                "unexpected",
                repr(exc),
                retryable=True,
                started_at=started_at,
                date_from=date_from,
                date_to=date_to,
            )

        await self._write_raw_audit(integration, rows, date_from, date_to)

        updated_credentials = None
        if refreshed != credentials:
            updated_credentials = {
                **integration.credentials,
                **refreshed.model_dump(
                    mode="json", by_alias=True, exclude={"platform"}, exclude_none=True
                ),
            }

        # No await from here until commit.
        completed_at = utc_now()
        try:
            count = upsert_daily_metrics(self.conn, integration, rows, completed_at)
            record_sync_success(
                self.conn, integration.id, completed_at, credentials=updated_credentials
            )
            append_sync_log(
                self.conn,
                SyncLogEntry(
                    integration_id=integration.id,
                    client_id=integration.client_id,
                    platform=integration.platform,
                    date_from=date_from,
                    date_to=date_to,
                    records_synced=count,
                    success=True,
                    started_at=started_at,
                    completed_at=completed_at,
                ),
            )
            self.conn.commit()
        except StoreWriteError as exc:
            self.conn.rollback()
            return self._record_failure(
                integration,
                "store",
                str(exc),
                retryable=True,
                started_at=started_at,
                date_from=date_from,
                date_to=date_to,
            )

        logger.info(
            "Synced integration %s: %s records", integration.id, count
        )
        return SyncResult(
            integration_id=integration.id,
            client_id=integration.client_id,
            platform=integration.platform,
            success=True,
            record_count=count,
        )

    def _record_failure(
        self,
        integration: Integration,
        kind: str,
        message: str,
        retryable: bool,
        started_at: datetime,
        date_from: date,
        date_to: date,
    ) -> SyncResult:
        """Persist a failed attempt and build its result.

        Retryable failures demote to error only once the failure streak
        reaches the configured threshold; others demote immediately.
        """
        safe_message = self._redact_error(integration, message)[:1000]
        logger.warning(
            "Sync failed for integration %s (%s, %s): %s",
            integration.id,
            integration.platform,
            kind,
            safe_message,
        )

        try:
            failures = record_sync_failure(
                self.conn,
                integration.id,
                safe_message,
                demote=not retryable,
                demote_after=self.settings.sync_failure_threshold,
            )
            append_sync_log(
                self.conn,
                SyncLogEntry(
                    integration_id=integration.id,
                    client_id=integration.client_id,
                    platform=integration.platform,
                    date_from=date_from,
                    date_to=date_to,
                    records_synced=0,
                    success=False,
                    started_at=started_at,
                    completed_at=utc_now(),
                    error_kind=kind,
                    error_message=safe_message,
                ),
            )
            self.conn.commit()
            if retryable and failures >= self.settings.sync_failure_threshold:
                logger.warning(
                    "Integration %s demoted to error after %s consecutive failures",
                    integration.id,
                    failures,
                )
        except StoreWriteError as record_exc:
            self.conn.rollback()
            logger.error(
                "Failed to record sync failure for %s: %s",
                integration.id,
                self._redact_error(integration, str(record_exc)),
            )

        return SyncResult(
            integration_id=integration.id,
            client_id=integration.client_id,
            platform=integration.platform,
            success=False,
            error=safe_message,
            error_kind=kind,
        )

    async def _write_raw_audit(
        self,
        integration: Integration,
        rows: list[DailyMetric],
        date_from: date,
        date_to: date,
    ) -> None:
        """Append the raw platform payloads to a JSONL audit file."""
        if self.raw_dir is None or not rows:
            return

        path = self.raw_dir / (
            f"raw_{integration.platform}_{integration.id}_"
            f"{date_from.isoformat()}_{date_to.isoformat()}.jsonl"
        )
        try:
            async with aiofiles.open(path, mode="a", encoding="utf-8") as handle:
                for row in rows:
                    line = json.dumps(
                        {
                            "metric_date": row.metric_date.isoformat(),
                            "dimension_key": row.dimension_key,
                            "raw": row.raw,
                        },
                        ensure_ascii=False,
                        default=str,
                    )
                    await handle.write(line + "\n")
        except OSError as exc:
            logger.warning("Could not write raw audit %s: %s", path, exc)
            return

        logger.debug("Wrote %s raw rows to %s", len(rows), path)

    async def sync_all_active(self, date_from: date, date_to: date) -> BatchSyncResult:
        """Sync every integration whose status is active."""
        return await self._sync_selected(date_from, date_to)

    async def sync_client(
        self, client_id: str, date_from: date, date_to: date
    ) -> BatchSyncResult:
        """Sync one client's active integrations (portal-triggered refresh)."""
        return await self._sync_selected(date_from, date_to, client_id=client_id)

    async def _sync_selected(
        self,
        date_from: date,
        date_to: date,
        client_id: Optional[str] = None,
    ) -> BatchSyncResult:
        """Select active integrations and run them as one batch.

        An inverted range or an unreadable store yields an empty batch
        carrying `error` instead of raising.
        """
        if date_from > date_to:
            message = _range_error(date_from, date_to)
            logger.error("Batch sync rejected: %s", message)
            return BatchSyncResult(date_from=date_from, date_to=date_to, error=message)

        try:
            integrations = list_integrations(
                self.conn, status=IntegrationStatus.ACTIVE, client_id=client_id
            )
        except StoreReadError as exc:
            logger.error("Batch sync could not list integrations: %s", exc)
            return BatchSyncResult(date_from=date_from, date_to=date_to, error=str(exc))

        return await self._run_batch(integrations, date_from, date_to)

    async def _run_batch(
        self,
        integrations: list[Integration],
        date_from: date,
        date_to: date,
    ) -> BatchSyncResult:
        """Run syncs with bounded concurrency inside the batch time budget.

        Integrations still running when the budget expires are cancelled and
        reported as timeout failures.
        """
        batch = BatchSyncResult(date_from=date_from, date_to=date_to)
        if not integrations:
            logger.info("No integrations to sync")
            return batch

        batch_started = utc_now()
        semaphore = asyncio.Semaphore(self.settings.sync_concurrency)

        async def _bounded(integration: Integration) -> SyncResult:
            async with semaphore:
                return await self.sync_integration(integration, date_from, date_to)

        tasks = {
            asyncio.create_task(_bounded(integration)): integration
            for integration in integrations
        }
        done, pending = await asyncio.wait(
            tasks.keys(), timeout=self.settings.sync_batch_budget_s
        )

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Batch budget of %.0fs exhausted, %s integrations cancelled",
                self.settings.sync_batch_budget_s,
                len(pending),
            )

        for task, integration in tasks.items():
            if task in pending:
                batch.results.append(
                    self._record_failure(
                        integration,
                        "timeout",
                        f"Sync did not finish within the "
                        f"{self.settings.sync_batch_budget_s:.0f}s batch budget",
                        retryable=True,
                        started_at=batch_started,
                        date_from=date_from,
                        date_to=date_to,
                    )
                )
                continue

            exc = task.exception()
            if exc is not None:
                logger.error(
                    "Sync task for %s raised: %s",
                    integration.id,
                    self._redact_error(integration, repr(exc)),
                )
                batch.results.append(
                    SyncResult(
                        integration_id=integration.id,
                        client_id=integration.client_id,
                        platform=integration.platform,
                        success=False,
                        error=self._redact_error(integration, repr(exc)),
                        error_kind="unexpected",
                    )
                )
                continue

            batch.results.append(task.result())

        logger.info(
            "Batch sync %s..%s complete: %s/%s succeeded",
            date_from,
            date_to,
            batch.succeeded,
            batch.total,
        )
        return batch
