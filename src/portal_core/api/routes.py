"""FastAPI routes for cron triggers, integration admin and metric reads."""
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, AsyncIterator, Optional

import aiohttp
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..config import Settings, load_settings
from ..integrations.base import parse_config, parse_credentials
from ..integrations.exceptions import InvalidConfigError, PlatformError
from ..integrations.registry import build_adapter_registry, get_adapter
from ..metrics.aggregator import AggregateResult, AggregateScope
from ..metrics.periods import today_in, trailing_sync_window
from ..scheduler.triggers import aggregation_job, open_store, report_job, sync_job
from ..schemas.integrations import Integration, IntegrationStatus, Platform
from ..schemas.metrics import ClientMetric, PeriodType
from ..storage.repository import (
    create_integration,
    delete_integration,
    get_client_metric,
    get_integration,
    list_client_metrics,
    set_integration_status,
)
from ..sync.engine import BatchSyncResult, SyncEngine, SyncResult
from .auth import require_api_key, require_cron_secret


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def get_settings() -> Settings:
    return load_settings()


async def get_db(settings: Settings = Depends(get_settings)) -> AsyncIterator[sqlite3.Connection]:
    # async so the connection lives on the event loop thread with the route
    conn = open_store(settings)
    try:
        yield conn
    finally:
        conn.close()


# --- Payloads ------------------------------------------------------------------


class SyncResultModel(BaseModel):
    integration_id: str
    platform: str
    success: bool
    record_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None


class BatchSyncResponse(BaseModel):
    success: bool = Field(..., description="True when the batch ran (item failures included)")
    error: Optional[str] = Field(None, description="Why the batch could not start")
    date_from: date
    date_to: date
    total: int
    succeeded: int
    failed: int
    results: list[SyncResultModel]


class AggregateResultModel(BaseModel):
    period_type: PeriodType
    date_from: date
    date_to: date
    success: bool
    inserted: int
    updated: int
    skipped: int
    errors: list[str]
    message: Optional[str] = None


class AggregateResponse(BaseModel):
    success: bool
    results: list[AggregateResultModel]


class ReportHandoffResponse(BaseModel):
    period_start: date
    period_end: date
    delivered: list[str]
    missing: list[str] = Field(..., description="Clients with no aggregated row for the week")
    failed: dict[str, str]


class CreateIntegrationRequest(BaseModel):
    client_id: str = Field(..., min_length=1)
    platform: Platform
    display_name: str = Field(..., min_length=1)
    credentials: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    created_by: str = Field("admin", description="Admin user id")


class IntegrationResponse(BaseModel):
    """Integration as shown to admins; credentials are never echoed."""

    id: str
    client_id: str
    platform: str
    display_name: str
    config: dict[str, Any]
    status: IntegrationStatus
    error_message: Optional[str] = None
    consecutive_failures: int = 0
    last_synced_at: Optional[datetime] = None


class ConnectionTestRequest(BaseModel):
    platform: str
    credentials: dict[str, Any] = Field(default_factory=dict)
    config: Optional[dict[str, Any]] = None
    integration_id: Optional[str] = Field(
        None, description="If set, a passing test activates the integration"
    )


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str


class SyncRangeRequest(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class AggregateRequest(BaseModel):
    period_type: PeriodType = PeriodType.WEEKLY
    date_from: Optional[date] = Field(None, description="Defaults to date_to - 6 days")
    date_to: Optional[date] = Field(None, description="Defaults to yesterday")
    client_id: Optional[str] = None


def _sync_result_model(result: SyncResult) -> SyncResultModel:
    return SyncResultModel(
        integration_id=result.integration_id,
        platform=result.platform,
        success=result.success,
        record_count=result.record_count,
        error=result.error,
        error_kind=result.error_kind,
    )


def _batch_response(batch: BatchSyncResult) -> BatchSyncResponse:
    return BatchSyncResponse(
        success=batch.error is None,
        error=batch.error,
        date_from=batch.date_from,
        date_to=batch.date_to,
        total=batch.total,
        succeeded=batch.succeeded,
        failed=batch.failed,
        results=[_sync_result_model(result) for result in batch.results],
    )


def _aggregate_response(
    outcomes: list[tuple[AggregateScope, AggregateResult]]
) -> AggregateResponse:
    results = [
        AggregateResultModel(
            period_type=scope.period_type,
            date_from=scope.date_from,
            date_to=scope.date_to,
            success=result.success,
            inserted=result.inserted,
            updated=result.updated,
            skipped=result.skipped,
            errors=result.errors,
            message=result.message,
        )
        for scope, result in outcomes
    ]
    return AggregateResponse(
        success=all(item.success for item in results), results=results
    )


def _integration_response(integration: Integration) -> IntegrationResponse:
    return IntegrationResponse(
        id=integration.id,
        client_id=integration.client_id,
        platform=integration.platform,
        display_name=integration.display_name,
        config=integration.config,
        status=integration.status,
        error_message=integration.error_message,
        consecutive_failures=integration.consecutive_failures,
        last_synced_at=integration.last_synced_at,
    )


# --- Cron ------------------------------------------------------------------------


@router.get(
    "/cron/sync-metrics",
    response_model=BatchSyncResponse,
    dependencies=[Depends(require_cron_secret)],
    tags=["cron"],
    summary="Daily sync of all active integrations",
)
async def cron_sync_metrics(
    settings: Settings = Depends(get_settings),
) -> BatchSyncResponse:
    batch = await sync_job(settings)
    return _batch_response(batch)


@router.get(
    "/cron/aggregate-platform-metrics",
    response_model=AggregateResponse,
    dependencies=[Depends(require_cron_secret)],
    tags=["cron"],
    summary="Aggregate last completed week (and month while still re-synced)",
)
async def cron_aggregate_metrics(
    settings: Settings = Depends(get_settings),
) -> AggregateResponse:
    return _aggregate_response(aggregation_job(settings))


@router.get(
    "/cron/weekly-reports",
    response_model=ReportHandoffResponse,
    dependencies=[Depends(require_cron_secret)],
    tags=["cron"],
    summary="Hand last completed week's client metrics to the report sink",
)
async def cron_weekly_reports(
    settings: Settings = Depends(get_settings),
) -> ReportHandoffResponse:
    result = await report_job(settings)
    return ReportHandoffResponse(
        period_start=result.period_start,
        period_end=result.period_end,
        delivered=result.delivered,
        missing=result.missing,
        failed=result.failed,
    )


# --- Admin -----------------------------------------------------------------------


@router.post(
    "/admin/integrations",
    response_model=IntegrationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
    tags=["admin"],
)
async def admin_create_integration(
    payload: CreateIntegrationRequest,
    conn: sqlite3.Connection = Depends(get_db),
) -> IntegrationResponse:
    """Create an integration in inactive status; a passing test activates it."""
    try:
        parse_credentials(payload.platform.value, payload.credentials)
    except InvalidConfigError as exc:
        raise HTTPException(
            status_code=422, detail=exc.message
        ) from exc

    integration = create_integration(
        conn,
        client_id=payload.client_id,
        platform=payload.platform.value,
        display_name=payload.display_name,
        credentials=payload.credentials,
        config=payload.config,
        created_by=payload.created_by,
    )
    return _integration_response(integration)


@router.delete(
    "/admin/integrations/{integration_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_api_key)],
    tags=["admin"],
)
async def admin_delete_integration(
    integration_id: str,
    conn: sqlite3.Connection = Depends(get_db),
) -> None:
    if not delete_integration(conn, integration_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")


@router.post(
    "/admin/integrations/test",
    response_model=ConnectionTestResponse,
    dependencies=[Depends(require_api_key)],
    tags=["admin"],
)
async def admin_test_integration(
    payload: ConnectionTestRequest,
    settings: Settings = Depends(get_settings),
    conn: sqlite3.Connection = Depends(get_db),
) -> ConnectionTestResponse:
    """Check credentials with a minimal read-only call."""
    try:
        credentials = parse_credentials(payload.platform, payload.credentials)
        config = (
            parse_config(payload.platform, payload.config, payload.credentials)
            if payload.config is not None
            else None
        )
        async with aiohttp.ClientSession() as session:
            adapter = get_adapter(build_adapter_registry(session, settings), payload.platform)
            passed = await adapter.test_connection(credentials, config)
    except PlatformError as exc:
        logger.warning("Connection test for %s errored: %s", payload.platform, exc.kind)
        return ConnectionTestResponse(success=False, message=f"{exc.kind}: {exc.message[:200]}")

    if payload.integration_id is not None:
        if passed:
            set_integration_status(conn, payload.integration_id, IntegrationStatus.ACTIVE)
        else:
            set_integration_status(
                conn,
                payload.integration_id,
                IntegrationStatus.ERROR,
                error_message="Connection test failed",
            )

    return ConnectionTestResponse(
        success=passed,
        message="Connection successful" if passed else "Connection failed",
    )


@router.post(
    "/admin/integrations/{integration_id}/sync",
    response_model=SyncResultModel,
    dependencies=[Depends(require_api_key)],
    tags=["admin"],
)
async def admin_sync_integration(
    integration_id: str,
    payload: Optional[SyncRangeRequest] = None,
    settings: Settings = Depends(get_settings),
    conn: sqlite3.Connection = Depends(get_db),
) -> SyncResultModel:
    """Sync one integration on demand (default: trailing window ending today)."""
    integration = get_integration(conn, integration_id)
    if integration is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")

    default_from, default_to = trailing_sync_window(
        today_in(settings.tzinfo), settings.sync_window_days
    )
    payload = payload or SyncRangeRequest()
    date_from = payload.date_from or default_from
    date_to = payload.date_to or default_to
    if date_from > date_to:
        raise HTTPException(
            status_code=422,
            detail="date_from must not be after date_to",
        )

    async with aiohttp.ClientSession() as session:
        engine = SyncEngine(conn, build_adapter_registry(session, settings), settings)
        result = await engine.sync_integration(integration, date_from, date_to)
    return _sync_result_model(result)


@router.post(
    "/admin/metrics/aggregate",
    response_model=AggregateResponse,
    dependencies=[Depends(require_api_key)],
    tags=["admin"],
)
async def admin_aggregate_metrics(
    payload: Optional[AggregateRequest] = None,
    settings: Settings = Depends(get_settings),
) -> AggregateResponse:
    """Aggregate one explicit period (default: the 7 days ending yesterday)."""
    payload = payload or AggregateRequest()
    date_to = payload.date_to or today_in(settings.tzinfo) - timedelta(days=1)
    date_from = payload.date_from or date_to - timedelta(days=6)

    scope = AggregateScope(
        period_type=payload.period_type,
        date_from=date_from,
        date_to=date_to,
        client_id=payload.client_id,
    )
    return _aggregate_response(aggregation_job(settings, scope=scope))


# --- Portal ----------------------------------------------------------------------


@router.post(
    "/clients/{client_id}/sync",
    response_model=BatchSyncResponse,
    dependencies=[Depends(require_api_key)],
    tags=["portal"],
)
async def client_sync(
    client_id: str,
    settings: Settings = Depends(get_settings),
) -> BatchSyncResponse:
    """Refresh one client's active integrations over the trailing window."""
    batch = await sync_job(settings, client_id=client_id)
    return _batch_response(batch)


@router.get(
    "/clients/{client_id}/metrics/{period_type}/{period_start}",
    response_model=ClientMetric,
    dependencies=[Depends(require_api_key)],
    tags=["portal"],
)
async def client_metric(
    client_id: str,
    period_type: PeriodType,
    period_start: date,
    conn: sqlite3.Connection = Depends(get_db),
) -> ClientMetric:
    metric = get_client_metric(conn, client_id, period_type, period_start)
    if metric is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics not found")
    return metric


@router.get(
    "/clients/{client_id}/metrics",
    response_model=list[ClientMetric],
    dependencies=[Depends(require_api_key)],
    tags=["portal"],
)
async def client_metrics(
    client_id: str,
    period_type: Optional[PeriodType] = None,
    conn: sqlite3.Connection = Depends(get_db),
) -> list[ClientMetric]:
    """All stored periods for a client, oldest first."""
    return list_client_metrics(conn, client_id, period_type)
