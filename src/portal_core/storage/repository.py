"""Read/write helpers over the portal SQLite store.

Write helpers used by the sync engine and aggregator do not commit; the
caller owns the transaction. Admin helpers (create/delete/status) commit.
"""
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from ..schemas.integrations import DailyMetric, Integration, IntegrationStatus
from ..schemas.metrics import ClientMetric, PeriodType
from .exceptions import StoreReadError, StoreWriteError


logger = logging.getLogger(__name__)


DAILY_METRIC_FIELDS = [
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "reach",
    "sessions",
    "users",
    "new_users",
    "pageviews",
    "bounce_rate",
    "avg_session_duration",
    "ctr",
    "cpc",
    "cpm",
]

CLIENT_METRIC_FIELDS = [
    "period_end",
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "reach",
    "sessions",
    "users",
    "new_users",
    "pageviews",
    "ctr",
    "cpc",
    "cpm",
    "cost_per_conversion",
    "conversion_rate",
    "bounce_rate",
    "avg_session_duration",
    "source_record_count",
    "platforms_json",
]


@dataclass(frozen=True)
class SyncLogEntry:
    """One sync attempt, appended once and never updated."""

    integration_id: str
    client_id: str
    platform: str
    date_from: date
    date_to: date
    records_synced: int
    success: bool
    started_at: datetime
    completed_at: datetime
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _row_to_integration(row: sqlite3.Row) -> Integration:
    return Integration(
        id=row["id"],
        client_id=row["client_id"],
        platform=row["platform"],
        display_name=row["display_name"],
        credentials=json.loads(row["credentials_json"] or "{}"),
        config=json.loads(row["config_json"] or "{}"),
        status=IntegrationStatus(row["status"]),
        error_message=row["error_message"],
        consecutive_failures=row["consecutive_failures"],
        last_synced_at=_parse_ts(row["last_synced_at"]),
        created_by=row["created_by"],
        created_at=_parse_ts(row["created_at"]),
    )


# --- Integrations ----------------------------------------------------------


def create_integration(
    conn: sqlite3.Connection,
    client_id: str,
    platform: str,
    display_name: str,
    credentials: Optional[dict] = None,
    config: Optional[dict] = None,
    created_by: str = "system",
) -> Integration:
    """Insert a new integration in inactive status and commit."""
    integration_id = str(uuid.uuid4())
    now = utc_now().isoformat()

    try:
        conn.execute(
            """
            INSERT INTO integrations (
                id, client_id, platform, display_name,
                credentials_json, config_json, status,
                created_by, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                integration_id,
                client_id,
                platform,
                display_name,
                json.dumps(credentials or {}, separators=(",", ":")),
                json.dumps(config or {}, separators=(",", ":")),
                IntegrationStatus.INACTIVE.value,
                created_by,
                now,
                now,
            ),
        )
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreWriteError("create_integration", str(exc)) from exc

    logger.info(
        "Created integration %s (client=%s, platform=%s)",
        integration_id,
        client_id,
        platform,
    )
    integration = get_integration(conn, integration_id)
    if integration is None:
        raise StoreReadError(
            "create_integration", f"integration {integration_id} missing after insert"
        )
    return integration


def get_integration(
    conn: sqlite3.Connection, integration_id: str
) -> Optional[Integration]:
    row = conn.execute(
        "SELECT * FROM integrations WHERE id=?", (integration_id,)
    ).fetchone()
    if row is None:
        return None
    return _row_to_integration(row)


def list_integrations(
    conn: sqlite3.Connection,
    status: Optional[IntegrationStatus] = None,
    client_id: Optional[str] = None,
) -> list[Integration]:
    """List integrations, optionally filtered by status and/or client."""
    query = "SELECT * FROM integrations WHERE 1=1"
    params: list[Any] = []
    if status is not None:
        query += " AND status=?"
        params.append(status.value)
    if client_id is not None:
        query += " AND client_id=?"
        params.append(client_id)
    query += " ORDER BY created_at, id"

    try:
        rows = conn.execute(query, params).fetchall()
    except sqlite3.Error as exc:
        raise StoreReadError("list_integrations", str(exc)) from exc
    return [_row_to_integration(row) for row in rows]


def set_integration_status(
    conn: sqlite3.Connection,
    integration_id: str,
    status: IntegrationStatus,
    error_message: Optional[str] = None,
) -> None:
    """Set status directly (admin actions such as a passed connection test).

    Setting status=active clears the failure streak, so a reactivated
    integration gets the full threshold before it can be demoted again.
    """
    try:
        conn.execute(
            """
            UPDATE integrations
            SET status=?, error_message=?, updated_at=?,
                consecutive_failures=CASE
                    WHEN ? THEN 0
                    ELSE consecutive_failures
                END
            WHERE id=?
            """,
            (
                status.value,
                error_message,
                utc_now().isoformat(),
                1 if status == IntegrationStatus.ACTIVE else 0,
                integration_id,
            ),
        )
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreWriteError("set_integration_status", str(exc)) from exc


def delete_integration(conn: sqlite3.Connection, integration_id: str) -> bool:
    """Delete an integration and everything it owns.

    Daily metric rows and sync logs go first, then the integration row,
    in one transaction.

    Returns:
        True if the integration existed
    """
    try:
        conn.execute(
            "DELETE FROM platform_metrics_daily WHERE integration_id=?",
            (integration_id,),
        )
        conn.execute(
            "DELETE FROM integration_sync_logs WHERE integration_id=?",
            (integration_id,),
        )
        cursor = conn.execute(
            "DELETE FROM integrations WHERE id=?", (integration_id,)
        )
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreWriteError("delete_integration", str(exc)) from exc

    deleted = cursor.rowcount > 0
    if deleted:
        logger.info("Deleted integration %s and its dependents", integration_id)
    return deleted


# --- Sync writes (caller commits) -------------------------------------------


def upsert_daily_metrics(
    conn: sqlite3.Connection,
    integration: Integration,
    rows: Iterable[DailyMetric],
    synced_at: datetime,
) -> int:
    """Upsert daily rows keyed by (integration, date, dimension).

    Each write replaces the full day's values (last write wins).

    Returns:
        Number of rows written
    """
    columns = ", ".join(DAILY_METRIC_FIELDS)
    placeholders = ", ".join("?" for _ in DAILY_METRIC_FIELDS)
    updates = ",\n".join(f"{name}=excluded.{name}" for name in DAILY_METRIC_FIELDS)

    sql = f"""
        INSERT INTO platform_metrics_daily (
            integration_id, client_id, platform, metric_date, dimension_key,
            {columns}, raw_json, synced_at
        )
        VALUES (?, ?, ?, ?, ?, {placeholders}, ?, ?)
        ON CONFLICT(integration_id, metric_date, dimension_key)
        DO UPDATE SET
            {updates},
            raw_json=excluded.raw_json,
            synced_at=excluded.synced_at
    """

    count = 0
    try:
        for row in rows:
            values = [getattr(row, name) for name in DAILY_METRIC_FIELDS]
            conn.execute(
                sql,
                (
                    integration.id,
                    integration.client_id,
                    integration.platform,
                    row.metric_date.isoformat(),
                    row.dimension_key,
                    *values,
                    json.dumps(row.raw, separators=(",", ":"), default=str),
                    synced_at.isoformat(),
                ),
            )
            count += 1
    except sqlite3.Error as exc:
        raise StoreWriteError("upsert_daily_metrics", str(exc)) from exc

    return count


def record_sync_success(
    conn: sqlite3.Connection,
    integration_id: str,
    synced_at: datetime,
    credentials: Optional[dict] = None,
) -> None:
    """Mark integration active, reset failure count, optionally store refreshed credentials."""
    try:
        if credentials is not None:
            conn.execute(
                "UPDATE integrations SET credentials_json=? WHERE id=?",
                (json.dumps(credentials, separators=(",", ":"), default=str), integration_id),
            )
        cursor = conn.execute(
            """
            UPDATE integrations
            SET status=?, last_synced_at=?, error_message=NULL,
                consecutive_failures=0, updated_at=?
            WHERE id=?
            """,
            (
                IntegrationStatus.ACTIVE.value,
                synced_at.isoformat(),
                synced_at.isoformat(),
                integration_id,
            ),
        )
    except sqlite3.Error as exc:
        raise StoreWriteError("record_sync_success", str(exc)) from exc

    if cursor.rowcount == 0:
        raise StoreWriteError(
            "record_sync_success", f"integration {integration_id} no longer exists"
        )


def record_sync_failure(
    conn: sqlite3.Connection,
    integration_id: str,
    error_message: str,
    demote: bool = False,
    demote_after: Optional[int] = None,
) -> int:
    """Increment the failure streak and demote to status=error when warranted.

    Args:
        demote: Demote immediately (auth/config failures)
        demote_after: Demote once the streak reaches this many failures

    Returns:
        The new consecutive failure count
    """
    now = utc_now().isoformat()
    threshold = demote_after if demote_after is not None else -1
    try:
        # SET expressions see the pre-update consecutive_failures value.
        conn.execute(
            """
            UPDATE integrations
            SET status=CASE
                    WHEN ? OR (? > 0 AND consecutive_failures + 1 >= ?) THEN ?
                    ELSE status
                END,
                error_message=?,
                consecutive_failures=consecutive_failures + 1,
                updated_at=?
            WHERE id=?
            """,
            (
                1 if demote else 0,
                threshold,
                threshold,
                IntegrationStatus.ERROR.value,
                error_message,
                now,
                integration_id,
            ),
        )
        row = conn.execute(
            "SELECT consecutive_failures FROM integrations WHERE id=?",
            (integration_id,),
        ).fetchone()
    except sqlite3.Error as exc:
        raise StoreWriteError("record_sync_failure", str(exc)) from exc

    return row[0] if row else 0


def append_sync_log(conn: sqlite3.Connection, entry: SyncLogEntry) -> None:
    try:
        conn.execute(
            """
            INSERT INTO integration_sync_logs (
                integration_id, client_id, platform, date_from, date_to,
                records_synced, success, error_kind, error_message,
                started_at, completed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.integration_id,
                entry.client_id,
                entry.platform,
                entry.date_from.isoformat(),
                entry.date_to.isoformat(),
                entry.records_synced,
                1 if entry.success else 0,
                entry.error_kind,
                entry.error_message,
                entry.started_at.isoformat(),
                entry.completed_at.isoformat(),
            ),
        )
    except sqlite3.Error as exc:
        raise StoreWriteError("append_sync_log", str(exc)) from exc


def list_sync_logs(conn: sqlite3.Connection, integration_id: str) -> list[dict]:
    rows = conn.execute(
        """
        SELECT * FROM integration_sync_logs
        WHERE integration_id=?
        ORDER BY id
        """,
        (integration_id,),
    ).fetchall()
    return [dict(row) for row in rows]


# --- Aggregation reads/writes -------------------------------------------------


def list_client_ids(conn: sqlite3.Connection) -> list[str]:
    """All clients known to the pipeline (configured integrations or stored rows)."""
    try:
        rows = conn.execute(
            """
            SELECT client_id FROM integrations
            UNION
            SELECT client_id FROM platform_metrics_daily
            ORDER BY client_id
            """
        ).fetchall()
    except sqlite3.Error as exc:
        raise StoreReadError("list_client_ids", str(exc)) from exc
    return [row[0] for row in rows]


def load_daily_metrics(
    conn: sqlite3.Connection,
    client_id: str,
    date_from: date,
    date_to: date,
) -> list[dict]:
    """Daily rows for one client's integrations within [date_from, date_to]."""
    try:
        rows = conn.execute(
            f"""
            SELECT platform, metric_date, dimension_key, {", ".join(DAILY_METRIC_FIELDS)}
            FROM platform_metrics_daily
            WHERE client_id=? AND metric_date >= ? AND metric_date <= ?
            ORDER BY metric_date, integration_id, dimension_key
            """,
            (client_id, date_from.isoformat(), date_to.isoformat()),
        ).fetchall()
    except sqlite3.Error as exc:
        raise StoreReadError("load_daily_metrics", str(exc)) from exc
    return [dict(row) for row in rows]


def count_daily_metrics(conn: sqlite3.Connection, integration_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM platform_metrics_daily WHERE integration_id=?",
        (integration_id,),
    ).fetchone()
    return row[0]


def _row_to_client_metric(row: sqlite3.Row) -> ClientMetric:
    data = dict(row)
    platforms = json.loads(data["platforms_json"] or "[]")
    return ClientMetric(
        client_id=data["client_id"],
        period_type=PeriodType(data["period_type"]),
        period_start=date.fromisoformat(data["period_start"]),
        period_end=date.fromisoformat(data["period_end"]),
        platforms=platforms,
        updated_at=_parse_ts(data["updated_at"]),
        **{
            name: data[name]
            for name in CLIENT_METRIC_FIELDS
            if name not in ("period_end", "platforms_json")
        },
    )


def get_client_metric(
    conn: sqlite3.Connection,
    client_id: str,
    period_type: PeriodType,
    period_start: date,
) -> Optional[ClientMetric]:
    """Read contract for report/notification generation."""
    row = conn.execute(
        """
        SELECT * FROM client_metrics
        WHERE client_id=? AND period_type=? AND period_start=?
        """,
        (client_id, period_type.value, period_start.isoformat()),
    ).fetchone()
    if row is None:
        return None
    return _row_to_client_metric(row)


def list_client_metrics(
    conn: sqlite3.Connection,
    client_id: str,
    period_type: Optional[PeriodType] = None,
) -> list[ClientMetric]:
    query = "SELECT * FROM client_metrics WHERE client_id=?"
    params: list[Any] = [client_id]
    if period_type is not None:
        query += " AND period_type=?"
        params.append(period_type.value)
    query += " ORDER BY period_start"
    return [_row_to_client_metric(row) for row in conn.execute(query, params).fetchall()]


def upsert_client_metric(conn: sqlite3.Connection, metric: ClientMetric) -> bool:
    """Upsert a client-facing row keyed by (client, period_type, period_start).

    The existence check and the upsert are not atomic; a concurrent writer
    simply wins or loses like a retry would.

    Returns:
        True if the row was inserted, False if an existing row was updated
    """
    key = (metric.client_id, metric.period_type.value, metric.period_start.isoformat())
    now = utc_now().isoformat()

    values = {name: getattr(metric, name, None) for name in CLIENT_METRIC_FIELDS}
    values["period_end"] = metric.period_end.isoformat()
    values["platforms_json"] = json.dumps(sorted(metric.platforms), separators=(",", ":"))

    columns = ", ".join(CLIENT_METRIC_FIELDS)
    placeholders = ", ".join("?" for _ in CLIENT_METRIC_FIELDS)
    updates = ",\n".join(f"{name}=excluded.{name}" for name in CLIENT_METRIC_FIELDS)

    try:
        existing = conn.execute(
            """
            SELECT id FROM client_metrics
            WHERE client_id=? AND period_type=? AND period_start=?
            """,
            key,
        ).fetchone()

        conn.execute(
            f"""
            INSERT INTO client_metrics (
                client_id, period_type, period_start, {columns},
                created_at, updated_at
            )
            VALUES (?, ?, ?, {placeholders}, ?, ?)
            ON CONFLICT(client_id, period_type, period_start)
            DO UPDATE SET
                {updates},
                updated_at=excluded.updated_at
            """,
            (*key, *[values[name] for name in CLIENT_METRIC_FIELDS], now, now),
        )
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreWriteError("upsert_client_metric", str(exc)) from exc

    return existing is None
