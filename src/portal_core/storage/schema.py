"""SQLite schema definitions for the integration sync pipeline.

Database: data/portal.db (WAL mode, foreign keys enforced)
Tables: integrations, platform_metrics_daily, client_metrics, integration_sync_logs

Foreign keys carry no ON DELETE CASCADE; integration deletes remove
dependents explicitly (see repository.delete_integration).
"""
import logging
import sqlite3
from pathlib import Path


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection with WAL, foreign keys and Row access enabled.

    Args:
        db_path: Path to SQLite database file (or ":memory:")
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def init_database(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist.

    Args:
        conn: Open SQLite connection
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    current_version = cursor.fetchone()[0] or 0

    if current_version < SCHEMA_VERSION:
        _apply_schema(conn)
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
        logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
    else:
        logger.debug("Database schema up to date (version %s)", current_version)


def _apply_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS integrations (
            id TEXT PRIMARY KEY,
            client_id TEXT NOT NULL,
            platform TEXT NOT NULL,
            display_name TEXT NOT NULL,
            credentials_json TEXT NOT NULL DEFAULT '{}',
            config_json TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'inactive',
            error_message TEXT,
            consecutive_failures INTEGER NOT NULL DEFAULT 0,
            last_synced_at TEXT,
            created_by TEXT NOT NULL DEFAULT 'system',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_integrations_status
        ON integrations(status)
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_integrations_client
        ON integrations(client_id)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS platform_metrics_daily (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            integration_id TEXT NOT NULL,
            client_id TEXT NOT NULL,
            platform TEXT NOT NULL,
            metric_date TEXT NOT NULL,
            dimension_key TEXT NOT NULL DEFAULT '',
            impressions INTEGER,
            clicks INTEGER,
            spend REAL,
            conversions REAL,
            reach INTEGER,
            sessions INTEGER,
            users INTEGER,
            new_users INTEGER,
            pageviews INTEGER,
            bounce_rate REAL,
            avg_session_duration REAL,
            ctr REAL,
            cpc REAL,
            cpm REAL,
            raw_json TEXT,
            synced_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(integration_id, metric_date, dimension_key),
            FOREIGN KEY (integration_id) REFERENCES integrations(id)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_daily_client_date
        ON platform_metrics_daily(client_id, metric_date)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS client_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            period_type TEXT NOT NULL,
            period_start TEXT NOT NULL,
            period_end TEXT NOT NULL,
            impressions INTEGER,
            clicks INTEGER,
            spend REAL,
            conversions REAL,
            reach INTEGER,
            sessions INTEGER,
            users INTEGER,
            new_users INTEGER,
            pageviews INTEGER,
            ctr REAL,
            cpc REAL,
            cpm REAL,
            cost_per_conversion REAL,
            conversion_rate REAL,
            bounce_rate REAL,
            avg_session_duration REAL,
            source_record_count INTEGER NOT NULL DEFAULT 0,
            platforms_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(client_id, period_type, period_start)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS integration_sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            integration_id TEXT NOT NULL,
            client_id TEXT NOT NULL,
            platform TEXT NOT NULL,
            date_from TEXT NOT NULL,
            date_to TEXT NOT NULL,
            records_synced INTEGER NOT NULL DEFAULT 0,
            success INTEGER NOT NULL,
            error_kind TEXT,
            error_message TEXT,
            started_at TEXT NOT NULL,
            completed_at TEXT NOT NULL,
            FOREIGN KEY (integration_id) REFERENCES integrations(id)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_sync_logs_integration
        ON integration_sync_logs(integration_id, completed_at)
        """
    )
