"""Portal sync FastAPI application entry point."""
import logging
from typing import Optional

from fastapi import FastAPI

from .api.routes import router as api_router
from .config import Settings, load_settings


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Request handlers reload settings per request; the instance here only
    drives startup (logging level, startup log line).
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Portal Sync API",
        version="0.1.0",
        description="Ad/analytics platform sync and client metrics aggregation",
    )
    app.include_router(api_router)

    logger.info(
        "Portal sync API ready (db=%s, timezone=%s, report sink=%s)",
        settings.db_path,
        settings.timezone,
        "webhook" if settings.report_webhook_url else "log",
    )
    return app


app = create_app()
