"""Shared fixtures for unit tests."""
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.portal_core.config import Settings
from src.portal_core.storage.schema import connect, init_database


def _make_response(status=200, body=None, headers=None, text=None):
    """Build an aiohttp-style response usable as `async with session.request(...)`."""
    mock_response = AsyncMock()
    mock_response.status = status
    if text is None:
        text = json.dumps(body) if body is not None else ""
    mock_response.text = AsyncMock(return_value=text)
    mock_response.headers = headers or {}
    mock_response.__aenter__.return_value = mock_response
    return mock_response


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def settings():
    return Settings(
        db_path=Path(":memory:"),
        raw_dir=None,
        timezone="UTC",
        meta_app_id="meta-app-id",
        meta_app_secret="meta-app-secret",
        google_client_id="google-client-id",
        google_client_secret="google-client-secret",
        google_developer_token="dev-token-xyz",
    )


@pytest.fixture
def conn():
    db_conn = connect(":memory:")
    init_database(db_conn)
    yield db_conn
    db_conn.close()
