"""FastAPI authentication dependencies for the portal API."""
import hmac
import os
from typing import Annotated

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer


# Admin/portal callers
api_key_header = APIKeyHeader(name="X-PORTAL-API-KEY", auto_error=False)

# Cron scheduler
cron_bearer = HTTPBearer(auto_error=False)


async def require_api_key(
    api_key: Annotated[str | None, Security(api_key_header)] = None
) -> str:
    """Validate API key from request header.

    Args:
        api_key: API key from X-PORTAL-API-KEY header (optional)

    Returns:
        Validated API key

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    expected_key = os.getenv("PORTAL_API_KEY")

    if not expected_key:
        raise RuntimeError("PORTAL_API_KEY environment variable not configured")

    if not api_key or not hmac.compare_digest(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key


async def require_cron_secret(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Security(cron_bearer)
    ] = None
) -> str:
    """Validate the scheduler's `Authorization: Bearer <CRON_SECRET>` header.

    Raises:
        HTTPException: 401 if the bearer token is missing or wrong
    """
    expected_secret = os.getenv("CRON_SECRET")

    if not expected_secret:
        raise RuntimeError("CRON_SECRET environment variable not configured")

    token = credentials.credentials if credentials else ""
    if not token or not hmac.compare_digest(token, expected_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token
