"""Google OAuth refresh-token exchange shared by the Google Ads and GA4 adapters."""
import logging
from typing import Any, Optional

from ..config import Settings
from .exceptions import (
    AuthExpiredError,
    InvalidConfigError,
    PlatformError,
    RateLimitedError,
)
from .http import PlatformHttpClient


logger = logging.getLogger(__name__)


GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


def classify_google_error(platform: str):
    """Build an error classifier for Google API error envelopes."""

    def _classify(status: int, body: Any) -> Optional[PlatformError]:
        # searchStream wraps errors in a list
        if isinstance(body, list) and body:
            body = body[0]
        if not isinstance(body, dict):
            return None

        error = body.get("error")
        if isinstance(error, str):
            # OAuth token endpoint: {"error": "invalid_grant", ...}
            description = body.get("error_description", "")
            if error == "invalid_grant":
                return AuthExpiredError(
                    platform, f"Refresh token revoked or expired: {description}"
                )
            if error in ("invalid_client", "unauthorized_client"):
                return InvalidConfigError(platform, f"OAuth client rejected: {description}")
            return None

        if not isinstance(error, dict):
            return None

        grpc_status = error.get("status", "")
        message = error.get("message", "")
        if grpc_status in ("UNAUTHENTICATED", "PERMISSION_DENIED"):
            return AuthExpiredError(platform, f"{grpc_status}: {message}")
        if grpc_status == "RESOURCE_EXHAUSTED":
            return RateLimitedError(platform, f"{grpc_status}: {message}")
        if grpc_status in ("INVALID_ARGUMENT", "NOT_FOUND", "FAILED_PRECONDITION"):
            return InvalidConfigError(platform, f"{grpc_status}: {message}")
        return None

    return _classify


class GoogleTokenProvider:
    """Exchanges a stored refresh token for a short-lived access token.

    Called once per adapter operation, so re-auth is silent and nothing
    short-lived is persisted.
    """

    def __init__(self, http: PlatformHttpClient, settings: Settings) -> None:
        self.http = http
        self.settings = settings

    async def access_token(self, refresh_token: str) -> str:
        """Return a fresh access token.

        Raises:
            InvalidConfigError: If GOOGLE_CLIENT_ID/SECRET are not configured
            AuthExpiredError: If Google rejects the refresh token
        """
        if not self.settings.google_client_id or not self.settings.google_client_secret:
            raise InvalidConfigError(
                self.http.platform, "GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not configured"
            )

        data = await self.http.request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "refresh_token": refresh_token,
            },
        )
        token = (data or {}).get("access_token")
        if not token:
            raise AuthExpiredError(self.http.platform, "Token refresh returned no access_token")
        return token
