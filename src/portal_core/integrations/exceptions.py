"""Typed fetch errors raised by platform adapters.

``retryable`` tells the sync engine whether the next scheduled run may
succeed without user action.
"""
from typing import Optional


class PlatformError(Exception):
    """Base exception for all platform adapter errors."""

    kind = "platform"
    retryable = False

    def __init__(self, platform: str, message: str):
        self.platform = platform
        self.message = message
        super().__init__(f"[{platform}] {message}")


class AuthExpiredError(PlatformError):
    """Credentials rejected or expired; the integration needs re-auth."""

    kind = "auth"


class InvalidConfigError(PlatformError):
    """Credential/config bundle malformed or pointing at a missing resource."""

    kind = "config"


class UnknownPlatformError(InvalidConfigError):
    """No adapter is registered for the integration's platform."""

    def __init__(self, platform: str):
        super().__init__(platform, f"Unsupported platform: {platform}")


class RateLimitedError(PlatformError):
    """Platform throttled the request (HTTP 429 or equivalent)."""

    kind = "rate_limited"
    retryable = True

    def __init__(self, platform: str, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(platform, message)


class TransientNetworkError(PlatformError):
    """Network failure, timeout or 5xx from the platform."""

    kind = "network"
    retryable = True
