"""Shared HTTP request helper for platform adapters.

Retries 429/5xx/network errors a bounded number of times with exponential
backoff and jitter, then raises the matching typed PlatformError.
"""
import asyncio
import json
import logging
import random
from typing import Any, Callable, Optional

import aiohttp

from .exceptions import (
    AuthExpiredError,
    InvalidConfigError,
    PlatformError,
    RateLimitedError,
    TransientNetworkError,
)


logger = logging.getLogger(__name__)


ErrorClassifier = Callable[[int, Any], Optional[PlatformError]]


class PlatformHttpClient:
    """Thin aiohttp wrapper that maps HTTP failures onto the error taxonomy."""

    MAX_RETRY_ATTEMPTS = 3
    RETRY_BASE_DELAY = 0.5  # seconds
    RETRY_MULTIPLIER = 2.0
    RETRY_MAX_DELAY = 10.0  # seconds
    RETRY_JITTER_MS = 250  # milliseconds

    def __init__(
        self,
        platform: str,
        session: aiohttp.ClientSession,
        request_timeout_s: float = 60.0,
        classify_error: Optional[ErrorClassifier] = None,
    ) -> None:
        """Initialize client.

        Args:
            platform: Platform name used in error messages
            session: Injected aiohttp ClientSession
            request_timeout_s: Total timeout per HTTP call
            classify_error: Optional hook mapping (status, parsed body) to a
                platform-specific error before the generic status mapping
        """
        self.platform = platform
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=request_timeout_s, connect=10)
        self._classify_error = classify_error

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        json_body: Optional[Any] = None,
        data: Optional[dict] = None,
        retry: bool = True,
    ) -> Any:
        """Execute a request and return the parsed JSON body.

        Raises:
            RateLimitedError: 429 after retries (or Retry-After too long)
            TransientNetworkError: 5xx/network/timeout after retries
            AuthExpiredError: 401/403
            InvalidConfigError: other 4xx
        """
        attempt = 0
        while True:
            attempt += 1
            can_retry = retry and attempt <= self.MAX_RETRY_ATTEMPTS

            try:
                async with self.session.request(
                    method,
                    url,
                    params=params,
                    headers=headers,
                    json=json_body,
                    data=data,
                    timeout=self.timeout,
                ) as resp:
                    status = resp.status
                    text = await resp.text()
                    retry_after_header = (resp.headers or {}).get("Retry-After")
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if not can_retry:
                    raise TransientNetworkError(
                        self.platform, f"Network error after {attempt} attempts: {exc!r}"
                    ) from exc
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "%s network error: %r, backoff=%.2fs, attempt=%s",
                    self.platform,
                    exc,
                    delay,
                    attempt,
                )
                await asyncio.sleep(delay)
                continue

            if status == 429:
                retry_after = _parse_retry_after(retry_after_header)
                if not can_retry or (
                    retry_after is not None and retry_after > self.RETRY_MAX_DELAY
                ):
                    raise RateLimitedError(
                        self.platform,
                        f"HTTP 429 after {attempt} attempts: {text[:200]}",
                        retry_after=retry_after,
                    )
                delay = retry_after if retry_after is not None else self._calculate_backoff(attempt)
                logger.warning(
                    "%s HTTP 429, backoff=%.2fs, attempt=%s", self.platform, delay, attempt
                )
                await asyncio.sleep(delay)
                continue

            if 500 <= status < 600:
                if not can_retry:
                    raise TransientNetworkError(
                        self.platform,
                        f"HTTP {status} after {attempt} attempts: {text[:200]}",
                    )
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "%s HTTP %s, backoff=%.2fs, attempt=%s",
                    self.platform,
                    status,
                    delay,
                    attempt,
                )
                await asyncio.sleep(delay)
                continue

            body = _parse_json(text)

            if status >= 400:
                raise self._error_for_status(status, body, text)

            if body is None and text.strip():
                raise TransientNetworkError(
                    self.platform, f"Invalid JSON response: {text[:200]}"
                )
            return body

    def _error_for_status(self, status: int, body: Any, text: str) -> PlatformError:
        if self._classify_error is not None:
            classified = self._classify_error(status, body)
            if classified is not None:
                return classified

        if status in (401, 403):
            return AuthExpiredError(
                self.platform, f"HTTP {status} (credentials rejected): {text[:300]}"
            )
        return InvalidConfigError(
            self.platform, f"HTTP {status} (non-retryable): {text[:300]}"
        )

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with jitter (attempt is 1-indexed)."""
        delay = min(
            self.RETRY_BASE_DELAY * (self.RETRY_MULTIPLIER ** (attempt - 1)),
            self.RETRY_MAX_DELAY,
        )
        jitter = random.uniform(0, self.RETRY_JITTER_MS / 1000.0)
        return delay + jitter


def _parse_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None
