"""
Error types raised by the upstream provider client.

Every failure of the upstream path is surfaced as a distinct subclass
of UpstreamError. Caller cancellation is not wrapped: it propagates as
asyncio.CancelledError.
"""

from typing import Optional


class UpstreamError(Exception):
    """Base class for all upstream provider failures."""


class RateLimitError(UpstreamError):
    """
    The provider answered HTTP 429.

    Used internally to drive the retry loop; callers only ever see
    RateLimitExhaustedError.
    """

    def __init__(self, status_code: int = 429):
        self.status_code = status_code
        super().__init__(f"rate limited (HTTP {status_code})")


class RateLimitExhaustedError(UpstreamError):
    """Every attempt was rate limited."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"rate limited after {attempts} retries: {last_error}")


class UpstreamStatusError(UpstreamError):
    """Non-2xx, non-429 response. Carries the status code and response body."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"unexpected status {status_code}: {body}")


class UpstreamTransportError(UpstreamError):
    """Connection-level failure before a response was received."""


class UpstreamTimeoutError(UpstreamError):
    """The per-attempt deadline elapsed."""


class UpstreamDecodeError(UpstreamError):
    """The response body could not be decoded."""
