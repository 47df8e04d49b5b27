"""Errors raised by the aggregation pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional

REFRESH_MESSAGE = "failed to load GitHub data, try refreshing"


class FailureKind(str, Enum):
    """Why a single sub-fetch produced no data."""

    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM_ERROR = "upstream_error"
    NETWORK = "network"


class AggregationError(Exception):
    """A snapshot could not be built at all."""

    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return REFRESH_MESSAGE


class AuthFailure(AggregationError):
    """No usable token: the profile cannot be resolved."""


class UpstreamUnavailable(AggregationError):
    """The mandatory profile call returned a non-2xx status or never completed."""

    retryable = True


class RateLimited(AggregationError):
    """GitHub refused the profile call because the rate limit was hit."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None, reset_at: Optional[int] = None) -> None:
        self.reset_at = reset_at  # Unix timestamp from X-RateLimit-Reset
        super().__init__(message, status_code)
