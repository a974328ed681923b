"""Backoff schedule and error classification"""

import asyncio

import httpx

from .config import BACKOFF_MULTIPLIER, INITIAL_BACKOFF
from .exceptions import (
    ArbiterUnavailableError,
    RateLimitError,
    RetriesExhaustedError,
    TransientError,
)
from .models import ErrorType


def backoff_delay(
    retry_number: int,
    initial_backoff: float = INITIAL_BACKOFF,
    backoff_multiplier: float = BACKOFF_MULTIPLIER,
) -> float:
    """
    Delay before the given retry, in seconds.

    Args:
        retry_number: 1 for the first retry, 2 for the second, ...
        initial_backoff: Delay before the first retry
        backoff_multiplier: Growth factor between consecutive retries

    Returns:
        ``initial_backoff * backoff_multiplier ** (retry_number - 1)``
    """
    if retry_number < 1:
        raise ValueError(f"retry_number must be >= 1, got {retry_number}")
    return initial_backoff * backoff_multiplier ** (retry_number - 1)


def classify_error(error: BaseException) -> ErrorType:
    """Classify error for appropriate handling"""
    if isinstance(error, asyncio.CancelledError):
        return ErrorType.CANCELLED
    elif isinstance(error, RateLimitError):
        return ErrorType.RATE_LIMIT
    elif isinstance(error, (TransientError, ArbiterUnavailableError, asyncio.TimeoutError)):
        return ErrorType.TRANSIENT
    elif isinstance(error, RetriesExhaustedError):
        return ErrorType.PERMANENT
    elif isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return ErrorType.RATE_LIMIT
        elif error.response.status_code >= 500:
            return ErrorType.TRANSIENT
        else:
            return ErrorType.PERMANENT
    elif isinstance(error, (httpx.ConnectError, httpx.TimeoutException)):
        return ErrorType.TRANSIENT
    else:
        return ErrorType.PERMANENT


def is_rate_limited(error: BaseException) -> bool:
    """True when the failure means the caller was explicitly throttled"""
    return classify_error(error) is ErrorType.RATE_LIMIT
