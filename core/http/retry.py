"""Retry utilities for async HTTP operations.

This module provides retry decorators using tenacity for resilient HTTP calls.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import (
    ClientConnectorError,
    ClientError,
    ClientResponseError,
    ServerDisconnectedError,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ClientConnectorError,
    ClientResponseError,
    ServerDisconnectedError,
    ClientError,
    asyncio.TimeoutError,
    ExternalServiceError,
)


def is_retryable_error(exc: BaseException) -> bool:
    """Return True for transient failures worth another attempt."""
    if isinstance(exc, ExternalServiceError):
        return bool(exc.details.get("retryable", True))
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


def retry_async(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 10.0,
):
    """Factory that returns a tenacity retry decorator configured with provided parameters.

    Args:
        max_retries: Maximum number of retry attempts (in addition to the first attempt).
        retry_delay: Initial delay between retries in seconds (used as multiplier).
        backoff_factor: Exponential backoff base for increasing delay between retries.
        max_delay: Upper bound for a single wait between attempts.

    Returns:
        A tenacity retry decorator configured with the specified parameters.

    Example:
        @retry_async(max_retries=5, retry_delay=2.0)
        async def fetch_data():
            async with session.get(url) as response:
                return await response.json()
    """
    return retry(
        # stop_after_attempt includes the first attempt
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(
            multiplier=retry_delay,
            exp_base=backoff_factor,
            max=max_delay,
        ),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
