"""
Resilience Infrastructure for Cloud Weather

Maps transport and parsing errors onto FetchFailure kinds and provides
optional retry logic with exponential backoff for source fetchers.
Retry policy lives here and in SourceFetcher, never in the aggregators.

Features:
- @with_retry decorator for async functions
- Error categorization (network, timeout, auth, not_found, malformed)
- Jitter to prevent thundering herd
"""

import asyncio
import functools
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, TypeVar

import httpx

from cloud_weather.errors import FailureKind, FetchFailure

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 0  # 0 = single attempt, matching the deployed fetchers
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True

    # HTTP status codes that should NOT trigger retry
    non_retryable_status_codes: tuple = (400, 401, 403, 404, 422)

    # HTTP status codes that SHOULD trigger retry
    retryable_status_codes: tuple = (408, 429, 500, 502, 503, 504)


DEFAULT_RETRY_CONFIG = RetryConfig()


def categorize_error(exception: Exception) -> Tuple[FailureKind, str]:
    """
    Categorize an exception into a FetchFailure kind.

    Returns:
        Tuple of (FailureKind, human readable cause)
    """
    error_msg = str(exception)[:200]

    if isinstance(exception, FetchFailure):
        return (exception.kind, exception.cause)

    if isinstance(exception, httpx.TimeoutException):
        return (FailureKind.TIMEOUT, f"Timeout: {error_msg or type(exception).__name__}")

    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        if status in (401, 403):
            return (FailureKind.AUTH, f"HTTP {status}: API key rejected")
        if status == 404:
            return (FailureKind.NOT_FOUND, "HTTP 404: not found")
        return (FailureKind.NETWORK, f"HTTP {status}: {error_msg}")

    if isinstance(exception, httpx.RequestError):
        return (FailureKind.NETWORK, f"Request error: {error_msg or type(exception).__name__}")

    if isinstance(exception, (json.JSONDecodeError, KeyError, ValueError, TypeError,
                              IndexError, AttributeError)):
        return (FailureKind.MALFORMED, f"Parse error: {type(exception).__name__}: {error_msg}")

    return (FailureKind.MALFORMED, f"Unexpected error: {type(exception).__name__}: {error_msg}")


def calculate_backoff_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay with exponential backoff and optional jitter.

    Args:
        attempt: The retry attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(
        config.base_delay_seconds * (config.exponential_base ** attempt),
        config.max_delay_seconds
    )

    if config.jitter:
        # Add up to 25% jitter
        delay += delay * 0.25 * random.random()

    return delay


def is_retryable_error(exception: Exception, config: RetryConfig) -> bool:
    """
    Determine if an exception should trigger a retry.

    Auth, not-found and malformed failures come back the same on every
    attempt, so they are never retried.
    """
    if isinstance(exception, FetchFailure):
        return exception.kind in (FailureKind.NETWORK, FailureKind.TIMEOUT)

    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        if status in config.non_retryable_status_codes:
            return False
        return status in config.retryable_status_codes or status >= 500

    if isinstance(exception, (httpx.TimeoutException, httpx.RequestError)):
        return True

    return False


def with_retry(
    config: Optional[RetryConfig] = None,
    source_name: str = "unknown"
) -> Callable:
    """
    Decorator that adds retry logic with exponential backoff.

    Works with async functions only. The last exception is re-raised
    once attempts are exhausted so the caller can map it to a failure.

    Usage:
        @with_retry(source_name="openweather")
        async def _fetch(self, lat, lon, api_key) -> Reading:
            ...
    """
    if config is None:
        config = DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start_time = time.time()

            for attempt in range(config.max_retries + 1):
                if attempt > 0:
                    delay = calculate_backoff_delay(attempt - 1, config)
                    logger.info(
                        f"[{source_name}] Retry {attempt}/{config.max_retries} "
                        f"after {delay:.1f}s delay"
                    )
                    await asyncio.sleep(delay)

                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    error_type, error_msg = categorize_error(e)
                    logger.warning(
                        f"[{source_name}] Attempt {attempt + 1} failed: "
                        f"{error_type.value} - {error_msg}"
                    )
                    if not is_retryable_error(e, config) or attempt >= config.max_retries:
                        elapsed = time.time() - start_time
                        logger.error(
                            f"[{source_name}] Giving up after {attempt + 1} attempt(s) "
                            f"({elapsed:.2f}s total)"
                        )
                        raise
                    continue

                if attempt > 0:
                    elapsed = time.time() - start_time
                    logger.info(
                        f"[{source_name}] Succeeded on attempt {attempt + 1} "
                        f"({elapsed:.2f}s total)"
                    )
                return result

        return async_wrapper

    return decorator
