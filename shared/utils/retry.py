"""
Retry utilities with exponential backoff.

Provides a retry decorator and error classification for transient vs
permanent failures in datastore connections, HTTP health checks and other network
operations. A fixed-interval retry is expressed as ``exponential_base=1.0``
with jitter disabled.
"""

import asyncio
import functools
import inspect
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple, Type

import structlog


logger = structlog.get_logger(__name__)


class ErrorCategory(Enum):
    """Error category classification"""
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"
    RATE_LIMITED = "rate_limited"


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    initial_delay: float = 0.1  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.2  # +/- 20%


@dataclass
class RetryMetrics:
    """Metrics for retry operations"""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retry_count: int = 0
    total_retry_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_timestamp: Optional[datetime] = None


# Retryable exception types
RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)


# Non-retryable exception types
NON_RETRYABLE_EXCEPTIONS = (
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
    RuntimeError,
)

# Message fragments that mark an otherwise unknown error as transient
TRANSIENT_WORDS = ("connection", "timeout", "unavailable", "temporary", "transient")


def classify_error(exception: Exception) -> ErrorCategory:
    """
    Classify an exception as retryable or non-retryable.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory indicating retry behavior
    """
    status_code = getattr(exception, "status", None) or getattr(exception, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorCategory.RATE_LIMITED
        if status_code in {408, 500, 502, 503, 504}:
            return ErrorCategory.RETRYABLE
        if 400 <= status_code < 500:
            return ErrorCategory.NON_RETRYABLE

    if isinstance(exception, RETRYABLE_EXCEPTIONS):
        return ErrorCategory.RETRYABLE

    if isinstance(exception, NON_RETRYABLE_EXCEPTIONS):
        return ErrorCategory.NON_RETRYABLE

    message = str(exception).lower()
    if any(word in message for word in TRANSIENT_WORDS):
        return ErrorCategory.RETRYABLE

    return ErrorCategory.NON_RETRYABLE


def calculate_delay(
    attempt: int,
    config: RetryConfig
) -> float:
    """
    Calculate delay for retry attempt with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter = random.uniform(-config.jitter_range, config.jitter_range)
        delay = delay * (1 + jitter)

    return max(0, delay)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
    on_retry: Optional[Callable] = None,
    metrics: Optional[RetryMetrics] = None
):
    """
    Decorator for retrying operations with exponential backoff.

    Exceptions listed in ``retryable_exceptions`` are always retried; anything
    else goes through :func:`classify_error`.

    Args:
        config: Retry configuration (uses defaults if None)
        retryable_exceptions: Tuple of exception types to retry
        on_retry: Optional callback called on each retry
        metrics: Optional metrics object to track retry stats

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(RetryConfig(max_attempts=5))
        async def connect():
            return await asyncpg.create_pool(dsn)
    """
    if config is None:
        config = RetryConfig()

    if retryable_exceptions is None:
        retryable_exceptions = ()

    if metrics is None:
        metrics = RetryMetrics()

    def decorator(func):

        def next_delay(attempt: int, exc: Exception) -> float:
            """Record a failure and return the wait before the next attempt.

            Re-raises when the failure is permanent or attempts are exhausted.
            """
            if isinstance(exc, retryable_exceptions):
                category = ErrorCategory.RETRYABLE
            else:
                category = classify_error(exc)

            metrics.last_error = str(exc)
            metrics.last_error_timestamp = datetime.now(timezone.utc)
            log = logger.bind(
                function=func.__name__,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                error=str(exc),
                error_type=type(exc).__name__,
            )

            if category == ErrorCategory.NON_RETRYABLE:
                log.error("retry_aborted_permanent_error")
                metrics.failed_attempts += 1
                raise exc

            if attempt == config.max_attempts - 1:
                log.error(
                    "retry_exhausted",
                    total_retry_duration_ms=round(metrics.total_retry_duration_ms, 1),
                )
                metrics.failed_attempts += 1
                raise exc

            delay = calculate_delay(attempt, config)
            metrics.retry_count += 1
            metrics.total_retry_duration_ms += delay * 1000

            log.warning(
                "retry_scheduled",
                delay_seconds=round(delay, 3),
                error_category=category.value,
            )

            if on_retry:
                on_retry(attempt, exc, delay)

            return delay

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                metrics.total_attempts += 1
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    await asyncio.sleep(next_delay(attempt, e))
                else:
                    metrics.successful_attempts += 1
                    return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                metrics.total_attempts += 1
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    time.sleep(next_delay(attempt, e))
                else:
                    metrics.successful_attempts += 1
                    return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
