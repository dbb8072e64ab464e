"""Shared helpers: retry decorators, clamping and timestamps."""

import time
import logging
import asyncio
from datetime import datetime, timezone
from functools import wraps
from typing import TypeVar, Callable, Optional

logger = logging.getLogger(__name__)

T = TypeVar('T')


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def utc_now_iso() -> str:
    """Current UTC time as a naive ISO string (the format stored in SQLite)."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds")


def is_sqlite_busy(exc: Exception) -> bool:
    """True for the transient lock errors SQLite raises under write contention."""
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _should_retry(exc: Exception, retry_if: Optional[Callable[[Exception], bool]]) -> bool:
    return retry_if is None or retry_if(exc)


def _log_attempt(name: str, attempt: int, max_retries: int, exc: Exception, delay: float) -> None:
    if attempt < max_retries - 1:
        logger.warning(
            f"{name} failed (attempt {attempt + 1}/{max_retries}): {exc}. "
            f"Retrying in {delay:.1f}s..."
        )
    else:
        logger.error(f"{name} failed after {max_retries} attempts: {exc}")


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 0.05,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator that retries a function with exponential backoff on failure.

    Args:
        max_retries: Maximum number of attempts
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier applied to the delay after each retry
        exceptions: Exception types that are candidates for a retry
        retry_if: Optional predicate; exceptions it rejects propagate immediately

    Example:
        @retry_with_backoff(exceptions=(sqlite3.OperationalError,), retry_if=is_sqlite_busy)
        def increment_counter(...):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if not _should_retry(e, retry_if) or attempt == max_retries - 1:
                        _log_attempt(func.__name__, max_retries - 1, max_retries, e, delay)
                        raise
                    _log_attempt(func.__name__, attempt, max_retries, e, delay)
                    time.sleep(delay)
                    delay *= backoff_factor
            raise RuntimeError(f"{func.__name__}: retry loop exited without result")

        return wrapper
    return decorator


def async_retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 0.5,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
):
    """
    Async variant of :func:`retry_with_backoff` for coroutines.

    Sleeps with ``asyncio.sleep`` so other tasks keep running between attempts.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if not _should_retry(e, retry_if) or attempt == max_retries - 1:
                        _log_attempt(func.__name__, max_retries - 1, max_retries, e, delay)
                        raise
                    _log_attempt(func.__name__, attempt, max_retries, e, delay)
                    await asyncio.sleep(delay)
                    delay *= backoff_factor
            raise RuntimeError(f"{func.__name__}: retry loop exited without result")

        return wrapper
    return decorator
