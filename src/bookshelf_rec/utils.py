"""Utility helpers for bookshelf_rec: retries and request deadlines."""

import time
import logging
from functools import wraps
from typing import TypeVar, Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator that retries a function with exponential backoff on failure.

    Args:
        max_retries: Total number of attempts (at least one is always made)
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier applied to the delay after each retry
        exceptions: Exception types that trigger a retry; anything else propagates immediately

    Example:
        @retry_with_backoff(max_retries=3, initial_delay=0.2, exceptions=(CollaboratorError,))
        def get_item(item_id):
            ...
    """
    attempts = max(1, max_retries)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == attempts - 1:
                        logger.error(f"{func.__name__} failed after {attempts} attempts: {e}")
                        raise
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    if delay > 0:
                        time.sleep(delay)
                    delay *= backoff_factor

        return wrapper
    return decorator


class DeadlineExceeded(Exception):
    """Raised when a request runs past its deadline."""


class Deadline:
    """
    Monotonic request deadline.

    A timeout of None or 0 means no deadline. ``clock`` is injectable for tests.
    """

    def __init__(self, timeout: float | None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + timeout if timeout else None

    @property
    def enabled(self) -> bool:
        return self._expires_at is not None

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self) -> None:
        if self.expired():
            raise DeadlineExceeded("request deadline exceeded")
