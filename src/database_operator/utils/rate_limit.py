"""Rate limiting utilities for Kubernetes API calls."""

from __future__ import annotations

import threading
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

_F = TypeVar("_F", bound=Callable[..., Any])


class RateLimiter:
    """Enforce a minimum interval between calls across all worker threads.

    Each caller reserves the next free slot under a lock and then sleeps
    outside of it, so concurrent workers are spaced out instead of
    bursting at once.
    """

    def __init__(
        self,
        rate_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        self.min_interval = 1.0 / rate_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def acquire(self) -> float:
        """Block until the caller may proceed.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        wait = slot - now
        if wait > 0:
            self._sleep(wait)
        return wait

    def limit(self, func: _F) -> _F:
        """Decorator form of :meth:`acquire`."""

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            self.acquire()
            return func(*args, **kwargs)

        return wrapper  # type: ignore


def handle_rate_limit_error(e: ApiException) -> bool:
    """Check if an API exception means the API server is throttling us.

    Args:
        e: API exception

    Returns:
        True for 429 responses and 503 responses mentioning a rate limit
    """
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())
