"""
Client-side per-endpoint rate limiter.
"""

import time
from collections import deque
from typing import Any, Callable, Deque, Dict

from medikariyer_access.config import strip_query
from medikariyer_access.errors import RateLimitError
from medikariyer_access.logging import get_logger


class EndpointRateLimiter:
    """Sliding-window limiter keyed by endpoint path."""

    def __init__(self, limit: int, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self.logger = get_logger("medikariyer.rate_limiter")
        self._requests: Dict[str, Deque[float]] = {}

    def check(self, endpoint: str) -> Dict[str, Any]:
        """Record a request against ``endpoint`` if it fits in the window."""
        key = strip_query(endpoint)
        if self.limit <= 0:
            return {"allowed": True, "current_count": 0, "limit": 0, "remaining": 0}

        now = self.clock()
        self._prune(now)
        recent = self._requests.setdefault(key, deque())

        if len(recent) >= self.limit:
            reset_in = self.window_seconds - (now - recent[0])
            self.logger.warning(
                "Rate limit exceeded",
                endpoint=key,
                current_count=len(recent),
                limit=self.limit
            )
            return {
                "allowed": False,
                "current_count": len(recent),
                "limit": self.limit,
                "reset_in_seconds": max(0.0, reset_in),
            }

        recent.append(now)
        return {
            "allowed": True,
            "current_count": len(recent),
            "limit": self.limit,
            "remaining": self.limit - len(recent),
        }

    def acquire(self, endpoint: str) -> None:
        """Raise RateLimitError when ``endpoint`` is over its limit."""
        result = self.check(endpoint)
        if not result["allowed"]:
            raise RateLimitError(
                details={"endpoint": strip_query(endpoint), "retry_after": round(result["reset_in_seconds"], 3)}
            )

    def _prune(self, now: float) -> None:
        """Drop expired timestamps and forget endpoints with none left."""
        window_start = now - self.window_seconds
        for key in list(self._requests):
            recent = self._requests[key]
            while recent and recent[0] <= window_start:
                recent.popleft()
            if not recent:
                del self._requests[key]

    @property
    def tracked_endpoints(self) -> int:
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()
