"""
Fixed-window rate limiter over a RateLimiterStorage backend.
"""
import time
from typing import Optional, Tuple

from .storage import RateLimiterStorage


class RateLimiter:
    """
    Counts requests per identifier in fixed windows.

    Example:
        limiter = RateLimiter(storage, default_limit=100, default_window=900)
        allowed, metadata = limiter.check("ip:203.0.113.9")
    """

    def __init__(
        self,
        storage: RateLimiterStorage,
        default_limit: int = 100,
        default_window: int = 60,
    ):
        self.storage = storage
        self.default_limit = default_limit
        self.default_window = default_window

    def check(
        self,
        identifier: str,
        limit: Optional[int] = None,
        window: Optional[int] = None,
    ) -> Tuple[bool, dict]:
        """
        Record one request for `identifier` and decide whether it is allowed.

        Returns:
            (allowed, metadata) where metadata carries limit, remaining,
            reset_at (unix seconds) and retry_after (seconds, 0 when allowed).
        """
        limit = limit or self.default_limit
        window = window or self.default_window
        key = f"rl:{identifier}"

        count = self.storage.incr(key, window)
        remaining_ttl = self.storage.ttl(key)
        if remaining_ttl is None:
            remaining_ttl = window
        now = int(time.time())

        allowed = count <= limit
        return allowed, {
            "limit": limit,
            "remaining": max(0, limit - count),
            "reset_at": now + remaining_ttl,
            "retry_after": 0 if allowed else max(1, remaining_ttl),
        }

    def reset(self, identifier: str) -> None:
        self.storage.delete(f"rl:{identifier}")
