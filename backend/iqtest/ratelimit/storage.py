"""
Key/value storage backends with TTL support.

Shared by the rate limiter and the advisory session cache. Backends never
raise on transport errors: reads fall back to None and writes are dropped,
so callers always treat the store as best-effort.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import json
import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)


class RateLimiterStorage(ABC):
    """Abstract storage interface for rate limiter and cache state."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a JSON-serializable value; ttl in seconds (None = no expiry)."""

    @abstractmethod
    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store `value` only if `key` is absent; returns whether it was stored."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def incr(self, key: str, ttl: int) -> int:
        """
        Increment a counter and return the new value.

        The TTL is applied only when the counter is created, which gives
        fixed-window semantics.
        """

    @abstractmethod
    def clear(self) -> None:
        """Clear all keys owned by this backend."""

    def ttl(self, key: str) -> Optional[int]:
        """Seconds until `key` expires, or None when unknown."""
        return None

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class InMemoryStorage(RateLimiterStorage):
    """
    In-memory storage backend.

    Dictionaries with expiration timestamps and periodic cleanup, guarded by
    a lock. Data is lost on restart and is not shared between workers; use
    RedisStorage for multi-worker deployments.
    """

    def __init__(self, cleanup_interval: int = 60, max_keys: int = 0):
        """
        Args:
            cleanup_interval: How often to purge expired entries (seconds)
            max_keys: Upper bound on stored keys; the soonest-expiring keys
                are evicted first (0 = unlimited)
        """
        self._data: Dict[str, Any] = {}
        self._expiry: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._cleanup_interval = cleanup_interval
        self._max_keys = max_keys
        self._last_cleanup = time.time()

    def _is_expired(self, key: str, now: float) -> bool:
        expiry = self._expiry.get(key)
        return expiry is not None and now > expiry

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)
        self._expiry.pop(key, None)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            self._maybe_cleanup()
            if key not in self._data:
                return None
            if self._is_expired(key, time.time()):
                self._remove(key)
                return None
            return self._data[key]

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            if key not in self._data:
                self._make_room()
            self._data[key] = value
            if ttl is not None:
                self._expiry[key] = time.time() + ttl
            else:
                self._expiry.pop(key, None)

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        with self._lock:
            if key in self._data and not self._is_expired(key, time.time()):
                return False
            self._remove(key)
            self.set(key, value, ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._remove(key)

    def incr(self, key: str, ttl: int) -> int:
        with self._lock:
            now = time.time()
            if key not in self._data or self._is_expired(key, now):
                self._remove(key)
                self._make_room()
                self._data[key] = 0
                self._expiry[key] = now + ttl
            self._data[key] = int(self._data[key]) + 1
            return self._data[key]

    def ttl(self, key: str) -> Optional[int]:
        """Seconds until `key` expires, or None if it has no expiry."""
        with self._lock:
            expiry = self._expiry.get(key)
            if expiry is None:
                return None
            return max(0, int(expiry - time.time()))

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._expiry.clear()

    def _make_room(self) -> None:
        if not self._max_keys or len(self._data) < self._max_keys:
            return
        self._purge_expired(time.time())
        while len(self._data) >= self._max_keys:
            victim = min(
                self._data,
                key=lambda k: self._expiry.get(k, float("inf")),
            )
            self._remove(victim)

    def _maybe_cleanup(self) -> None:
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        self._purge_expired(now)

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, expiry in self._expiry.items() if now > expiry]:
            self._remove(key)

    def get_stats(self) -> dict:
        with self._lock:
            now = time.time()
            expired = sum(1 for expiry in self._expiry.values() if now > expiry)
            return {
                "backend": "memory",
                "total_keys": len(self._data),
                "expired_keys": expired,
                "active_keys": len(self._data) - expired,
            }


class RedisStorage(RateLimiterStorage):
    """
    Redis storage backend.

    Shared across workers. Values are JSON encoded and keys are namespaced
    with a prefix so `clear()` never touches data owned by anything else.
    """

    KEY_PREFIX = "iqtest:"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: Optional[str] = None,
        connection_pool_size: int = 10,
        socket_timeout: float = 2.0,
        socket_connect_timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
    ):
        """
        Args:
            redis_url: Redis connection URL
            key_prefix: Namespace for keys (defaults to "iqtest:")
            connection_pool_size: Maximum number of pooled connections
            socket_timeout: Timeout for socket operations in seconds
            socket_connect_timeout: Timeout for socket connections in seconds
            client: Pre-built client (used by tests)
        """
        self._key_prefix = key_prefix or self.KEY_PREFIX
        self._pool: Optional[redis.ConnectionPool] = None

        if client is not None:
            self._redis = client
        else:
            self._pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=connection_pool_size,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_connect_timeout,
            )
            self._redis = redis.Redis(connection_pool=self._pool)

        try:
            self._redis.ping()
            logger.info(f"Connected to Redis (prefix {self._key_prefix!r})")
        except redis.RedisError as e:
            logger.warning(
                f"Could not connect to Redis on startup: {e}. "
                "Cache reads will miss until Redis is available."
            )

    def _make_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self._redis.get(self._make_key(key))
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode("utf-8")
            return json.loads(value)
        except redis.RedisError as e:
            logger.error(f"Redis error during get({key}): {e}")
            return None
        except ValueError as e:
            logger.error(f"JSON decode error during get({key}): {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        try:
            serialized = json.dumps(value)
            full_key = self._make_key(key)
            if ttl is not None and ttl > 0:
                self._redis.setex(full_key, ttl, serialized)
            else:
                self._redis.set(full_key, serialized)
        except redis.RedisError as e:
            logger.error(f"Redis error during set({key}): {e}")
        except (TypeError, ValueError) as e:
            logger.error(f"JSON encode error during set({key}): {e}")

    def add(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            serialized = json.dumps(value)
            stored = self._redis.set(
                self._make_key(key), serialized, ex=ttl if ttl else None, nx=True
            )
            return bool(stored)
        except redis.RedisError as e:
            logger.error(f"Redis error during add({key}): {e}")
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"JSON encode error during add({key}): {e}")
            return False

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(self._make_key(key))
        except redis.RedisError as e:
            logger.error(f"Redis error during delete({key}): {e}")

    def incr(self, key: str, ttl: int) -> int:
        full_key = self._make_key(key)
        try:
            pipe = self._redis.pipeline()
            pipe.incr(full_key)
            # NX: only set the expiry when the key was just created
            pipe.expire(full_key, ttl, nx=True)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError as e:
            # Fail open: an unavailable store never blocks traffic
            logger.error(f"Redis error during incr({key}): {e}")
            return 0

    def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = self._redis.ttl(self._make_key(key))
        except redis.RedisError as e:
            logger.error(f"Redis error during ttl({key}): {e}")
            return None
        return None if remaining is None or remaining < 0 else int(remaining)

    def clear(self) -> None:
        """Delete every key carrying this backend's prefix (SCAN, never FLUSHDB)."""
        try:
            cursor = 0
            while True:
                cursor, keys = self._redis.scan(
                    cursor, match=f"{self._key_prefix}*", count=100
                )
                if keys:
                    self._redis.delete(*keys)
                if cursor == 0:
                    break
        except redis.RedisError as e:
            logger.error(f"Redis error during clear(): {e}")

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False

    def get_stats(self) -> dict:
        return {"backend": "redis", "connected": self.ping()}

    def close(self) -> None:
        if self._pool is not None:
            self._pool.disconnect()


def create_storage(
    backend: str, redis_url: str, key_prefix: Optional[str] = None
) -> RateLimiterStorage:
    """Build the configured storage backend ("memory" or "redis")."""
    if backend == "redis":
        return RedisStorage(redis_url=redis_url, key_prefix=key_prefix)
    return InMemoryStorage()
