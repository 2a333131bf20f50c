"""
Tests for the key/value storage backends.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
import redis

from iqtest.ratelimit.storage import InMemoryStorage, RedisStorage, create_storage


@pytest.fixture
def clock():
    """Controls time.time() as seen by the storage module."""
    with patch("iqtest.ratelimit.storage.time") as mock_time:
        mock_time.time.return_value = 1000.0
        yield mock_time


class TestInMemoryStorage:
    """Tests for InMemoryStorage."""

    def setup_method(self):
        self.storage = InMemoryStorage(cleanup_interval=1)

    def test_set_and_get(self):
        self.storage.set("key1", {"a": 1})
        assert self.storage.get("key1") == {"a": 1}

    def test_get_nonexistent_key(self):
        assert self.storage.get("nonexistent") is None

    def test_delete_nonexistent(self):
        """Deleting a missing key doesn't error."""
        self.storage.delete("nonexistent")

    def test_clear(self):
        self.storage.set("key1", "value1")
        self.storage.set("key2", "value2")
        self.storage.clear()

        assert self.storage.get("key1") is None
        assert self.storage.get("key2") is None

    def test_ttl_expiry(self, clock):
        storage = InMemoryStorage()
        storage.set("key1", "value1", ttl=10)

        clock.time.return_value = 1010.0
        assert storage.get("key1") == "value1"
        clock.time.return_value = 1010.5
        assert storage.get("key1") is None

    def test_set_without_ttl_removes_expiry(self, clock):
        storage = InMemoryStorage()
        storage.set("key1", "value1", ttl=10)
        storage.set("key1", "value2")

        clock.time.return_value = 5000.0
        assert storage.get("key1") == "value2"
        assert storage.ttl("key1") is None

    def test_incr_fixed_window(self, clock):
        """The window starts at the first increment and is not extended."""
        storage = InMemoryStorage()

        assert storage.incr("counter", 60) == 1
        clock.time.return_value = 1030.0
        assert storage.incr("counter", 60) == 2
        assert storage.ttl("counter") == 30

        clock.time.return_value = 1061.0
        assert storage.incr("counter", 60) == 1

    def test_max_keys_evicts_soonest_expiring(self, clock):
        storage = InMemoryStorage(max_keys=2)
        storage.set("short", 1, ttl=10)
        storage.set("long", 2, ttl=100)

        storage.set("new", 3, ttl=50)

        assert storage.get("short") is None
        assert storage.get("long") == 2
        assert storage.get("new") == 3

    def test_add_to_empty_key(self):
        assert self.storage.add("key1", "first", ttl=10) is True
        assert self.storage.get("key1") == "first"

    def test_add_keeps_existing_value(self):
        self.storage.set("key1", "first")

        assert self.storage.add("key1", "second") is False
        assert self.storage.get("key1") == "first"

    def test_add_replaces_expired_value(self, clock):
        storage = InMemoryStorage()
        storage.set("key1", "first", ttl=10)

        clock.time.return_value = 1011.0
        assert storage.add("key1", "second", ttl=10) is True
        assert storage.get("key1") == "second"

    def test_stats(self, clock):
        storage = InMemoryStorage()
        storage.set("a", 1, ttl=5)
        storage.set("b", 2)
        clock.time.return_value = 1006.0

        stats = storage.get_stats()

        assert stats == {
            "backend": "memory",
            "total_keys": 2,
            "expired_keys": 1,
            "active_keys": 1,
        }


class TestRedisStorage:
    """Tests for RedisStorage against a mocked client."""

    def setup_method(self):
        self.client = MagicMock()
        self.storage = RedisStorage(client=self.client, key_prefix="test:")

    def test_set_with_ttl_uses_setex(self):
        self.storage.set("k", {"a": 1}, ttl=30)
        self.client.setex.assert_called_once_with("test:k", 30, json.dumps({"a": 1}))

    def test_set_without_ttl(self):
        self.storage.set("k", [1, 2])
        self.client.set.assert_called_once_with("test:k", "[1, 2]")

    def test_get_decodes_json(self):
        self.client.get.return_value = b'{"a": 1}'
        assert self.storage.get("k") == {"a": 1}
        self.client.get.assert_called_with("test:k")

    def test_get_missing(self):
        self.client.get.return_value = None
        assert self.storage.get("k") is None

    def test_get_swallows_redis_errors(self):
        self.client.get.side_effect = redis.ConnectionError("down")
        assert self.storage.get("k") is None

    def test_get_invalid_json(self):
        self.client.get.return_value = b"not json"
        assert self.storage.get("k") is None

    def test_add_uses_set_nx(self):
        self.client.set.return_value = True

        assert self.storage.add("k", {"a": 1}, ttl=30) is True
        self.client.set.assert_called_once_with(
            "test:k", json.dumps({"a": 1}), ex=30, nx=True
        )

    def test_add_existing_key(self):
        self.client.set.return_value = None
        assert self.storage.add("k", {"a": 1}, ttl=30) is False

    def test_add_swallows_redis_errors(self):
        self.client.set.side_effect = redis.ConnectionError("down")
        assert self.storage.add("k", {"a": 1}, ttl=30) is False

    def test_incr_sets_expiry_once(self):
        pipe = self.client.pipeline.return_value
        pipe.execute.return_value = [3, True]

        assert self.storage.incr("counter", 60) == 3
        pipe.incr.assert_called_once_with("test:counter")
        pipe.expire.assert_called_once_with("test:counter", 60, nx=True)

    def test_incr_fails_open(self):
        self.client.pipeline.return_value.execute.side_effect = redis.TimeoutError()
        assert self.storage.incr("counter", 60) == 0

    def test_ttl(self):
        self.client.ttl.return_value = 42
        assert self.storage.ttl("k") == 42
        self.client.ttl.return_value = -2
        assert self.storage.ttl("k") is None

    def test_clear_only_deletes_prefixed_keys(self):
        self.client.scan.side_effect = [(5, [b"test:a"]), (0, [b"test:b"])]

        self.storage.clear()

        assert self.client.scan.call_args.kwargs["match"] == "test:*"
        assert self.client.delete.call_count == 2
        self.client.flushdb.assert_not_called()

    def test_ping(self):
        self.client.ping.return_value = True
        assert self.storage.ping() is True
        self.client.ping.side_effect = redis.ConnectionError()
        assert self.storage.ping() is False

    def test_unreachable_on_startup(self):
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("refused")

        storage = RedisStorage(client=client)

        assert storage.ping() is False


class TestCreateStorage:
    def test_memory(self):
        assert isinstance(create_storage("memory", "redis://unused"), InMemoryStorage)
