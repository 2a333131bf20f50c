"""
Tests for RateLimiter and RateLimitMiddleware.
"""
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from iqtest.core.security import create_access_token
from iqtest.ratelimit.limiter import RateLimiter
from iqtest.ratelimit.middleware import RateLimitMiddleware
from iqtest.ratelimit.storage import InMemoryStorage


def create_test_app_with_rate_limiting(
    default_limit: int = 100,
    default_window: int = 60,
    skip_paths: list | None = None,
) -> FastAPI:
    """A bare FastAPI app with only the rate limiting middleware."""
    app = FastAPI()
    limiter = RateLimiter(
        storage=InMemoryStorage(),
        default_limit=default_limit,
        default_window=default_window,
    )
    app.add_middleware(RateLimitMiddleware, limiter=limiter, skip_paths=skip_paths or [])

    @app.get("/")
    async def root():
        return {"message": "OK"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


class TestRateLimiter:
    """Tests for the fixed-window limiter."""

    def test_allows_up_to_limit(self):
        limiter = RateLimiter(InMemoryStorage(), default_limit=2, default_window=60)

        first = limiter.check("ip:1")
        second = limiter.check("ip:1")
        third = limiter.check("ip:1")

        assert first[0] and second[0]
        assert third[0] is False
        assert first[1]["remaining"] == 1
        assert third[1]["remaining"] == 0
        assert 1 <= third[1]["retry_after"] <= 60

    def test_identifiers_are_independent(self):
        limiter = RateLimiter(InMemoryStorage(), default_limit=1)

        assert limiter.check("ip:1")[0]
        assert limiter.check("ip:2")[0]

    def test_window_resets(self):
        with patch("iqtest.ratelimit.storage.time") as mock_time:
            mock_time.time.return_value = 1000.0
            limiter = RateLimiter(InMemoryStorage(), default_limit=1, default_window=60)
            assert limiter.check("ip:1")[0]
            assert limiter.check("ip:1")[0] is False

            mock_time.time.return_value = 1061.0
            assert limiter.check("ip:1")[0]

    def test_reset(self):
        limiter = RateLimiter(InMemoryStorage(), default_limit=1)
        limiter.check("ip:1")

        limiter.reset("ip:1")

        assert limiter.check("ip:1")[0]


class TestRateLimitMiddleware:
    """Tests for the middleware on a small app."""

    def test_allows_requests_under_limit(self):
        client = TestClient(create_test_app_with_rate_limiting(default_limit=5))

        for _ in range(5):
            assert client.get("/").status_code == 200

    def test_denies_requests_over_limit(self):
        client = TestClient(create_test_app_with_rate_limiting(default_limit=3))
        for _ in range(3):
            client.get("/")

        response = client.get("/")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Too Many Requests"
        assert body["retryAfter"] >= 1
        assert "timestamp" in body
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_skip_paths_bypass_rate_limiting(self):
        client = TestClient(
            create_test_app_with_rate_limiting(default_limit=2, skip_paths=["/health"])
        )

        for _ in range(10):
            assert client.get("/health").status_code == 200

    def test_rate_limit_headers_added(self):
        client = TestClient(create_test_app_with_rate_limiting(default_limit=10))

        response = client.get("/")

        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert "X-RateLimit-Reset" in response.headers

    def test_tokens_are_limited_per_user(self):
        """Two users behind one address get separate buckets."""
        client = TestClient(create_test_app_with_rate_limiting(default_limit=1))
        first = {"Authorization": f"Bearer {create_access_token('user-1')}"}
        second = {"Authorization": f"Bearer {create_access_token('user-2')}"}

        assert client.get("/", headers=first).status_code == 200
        assert client.get("/", headers=second).status_code == 200
        assert client.get("/", headers=first).status_code == 429
