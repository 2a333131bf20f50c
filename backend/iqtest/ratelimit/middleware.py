"""
FastAPI middleware for automatic rate limiting.
"""
import logging

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from typing import Awaitable, Callable, Optional

from iqtest.core.error_responses import error_envelope

from .limiter import RateLimiter

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the limiter to every request and adds X-RateLimit-* headers.

    Example:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=RateLimiter(InMemoryStorage(), default_limit=100, default_window=900),
            skip_paths=["/api/health", "/metrics"],
        )
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        identifier_resolver: Optional[Callable[[Request], str]] = None,
        skip_paths: Optional[list[str]] = None,
        add_headers: bool = True,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.identifier_resolver = identifier_resolver or get_user_identifier
        self.skip_paths = skip_paths or []
        self.add_headers = add_headers

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in self.skip_paths:
            return await call_next(request)

        try:
            identifier = self.identifier_resolver(request)
        except Exception as e:
            logger.warning(
                "Rate limit identifier resolution failed: %s", e, exc_info=True
            )
            return await call_next(request)

        allowed, metadata = self.limiter.check(identifier)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {identifier} on {request.url.path}",
                extra={"path": request.url.path, "user_identifier": identifier},
            )
            return self._rate_limit_response(metadata)

        response = await call_next(request)
        if self.add_headers:
            self._add_rate_limit_headers(response, metadata)
        return response

    def _rate_limit_response(self, metadata: dict) -> JSONResponse:
        response = JSONResponse(
            status_code=429,
            content=error_envelope(
                429,
                "Too many requests from this IP, please try again later.",
                {"retryAfter": metadata.get("retry_after", 0)},
            ),
        )
        self._add_rate_limit_headers(response, metadata)
        retry_after = metadata.get("retry_after", 0)
        if retry_after > 0:
            response.headers["Retry-After"] = str(retry_after)
        return response

    def _add_rate_limit_headers(self, response: Response, metadata: dict) -> None:
        response.headers["X-RateLimit-Limit"] = str(metadata.get("limit", 0))
        response.headers["X-RateLimit-Remaining"] = str(metadata.get("remaining", 0))
        response.headers["X-RateLimit-Reset"] = str(metadata.get("reset_at", 0))


def get_user_identifier(request: Request) -> str:
    """
    Rate limit key for a request: the bearer token subject when present,
    otherwise the client address.
    """
    from iqtest.core.security import decode_token

    authorization = request.headers.get("Authorization", "")
    if authorization.lower().startswith("bearer "):
        payload = decode_token(authorization[7:].strip())
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"
