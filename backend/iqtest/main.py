"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from urllib.parse import urlparse

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from iqtest.api.v1 import metrics as metrics_endpoint
from iqtest.api.v1 import ws
from iqtest.api.v1.api import api_router
from iqtest.core.analytics import AnalyticsTracker
from iqtest.core.config import settings
from iqtest.core.error_responses import ErrorMessages, ServiceError, error_envelope
from iqtest.core.logging_config import setup_logging
from iqtest.core.notifications import NotificationHub
from iqtest.core.session_cache import SessionCache
from iqtest.middleware import (
    RequestLoggingMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from iqtest.models import Database
from iqtest.observability import capture_error, init_error_tracking, metrics
from iqtest.ratelimit.limiter import RateLimiter
from iqtest.ratelimit.middleware import RateLimitMiddleware, get_user_identifier
from iqtest.ratelimit.storage import InMemoryStorage, RateLimiterStorage, create_storage

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)


def _sanitize_redis_url(url: str) -> str:
    """Remove the password from a Redis URL for safe logging."""
    parsed = urlparse(url)
    if parsed.password:
        netloc = parsed.hostname or "localhost"
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        return f"{parsed.scheme}://{netloc}{parsed.path}"
    return url


def _create_storage(purpose: str, key_prefix: str) -> RateLimiterStorage:
    """
    Build the configured storage backend for `purpose`.

    If Redis is configured but unreachable, falls back to in-memory storage.
    """
    if settings.SESSION_CACHE_STORAGE == "redis":
        try:
            storage = create_storage("redis", settings.REDIS_URL, key_prefix=key_prefix)
            if storage.ping():
                logger.info(
                    f"{purpose} using Redis at {_sanitize_redis_url(settings.REDIS_URL)}"
                )
                return storage
            logger.warning(
                f"Redis not available for {purpose}, falling back to in-memory storage. "
                "State will NOT be shared across workers."
            )
        except Exception as e:
            logger.warning(
                f"Failed to initialize Redis for {purpose}: {e}. "
                "Falling back to in-memory storage."
            )
        return InMemoryStorage()

    logger.info(f"{purpose} using in-memory storage")
    return InMemoryStorage()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    On startup: error tracking, the database handle, the session cache and
    the WebSocket hub. On shutdown: closes what startup opened.
    """
    init_error_tracking()

    database = Database()
    database.connect()
    app.state.database = database

    app.state.session_cache = SessionCache(
        _create_storage("Session cache", "iqtest:cache:")
    )
    app.state.notifications = NotificationHub()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENV})")

    yield

    app.state.session_cache.close()
    await database.dispose()

    if hasattr(app.state, "rate_limit_storage"):
        app.state.rate_limit_storage.close()
        logger.info("Closed rate limit storage")


tags_metadata = [
    {"name": "health", "description": "Health check endpoints"},
    {"name": "auth", "description": "Registration, login, anonymous users and tokens"},
    {"name": "users", "description": "Profile and demographics of the current user"},
    {"name": "test", "description": "Test sessions: start, questions, answers, abandon"},
    {"name": "results", "description": "Score reports, history and norm comparisons"},
    {"name": "admin", "description": "Question bank, results and statistics (X-Admin-Token)"},
]


def _track_error(request: Request, error_type: str, message: str) -> None:
    AnalyticsTracker.track_api_error(
        method=request.method,
        path=str(request.url.path),
        error_type=error_type,
        error_message=message,
    )
    metrics.record_error(error_type)


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**IQ Test API** - timed cognitive tests with deterministic scoring.\n\n"
            "* Start a test with or without an account\n"
            "* Answer questions one at a time, in order\n"
            "* Get an IQ score, percentile and breakdowns when the test completes\n\n"
            "## Authentication\n\n"
            "Bearer tokens are optional for test endpoints. Sessions started with a "
            "token can only be used with a token for the same user."
        ),
        docs_url=f"{settings.API_PREFIX}/docs",
        redoc_url=f"{settings.API_PREFIX}/redoc",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Admin-Token", "X-Request-ID"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    # HSTS only in production to avoid issues with local development
    app.add_middleware(
        SecurityHeadersMiddleware, hsts_enabled=settings.ENV == "production"
    )

    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=1024 * 1024)

    if settings.RATE_LIMIT_ENABLED:
        storage = _create_storage("Rate limiting", "iqtest:rl:")
        app.state.rate_limit_storage = storage
        limiter = RateLimiter(
            storage=storage,
            default_limit=settings.RATE_LIMIT_REQUESTS,
            default_window=settings.RATE_LIMIT_WINDOW,
        )
        app.add_middleware(
            RateLimitMiddleware,
            limiter=limiter,
            identifier_resolver=get_user_identifier,
            skip_paths=[
                "/",
                "/metrics",
                f"{settings.API_PREFIX}/health",
                f"{settings.API_PREFIX}/ping",
                f"{settings.API_PREFIX}/docs",
                f"{settings.API_PREFIX}/openapi.json",
                f"{settings.API_PREFIX}/redoc",
            ],
        )

    app.include_router(api_router, prefix=settings.API_PREFIX)
    app.include_router(metrics_endpoint.router, tags=["metrics"])
    app.include_router(ws.router)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        """Domain errors raised by the session pipeline and routers."""
        _track_error(request, exc.__class__.__name__, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.status_code, exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code >= 500:
            capture_error(
                exc,
                context={"path": str(request.url.path), "method": request.method},
                tags={"error_type": "HTTPException"},
            )
        if exc.status_code >= 400:
            _track_error(request, "HTTPException", str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.status_code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Request validation errors become 400 with the first error as the message.
        """
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(
                str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")
            )
            message = str(first.get("msg", ErrorMessages.VALIDATION_FAILED))
            if location:
                message = f"{location}: {message}"
        else:
            message = ErrorMessages.VALIDATION_FAILED

        _track_error(request, "ValidationError", message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope(status.HTTP_400_BAD_REQUEST, message),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Unexpected exceptions: logged with a unique error id that is also
        returned to the client, and captured to Sentry.
        """
        error_id = str(uuid.uuid4())

        logger.exception(f"Unhandled exception [error_id={error_id}]: {exc}")
        _track_error(request, exc.__class__.__name__, str(exc))
        capture_error(
            exc,
            context={
                "path": str(request.url.path),
                "method": request.method,
                "error_id": error_id,
            },
            tags={"error_type": exc.__class__.__name__},
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                ErrorMessages.INTERNAL_ERROR,
                {"errorId": error_id},
            ),
        )

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {settings.APP_NAME}",
            "version": settings.APP_VERSION,
            "docs": f"{settings.API_PREFIX}/docs",
        }

    return app


app = create_application()
