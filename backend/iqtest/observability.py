"""
Error tracking and application metrics.

Sentry receives unhandled exceptions when SENTRY_DSN is set. Metrics are
prometheus_client collectors on a dedicated registry, exposed at /metrics
when PROMETHEUS_METRICS_ENABLED is true.

Usage:
    from iqtest.observability import metrics

    metrics.record_http_request("GET", "/api/test/{session_id}/question", 200, 0.015)
    metrics.record_test_started("quick_assessment")
"""
import logging
from typing import Any, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from iqtest.core.config import settings

logger = logging.getLogger(__name__)

_sentry_initialized = False


def init_error_tracking() -> bool:
    """Initialize Sentry if a DSN is configured.

    Returns:
        True if Sentry was initialized, False if skipped or failed.
    """
    global _sentry_initialized

    if not settings.SENTRY_DSN:
        logger.debug("Sentry initialization skipped (DSN not configured)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.starlette import StarletteIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.APP_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                LoggingIntegration(level=None, event_level=None),
                StarletteIntegration(transaction_style="endpoint"),
                FastApiIntegration(transaction_style="endpoint"),
            ],
            send_default_pii=False,
        )
        _sentry_initialized = True
        logger.info(
            f"Sentry initialized for environment '{settings.ENV}' "
            f"with {settings.SENTRY_TRACES_SAMPLE_RATE * 100:.0f}% trace sampling"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
        return False


def capture_error(
    exception: BaseException,
    *,
    context: Optional[dict[str, Any]] = None,
    tags: Optional[dict[str, str]] = None,
) -> Optional[str]:
    """Send an exception to Sentry. Returns the event id, or None when disabled."""
    if not _sentry_initialized:
        return None

    import sentry_sdk

    with sentry_sdk.new_scope() as scope:
        if context:
            scope.set_context("additional", {k: str(v) for k, v in context.items()})
        if tags:
            for key, value in tags.items():
                scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)


class ApplicationMetrics:
    """
    Application-level Prometheus metrics.

    Collectors live on their own registry so several application instances
    (as in the test suite) never register the same metric twice globally.
    Recording never raises.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.http_requests = Counter(
            "http_server_requests_total",
            "HTTP requests handled",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.http_duration = Histogram(
            "http_server_request_duration_seconds",
            "HTTP request duration",
            ["method", "route"],
            registry=self.registry,
        )
        self.errors = Counter(
            "app_errors_total",
            "Application errors by type",
            ["error_type"],
            registry=self.registry,
        )
        self.tests_started = Counter(
            "test_sessions_started_total",
            "Test sessions started",
            ["test_type"],
            registry=self.registry,
        )
        self.tests_completed = Counter(
            "test_sessions_completed_total",
            "Test sessions completed",
            ["test_type", "timed_out"],
            registry=self.registry,
        )
        self.tests_abandoned = Counter(
            "test_sessions_abandoned_total",
            "Test sessions abandoned",
            ["test_type"],
            registry=self.registry,
        )
        self.responses_recorded = Counter(
            "test_responses_recorded_total",
            "Responses recorded",
            ["correct"],
            registry=self.registry,
        )
        self.iq_scores = Histogram(
            "test_iq_score",
            "Distribution of computed IQ scores",
            buckets=(70, 85, 100, 115, 130, 145, 200),
            registry=self.registry,
        )

    def record_http_request(
        self, method: str, path: str, status_code: int, duration: float
    ) -> None:
        try:
            self.http_requests.labels(method, path, str(status_code)).inc()
            self.http_duration.labels(method, path).observe(duration)
        except Exception as e:
            logger.debug(f"Failed to record HTTP request metric: {e}")

    def record_error(self, error_type: str) -> None:
        try:
            self.errors.labels(error_type).inc()
        except Exception as e:
            logger.debug(f"Failed to record error metric: {e}")

    def record_test_started(self, test_type: str) -> None:
        self.tests_started.labels(test_type).inc()

    def record_test_completed(self, test_type: str, timed_out: bool = False) -> None:
        self.tests_completed.labels(test_type, str(timed_out).lower()).inc()

    def record_test_abandoned(self, test_type: str) -> None:
        self.tests_abandoned.labels(test_type).inc()

    def record_response(self, is_correct: bool) -> None:
        self.responses_recorded.labels(str(is_correct).lower()).inc()

    def record_iq_score(self, score: float) -> None:
        self.iq_scores.observe(score)

    def render(self) -> bytes:
        """Current metrics in Prometheus exposition format."""
        return generate_latest(self.registry)


metrics = ApplicationMetrics()
