"""
Safe wrapper for work handed to FastAPI BackgroundTasks.

Starlette runs background tasks after the response has been sent. Whether
an exception raised there is swallowed or crashes the ASGI cycle depends on
the middleware stack, so every task goes through this wrapper and behaves
the same in tests and in production.

Usage::

    background_tasks.add_task(safe_background_task, recorder.publish_events, outcome)
"""
import logging
from typing import Any, Awaitable, Callable

from iqtest.observability import metrics

logger = logging.getLogger(__name__)


async def safe_background_task(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Await `func(*args, **kwargs)`, logging and counting any exception."""
    name = getattr(func, "__name__", repr(func))
    try:
        await func(*args, **kwargs)
    except Exception:
        logger.exception("Background task '%s' failed", name)
        metrics.record_error("BackgroundTaskFailure")
