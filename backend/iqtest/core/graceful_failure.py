"""
Graceful failure utilities.

Wraps non-critical operations (cache maintenance, usage statistics,
notifications) whose failure must not fail the request:
1. Attempt the operation
2. Log any exception with context
3. Continue without raising

This is distinct from `db_error_handling.py`, which handles critical errors
that require rollback and an error response.

Usage:
    from iqtest.core.graceful_failure import graceful_failure

    with graceful_failure("invalidate session cache", logger):
        cache.invalidate(session_id)
"""

import logging
from contextlib import contextmanager
from typing import Any, Generator, Optional

from iqtest.observability import metrics


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for operations that should not block execution.

    Unlike `handle_db_error`, this does NOT raise, roll back or stop execution.

    Args:
        operation_name: Human-readable name of the operation for logging.
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include the traceback in the log.
        context: Extra key/values included in the log message
            (e.g., {"session_id": "..."}).
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)
        metrics.record_error(error_type="GracefulFailure")
