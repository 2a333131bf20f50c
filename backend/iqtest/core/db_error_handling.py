"""
Database error handling utilities.

Centralizes the pattern of:
1. Rolling back the database session on error
2. Logging the error with context
3. Raising an appropriate HTTPException

Domain errors (ServiceError subclasses) raised inside the block are rolled
back and re-raised untouched so the request boundary can map them.

Usage:
    from iqtest.core.db_error_handling import handle_db_error

    async with handle_db_error(db, "create question"):
        db.add(question)
        await db.commit()
        await db.refresh(question)
        return question
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.error_responses import ServiceError


logger = logging.getLogger(__name__)


@asynccontextmanager
async def handle_db_error(
    db: AsyncSession,
    operation_name: str,
    *,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    detail_template: Optional[str] = None,
    log_level: int = logging.ERROR,
) -> AsyncGenerator[None, None]:
    """Roll back and translate database failures for the wrapped block.

    Args:
        db: The session to roll back on error.
        operation_name: Human-readable name of the operation for error messages
            and logging (e.g., "create question", "update demographics").
        status_code: HTTP status code used for wrapped database errors.
        detail_template: Optional template with {operation_name} and {error}.
        log_level: Logging level for error messages.

    Raises:
        ServiceError / HTTPException: re-raised unchanged after rollback.
        HTTPException: for any SQLAlchemyError, with the configured status.
    """
    try:
        yield
    except (ServiceError, HTTPException):
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()

        if detail_template:
            detail = detail_template.format(operation_name=operation_name, error=str(e))
        else:
            detail = f"Failed to {operation_name}."

        logger.log(
            log_level,
            f"Database error during {operation_name}: {e}",
            exc_info=True,
        )

        raise HTTPException(status_code=status_code, detail=detail)
