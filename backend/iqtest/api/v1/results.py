"""
Result endpoints: the score report of a session, the caller's history and
the norm group comparison.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.auth import get_current_user, get_current_user_optional
from iqtest.core.error_responses import ErrorMessages, ValidationError
from iqtest.core.norms import compare_to_norms
from iqtest.core.scoring import ScoringEngine, ScoringOutcome
from iqtest.core.session_cache import SessionCache, get_session_cache
from iqtest.core.sessions import SessionManager, check_session_access
from iqtest.models import TestResult, TestSession, TestStatus, User, get_db
from iqtest.schemas import (
    HistoryResponse,
    Pagination,
    PercentilesResponse,
    SessionResultResponse,
    TestResultResponse,
    TestSessionResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_HISTORY_PAGE_SIZE = 10
MAX_HISTORY_PAGE_SIZE = 100


async def _load_outcome(
    db: AsyncSession, session: TestSession
) -> ScoringOutcome:
    """The session's scored outcome, generating the result on first read."""
    scoring = ScoringEngine(db)
    existing = await scoring.get_existing(session.id)
    if existing is None and session.status != TestStatus.COMPLETED:
        raise ValidationError(ErrorMessages.RESULT_NOT_AVAILABLE)

    outcome = await scoring.compute_result(session.id)
    if existing is None:
        await db.commit()
        logger.info(
            f"Generated missing result for session {session.id}",
            extra={"session_id": session.id},
        )
    return outcome


@router.get("/session/{session_id}", response_model=SessionResultResponse)
async def get_session_result(
    session_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """
    Get the score report of a completed session with its breakdowns.

    A completed session without a stored result is scored on this read.
    """
    session = await SessionManager(db, cache).load_session(session_id)
    check_session_access(session.user_id, current_user)

    outcome = await _load_outcome(db, session)
    result = TestResultResponse.model_validate(outcome.result)
    return SessionResultResponse(
        session=TestSessionResponse.model_validate(session),
        result=result,
        breakdown={
            "categories": outcome.categories,
            "timing": outcome.timing,
            "difficulty": outcome.difficulty,
        },
        total_questions=session.total_questions,
        validity_flags=result.validity_flags,
    )


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_HISTORY_PAGE_SIZE, ge=1, le=MAX_HISTORY_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Completed sessions of the authenticated user, newest first."""
    filters = (
        TestSession.user_id == current_user.id,
        TestSession.status == TestStatus.COMPLETED,
    )
    total = (
        await db.execute(select(func.count(TestSession.id)).where(*filters))
    ).scalar_one()

    rows = (
        await db.execute(
            select(TestSession, TestResult)
            .outerjoin(TestResult, TestResult.session_id == TestSession.id)
            .where(*filters)
            .order_by(TestSession.started_at.desc(), TestSession.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()

    tests = [
        {
            "session_id": session.id,
            "test_type": session.test_type,
            "started_at": session.started_at,
            "ended_at": session.ended_at,
            "result_id": result.id if result else None,
            "iq_score": result.iq_score if result else None,
            "percentile": result.percentile if result else None,
            "is_complete": result.is_complete if result else None,
        }
        for session, result in rows
    ]
    return HistoryResponse(tests=tests, pagination=Pagination.build(page, limit, total))


@router.get("/percentiles/{session_id}", response_model=PercentilesResponse)
async def get_percentiles(
    session_id: str,
    current_user: Optional[User] = Depends(get_current_user_optional),
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Percentile of the session's IQ score within each matching norm group."""
    session = await SessionManager(db, cache).load_session(session_id)
    check_session_access(session.user_id, current_user)

    result = await ScoringEngine(db).get_existing(session_id)
    if result is None:
        raise ValidationError(ErrorMessages.RESULT_NOT_AVAILABLE)

    owner = await db.get(User, session.user_id) if session.user_id else None
    comparison = await compare_to_norms(db, result.iq_score, owner)
    return PercentilesResponse(
        session_id=session_id,
        iq_score=result.iq_score,
        overall=comparison["overall"],
        groups=comparison["groups"],
    )
