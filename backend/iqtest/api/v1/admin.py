"""
Admin endpoints: question bank management and statistics, user and result
browsing, aggregate statistics and cache maintenance.

Every route requires the X-Admin-Token header.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.auth import verify_admin_token
from iqtest.core.config import settings
from iqtest.core.datetime_utils import utc_now
from iqtest.core.db_error_handling import handle_db_error
from iqtest.core.error_responses import ErrorMessages, NotFoundError
from iqtest.core.graceful_failure import graceful_failure
from iqtest.core.question_stats import (
    category_statistics,
    difficulty_distribution,
    question_statistics,
)
from iqtest.core.session_cache import SessionCache, get_session_cache
from iqtest.models import (
    TERMINAL_STATUSES,
    Question,
    QuestionType,
    Response,
    TestResult,
    TestSession,
    TestStatus,
    User,
    get_db,
)
from iqtest.schemas import (
    AdminResultList,
    AdminStats,
    AdminUser,
    AdminUserList,
    BulkQuestionAction,
    BulkQuestionResult,
    CategoryStatsList,
    DifficultyDistribution,
    MessageResponse,
    Pagination,
    QuestionAdmin,
    QuestionCreate,
    QuestionList,
    QuestionStats,
    QuestionUpdate,
)

router = APIRouter(dependencies=[Depends(verify_admin_token)])
logger = logging.getLogger(__name__)

ADMIN_STATS_CACHE_KEY = "admin_stats:results"
CATEGORY_STATS_CACHE_KEY = "question_stats:categories"
DIFFICULTY_STATS_CACHE_KEY = "question_stats:difficulty"

# (label, lowest score, highest score) of each IQ distribution bucket
IQ_BUCKETS = (
    ("below_70", None, 69),
    ("70_84", 70, 84),
    ("85_99", 85, 99),
    ("100_114", 100, 114),
    ("115_129", 115, 129),
    ("above_130", 130, None),
)


def iq_bucket(score: int) -> str:
    for label, low, high in IQ_BUCKETS:
        if (low is None or score >= low) and (high is None or score <= high):
            return label
    raise ValueError(f"No IQ bucket for {score}")


async def _get_question_or_404(db: AsyncSession, question_id: str) -> Question:
    question = await db.get(Question, question_id)
    if question is None:
        raise NotFoundError(ErrorMessages.QUESTION_NOT_FOUND)
    return question


def _forget_question_stats(cache: SessionCache) -> None:
    with graceful_failure("invalidate question statistics cache", logger):
        cache.delete_value(CATEGORY_STATS_CACHE_KEY)
        cache.delete_value(DIFFICULTY_STATS_CACHE_KEY)


async def _cached_payload(cache: SessionCache, key: str, ttl: int, compute):
    """
    The JSON payload cached under `key`, computing and storing it on a miss.

    `compute` is an async callable returning a CamelModel.
    """
    cached = None
    with graceful_failure(f"read {key} cache", logger):
        cached = cache.get_value(key)
    if cached:
        return cached

    payload = (await compute()).model_dump(mode="json", by_alias=True)
    with graceful_failure(f"write {key} cache", logger):
        cache.set_value(key, payload, ttl)
    return payload


# =============================================================================
# Questions
# =============================================================================


@router.get("/questions", response_model=QuestionList)
async def list_questions(
    question_type: Optional[QuestionType] = Query(None, alias="type"),
    category: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    min_difficulty: Optional[float] = Query(None, alias="minDifficulty"),
    max_difficulty: Optional[float] = Query(None, alias="maxDifficulty"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if question_type is not None:
        filters.append(Question.question_type == question_type)
    if category is not None:
        filters.append(Question.category == category)
    if is_active is not None:
        filters.append(Question.is_active.is_(is_active))
    if min_difficulty is not None:
        filters.append(Question.difficulty >= min_difficulty)
    if max_difficulty is not None:
        filters.append(Question.difficulty <= max_difficulty)

    total = (
        await db.execute(select(func.count(Question.id)).where(*filters))
    ).scalar_one()
    questions = (
        await db.execute(
            select(Question)
            .where(*filters)
            .order_by(Question.category, Question.difficulty, Question.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()

    return QuestionList(
        questions=[QuestionAdmin.model_validate(q) for q in questions],
        pagination=Pagination.build(page, limit, total),
    )


@router.post(
    "/questions", response_model=QuestionAdmin, status_code=status.HTTP_201_CREATED
)
async def create_question(
    payload: QuestionCreate,
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    question = Question(**payload.model_dump())
    async with handle_db_error(db, "create question"):
        db.add(question)
        await db.commit()
    _forget_question_stats(cache)
    logger.info(f"Created question {question.id} in {question.category}")
    return question


@router.post("/questions/bulk", response_model=BulkQuestionResult)
async def bulk_update_questions(
    payload: BulkQuestionAction,
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """
    Activate, deactivate or delete many questions at once.

    A delete only removes questions that have no responses and are not part
    of a running session; the others are deactivated instead. Unknown ids
    are ignored.
    """
    question_ids = list(dict.fromkeys(payload.question_ids))
    result = BulkQuestionResult(message=f"Bulk {payload.action} completed successfully")

    async with handle_db_error(db, f"bulk {payload.action} questions"):
        if payload.action in ("activate", "deactivate"):
            updated = await db.execute(
                update(Question)
                .where(Question.id.in_(question_ids))
                .values(is_active=payload.action == "activate")
                .execution_options(synchronize_session=False)
            )
            result.updated = updated.rowcount
        else:
            existing = set(
                (
                    await db.execute(select(Question.id).where(Question.id.in_(question_ids)))
                ).scalars()
            )
            answered = set(
                (
                    await db.execute(
                        select(Response.question_id)
                        .where(Response.question_id.in_(list(existing)))
                        .distinct()
                    )
                ).scalars()
            )
            in_use: set = set()
            running = await db.execute(
                select(TestSession.question_ids).where(
                    TestSession.status.not_in(list(TERMINAL_STATUSES))
                )
            )
            for ids in running.scalars():
                in_use.update(ids or ())

            kept = existing & (answered | in_use)
            removable = existing - kept
            if removable:
                await db.execute(
                    delete(Question)
                    .where(Question.id.in_(list(removable)))
                    .execution_options(synchronize_session=False)
                )
            if kept:
                await db.execute(
                    update(Question)
                    .where(Question.id.in_(list(kept)))
                    .values(is_active=False)
                    .execution_options(synchronize_session=False)
                )
            result.deleted = len(removable)
            result.deactivated = len(kept)
        await db.commit()

    _forget_question_stats(cache)
    logger.info(
        f"Bulk {payload.action} on {len(question_ids)} questions: "
        f"updated={result.updated} deleted={result.deleted} "
        f"deactivated={result.deactivated}"
    )
    return result


@router.get("/questions/stats/categories", response_model=CategoryStatsList)
async def get_category_stats(
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Active questions per category, cached for QUESTION_STATS_CACHE_TTL seconds."""

    async def compute() -> CategoryStatsList:
        return CategoryStatsList(categories=await category_statistics(db))

    return await _cached_payload(
        cache, CATEGORY_STATS_CACHE_KEY, settings.QUESTION_STATS_CACHE_TTL, compute
    )


@router.get("/questions/stats/difficulty", response_model=DifficultyDistribution)
async def get_difficulty_stats(
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Active questions per difficulty range, cached like the category stats."""

    async def compute() -> DifficultyDistribution:
        return DifficultyDistribution(distribution=await difficulty_distribution(db))

    return await _cached_payload(
        cache, DIFFICULTY_STATS_CACHE_KEY, settings.QUESTION_STATS_CACHE_TTL, compute
    )


@router.get("/questions/{question_id}/stats", response_model=QuestionStats)
async def get_question_stats(question_id: str, db: AsyncSession = Depends(get_db)):
    return QuestionStats(**await question_statistics(db, question_id))


@router.get("/questions/{question_id}", response_model=QuestionAdmin)
async def get_question(question_id: str, db: AsyncSession = Depends(get_db)):
    """A single question, including its correct answer."""
    return await _get_question_or_404(db, question_id)


@router.put("/questions/{question_id}", response_model=QuestionAdmin)
async def update_question(
    question_id: str,
    payload: QuestionUpdate,
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """
    Edit a question. Only fields present in the body change.

    Stored responses keep the correctness they were graded with.
    """
    question = await _get_question_or_404(db, question_id)
    async with handle_db_error(db, "update question"):
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(question, field, value)
        await db.commit()
        await db.refresh(question)
    _forget_question_stats(cache)
    return question


@router.delete("/questions/{question_id}", response_model=MessageResponse)
async def deactivate_question(
    question_id: str,
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Soft delete: the question stops being selected but stays referenced."""
    question = await _get_question_or_404(db, question_id)
    async with handle_db_error(db, "deactivate question"):
        question.is_active = False
        await db.commit()
    _forget_question_stats(cache)
    return MessageResponse(message="Question deactivated")


# =============================================================================
# Users
# =============================================================================


@router.get("/users", response_model=AdminUserList)
async def list_users(
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Newest users first; `search` matches email or username, case-insensitively."""
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(User.email.ilike(pattern), User.username.ilike(pattern)))

    session_count = (
        select(func.count(TestSession.id))
        .where(TestSession.user_id == User.id)
        .scalar_subquery()
    )
    result_count = (
        select(func.count(TestResult.id))
        .where(TestResult.user_id == User.id)
        .scalar_subquery()
    )

    total = (await db.execute(select(func.count(User.id)).where(*filters))).scalar_one()
    rows = (
        await db.execute(
            select(User, session_count, result_count)
            .where(*filters)
            .order_by(User.created_at.desc(), User.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()

    users = []
    for user, sessions, results in rows:
        item = AdminUser.model_validate(user)
        item.session_count = sessions
        item.result_count = results
        users.append(item)
    return AdminUserList(users=users, pagination=Pagination.build(page, limit, total))


# =============================================================================
# Results and statistics
# =============================================================================


@router.get("/results", response_model=AdminResultList)
async def list_results(
    test_type: Optional[str] = Query(None, alias="testType"),
    min_iq: Optional[int] = Query(None, alias="minIq", ge=40, le=200),
    max_iq: Optional[int] = Query(None, alias="maxIq", ge=40, le=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if test_type is not None:
        filters.append(TestSession.test_type == test_type)
    if min_iq is not None:
        filters.append(TestResult.iq_score >= min_iq)
    if max_iq is not None:
        filters.append(TestResult.iq_score <= max_iq)

    base = select(TestResult, TestSession.test_type).join(
        TestSession, TestSession.id == TestResult.session_id
    )
    total = (
        await db.execute(
            select(func.count(TestResult.id))
            .join(TestSession, TestSession.id == TestResult.session_id)
            .where(*filters)
        )
    ).scalar_one()
    rows = (
        await db.execute(
            base.where(*filters)
            .order_by(TestResult.completed_at.desc(), TestResult.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()

    results = [
        {
            "id": result.id,
            "session_id": result.session_id,
            "user_id": result.user_id,
            "test_type": test_type_value,
            "iq_score": result.iq_score,
            "percentile": result.percentile,
            "total_score": result.total_score,
            "is_complete": result.is_complete,
            "completed_at": result.completed_at,
        }
        for result, test_type_value in rows
    ]
    return AdminResultList(results=results, pagination=Pagination.build(page, limit, total))


async def compute_admin_stats(db: AsyncSession) -> AdminStats:
    session_counts = (
        await db.execute(
            select(
                func.count(TestSession.id),
                func.sum(case((TestSession.status == TestStatus.COMPLETED, 1), else_=0)),
                func.sum(case((TestSession.status == TestStatus.ABANDONED, 1), else_=0)),
            )
        )
    ).one()
    total_users = (await db.execute(select(func.count(User.id)))).scalar_one()
    total_responses = (await db.execute(select(func.count(Response.id)))).scalar_one()
    active_questions = (
        await db.execute(
            select(func.count(Question.id)).where(Question.is_active.is_(True))
        )
    ).scalar_one()
    average_iq = (await db.execute(select(func.avg(TestResult.iq_score)))).scalar_one()

    distribution = {label: 0 for label, _, _ in IQ_BUCKETS}
    score_counts = await db.execute(
        select(TestResult.iq_score, func.count(TestResult.id)).group_by(TestResult.iq_score)
    )
    for score, count in score_counts.all():
        distribution[iq_bucket(score)] += count

    test_types = {
        test_type: count
        for test_type, count in (
            await db.execute(
                select(TestSession.test_type, func.count(TestSession.id))
                .where(TestSession.status == TestStatus.COMPLETED)
                .group_by(TestSession.test_type)
            )
        ).all()
    }

    return AdminStats(
        total_users=total_users,
        total_sessions=session_counts[0] or 0,
        completed_sessions=session_counts[1] or 0,
        abandoned_sessions=session_counts[2] or 0,
        total_responses=total_responses,
        active_questions=active_questions,
        average_iq=round(float(average_iq), 2) if average_iq is not None else None,
        iq_distribution=distribution,
        test_types=test_types,
        generated_at=utc_now(),
    )


@router.get("/stats", response_model=AdminStats)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
):
    """Aggregate statistics, cached for ADMIN_STATS_CACHE_TTL seconds."""
    cached = None
    with graceful_failure("read admin stats cache", logger):
        cached = cache.get_value(ADMIN_STATS_CACHE_KEY)
    if cached:
        return AdminStats.model_validate(cached)

    stats = await compute_admin_stats(db)
    with graceful_failure("write admin stats cache", logger):
        cache.set_value(
            ADMIN_STATS_CACHE_KEY,
            stats.model_dump(mode="json", by_alias=True),
            settings.ADMIN_STATS_CACHE_TTL,
        )
    return stats


@router.post("/cache/clear", response_model=MessageResponse)
async def clear_cache(
    keys: Optional[List[str]] = Body(None, embed=True),
    cache: SessionCache = Depends(get_session_cache),
):
    """Delete the given cache keys, or the whole cache when none are given."""
    if keys:
        for key in keys:
            cache.delete_value(key)
        message = f"Cleared {len(keys)} cache keys"
    else:
        cache.clear()
        message = "Cache cleared"
    logger.info(message)
    return MessageResponse(message=message)
