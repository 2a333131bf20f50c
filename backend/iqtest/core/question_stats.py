"""
Question bank statistics for the admin API.

Per-question figures are computed from the stored responses. The category
and difficulty summaries read the running `times_used`, `average_time` and
`success_rate` counters that the response recorder keeps on each question.
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.datetime_utils import ensure_timezone_aware, utc_now
from iqtest.core.error_responses import ErrorMessages, NotFoundError
from iqtest.models import Question, Response

RECENT_WINDOW_DAYS = 30

# (label, lower bound in ms inclusive, upper bound exclusive)
TIME_RANGES = (
    ("under_10s", None, 10_000),
    ("10_30s", 10_000, 30_000),
    ("30_60s", 30_000, 60_000),
    ("over_60s", 60_000, None),
)

# (label, lower difficulty inclusive, upper exclusive); the outer buckets are open
DIFFICULTY_RANGES = (
    ("very_easy", None, -1.5),
    ("easy", -1.5, -0.5),
    ("medium", -0.5, 0.5),
    ("hard", 0.5, 1.5),
    ("very_hard", 1.5, None),
)


def _in_range(value: float, low: Optional[float], high: Optional[float]) -> bool:
    return (low is None or value >= low) and (high is None or value < high)


def time_distribution(times_ms: List[int]) -> Dict[str, int]:
    return {
        label: sum(1 for t in times_ms if _in_range(t, low, high))
        for label, low, high in TIME_RANGES
    }


def difficulty_range(difficulty: float) -> str:
    for label, low, high in DIFFICULTY_RANGES:
        if _in_range(difficulty, low, high):
            return label
    raise ValueError(f"No difficulty range for {difficulty}")


async def question_statistics(db: AsyncSession, question_id: str) -> Dict[str, Any]:
    """
    Response statistics for one question.

    Rates and times are None when the question has never been answered.
    The median is the upper median, as in the per-session timing report.

    Raises:
        NotFoundError: if the question does not exist
    """
    question = await db.get(Question, question_id)
    if question is None:
        raise NotFoundError(ErrorMessages.QUESTION_NOT_FOUND)

    rows = (
        await db.execute(
            select(Response.is_correct, Response.response_time, Response.timestamp).where(
                Response.question_id == question_id
            )
        )
    ).all()

    stats: Dict[str, Any] = {
        "question_id": question.id,
        "category": question.category,
        "difficulty": question.difficulty,
        "is_active": question.is_active,
        "times_used": question.times_used,
        "total_responses": len(rows),
        "success_rate": None,
        "average_time": None,
        "median_time": None,
        "recent_success_rate": None,
        "time_distribution": time_distribution([]),
    }
    if not rows:
        return stats

    times = np.sort(np.array([row.response_time for row in rows], dtype=np.int64))
    cutoff = utc_now() - timedelta(days=RECENT_WINDOW_DAYS)
    recent = [row for row in rows if ensure_timezone_aware(row.timestamp) > cutoff]

    stats.update(
        success_rate=sum(1 for row in rows if row.is_correct) / len(rows),
        average_time=float(times.mean()),
        median_time=int(times[times.size // 2]),
        recent_success_rate=(
            sum(1 for row in recent if row.is_correct) / len(recent) if recent else None
        ),
        time_distribution=time_distribution([int(t) for t in times]),
    )
    return stats


async def category_statistics(db: AsyncSession) -> List[Dict[str, Any]]:
    """Active questions grouped by category, with response totals per category."""
    groups = (
        await db.execute(
            select(
                Question.category,
                func.count(Question.id),
                func.avg(Question.difficulty),
                func.avg(Question.success_rate),
                func.avg(Question.average_time),
            )
            .where(Question.is_active.is_(True))
            .group_by(Question.category)
            .order_by(Question.category)
        )
    ).all()

    response_counts = dict(
        (
            await db.execute(
                select(Question.category, func.count(Response.id))
                .join(Response, Response.question_id == Question.id)
                .group_by(Question.category)
            )
        ).all()
    )

    return [
        {
            "category": category,
            "question_count": count,
            "average_difficulty": avg_difficulty,
            "average_success_rate": avg_success,
            "average_response_time": avg_time,
            "total_responses": response_counts.get(category, 0),
        }
        for category, count, avg_difficulty, avg_success, avg_time in groups
    ]


async def difficulty_distribution(db: AsyncSession) -> List[Dict[str, Any]]:
    """
    Active questions bucketed by difficulty.

    `average_success_rate` covers only questions that have been answered and
    is None for a bucket where none have.
    """
    questions = (
        await db.execute(
            select(Question.difficulty, Question.category, Question.success_rate).where(
                Question.is_active.is_(True)
            )
        )
    ).all()

    buckets: Dict[str, List[Any]] = {label: [] for label, _, _ in DIFFICULTY_RANGES}
    for question in questions:
        buckets[difficulty_range(question.difficulty)].append(question)

    distribution = []
    for label, members in buckets.items():
        rates = [m.success_rate for m in members if m.success_rate is not None]
        categories: Dict[str, int] = {}
        for member in members:
            categories[member.category] = categories.get(member.category, 0) + 1
        distribution.append(
            {
                "range": label,
                "count": len(members),
                "average_success_rate": sum(rates) / len(rates) if rates else None,
                "categories": categories,
            }
        )
    return distribution
