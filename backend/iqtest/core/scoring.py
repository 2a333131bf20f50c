"""
IQ score calculation.

Scoring Algorithm
=================
The score is a linear transform of the share of correct answers:

    iq = round(100 + (accuracy - 0.5) * 30), clamped to [40, 200]

so 0% maps to 85, 50% to 100 and 100% to 115. `ability_level` restates the
same number as a z-score. The difficulty/discrimination/guessing columns on
Question are IRT-shaped but no IRT estimation happens here.

Percentile
==========
    percentile = 100 * Phi((iq - 100) / 15)

Phi is the standard normal CDF, evaluated with the Abramowitz-Stegun
rational approximation of erf (formula 7.1.26, |error| < 1.5e-7) and
rounded to two decimals.

Placeholders
============
`standard_error` is the constant STANDARD_ERROR_PLACEHOLDER and
`validity_flags` is always empty; neither is derived from the data.

Rounding is half-up (100 + 0.25 * 30 = 107.5 -> 108 and 92.5 -> 93),
matching the scores issued by earlier releases of the service.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.error_responses import ErrorMessages, NotFoundError, ValidationError
from iqtest.models import Question, Response, TestResult, TestSession, TestStatus
from iqtest.observability import metrics

logger = logging.getLogger(__name__)

IQ_MEAN = 100.0
IQ_SD = 15.0
IQ_SCORE_MIN = 40
IQ_SCORE_MAX = 200
STANDARD_ERROR_PLACEHOLDER = 5.0

# Abramowitz & Stegun 7.1.26
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

# Difficulty buckets for the difficulty analysis
EASY_UPPER_BOUND = -0.5
HARD_LOWER_BOUND = 0.5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def erf(x: float) -> float:
    """Error function via the Abramowitz-Stegun approximation."""
    sign = 1.0 if x >= 0 else -1.0
    x = abs(x)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return sign * y


def normal_cdf(z: float) -> float:
    return 0.5 * (1.0 + erf(z / math.sqrt(2.0)))


def calculate_iq_score(correct_answers: int, total_questions: int) -> int:
    """
    Map a raw score to an IQ score.

    Raises:
        ValueError: if total_questions is not positive or correct_answers
            is outside [0, total_questions]
    """
    if total_questions <= 0:
        raise ValueError("total_questions must be positive")
    if correct_answers < 0 or correct_answers > total_questions:
        raise ValueError("correct_answers must be between 0 and total_questions")

    accuracy = correct_answers / total_questions
    iq_score = round_half_up(IQ_MEAN + (accuracy - 0.5) * 30)
    return max(IQ_SCORE_MIN, min(IQ_SCORE_MAX, iq_score))


def calculate_ability_level(iq_score: float) -> float:
    return (iq_score - IQ_MEAN) / IQ_SD


def calculate_percentile(
    iq_score: float, mean: float = IQ_MEAN, sd: float = IQ_SD
) -> float:
    """
    Percentage of the population scoring below `iq_score`.

    Example:
        >>> calculate_percentile(100)
        50.0
        >>> calculate_percentile(115)
        84.13
    """
    return round2(100 * normal_cdf((iq_score - mean) / sd))


@dataclass
class ScoredItem:
    """One answered question, as seen by the scoring functions."""

    category: str
    difficulty: float
    is_correct: bool
    response_time: int  # milliseconds


def category_breakdown(items: Iterable[ScoredItem]) -> Dict[str, Dict[str, Any]]:
    """
    Per-category totals.

    Returns:
        {category: {total, correct, successRate, averageTime, averageDifficulty}}
        with successRate as a fraction and averageTime in milliseconds.
    """
    grouped: Dict[str, List[ScoredItem]] = {}
    for item in items:
        grouped.setdefault(item.category, []).append(item)

    breakdown: Dict[str, Dict[str, Any]] = {}
    for category, members in grouped.items():
        total = len(members)
        correct = sum(1 for m in members if m.is_correct)
        breakdown[category] = {
            "total": total,
            "correct": correct,
            "successRate": correct / total,
            "averageTime": sum(m.response_time for m in members) / total,
            "averageDifficulty": sum(m.difficulty for m in members) / total,
        }
    return breakdown


def timing_analysis(items: Iterable[ScoredItem]) -> Dict[str, float]:
    """
    Response time summary in milliseconds.

    The median is the upper median (`sorted[n // 2]`), never an average of
    two samples.
    """
    times = np.array([item.response_time for item in items], dtype=np.int64)
    if times.size == 0:
        return {"total": 0, "average": 0.0, "median": 0, "fastest": 0, "slowest": 0}

    ordered = np.sort(times)
    return {
        "total": int(times.sum()),
        "average": float(times.mean()),
        "median": int(ordered[times.size // 2]),
        "fastest": int(ordered[0]),
        "slowest": int(ordered[-1]),
    }


def difficulty_analysis(items: Iterable[ScoredItem]) -> Dict[str, Dict[str, Any]]:
    """Correctness by difficulty bucket: easy (< -0.5), medium, hard (> 0.5)."""
    buckets: Dict[str, List[ScoredItem]] = {"easy": [], "medium": [], "hard": []}
    for item in items:
        if item.difficulty < EASY_UPPER_BOUND:
            buckets["easy"].append(item)
        elif item.difficulty > HARD_LOWER_BOUND:
            buckets["hard"].append(item)
        else:
            buckets["medium"].append(item)

    analysis: Dict[str, Dict[str, Any]] = {}
    for name, members in buckets.items():
        total = len(members)
        correct = sum(1 for m in members if m.is_correct)
        analysis[name] = {
            "total": total,
            "correct": correct,
            "successRate": correct / total if total else 0.0,
        }
    return analysis


@dataclass
class ScoringOutcome:
    """A persisted result plus the breakdowns computed alongside it."""

    result: TestResult
    categories: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    timing: Dict[str, float] = field(default_factory=dict)
    difficulty: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    answered: int = 0


class ScoringEngine:
    """
    Computes and persists the single TestResult of a session.

    The engine flushes but never commits; the caller owns the transaction,
    so the Response Recorder can complete a session and create its result
    atomically.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_items(self, session: TestSession) -> List[ScoredItem]:
        """Answered questions of a session, in presentation order."""
        rows = (
            await self.db.execute(
                select(Response, Question)
                .join(Question, Response.question_id == Question.id)
                .where(Response.session_id == session.id)
            )
        ).all()

        position = {qid: i for i, qid in enumerate(session.question_ids or [])}
        rows = sorted(rows, key=lambda row: position.get(row[0].question_id, len(position)))
        return [
            ScoredItem(
                category=question.category,
                difficulty=float(question.difficulty),
                is_correct=bool(response.is_correct),
                response_time=int(response.response_time),
            )
            for response, question in rows
        ]

    async def get_existing(self, session_id: str) -> Optional[TestResult]:
        return (
            await self.db.execute(
                select(TestResult).where(TestResult.session_id == session_id)
            )
        ).scalar_one_or_none()

    async def compute_result(self, session_id: str) -> ScoringOutcome:
        """
        Score a session, or return its existing result unchanged.

        A session is scored when every question has a response. A session
        completed by its time limit is scored on the responses it has, with
        unanswered questions counted as incorrect and `is_complete=False`.

        Raises:
            NotFoundError: if the session does not exist
            ValidationError: if the session cannot be scored yet
        """
        session = await self.db.get(TestSession, session_id)
        if session is None:
            raise NotFoundError(ErrorMessages.TEST_SESSION_NOT_FOUND)

        items = await self.load_items(session)
        existing = await self.get_existing(session_id)
        if existing is not None:
            return self._outcome(existing, items)

        total_questions = session.total_questions
        answered = len(items)
        is_complete = answered == total_questions and total_questions > 0
        if not is_complete:
            timed_out = (
                session.status == TestStatus.COMPLETED and session.time_limit_exceeded
            )
            if not timed_out:
                raise ValidationError(ErrorMessages.SESSION_NOT_COMPLETE)
            if answered == 0:
                raise ValidationError(ErrorMessages.NO_RESPONSES)

        correct = sum(1 for item in items if item.is_correct)
        iq_score = calculate_iq_score(correct, total_questions)
        total_ms = sum(item.response_time for item in items)

        result = TestResult(
            session_id=session.id,
            user_id=session.user_id,
            total_score=correct,
            iq_score=iq_score,
            percentile=calculate_percentile(iq_score),
            ability_level=calculate_ability_level(iq_score),
            standard_error=STANDARD_ERROR_PLACEHOLDER,
            category_scores=category_breakdown(items),
            total_time=total_ms // 1000,
            average_time=total_ms / answered,
            validity_flags=[],
            is_complete=is_complete,
        )

        try:
            async with self.db.begin_nested():
                self.db.add(result)
        except IntegrityError:
            # Another request scored the session first
            existing = await self.get_existing(session_id)
            if existing is None:
                raise
            logger.info(f"Result for session {session_id} already created concurrently")
            return self._outcome(existing, items)

        logger.info(
            f"Scored session {session_id}: {correct}/{total_questions} correct, "
            f"IQ {iq_score}",
            extra={"session_id": session_id},
        )
        metrics.record_iq_score(iq_score)
        return self._outcome(result, items)

    @staticmethod
    def _outcome(result: TestResult, items: List[ScoredItem]) -> ScoringOutcome:
        return ScoringOutcome(
            result=result,
            categories=category_breakdown(items),
            timing=timing_analysis(items),
            difficulty=difficulty_analysis(items),
            answered=len(items),
        )
