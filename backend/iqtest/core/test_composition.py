"""
Test composition and question selection.

Each test type is a static preset: a question count and the categories it
draws from. Selection is a fixed slice of the active bank, easiest first;
nothing adapts to the test taker's answers.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.config import settings
from iqtest.core.error_responses import ErrorMessages, NotFoundError, ValidationError
from iqtest.models import Question

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestPreset:
    name: str
    total: int
    categories: tuple[str, ...]


def get_presets() -> Dict[str, TestPreset]:
    return {
        name: TestPreset(
            name=name,
            total=int(config["total"]),
            categories=tuple(config["categories"]),
        )
        for name, config in settings.TEST_PRESETS.items()
    }


def get_preset(test_type: str) -> TestPreset:
    """Look up a preset by test type; ValidationError if unknown."""
    preset = get_presets().get(test_type)
    if preset is None:
        raise ValidationError(ErrorMessages.unknown_test_type(test_type))
    return preset


async def select_question_ids(db: AsyncSession, preset: TestPreset) -> List[str]:
    """
    Pick the ordered question list for a new session.

    Active questions in the preset's categories, ordered by ascending
    difficulty (id breaks ties so the order is stable), limited to the
    preset's total.

    Raises:
        NotFoundError: if the bank has no matching questions
    """
    query = (
        select(Question.id)
        .where(Question.is_active.is_(True))
        .where(Question.category.in_(preset.categories))
        .order_by(Question.difficulty.asc(), Question.id.asc())
        .limit(preset.total)
    )
    question_ids: Sequence[str] = (await db.execute(query)).scalars().all()

    if not question_ids:
        raise NotFoundError(ErrorMessages.NO_QUESTIONS_AVAILABLE)
    if len(question_ids) < preset.total:
        logger.warning(
            f"Question bank short for {preset.name}: "
            f"{len(question_ids)}/{preset.total} questions available"
        )
    return list(question_ids)
