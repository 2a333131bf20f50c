"""
Comparison of an IQ score against the seeded norm groups.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.scoring import IQ_MEAN, IQ_SD, calculate_percentile
from iqtest.models import NormGroup, User

logger = logging.getLogger(__name__)


def parse_age_range(age_range: str) -> Optional[tuple[int, int]]:
    """'18-25' -> (18, 25); None if the value is malformed."""
    try:
        low, high = (int(part) for part in age_range.split("-", 1))
    except ValueError:
        return None
    return low, high


def group_matches(group: NormGroup, user: Optional[User]) -> bool:
    """A NULL filter matches everyone; a set filter needs a matching user value."""
    if group.age_range:
        bounds = parse_age_range(group.age_range)
        if bounds is None:
            logger.warning(f"Norm group {group.name} has malformed age_range {group.age_range!r}")
            return False
        if user is None or user.age is None or not bounds[0] <= user.age <= bounds[1]:
            return False

    for column in ("gender", "education", "country", "language"):
        expected = getattr(group, column)
        if expected is None:
            continue
        if user is None or getattr(user, column) != expected:
            return False
    return True


async def compare_to_norms(
    db: AsyncSession, iq_score: int, user: Optional[User] = None
) -> Dict[str, Any]:
    """
    Percentile of `iq_score` overall and within every matching norm group.

    Groups are listed by name so repeated calls return the same order.
    """
    groups = (
        await db.execute(
            select(NormGroup).where(NormGroup.is_active.is_(True)).order_by(NormGroup.name)
        )
    ).scalars().all()

    comparisons: List[Dict[str, Any]] = []
    for group in groups:
        if not group_matches(group, user):
            continue
        sd = group.std_dev if group.std_dev and group.std_dev > 0 else IQ_SD
        comparisons.append(
            {
                "name": group.name,
                "description": group.description,
                "percentile": calculate_percentile(iq_score, group.mean, sd),
                "sampleSize": group.sample_size,
            }
        )

    return {
        "iqScore": iq_score,
        "overall": calculate_percentile(iq_score, IQ_MEAN, IQ_SD),
        "groups": comparisons,
    }
