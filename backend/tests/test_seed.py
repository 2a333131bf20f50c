"""
Tests for the seed data.
"""
from sqlalchemy import func, select

from iqtest.core.sessions import SessionManager
from iqtest.models import NormGroup, Question, User
from iqtest.seed import (
    CATEGORIES,
    NORM_GROUPS,
    SAMPLE_QUESTIONS,
    generated_questions,
    seed_database,
)


class TestGeneratedQuestions:
    def test_deterministic(self):
        assert generated_questions(10) == generated_questions(10)
        assert generated_questions(10, seed=1) != generated_questions(10, seed=2)

    def test_covers_every_category(self):
        questions = generated_questions(50)

        assert {q["category"] for q in questions} == set(CATEGORIES)
        for question in questions:
            assert -2.0 <= question["difficulty"] <= 2.0
            assert question["correct_answer"] in question["content"]["options"]


class TestSeedDatabase:
    async def _count(self, database, model):
        async with database.session() as db:
            return (await db.execute(select(func.count(model.id)))).scalar_one()

    async def test_seed(self, database, session_cache):
        counts = await seed_database(database, extra_questions=50)

        assert counts == {
            "norm_groups": len(NORM_GROUPS),
            "questions": len(SAMPLE_QUESTIONS) + 50,
        }
        assert await self._count(database, Question) == len(SAMPLE_QUESTIONS) + 50
        assert await self._count(database, NormGroup) == 3

        # Every preset can be started on the seeded bank
        async with database.session() as db:
            started = await SessionManager(db, session_cache).start_session("full_iq")
        assert started.session.total_questions == 57

    async def test_reset(self, database, test_user):
        await seed_database(database, extra_questions=5)

        await seed_database(database, reset=True, extra_questions=5)

        assert await self._count(database, Question) == len(SAMPLE_QUESTIONS) + 5
        assert await self._count(database, NormGroup) == 3
        assert await self._count(database, User) == 0
