"""
Builders and request helpers shared by the test modules.
"""
from datetime import timedelta
from typing import List, Optional

from httpx import AsyncClient
from sqlalchemy import update

from iqtest.core.datetime_utils import utc_now
from iqtest.core.session_cache import SessionCache
from iqtest.models import Database, Question, QuestionType, TestSession

# Difficulties of the practice bank, easiest first: 4 easy, 3 medium, 3 hard
PRACTICE_DIFFICULTIES = [-2.0, -1.5, -1.0, -0.75, -0.25, 0.0, 0.25, 0.75, 1.0, 1.5]


def make_question(
    index: int,
    difficulty: float,
    category: str = "logical_sequences",
    is_active: bool = True,
) -> Question:
    return Question(
        question_type=QuestionType.NUMERICAL_SEQUENCE,
        category=category,
        difficulty=difficulty,
        discrimination=1.0,
        guessing=0.25,
        content={
            "question": f"Question {index}",
            "options": [f"answer-{index}", "wrong-a", "wrong-b", "wrong-c"],
        },
        correct_answer=f"answer-{index}",
        explanation=f"Explanation {index}",
        time_limit=60,
        tags=["test"],
        is_active=is_active,
    )


async def backdate_session(
    database: Database, cache: SessionCache, session_id: str, seconds: int
) -> None:
    """Move a session's start time into the past, as if `seconds` had elapsed."""
    async with database.session() as db:
        await db.execute(
            update(TestSession)
            .where(TestSession.id == session_id)
            .values(started_at=utc_now() - timedelta(seconds=seconds))
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    cache.invalidate(session_id)


async def start_practice(
    client: AsyncClient, headers: Optional[dict] = None, **body
) -> dict:
    payload = {"testType": "practice", **body}
    response = await client.post("/api/test/start", json=payload, headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()


async def answer_all(
    client: AsyncClient,
    session_id: str,
    questions: List[Question],
    correct: int,
    headers: Optional[dict] = None,
) -> dict:
    """Answer every question in order, the first `correct` of them correctly."""
    data: dict = {}
    for i, question in enumerate(questions):
        answer = question.correct_answer if i < correct else "wrong"
        response = await client.post(
            f"/api/test/{session_id}/response",
            json={
                "questionId": question.id,
                "answer": answer,
                "responseTime": 1000 + i * 100,
            },
            headers=headers or {},
        )
        assert response.status_code == 200, response.text
        data = response.json()
    return data
