"""
Tests for IQ score calculation and the scoring engine.
"""
import numpy as np
import pytest
from scipy.stats import norm
from sqlalchemy import func, select

from iqtest.core.error_responses import ErrorMessages, ValidationError
from iqtest.core.scoring import (
    IQ_SCORE_MAX,
    IQ_SCORE_MIN,
    STANDARD_ERROR_PLACEHOLDER,
    ScoredItem,
    ScoringEngine,
    calculate_ability_level,
    calculate_iq_score,
    calculate_percentile,
    category_breakdown,
    difficulty_analysis,
    normal_cdf,
    round_half_up,
    timing_analysis,
)
from iqtest.models import Response, TestResult, TestSession, TestStatus


class TestCalculateIQScore:
    """Tests for the raw score to IQ mapping."""

    def test_all_correct(self):
        """10 of 10 correct maps to 115."""
        assert calculate_iq_score(10, 10) == 115

    def test_half_correct(self):
        """5 of 10 correct maps to the mean."""
        assert calculate_iq_score(5, 10) == 100

    def test_none_correct(self):
        """0 of 10 correct maps to 85, inside the clamp range."""
        assert calculate_iq_score(0, 10) == 85

    def test_rounds_half_up(self):
        """107.5 rounds to 108 and 92.5 to 93."""
        assert calculate_iq_score(3, 4) == 108
        assert calculate_iq_score(1, 4) == 93

    def test_monotone_in_correct_answers(self):
        """More correct answers never lower the score."""
        scores = [calculate_iq_score(correct, 20) for correct in range(21)]
        assert scores == sorted(scores)

    def test_always_within_clamp(self):
        """Every attainable score is within [40, 200]."""
        for total in (1, 7, 60):
            for correct in range(total + 1):
                assert IQ_SCORE_MIN <= calculate_iq_score(correct, total) <= IQ_SCORE_MAX

    def test_rejects_empty_session(self):
        """A session without questions cannot be scored."""
        with pytest.raises(ValueError):
            calculate_iq_score(0, 0)

    def test_rejects_impossible_raw_score(self):
        """More correct answers than questions is an error."""
        with pytest.raises(ValueError):
            calculate_iq_score(11, 10)
        with pytest.raises(ValueError):
            calculate_iq_score(-1, 10)


class TestPercentile:
    """Tests for the normal CDF based percentile."""

    def test_mean_is_fiftieth_percentile(self):
        """An IQ of 100 is exactly the 50th percentile."""
        assert calculate_percentile(100) == 50.0

    def test_one_standard_deviation(self):
        """One SD above and below the mean."""
        assert calculate_percentile(115) == 84.13
        assert calculate_percentile(85) == 15.87

    def test_monotone(self):
        """Percentile never decreases as IQ increases."""
        values = [calculate_percentile(iq) for iq in range(40, 201)]
        assert values == sorted(values)

    def test_bounded(self):
        """Percentiles stay within [0, 100]."""
        assert 0.0 <= calculate_percentile(40) <= 100.0
        assert 0.0 <= calculate_percentile(200) <= 100.0

    def test_custom_norm_group_parameters(self):
        """The group mean maps to the 50th percentile of that group."""
        assert calculate_percentile(108, mean=108, sd=14) == 50.0

    def test_normal_cdf_matches_scipy(self):
        """The erf approximation agrees with scipy to within its error bound."""
        for z in np.linspace(-4, 4, 81):
            assert abs(normal_cdf(float(z)) - norm.cdf(z)) < 2e-7

    def test_ability_level_is_z_score(self):
        assert calculate_ability_level(115) == 1.0
        assert calculate_ability_level(100) == 0.0

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4999) == 2


def _item(category="logical_sequences", difficulty=0.0, is_correct=True, response_time=1000):
    return ScoredItem(
        category=category,
        difficulty=difficulty,
        is_correct=is_correct,
        response_time=response_time,
    )


class TestBreakdowns:
    """Tests for the category, timing and difficulty breakdowns."""

    def test_category_breakdown(self):
        """Totals, success rate and averages per category."""
        items = [
            _item("verbal", 0.5, True, 1000),
            _item("verbal", -0.5, False, 3000),
            _item("spatial", 1.0, True, 500),
        ]
        breakdown = category_breakdown(items)

        assert breakdown["verbal"] == {
            "total": 2,
            "correct": 1,
            "successRate": 0.5,
            "averageTime": 2000,
            "averageDifficulty": 0.0,
        }
        assert breakdown["spatial"]["successRate"] == 1.0

    def test_timing_uses_upper_median(self):
        """With an even count the median is the upper middle sample."""
        items = [_item(response_time=t) for t in (300, 100, 200, 400)]
        timing = timing_analysis(items)

        assert timing == {
            "total": 1000,
            "average": 250.0,
            "median": 300,
            "fastest": 100,
            "slowest": 400,
        }

    def test_timing_empty(self):
        """No answers means an all-zero summary."""
        assert timing_analysis([])["median"] == 0

    def test_difficulty_buckets(self):
        """Boundaries of -0.5 and 0.5 belong to the medium bucket."""
        items = [
            _item(difficulty=-0.51, is_correct=True),
            _item(difficulty=-0.5, is_correct=False),
            _item(difficulty=0.5, is_correct=True),
            _item(difficulty=0.51, is_correct=False),
        ]
        analysis = difficulty_analysis(items)

        assert analysis["easy"] == {"total": 1, "correct": 1, "successRate": 1.0}
        assert analysis["medium"] == {"total": 2, "correct": 1, "successRate": 0.5}
        assert analysis["hard"] == {"total": 1, "correct": 0, "successRate": 0.0}

    def test_empty_difficulty_bucket(self):
        analysis = difficulty_analysis([_item(difficulty=0.0)])
        assert analysis["hard"] == {"total": 0, "correct": 0, "successRate": 0.0}


async def _make_session(db, questions, answered, correct, **session_fields):
    """A session over `questions` with the first `answered` of them answered."""
    session = TestSession(
        test_type="practice",
        question_ids=[q.id for q in questions],
        current_index=answered,
        status=session_fields.pop("status", TestStatus.COMPLETED),
        **session_fields,
    )
    db.add(session)
    await db.flush()
    for i, question in enumerate(questions[:answered]):
        db.add(
            Response(
                session_id=session.id,
                question_id=question.id,
                answer="x",
                is_correct=i < correct,
                response_time=1000 * (i + 1),
            )
        )
    await db.commit()
    return session


class TestScoringEngine:
    """Tests for ScoringEngine.compute_result."""

    async def test_scores_complete_session(self, async_db_session, seed_questions):
        """All ten answered correctly gives 115 at the 84.13th percentile."""
        session = await _make_session(async_db_session, seed_questions, 10, 10)

        outcome = await ScoringEngine(async_db_session).compute_result(session.id)
        await async_db_session.commit()

        result = outcome.result
        assert result.iq_score == 115
        assert result.percentile == 84.13
        assert result.total_score == 10
        assert result.is_complete is True
        assert result.standard_error == STANDARD_ERROR_PLACEHOLDER
        assert result.validity_flags == []
        assert result.total_time == 55
        assert result.average_time == 5500.0
        assert result.category_scores["logical_sequences"]["total"] == 10
        assert outcome.difficulty["easy"]["total"] == 4
        assert outcome.difficulty["medium"]["total"] == 3
        assert outcome.difficulty["hard"]["total"] == 3

    async def test_half_and_zero_correct(self, async_db_session, seed_questions):
        """5 of 10 gives 100 / 50.0 and 0 of 10 gives 85."""
        half = await _make_session(async_db_session, seed_questions, 10, 5)
        none = await _make_session(async_db_session, seed_questions, 10, 0)
        engine = ScoringEngine(async_db_session)

        half_result = (await engine.compute_result(half.id)).result
        none_result = (await engine.compute_result(none.id)).result

        assert half_result.iq_score == 100
        assert half_result.percentile == 50.0
        assert none_result.iq_score == 85

    async def test_idempotent(self, async_db_session, seed_questions):
        """Scoring twice returns the same stored result."""
        session = await _make_session(async_db_session, seed_questions, 10, 7)
        engine = ScoringEngine(async_db_session)

        first = await engine.compute_result(session.id)
        await async_db_session.commit()
        second = await engine.compute_result(session.id)

        assert second.result.id == first.result.id
        assert second.result.iq_score == first.result.iq_score
        count = (
            await async_db_session.execute(
                select(func.count(TestResult.id)).where(TestResult.session_id == session.id)
            )
        ).scalar_one()
        assert count == 1

    async def test_incomplete_session_rejected(self, async_db_session, seed_questions):
        """A session that did not time out is scored only when fully answered."""
        session = await _make_session(
            async_db_session, seed_questions, 4, 4, status=TestStatus.IN_PROGRESS
        )

        with pytest.raises(ValidationError) as exc_info:
            await ScoringEngine(async_db_session).compute_result(session.id)
        assert exc_info.value.message == ErrorMessages.SESSION_NOT_COMPLETE

    async def test_timed_out_session_scored_on_partial_answers(
        self, async_db_session, seed_questions
    ):
        """Unanswered questions count as incorrect and the result is partial."""
        session = await _make_session(
            async_db_session, seed_questions, 3, 3, time_limit_exceeded=True, time_limit=300
        )

        outcome = await ScoringEngine(async_db_session).compute_result(session.id)

        assert outcome.result.iq_score == calculate_iq_score(3, 10) == 94
        assert outcome.result.is_complete is False
        assert outcome.answered == 3
        assert outcome.result.average_time == 2000.0

    async def test_timed_out_without_answers(self, async_db_session, seed_questions):
        """A timed-out session with no responses gets no result."""
        session = await _make_session(
            async_db_session, seed_questions, 0, 0, time_limit_exceeded=True, time_limit=300
        )

        with pytest.raises(ValidationError) as exc_info:
            await ScoringEngine(async_db_session).compute_result(session.id)
        assert exc_info.value.message == ErrorMessages.NO_RESPONSES
