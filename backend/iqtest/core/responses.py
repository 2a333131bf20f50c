"""
Response Recorder: accepts one answer, grades it and advances the session.

The write path runs in a single transaction:

1. lock the session row and run the admission checks
2. insert the Response (unique on session_id + question_id)
3. advance current_index with a compare-and-swap on its old value
4. on the last answer, complete the session and score it

A concurrent submitter that loses either the unique constraint or the
compare-and-swap gets a ConflictError and leaves nothing behind.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.analytics import AnalyticsTracker
from iqtest.core.datetime_utils import utc_now
from iqtest.core.error_responses import (
    ConflictError,
    ErrorMessages,
    NotFoundError,
    ValidationError,
)
from iqtest.core.graceful_failure import graceful_failure
from iqtest.core.notifications import NotificationHub
from iqtest.core.scoring import ScoringEngine, ScoringOutcome
from iqtest.core.session_cache import SessionCache, SessionState
from iqtest.core.sessions import (
    SessionManager,
    calculate_progress,
    check_session_access,
    is_expired,
)
from iqtest.models import (
    TERMINAL_STATUSES,
    Question,
    Response,
    TestSession,
    TestStatus,
    User,
)
from iqtest.observability import metrics

logger = logging.getLogger(__name__)


@dataclass
class BehaviorCounters:
    tab_switches: int = 0
    copy_paste_events: int = 0
    dev_tools_opened: bool = False
    confidence: Optional[float] = None


def parse_behavior_data(behavior_data: Optional[Dict[str, Any]]) -> BehaviorCounters:
    """
    Pull the counters the session aggregates out of client-reported data.

    Unknown keys are kept on the Response as-is; malformed values are ignored.
    """
    counters = BehaviorCounters()
    if not behavior_data:
        return counters

    def _count(*keys: str) -> int:
        for key in keys:
            value = behavior_data.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                return value
        return 0

    counters.tab_switches = _count("tabSwitches", "tab_switches")
    counters.copy_paste_events = _count("copyPasteEvents", "copy_paste_events")
    counters.dev_tools_opened = bool(
        behavior_data.get("devToolsOpened") or behavior_data.get("dev_tools_opened")
    )

    confidence = behavior_data.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        if 0 <= confidence <= 1:
            counters.confidence = float(confidence)
    return counters


@dataclass
class SubmissionOutcome:
    session: TestSession
    is_correct: bool
    completed: bool
    next_question: Optional[Question] = None
    progress: Optional[Dict[str, int]] = None
    scoring: Optional[ScoringOutcome] = None


class ResponseRecorder:
    """Records answers for a session; see the module docstring for the write path."""

    def __init__(
        self,
        db: AsyncSession,
        cache: SessionCache,
        notifications: Optional[NotificationHub] = None,
    ):
        self.db = db
        self.cache = cache
        self.notifications = notifications
        self.sessions = SessionManager(db, cache)
        self.scoring = ScoringEngine(db)

    async def _response_exists(self, session_id: str, question_id: str) -> bool:
        count = (
            await self.db.execute(
                select(func.count(Response.id)).where(
                    Response.session_id == session_id,
                    Response.question_id == question_id,
                )
            )
        ).scalar_one()
        return count > 0

    async def submit(
        self,
        session_id: str,
        question_id: str,
        answer: str,
        response_time_ms: int,
        behavior_data: Optional[Dict[str, Any]] = None,
        caller: Optional[User] = None,
    ) -> SubmissionOutcome:
        """
        Record an answer to the session's current question.

        Raises:
            NotFoundError: unknown session or question
            AuthorizationError: session owned by another user
            ConflictError: question already answered, or a concurrent
                submission advanced the session first
            ValidationError: session ended or expired, question out of
                sequence, or negative response time
        """
        session = await self.sessions.load_session(session_id, for_update=True)
        check_session_access(session.user_id, caller)

        # Resubmissions are conflicts even after the session has moved on
        if await self._response_exists(session_id, question_id):
            raise ConflictError(ErrorMessages.DUPLICATE_RESPONSE)

        if session.status in TERMINAL_STATUSES:
            raise ValidationError(ErrorMessages.SESSION_ENDED)

        if is_expired(SessionState.from_model(session)):
            await self.sessions.expire(session)
            raise ValidationError(ErrorMessages.SESSION_EXPIRED)

        expected_index = session.current_index
        if (
            expected_index >= session.total_questions
            or session.question_ids[expected_index] != question_id
        ):
            raise ValidationError(ErrorMessages.OUT_OF_SEQUENCE)

        if response_time_ms < 0:
            raise ValidationError(ErrorMessages.NEGATIVE_RESPONSE_TIME)

        question = await self.db.get(Question, question_id)
        if question is None:
            raise NotFoundError(ErrorMessages.QUESTION_NOT_FOUND)

        is_correct = answer == question.correct_answer

        try:
            outcome = await self.record_answer(
                session,
                question,
                answer,
                response_time_ms,
                behavior_data,
                is_correct=is_correct,
                expected_index=expected_index,
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                f"Duplicate response to {question_id} rejected",
                extra={"session_id": session_id},
            )
            raise ConflictError(ErrorMessages.DUPLICATE_RESPONSE)

        self.sessions.invalidate(session_id)
        self._track(outcome, question_id, response_time_ms)
        return outcome

    async def record_answer(
        self,
        session: TestSession,
        question: Question,
        answer: str,
        response_time_ms: int,
        behavior_data: Optional[Dict[str, Any]],
        *,
        is_correct: bool,
        expected_index: int,
    ) -> SubmissionOutcome:
        """
        Write the response and advance the session, without committing.

        Raises:
            IntegrityError: the question already has a response
            ConflictError: the session's index moved past expected_index
        """
        counters = parse_behavior_data(behavior_data)
        self.db.add(
            Response(
                session_id=session.id,
                question_id=question.id,
                answer=answer,
                is_correct=is_correct,
                response_time=response_time_ms,
                behavior_data=behavior_data,
                confidence=counters.confidence,
            )
        )
        await self.db.flush()

        new_index = expected_index + 1
        completed = new_index >= session.total_questions
        values: Dict[str, Any] = {
            "current_index": new_index,
            "status": TestStatus.COMPLETED if completed else TestStatus.IN_PROGRESS,
            "tab_switches": TestSession.tab_switches + counters.tab_switches,
            "copy_paste_events": TestSession.copy_paste_events + counters.copy_paste_events,
        }
        if counters.dev_tools_opened:
            values["dev_tools_opened"] = True
        if completed:
            values["ended_at"] = utc_now()

        advanced = await self.db.execute(
            update(TestSession)
            .where(
                TestSession.id == session.id,
                TestSession.current_index == expected_index,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if advanced.rowcount != 1:
            await self.db.rollback()
            raise ConflictError(ErrorMessages.CONCURRENT_SUBMISSION)

        await self.db.refresh(session)
        await self._update_question_stats(question.id, is_correct, response_time_ms)

        if not completed:
            next_question = await self.db.get(Question, session.question_ids[new_index])
            return SubmissionOutcome(
                session=session,
                is_correct=is_correct,
                completed=False,
                next_question=next_question,
                progress=calculate_progress(new_index, session.total_questions),
            )

        scoring = await self.scoring.compute_result(session.id)
        return SubmissionOutcome(
            session=session,
            is_correct=is_correct,
            completed=True,
            scoring=scoring,
        )

    async def _update_question_stats(
        self, question_id: str, is_correct: bool, response_time_ms: int
    ) -> None:
        """Fold one answer into the question's running usage statistics."""
        with graceful_failure(
            "update question statistics", logger, context={"question_id": question_id}
        ):
            async with self.db.begin_nested():
                n = Question.times_used
                await self.db.execute(
                    update(Question)
                    .where(Question.id == question_id)
                    .values(
                        times_used=n + 1,
                        average_time=(
                            func.coalesce(Question.average_time, 0) * n + response_time_ms
                        )
                        / (n + 1),
                        success_rate=(
                            func.coalesce(Question.success_rate, 0) * n
                            + (1 if is_correct else 0)
                        )
                        / (n + 1),
                    )
                    .execution_options(synchronize_session=False)
                )

    def _track(self, outcome: SubmissionOutcome, question_id: str, response_time_ms: int) -> None:
        session = outcome.session
        AnalyticsTracker.track_question_answered(
            session.user_id, session.id, question_id, outcome.is_correct, response_time_ms
        )
        metrics.record_response(outcome.is_correct)
        if outcome.completed:
            iq_score = outcome.scoring.result.iq_score if outcome.scoring else None
            logger.info(
                f"Session {session.id} completed",
                extra={"session_id": session.id},
            )
            AnalyticsTracker.track_test_completed(session.user_id, session.id, iq_score)
            metrics.record_test_completed(session.test_type)

    async def publish_events(self, outcome: SubmissionOutcome) -> None:
        """
        Tell the session's WebSocket subscribers about a committed submission.

        Not part of `submit`; the route runs it as a background task.
        """
        if self.notifications is None:
            return
        session = outcome.session
        with graceful_failure("publish session event", logger):
            if outcome.completed:
                await self.notifications.publish(
                    session.id,
                    "session.completed",
                    {
                        "iqScore": outcome.scoring.result.iq_score if outcome.scoring else None,
                        "percentile": (
                            outcome.scoring.result.percentile if outcome.scoring else None
                        ),
                    },
                )
            else:
                await self.notifications.publish(
                    session.id, "session.progress", {"progress": outcome.progress}
                )
