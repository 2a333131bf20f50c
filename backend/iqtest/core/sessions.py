"""
Session Manager: creates test sessions, serves the current question,
enforces time limits and handles abandonment.

Time limits are enforced lazily. There is no background sweep; the first
read or submit after the limit has passed completes the session, scores
whatever was answered and rejects the request as expired.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.analytics import AnalyticsTracker
from iqtest.core.config import settings
from iqtest.core.datetime_utils import seconds_since, utc_now
from iqtest.core.error_responses import (
    AuthorizationError,
    ErrorMessages,
    NotFoundError,
    ValidationError,
)
from iqtest.core.graceful_failure import graceful_failure
from iqtest.core.scoring import ScoringEngine, ScoringOutcome, round_half_up
from iqtest.core.session_cache import SessionCache, SessionState
from iqtest.core.test_composition import get_preset, select_question_ids
from iqtest.models import (
    TERMINAL_STATUSES,
    Question,
    TestSession,
    TestStatus,
    User,
)
from iqtest.models.base import SQLITE_BEGIN_OPTION
from iqtest.observability import metrics

logger = logging.getLogger(__name__)


def calculate_progress(current_index: int, total: int) -> Dict[str, int]:
    """Progress as shown to the test taker: 1-based position, capped at total."""
    if total <= 0:
        return {"current": 0, "total": 0, "percentage": 0}
    current = min(current_index + 1, total)
    return {
        "current": current,
        "total": total,
        "percentage": round_half_up(current / total * 100),
    }


def elapsed_seconds(state: SessionState, now: Optional[datetime] = None) -> int:
    if state.started_at is None:
        return 0
    end = state.ended_at if state.ended_at is not None else (now or utc_now())
    return seconds_since(state.started_at, end)


def time_remaining(state: SessionState, now: Optional[datetime] = None) -> Optional[int]:
    """None when the session has no limit, else max(0, limit - elapsed)."""
    if state.time_limit is None:
        return None
    return max(0, state.time_limit - elapsed_seconds(state, now))


def is_expired(state: SessionState, now: Optional[datetime] = None) -> bool:
    if state.time_limit is None or state.status in TERMINAL_STATUSES:
        return False
    return elapsed_seconds(state, now) > state.time_limit


def check_session_access(owner_id: Optional[str], caller: Optional[User]) -> None:
    """
    Sessions without an owner are open to whoever holds the id; owned
    sessions are reserved for their user.
    """
    if owner_id is None:
        return
    if caller is None or caller.id != owner_id:
        raise AuthorizationError(ErrorMessages.SESSION_ACCESS_DENIED)


@dataclass
class ClientInfo:
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    screen_size: Optional[str] = None
    timezone: Optional[str] = None


@dataclass
class StartedSession:
    session: TestSession
    first_question: Question
    progress: Dict[str, int]


@dataclass
class CurrentQuestion:
    question: Question
    progress: Dict[str, int]
    time_remaining: Optional[int]


class SessionManager:
    """Session lifecycle operations over an injected database session and cache."""

    def __init__(self, db: AsyncSession, cache: SessionCache):
        self.db = db
        self.cache = cache

    async def load_session(self, session_id: str, *, for_update: bool = False) -> TestSession:
        """
        Fetch a session row, fresh from the database.

        With `for_update` the row is locked for the rest of the transaction.
        SQLite has no row locks, so there the current transaction is
        committed and a new one is opened with BEGIN IMMEDIATE; callers must
        not hold uncommitted work they expect to roll back.

        Raises:
            NotFoundError: if the session does not exist
        """
        if for_update and self.db.get_bind().dialect.name == "sqlite":
            await self._begin_immediate()

        query = (
            select(TestSession)
            .where(TestSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        session = (await self.db.execute(query)).scalar_one_or_none()
        if session is None:
            raise NotFoundError(ErrorMessages.TEST_SESSION_NOT_FOUND)
        return session

    async def _begin_immediate(self) -> None:
        # A deferred transaction that has already read holds a SHARED lock,
        # and two such readers upgrading to write deadlock with "database is
        # locked". Starting over with IMMEDIATE makes the second writer wait.
        if self.db.in_transaction():
            await self.db.commit()
        await self.db.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})

    async def get_state(self, session_id: str) -> SessionState:
        """Read-only session state, served from the cache when possible."""
        state = None
        with graceful_failure("read session cache", logger):
            state = self.cache.get_session(session_id)
        if state is not None:
            return state

        state = SessionState.from_model(await self.load_session(session_id))
        with graceful_failure("populate session cache", logger):
            self.cache.refill_session(state)
        return state

    def invalidate(self, session_id: str) -> None:
        with graceful_failure(
            "invalidate session cache", logger, context={"session_id": session_id}
        ):
            self.cache.invalidate(session_id)

    async def start_session(
        self,
        test_type: Optional[str] = None,
        time_limit: Optional[int] = None,
        user: Optional[User] = None,
        client_info: Optional[ClientInfo] = None,
    ) -> StartedSession:
        """
        Create a session with a fixed, ordered question list.

        Raises:
            ValidationError: unknown test type or time limit out of range
            NotFoundError: no active questions for the test type
        """
        preset = get_preset(test_type or settings.DEFAULT_TEST_TYPE)

        if time_limit is not None and not (
            settings.TIME_LIMIT_MIN_SECONDS <= time_limit <= settings.TIME_LIMIT_MAX_SECONDS
        ):
            raise ValidationError(
                ErrorMessages.time_limit_out_of_range(
                    settings.TIME_LIMIT_MIN_SECONDS, settings.TIME_LIMIT_MAX_SECONDS
                )
            )

        question_ids = await select_question_ids(self.db, preset)
        client_info = client_info or ClientInfo()

        session = TestSession(
            user_id=user.id if user else None,
            status=TestStatus.STARTED,
            test_type=preset.name,
            time_limit=time_limit,
            question_ids=question_ids,
            current_index=0,
            started_at=utc_now(),
            user_agent=client_info.user_agent,
            ip_address=client_info.ip_address,
            screen_size=client_info.screen_size,
            timezone=client_info.timezone,
        )
        self.db.add(session)
        await self.db.flush()

        first_question = await self.db.get(Question, question_ids[0])
        if first_question is None:
            raise NotFoundError(ErrorMessages.QUESTION_NOT_FOUND)

        await self.db.commit()

        with graceful_failure("populate session cache", logger):
            self.cache.store_session(SessionState.from_model(session), self.cache.start_ttl)

        logger.info(
            f"Started {preset.name} session {session.id} with {len(question_ids)} questions",
            extra={"session_id": session.id},
        )
        AnalyticsTracker.track_test_started(
            session.user_id, session.id, preset.name, len(question_ids)
        )
        metrics.record_test_started(preset.name)

        return StartedSession(
            session=session,
            first_question=first_question,
            progress=calculate_progress(0, len(question_ids)),
        )

    async def get_current_question(
        self, session_id: str, caller: Optional[User] = None
    ) -> CurrentQuestion:
        """
        The question at the session's current index, with progress.

        Raises:
            NotFoundError: unknown session, or no question at the index
            AuthorizationError: session owned by another user
            ValidationError: session ended, or its time limit has passed
                (the session is completed as a side effect)
        """
        state = await self.get_state(session_id)
        check_session_access(state.user_id, caller)

        if state.status in TERMINAL_STATUSES:
            raise ValidationError(ErrorMessages.SESSION_ENDED)

        now = utc_now()
        if is_expired(state, now):
            await self.expire(await self.load_session(session_id, for_update=True))
            raise ValidationError(ErrorMessages.SESSION_EXPIRED)

        if state.current_index >= state.total_questions:
            raise NotFoundError(ErrorMessages.NO_MORE_QUESTIONS)

        question = await self.db.get(Question, state.question_ids[state.current_index])
        if question is None:
            raise NotFoundError(ErrorMessages.QUESTION_NOT_FOUND)

        return CurrentQuestion(
            question=question,
            progress=calculate_progress(state.current_index, state.total_questions),
            time_remaining=time_remaining(state, now),
        )

    async def expire(self, session: TestSession) -> Optional[ScoringOutcome]:
        """
        Complete a session whose time limit has passed and score what it has.

        The caller must have loaded `session` for update. Commits.
        """
        if session.status in TERMINAL_STATUSES:
            return None

        session.status = TestStatus.COMPLETED
        session.ended_at = utc_now()
        session.time_limit_exceeded = True
        await self.db.flush()

        outcome = None
        try:
            outcome = await ScoringEngine(self.db).compute_result(session.id)
        except ValidationError as e:
            # Nothing answered: the session ends without a result
            logger.info(f"Timed-out session {session.id} not scored: {e.message}")

        await self.db.commit()
        self.invalidate(session.id)

        logger.info(
            f"Session {session.id} exceeded its {session.time_limit}s time limit",
            extra={"session_id": session.id},
        )
        AnalyticsTracker.track_test_completed(
            session.user_id,
            session.id,
            outcome.result.iq_score if outcome else None,
            timed_out=True,
        )
        metrics.record_test_completed(session.test_type, timed_out=True)
        return outcome

    async def get_status(
        self, session_id: str, caller: Optional[User] = None
    ) -> Dict[str, Any]:
        """Status, progress and timing; also applies a pending timeout."""
        state = await self.get_state(session_id)
        check_session_access(state.user_id, caller)

        now = utc_now()
        if is_expired(state, now):
            session = await self.load_session(session_id, for_update=True)
            await self.expire(session)
            state = SessionState.from_model(session)

        return {
            "id": state.id,
            "status": state.status.value,
            "testType": state.test_type,
            "startedAt": state.started_at,
            "endedAt": state.ended_at,
            "progress": calculate_progress(state.current_index, state.total_questions),
            "timing": {
                "timeLimit": state.time_limit,
                "elapsed": elapsed_seconds(state, now),
                "timeRemaining": time_remaining(state, now),
            },
        }

    async def abandon(self, session_id: str, caller: Optional[User] = None) -> TestSession:
        """Mark a session abandoned. Idempotent: terminal sessions are left as they are."""
        session = await self.load_session(session_id, for_update=True)
        check_session_access(session.user_id, caller)

        if session.status in TERMINAL_STATUSES:
            return session

        session.status = TestStatus.ABANDONED
        session.ended_at = utc_now()
        answered = session.current_index
        await self.db.commit()
        self.invalidate(session_id)

        AnalyticsTracker.track_test_abandoned(session.user_id, session.id, answered)
        metrics.record_test_abandoned(session.test_type)
        return session

