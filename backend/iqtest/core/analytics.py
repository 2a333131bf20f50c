"""
Analytics event tracking for test sessions and accounts.

Events are structured log entries; behavioral counters are recorded as
reported by the client and never analysed here.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional

from iqtest.core.config import settings
from iqtest.core.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Analytics event types."""

    USER_REGISTERED = "user.registered"
    USER_LOGIN = "user.login"
    USER_ANONYMOUS = "user.anonymous"

    TEST_STARTED = "test.started"
    TEST_COMPLETED = "test.completed"
    TEST_ABANDONED = "test.abandoned"
    TEST_TIMED_OUT = "test.timed_out"
    QUESTION_ANSWERED = "question.answered"

    API_ERROR = "api.error"


class AnalyticsTracker:
    """Writes analytics events to the `iqtest.core.analytics` logger."""

    @staticmethod
    def track_event(
        event_type: EventType,
        user_id: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Track an analytics event.

        Example:
            AnalyticsTracker.track_event(
                EventType.TEST_COMPLETED,
                user_id="8d0c...",
                properties={"iq_score": 108, "session_id": "f3a1..."},
            )
        """
        event_data = {
            "event": event_type.value,
            "timestamp": utc_now().isoformat(),
            "user_id": user_id,
            "properties": properties or {},
            "environment": settings.ENV,
        }
        logger.info(
            f"Analytics Event: {event_type.value}",
            extra={
                "event": event_data,
                "user_identifier": user_id,
            },
        )

    @staticmethod
    def track_user_registered(user_id: str, anonymous: bool = False) -> None:
        AnalyticsTracker.track_event(
            EventType.USER_ANONYMOUS if anonymous else EventType.USER_REGISTERED,
            user_id=user_id,
        )

    @staticmethod
    def track_user_login(user_id: str) -> None:
        AnalyticsTracker.track_event(EventType.USER_LOGIN, user_id=user_id)

    @staticmethod
    def track_test_started(
        user_id: Optional[str], session_id: str, test_type: str, question_count: int
    ) -> None:
        AnalyticsTracker.track_event(
            EventType.TEST_STARTED,
            user_id=user_id,
            properties={
                "session_id": session_id,
                "test_type": test_type,
                "question_count": question_count,
            },
        )

    @staticmethod
    def track_question_answered(
        user_id: Optional[str],
        session_id: str,
        question_id: str,
        is_correct: bool,
        response_time_ms: int,
    ) -> None:
        AnalyticsTracker.track_event(
            EventType.QUESTION_ANSWERED,
            user_id=user_id,
            properties={
                "session_id": session_id,
                "question_id": question_id,
                "is_correct": is_correct,
                "response_time_ms": response_time_ms,
            },
        )

    @staticmethod
    def track_test_completed(
        user_id: Optional[str],
        session_id: str,
        iq_score: Optional[int],
        timed_out: bool = False,
    ) -> None:
        AnalyticsTracker.track_event(
            EventType.TEST_TIMED_OUT if timed_out else EventType.TEST_COMPLETED,
            user_id=user_id,
            properties={"session_id": session_id, "iq_score": iq_score},
        )

    @staticmethod
    def track_test_abandoned(
        user_id: Optional[str], session_id: str, answered_count: int
    ) -> None:
        AnalyticsTracker.track_event(
            EventType.TEST_ABANDONED,
            user_id=user_id,
            properties={"session_id": session_id, "answered_count": answered_count},
        )

    @staticmethod
    def track_api_error(
        method: str, path: str, error_type: str, error_message: str
    ) -> None:
        AnalyticsTracker.track_event(
            EventType.API_ERROR,
            properties={
                "method": method,
                "path": path,
                "error_type": error_type,
                "error_message": error_message,
            },
        )
