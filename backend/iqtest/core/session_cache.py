"""
Advisory cache of test session state.

The relational store is the source of truth. Entries are written when a
session starts or is read from the database, and are replaced by a
short-lived tombstone (never patched) after every committed mutation.
Mutations never read from the cache; they re-read the row under lock.

A read that missed the cache refills it only if the key is empty. A reader
that loaded the row before a concurrent commit finds that commit's
tombstone and leaves it in place, so its stale snapshot is never cached.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Request

from iqtest.core.config import settings
from iqtest.core.datetime_utils import ensure_timezone_aware
from iqtest.models import TestSession, TestStatus
from iqtest.ratelimit.storage import RateLimiterStorage

logger = logging.getLogger(__name__)


@dataclass
class SessionState:
    """Read-only view of a session, built from a row or a cache entry."""

    id: str
    user_id: Optional[str]
    status: TestStatus
    test_type: str
    time_limit: Optional[int]
    question_ids: List[str] = field(default_factory=list)
    current_index: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def total_questions(self) -> int:
        return len(self.question_ids)

    @classmethod
    def from_model(cls, session: TestSession) -> "SessionState":
        return cls(
            id=session.id,
            user_id=session.user_id,
            status=TestStatus(session.status),
            test_type=session.test_type,
            time_limit=session.time_limit,
            question_ids=list(session.question_ids or []),
            current_index=session.current_index,
            started_at=ensure_timezone_aware(session.started_at),
            ended_at=(
                ensure_timezone_aware(session.ended_at) if session.ended_at else None
            ),
        )

    def to_cache(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status.value,
            "testType": self.test_type,
            "timeLimit": self.time_limit,
            "questionIds": self.question_ids,
            "currentIndex": self.current_index,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
        }

    @classmethod
    def from_cache(cls, data: dict[str, Any]) -> "SessionState":
        return cls(
            id=data["id"],
            user_id=data.get("userId"),
            status=TestStatus(data["status"]),
            test_type=data["testType"],
            time_limit=data.get("timeLimit"),
            question_ids=list(data.get("questionIds") or []),
            current_index=int(data.get("currentIndex", 0)),
            started_at=(
                datetime.fromisoformat(data["startedAt"]) if data.get("startedAt") else None
            ),
            ended_at=(
                datetime.fromisoformat(data["endedAt"]) if data.get("endedAt") else None
            ),
        )


class SessionCache:
    """Session snapshots plus a small generic JSON cache on one storage backend."""

    TOMBSTONE = {"invalidated": True}

    def __init__(
        self,
        storage: RateLimiterStorage,
        start_ttl: int = settings.SESSION_CACHE_TTL_START,
        read_ttl: int = settings.SESSION_CACHE_TTL_READ,
        tombstone_ttl: int = settings.SESSION_CACHE_TOMBSTONE_TTL,
    ):
        self.storage = storage
        self.start_ttl = start_ttl
        self.read_ttl = read_ttl
        self.tombstone_ttl = tombstone_ttl

    @staticmethod
    def session_key(session_id: str) -> str:
        return f"session:{session_id}"

    def get_session(self, session_id: str) -> Optional[SessionState]:
        data = self.storage.get(self.session_key(session_id))
        if not data or data == self.TOMBSTONE:
            return None
        try:
            return SessionState.from_cache(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable cache entry for session {session_id}: {e}")
            self.invalidate(session_id)
            return None

    def store_session(self, state: SessionState, ttl: Optional[int] = None) -> None:
        self.storage.set(
            self.session_key(state.id), state.to_cache(), ttl or self.read_ttl
        )

    def refill_session(self, state: SessionState) -> bool:
        """
        Cache a snapshot read from the database, unless the key holds anything.

        Returns False when an entry or an invalidation tombstone is present.
        """
        return self.storage.add(
            self.session_key(state.id), state.to_cache(), self.read_ttl
        )

    def invalidate(self, session_id: str) -> None:
        self.storage.set(
            self.session_key(session_id), self.TOMBSTONE, self.tombstone_ttl
        )

    def get_value(self, key: str) -> Optional[Any]:
        return self.storage.get(key)

    def set_value(self, key: str, value: Any, ttl: int) -> None:
        self.storage.set(key, value, ttl)

    def delete_value(self, key: str) -> None:
        self.storage.delete(key)

    def clear(self) -> None:
        self.storage.clear()

    def ping(self) -> bool:
        return self.storage.ping()

    def close(self) -> None:
        self.storage.close()


def get_session_cache(request: Request) -> SessionCache:
    """Dependency returning the application's SessionCache."""
    return request.app.state.session_cache
