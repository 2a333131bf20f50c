"""
Database models for the IQ test service.
"""
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import enum
import uuid

from iqtest.core.datetime_utils import utc_now

from .base import Base
from .types import StringArray


def _uuid() -> str:
    return str(uuid.uuid4())


class TestStatus(str, enum.Enum):
    """Test session status enumeration."""

    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    INVALID = "invalid"


TERMINAL_STATUSES = frozenset(
    {TestStatus.COMPLETED, TestStatus.ABANDONED, TestStatus.INVALID}
)


class QuestionType(str, enum.Enum):
    """Question type enumeration, one per renderer in the client."""

    NUMERICAL_SEQUENCE = "numerical_sequence"
    MATRIX_REASONING = "matrix_reasoning"
    SPATIAL_ROTATION = "spatial_rotation"
    VERBAL_ANALOGY = "verbal_analogy"
    WORKING_MEMORY = "working_memory"
    PROCESSING_SPEED = "processing_speed"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer_not_to_say"


class EducationLevel(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    BACHELOR = "bachelor"
    MASTER = "master"
    DOCTORATE = "doctorate"
    OTHER = "other"


class User(Base):
    """User model. Identity is optional; anonymous users carry demographics only."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=True, index=True)
    username = Column(String(50), unique=True, nullable=True, index=True)
    password_hash = Column(String(255), nullable=True)
    is_anonymous = Column(Boolean, default=False, nullable=False)

    # Demographics, used only for norm group comparison
    age = Column(Integer, nullable=True)
    gender = Column(Enum(Gender), nullable=True)
    education = Column(Enum(EducationLevel), nullable=True)
    country = Column(String(2), nullable=True)
    language = Column(String(10), nullable=True)
    preferences = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    test_sessions = relationship("TestSession", back_populates="user")


class Question(Base):
    """Question bank item with IRT-style metadata and usage statistics."""

    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    question_type = Column(Enum(QuestionType), nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)
    difficulty = Column(Float, nullable=False, default=0.0)
    discrimination = Column(Float, nullable=False, default=1.0)
    guessing = Column(Float, nullable=False, default=0.0)

    # Free-form payload: sequence, matrix, options, prompt, ...
    content = Column(JSON, nullable=False)
    correct_answer = Column(String(500), nullable=False)
    explanation = Column(Text, nullable=True)
    time_limit = Column(Integer, nullable=True)  # seconds
    tags = Column(StringArray(), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Usage statistics, updated opportunistically on each response
    times_used = Column(Integer, default=0, nullable=False)
    average_time = Column(Float, nullable=True)  # milliseconds
    success_rate = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_questions_active_category_difficulty", "is_active", "category", "difficulty"),
    )


class TestSession(Base):
    """One attempt at a test, from start to a terminal status."""

    __tablename__ = "test_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status = Column(
        Enum(TestStatus), default=TestStatus.STARTED, nullable=False, index=True
    )
    test_type = Column(String(50), nullable=False)
    time_limit = Column(Integer, nullable=True)  # seconds

    # Fixed at creation; list order is presentation order
    question_ids = Column(StringArray(), nullable=False, default=list)
    current_index = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    # Set when a lazy timeout check completed the session
    time_limit_exceeded = Column(Boolean, default=False, nullable=False)

    # Behavioral counters
    behavior_data = Column(JSON, nullable=True)
    integrity_flags = Column(StringArray(), nullable=True)
    tab_switches = Column(Integer, default=0, nullable=False)
    dev_tools_opened = Column(Boolean, default=False, nullable=False)
    copy_paste_events = Column(Integer, default=0, nullable=False)

    # Client info
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(45), nullable=True)
    screen_size = Column(String(20), nullable=True)
    timezone = Column(String(64), nullable=True)

    user = relationship("User", back_populates="test_sessions")
    responses = relationship(
        "Response", back_populates="test_session", cascade="all, delete-orphan"
    )
    test_result = relationship(
        "TestResult",
        back_populates="test_session",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("current_index >= 0", name="ck_test_sessions_current_index"),
        Index("ix_test_sessions_user_status", "user_id", "status"),
    )

    @property
    def total_questions(self) -> int:
        return len(self.question_ids or [])


class Response(Base):
    """One answer per (session, question). Immutable once written."""

    __tablename__ = "responses"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(
        String(36),
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_id = Column(
        String(36),
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    answer = Column(String(500), nullable=False)
    # Captured at write time; never recomputed from a possibly edited question
    is_correct = Column(Boolean, nullable=False)
    response_time = Column(Integer, nullable=False)  # milliseconds
    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    behavior_data = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=True)

    test_session = relationship("TestSession", back_populates="responses")
    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_responses_session_question"),
        CheckConstraint("response_time >= 0", name="ck_responses_response_time"),
    )


class TestResult(Base):
    """Score report for a session. Created once, never mutated."""

    __tablename__ = "test_results"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(
        String(36),
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    total_score = Column(Integer, nullable=False)
    iq_score = Column(Integer, nullable=False, index=True)
    percentile = Column(Float, nullable=False)
    ability_level = Column(Float, nullable=False)
    standard_error = Column(Float, nullable=False)
    category_scores = Column(JSON, nullable=False, default=dict)

    total_time = Column(Integer, nullable=False)  # seconds
    average_time = Column(Float, nullable=False)  # milliseconds
    validity_flags = Column(StringArray(), nullable=False, default=list)

    is_complete = Column(Boolean, default=True, nullable=False)
    completed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    norm_group = Column(String(100), nullable=True)

    test_session = relationship("TestSession", back_populates="test_result")


class NormGroup(Base):
    """Reference population statistics for a demographic slice. Read-only at runtime."""

    __tablename__ = "norm_groups"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    # Demographic filters; NULL matches everyone
    age_range = Column(String(20), nullable=True)  # "18-25"
    gender = Column(Enum(Gender), nullable=True)
    education = Column(Enum(EducationLevel), nullable=True)
    country = Column(String(2), nullable=True)
    language = Column(String(10), nullable=True)

    sample_size = Column(Integer, nullable=False, default=0)
    mean = Column(Float, nullable=False, default=100.0)
    std_dev = Column(Float, nullable=False, default=15.0)
    percentiles = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
