"""
Models package for the IQ test service.
"""
from .base import Base, Database, get_db
from .models import (
    User,
    Question,
    TestSession,
    Response,
    TestResult,
    NormGroup,
    QuestionType,
    TestStatus,
    TERMINAL_STATUSES,
    Gender,
    EducationLevel,
)

__all__ = [
    "Base",
    "Database",
    "get_db",
    "User",
    "Question",
    "TestSession",
    "Response",
    "TestResult",
    "NormGroup",
    "QuestionType",
    "TestStatus",
    "TERMINAL_STATUSES",
    "Gender",
    "EducationLevel",
]
