"""
Pydantic schemas for request/response validation.
"""
from .auth import (
    AdminUser,
    AdminUserList,
    AnonymousUserCreate,
    Token,
    TokenRefresh,
    TokenValidation,
    UserLogin,
    UserProfileUpdate,
    UserRegister,
    UserResponse,
)
from .common import MessageResponse, Pagination
from .questions import (
    BulkQuestionAction,
    BulkQuestionResult,
    CategoryStats,
    CategoryStatsList,
    DifficultyBucket,
    DifficultyDistribution,
    QuestionAdmin,
    QuestionCreate,
    QuestionList,
    QuestionPublic,
    QuestionStats,
    QuestionUpdate,
)
from .results import (
    AdminResultList,
    AdminStats,
    Breakdown,
    HistoryResponse,
    PercentilesResponse,
    SessionResultResponse,
    TestResultResponse,
)
from .test_sessions import (
    CurrentQuestionResponse,
    Progress,
    ResponseSubmission,
    SessionStatusResponse,
    StartTestRequest,
    StartTestResponse,
    SubmitResponse,
    TestSessionResponse,
)

__all__ = [
    "AdminUser",
    "AdminUserList",
    "AnonymousUserCreate",
    "Token",
    "TokenRefresh",
    "TokenValidation",
    "UserLogin",
    "UserProfileUpdate",
    "UserRegister",
    "UserResponse",
    "MessageResponse",
    "Pagination",
    "BulkQuestionAction",
    "BulkQuestionResult",
    "CategoryStats",
    "CategoryStatsList",
    "DifficultyBucket",
    "DifficultyDistribution",
    "QuestionAdmin",
    "QuestionCreate",
    "QuestionList",
    "QuestionPublic",
    "QuestionStats",
    "QuestionUpdate",
    "AdminResultList",
    "AdminStats",
    "Breakdown",
    "HistoryResponse",
    "PercentilesResponse",
    "SessionResultResponse",
    "TestResultResponse",
    "CurrentQuestionResponse",
    "Progress",
    "ResponseSubmission",
    "SessionStatusResponse",
    "StartTestRequest",
    "StartTestResponse",
    "SubmitResponse",
    "TestSessionResponse",
]
