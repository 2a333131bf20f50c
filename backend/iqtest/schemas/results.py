"""
Pydantic schemas for result endpoints.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from .base import CamelModel
from .common import Pagination
from .test_sessions import TestSessionResponse


class CategoryScore(CamelModel):
    total: int
    correct: int
    success_rate: float = Field(..., description="Fraction correct, 0-1")
    average_time: float = Field(..., description="Milliseconds")
    average_difficulty: float


class TestResultResponse(CamelModel):
    """Schema for a stored test result."""

    id: str
    session_id: str
    user_id: Optional[str] = None
    total_score: int = Field(..., description="Number of correct answers")
    iq_score: int
    percentile: float
    ability_level: float
    standard_error: float
    category_scores: Dict[str, CategoryScore]
    total_time: int = Field(..., description="Seconds spent answering")
    average_time: float = Field(..., description="Milliseconds per answered question")
    validity_flags: List[str] = []
    is_complete: bool
    completed_at: datetime


class TimingBreakdown(CamelModel):
    total: int
    average: float
    median: int
    fastest: int
    slowest: int


class DifficultyBucket(CamelModel):
    total: int
    correct: int
    success_rate: float


class Breakdown(CamelModel):
    categories: Dict[str, CategoryScore]
    timing: TimingBreakdown
    difficulty: Dict[str, DifficultyBucket]


class SessionResultResponse(CamelModel):
    session: TestSessionResponse
    result: TestResultResponse
    breakdown: Breakdown
    total_questions: int
    validity_flags: List[str] = []


class HistoryItem(CamelModel):
    session_id: str
    test_type: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    result_id: Optional[str] = None
    iq_score: Optional[int] = None
    percentile: Optional[float] = None
    is_complete: Optional[bool] = None


class HistoryResponse(CamelModel):
    tests: List[HistoryItem]
    pagination: Pagination


class NormGroupComparison(CamelModel):
    name: str
    description: Optional[str] = None
    percentile: float
    sample_size: int


class PercentilesResponse(CamelModel):
    session_id: str
    iq_score: int
    overall: float
    groups: List[NormGroupComparison]


class AdminResultItem(CamelModel):
    id: str
    session_id: str
    user_id: Optional[str] = None
    test_type: str
    iq_score: int
    percentile: float
    total_score: int
    is_complete: bool
    completed_at: datetime


class AdminResultList(CamelModel):
    results: List[AdminResultItem]
    pagination: Pagination


class AdminStats(CamelModel):
    total_users: int
    total_sessions: int
    completed_sessions: int
    abandoned_sessions: int
    total_responses: int
    active_questions: int
    average_iq: Optional[float] = None
    iq_distribution: Dict[str, int]
    test_types: Dict[str, int]
    generated_at: datetime

