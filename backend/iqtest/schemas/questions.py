"""
Pydantic schemas for question payloads.

`QuestionPublic` is what test takers see and never carries the answer.
The admin schemas expose the full row.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from iqtest.core.validators import StringSanitizer
from iqtest.models import QuestionType

from .base import CamelModel
from .common import Pagination


class QuestionPublic(CamelModel):
    """Schema for a question presented during a test."""

    id: str = Field(..., description="Question ID")
    question_type: QuestionType = Field(..., description="Renderer for the content")
    category: str = Field(..., description="Question category")
    difficulty: float = Field(..., description="Difficulty on a z-like scale")
    content: Dict[str, Any] = Field(..., description="Type-specific question payload")
    time_limit: Optional[int] = Field(None, description="Suggested seconds to answer")
    tags: Optional[List[str]] = None


class QuestionAdmin(QuestionPublic):
    """Schema for a question as seen by administrators."""

    discrimination: float
    guessing: float
    correct_answer: str
    explanation: Optional[str] = None
    is_active: bool
    times_used: int
    average_time: Optional[float] = None
    success_rate: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class QuestionCreate(CamelModel):
    """Schema for creating a question."""

    question_type: QuestionType
    category: str = Field(..., min_length=1, max_length=50)
    difficulty: float = Field(0.0, ge=-4.0, le=4.0)
    discrimination: float = Field(1.0, gt=0.0)
    guessing: float = Field(0.0, ge=0.0, le=1.0)
    content: Dict[str, Any]
    correct_answer: str = Field(..., max_length=500)
    explanation: Optional[str] = None
    time_limit: Optional[int] = Field(None, gt=0)
    tags: Optional[List[str]] = None
    is_active: bool = True

    @field_validator("category")
    @classmethod
    def sanitize_category(cls, v: str) -> str:
        return StringSanitizer.sanitize_string(v)

    @field_validator("explanation")
    @classmethod
    def sanitize_explanation(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return StringSanitizer.sanitize_string(v)


class QuestionUpdate(CamelModel):
    """Schema for a partial question edit; omitted fields are left unchanged."""

    question_type: Optional[QuestionType] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    difficulty: Optional[float] = Field(None, ge=-4.0, le=4.0)
    discrimination: Optional[float] = Field(None, gt=0.0)
    guessing: Optional[float] = Field(None, ge=0.0, le=1.0)
    content: Optional[Dict[str, Any]] = None
    correct_answer: Optional[str] = Field(None, max_length=500)
    explanation: Optional[str] = None
    time_limit: Optional[int] = Field(None, gt=0)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


class QuestionList(CamelModel):
    questions: List[QuestionAdmin]
    pagination: Pagination


class BulkQuestionAction(CamelModel):
    """Schema for a bulk activate, deactivate or delete."""

    action: Literal["activate", "deactivate", "delete"]
    question_ids: List[str] = Field(..., min_length=1, max_length=500)


class BulkQuestionResult(CamelModel):
    message: str
    updated: int = Field(0, description="Questions activated or deactivated")
    deleted: int = Field(0, description="Questions removed from the bank")
    deactivated: int = Field(
        0, description="Questions a delete kept because they are referenced"
    )


class QuestionStats(CamelModel):
    """Response statistics for a single question."""

    question_id: str
    category: str
    difficulty: float
    is_active: bool
    times_used: int
    total_responses: int
    success_rate: Optional[float] = None
    average_time: Optional[float] = Field(None, description="Milliseconds")
    median_time: Optional[int] = Field(None, description="Milliseconds, upper median")
    recent_success_rate: Optional[float] = Field(
        None, description="Success rate over the last 30 days"
    )
    time_distribution: Dict[str, int]


class CategoryStats(CamelModel):
    category: str
    question_count: int
    average_difficulty: Optional[float] = None
    average_success_rate: Optional[float] = None
    average_response_time: Optional[float] = None
    total_responses: int


class CategoryStatsList(CamelModel):
    categories: List[CategoryStats]


class DifficultyBucket(CamelModel):
    range: str
    count: int
    average_success_rate: Optional[float] = None
    categories: Dict[str, int]


class DifficultyDistribution(CamelModel):
    distribution: List[DifficultyBucket]
