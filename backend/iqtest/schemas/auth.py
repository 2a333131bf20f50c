"""
Pydantic schemas for authentication and user profile endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator, model_validator

from iqtest.core.validators import (
    CountryCodeValidator,
    EmailValidator,
    PasswordValidator,
    StringSanitizer,
    UsernameValidator,
)
from iqtest.models import EducationLevel, Gender

from .base import CamelModel
from .common import Pagination


class DemographicsMixin(CamelModel):
    """Optional demographics, used only to pick comparison norm groups."""

    age: Optional[int] = Field(None, ge=13, le=120, description="Age in years")
    gender: Optional[Gender] = Field(None, description="Gender")
    education: Optional[EducationLevel] = Field(
        None, description="Highest education level attained"
    )
    country: Optional[str] = Field(None, description="ISO 3166-1 alpha-2 country code")
    language: Optional[str] = Field(
        None, min_length=2, max_length=10, description="Preferred language (e.g. 'en')"
    )

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return CountryCodeValidator.normalize(v)

    @field_validator("language")
    @classmethod
    def sanitize_language(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return StringSanitizer.sanitize_string(v).lower()


class UserRegister(DemographicsMixin):
    """Schema for user registration request."""

    email: Optional[EmailStr] = Field(None, description="User email address")
    username: Optional[str] = Field(None, description="Public username")
    password: Optional[str] = Field(
        None,
        max_length=PasswordValidator.MAX_LENGTH,
        description=(
            f"Password ({PasswordValidator.MIN_LENGTH}-{PasswordValidator.MAX_LENGTH} "
            "characters); accounts without one cannot log in"
        ),
    )

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return EmailValidator.normalize_email(v)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        is_valid, error_message = UsernameValidator.validate(v)
        if not is_valid:
            raise ValueError(error_message)
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        is_valid, error_message = PasswordValidator.validate(v)
        if not is_valid:
            raise ValueError(error_message)
        return v

    @model_validator(mode="after")
    def require_identifier(self) -> "UserRegister":
        if not self.email and not self.username:
            raise ValueError("Either email or username is required")
        return self


class AnonymousUserCreate(DemographicsMixin):
    """Schema for creating an anonymous user: demographics only."""


class UserLogin(CamelModel):
    """Schema for user login request."""

    identifier: str = Field(..., min_length=1, description="Email or username")
    password: str = Field(..., min_length=1, description="User password")


class TokenRefresh(CamelModel):
    """Schema for token refresh request."""

    refresh_token: str = Field(..., description="Refresh token issued at login")


class UserResponse(CamelModel):
    """Schema for user data in responses."""

    id: str = Field(..., description="User ID")
    email: Optional[str] = Field(None, description="User email address")
    username: Optional[str] = Field(None, description="Public username")
    is_anonymous: bool = Field(False, description="Whether the account has no identity")
    age: Optional[int] = None
    gender: Optional[Gender] = None
    education: Optional[EducationLevel] = None
    country: Optional[str] = None
    language: Optional[str] = None
    created_at: datetime = Field(..., description="Account creation timestamp")


class Token(CamelModel):
    """Schema for the token pair returned by register, login and refresh."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserResponse = Field(..., description="Authenticated user")


class TokenValidation(CamelModel):
    valid: bool
    user: UserResponse


class UserProfileUpdate(DemographicsMixin):
    """Schema for updating demographics; omitted fields are left unchanged."""


class AdminUser(UserResponse):
    """A user as listed in the admin API, with activity counts."""

    session_count: int = Field(0, description="Test sessions started")
    result_count: int = Field(0, description="Scored results")


class AdminUserList(CamelModel):
    users: List[AdminUser]
    pagination: Pagination
