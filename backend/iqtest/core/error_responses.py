"""
Domain errors and the uniform JSON error envelope.

The test session pipeline raises the exceptions defined here instead of
HTTPException. They are translated at the request boundary (see the
exception handlers registered in iqtest.main) into:

    {"error": "<HTTP reason phrase>", "message": "...", "timestamp": "<ISO-8601>"}

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- Keep messages user-facing; log the details separately

Usage:
    from iqtest.core.error_responses import ErrorMessages, NotFoundError

    if session is None:
        raise NotFoundError(ErrorMessages.TEST_SESSION_NOT_FOUND)
"""

from http import HTTPStatus
from typing import Any, Dict, Optional

from fastapi import status

from iqtest.core.datetime_utils import utc_now


class ErrorMessages:
    """Centralized error message constants and templates."""

    # ==========================================================================
    # Validation Errors (400)
    # ==========================================================================
    VALIDATION_FAILED = "Validation failed"
    SESSION_ENDED = "Test session has ended"
    SESSION_EXPIRED = "Test session has expired"
    OUT_OF_SEQUENCE = "Question is not the current question for this session"
    NEGATIVE_RESPONSE_TIME = "Response time must be a non-negative number of milliseconds"
    SESSION_NOT_COMPLETE = "Not all questions in this session have been answered"
    NO_RESPONSES = "Cannot score a session without responses"
    IDENTIFIER_REQUIRED = "Either email or username is required"
    RESULT_NOT_AVAILABLE = "Test result not available"

    @staticmethod
    def unknown_test_type(test_type: str) -> str:
        return f"Unknown test type: {test_type}"

    @staticmethod
    def time_limit_out_of_range(minimum: int, maximum: int) -> str:
        return f"Time limit must be between {minimum} and {maximum} seconds"

    # ==========================================================================
    # Authorization Errors (401)
    # ==========================================================================
    AUTHENTICATION_REQUIRED = "Authentication required"
    INVALID_CREDENTIALS = "Invalid credentials"
    INVALID_TOKEN = "Invalid or expired token"
    INVALID_TOKEN_TYPE = "Invalid token type"
    SESSION_ACCESS_DENIED = "Access denied to this test session"
    ADMIN_TOKEN_INVALID = "Invalid admin token"
    ADMIN_TOKEN_NOT_CONFIGURED = "Admin API is not configured"

    # ==========================================================================
    # Not Found Errors (404)
    # ==========================================================================
    TEST_SESSION_NOT_FOUND = "Test session not found"
    QUESTION_NOT_FOUND = "Question not found"
    USER_NOT_FOUND = "User not found"
    NO_MORE_QUESTIONS = "No more questions available"
    NO_QUESTIONS_AVAILABLE = "No questions available for this test type"

    # ==========================================================================
    # Conflict Errors (409)
    # ==========================================================================
    DUPLICATE_RESPONSE = "This question has already been answered in this session"
    CONCURRENT_SUBMISSION = "The session was modified by a concurrent submission"
    USER_ALREADY_EXISTS = "User with this email or username already exists"

    # ==========================================================================
    # Server Errors (500)
    # ==========================================================================
    INTERNAL_ERROR = "Something went wrong"


class ServiceError(Exception):
    """Base class for errors recovered at the request boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed input, out-of-range parameter, out-of-sequence submission or expired session."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(ServiceError):
    """Caller is not allowed to act on the resource."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    """Duplicate write, e.g. a second response for the same question."""

    status_code = status.HTTP_409_CONFLICT


def error_envelope(
    status_code: int, message: str, extra: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Build the JSON body returned for every error response."""
    try:
        error = HTTPStatus(status_code).phrase
    except ValueError:
        error = "Error"
    body: Dict[str, Any] = {
        "error": error,
        "message": message,
        "timestamp": utc_now().isoformat(),
    }
    if extra:
        body.update(extra)
    return body
