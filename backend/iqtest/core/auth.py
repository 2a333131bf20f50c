"""
FastAPI authentication dependencies.
"""
import secrets
from typing import Literal, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.config import settings
from iqtest.models import User, get_db

from .error_responses import AuthorizationError, ErrorMessages
from .security import decode_token, verify_token_type

# Missing credentials are reported through AuthorizationError rather than
# HTTPBearer's own 403, so every 401 shares the error envelope.
security_optional = HTTPBearer(auto_error=False)

TokenType = Literal["access", "refresh"]


def decode_user_id(token: str, expected_type: TokenType = "access") -> str:
    """
    Decode and validate a JWT, returning its subject.

    Raises:
        AuthorizationError: if the token is invalid, expired, of the wrong
            type, or has no subject
    """
    payload = decode_token(token)
    if payload is None:
        raise AuthorizationError(ErrorMessages.INVALID_TOKEN)
    if not verify_token_type(payload, expected_type):
        raise AuthorizationError(ErrorMessages.INVALID_TOKEN_TYPE)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthorizationError(ErrorMessages.INVALID_TOKEN)
    return str(user_id)


async def load_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise AuthorizationError(ErrorMessages.INVALID_TOKEN)
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The authenticated user; AuthorizationError when absent or invalid."""
    if credentials is None:
        raise AuthorizationError(ErrorMessages.AUTHENTICATION_REQUIRED)
    user_id = decode_user_id(credentials.credentials, "access")
    return await load_user(db, user_id)


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_optional),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """
    The authenticated user if a valid token is provided, else None.

    Used by the test endpoints, which also serve sessions started without
    any identity.
    """
    if credentials is None:
        return None
    try:
        user_id = decode_user_id(credentials.credentials, "access")
    except AuthorizationError:
        return None
    return await db.get(User, user_id)


async def verify_admin_token(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    """Guard for admin routes: X-Admin-Token must equal ADMIN_TOKEN."""
    if not settings.ADMIN_TOKEN:
        raise AuthorizationError(ErrorMessages.ADMIN_TOKEN_NOT_CONFIGURED)
    if not x_admin_token or not secrets.compare_digest(
        x_admin_token, settings.ADMIN_TOKEN
    ):
        raise AuthorizationError(ErrorMessages.ADMIN_TOKEN_INVALID)
