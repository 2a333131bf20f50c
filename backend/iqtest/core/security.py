"""
Password hashing and JWT token management.
"""
from datetime import timedelta
import uuid
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from iqtest.core.config import settings
from iqtest.core.datetime_utils import utc_now

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(
        plain_password.encode("utf-8"), hashed_password.encode("utf-8")
    )


def _create_token(
    subject: str,
    token_type: str,
    expires_delta: timedelta,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    now = utc_now()
    to_encode: Dict[str, Any] = dict(extra or {})
    to_encode.update(
        {
            "sub": subject,
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        }
    )
    return jwt.encode(
        to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM
    )


def create_access_token(
    user_id: str,
    *,
    anonymous: bool = False,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token for `user_id`.

    Anonymous users get the same token shape with `anon: true`.
    """
    return _create_token(
        user_id,
        ACCESS_TOKEN,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        {"anon": anonymous},
    )


def create_refresh_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        user_id,
        REFRESH_TOKEN,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def create_token_pair(user_id: str, *, anonymous: bool = False) -> Dict[str, str]:
    return {
        "access_token": create_access_token(user_id, anonymous=anonymous),
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
    }


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns:
        The payload if the signature and expiry are valid, otherwise None
    """
    try:
        return jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return None


def verify_token_type(payload: Dict[str, Any], expected_type: str) -> bool:
    return payload.get("type") == expected_type
