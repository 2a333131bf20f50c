"""
Authentication endpoints: registration, login, anonymous accounts and
token refresh.
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from iqtest.core.analytics import AnalyticsTracker
from iqtest.core.auth import decode_user_id, get_current_user, load_user
from iqtest.core.error_responses import (
    AuthorizationError,
    ConflictError,
    ErrorMessages,
)
from iqtest.core.security import create_token_pair, hash_password, verify_password
from iqtest.core.validators import EmailValidator
from iqtest.models import User, get_db
from iqtest.schemas import (
    AnonymousUserCreate,
    Token,
    TokenRefresh,
    TokenValidation,
    UserLogin,
    UserRegister,
    UserResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _token_response(user: User) -> Token:
    return Token(
        user=UserResponse.model_validate(user),
        **create_token_pair(user.id, anonymous=user.is_anonymous),
    )


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register_user(user_data: UserRegister, db: AsyncSession = Depends(get_db)):
    """
    Register a new user account.

    Raises:
        ConflictError: 409 if the email or username is taken
    """
    identity_filters = []
    if user_data.email:
        identity_filters.append(User.email == user_data.email)
    if user_data.username:
        identity_filters.append(User.username == user_data.username)

    existing = (
        await db.execute(select(User.id).where(or_(*identity_filters)).limit(1))
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(ErrorMessages.USER_ALREADY_EXISTS)

    new_user = User(
        email=user_data.email,
        username=user_data.username,
        password_hash=hash_password(user_data.password) if user_data.password else None,
        is_anonymous=False,
        age=user_data.age,
        gender=user_data.gender,
        education=user_data.education,
        country=user_data.country,
        language=user_data.language,
    )
    db.add(new_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(ErrorMessages.USER_ALREADY_EXISTS)

    AnalyticsTracker.track_user_registered(new_user.id)
    return _token_response(new_user)


@router.post("/login", response_model=Token)
async def login_user(credentials: UserLogin, db: AsyncSession = Depends(get_db)):
    """
    Log in with an email or username and a password.

    Raises:
        AuthorizationError: 401 if the credentials do not match, or the
            account has no password
    """
    identifier = credentials.identifier.strip()
    user = (
        await db.execute(
            select(User).where(
                or_(
                    User.email == EmailValidator.normalize_email(identifier),
                    User.username == identifier,
                )
            )
        )
    ).scalar_one_or_none()

    if (
        user is None
        or not user.password_hash
        or not verify_password(credentials.password, user.password_hash)
    ):
        raise AuthorizationError(ErrorMessages.INVALID_CREDENTIALS)

    AnalyticsTracker.track_user_login(user.id)
    return _token_response(user)


@router.post("/anonymous", response_model=Token, status_code=status.HTTP_201_CREATED)
async def create_anonymous_user(
    demographics: AnonymousUserCreate, db: AsyncSession = Depends(get_db)
):
    """Create an identity-less user so demographics can be attached to tests."""
    user = User(
        is_anonymous=True,
        age=demographics.age,
        gender=demographics.gender,
        education=demographics.education,
        country=demographics.country,
        language=demographics.language,
    )
    db.add(user)
    await db.commit()

    AnalyticsTracker.track_user_registered(user.id, anonymous=True)
    return _token_response(user)


@router.get("/validate", response_model=TokenValidation)
async def validate_token(current_user: User = Depends(get_current_user)):
    return TokenValidation(valid=True, user=UserResponse.model_validate(current_user))


@router.post("/refresh", response_model=Token)
async def refresh_access_token(body: TokenRefresh, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    user_id = decode_user_id(body.refresh_token, "refresh")
    user = await load_user(db, user_id)
    return _token_response(user)
