"""
Pytest configuration and shared fixtures for testing.
"""
import os
from pathlib import Path

# Settings are read at import time, so the test environment is fixed before
# anything from iqtest is imported. The .db lands inside tests/ regardless of
# the working directory.
_TEST_DB = Path(__file__).parent / "test.db"
TEST_DATABASE_URL = f"sqlite:///{_TEST_DB}"
TEST_ADMIN_TOKEN = "test-admin-token"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENV"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SESSION_CACHE_STORAGE"] = "memory"
os.environ["ADMIN_TOKEN"] = TEST_ADMIN_TOKEN
os.environ["LOG_LEVEL"] = "WARNING"

from typing import AsyncGenerator, List  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from helpers import PRACTICE_DIFFICULTIES, make_question  # noqa: E402
from iqtest.core.notifications import NotificationHub  # noqa: E402
from iqtest.core.security import create_access_token, hash_password  # noqa: E402
from iqtest.core.session_cache import SessionCache  # noqa: E402
from iqtest.main import app  # noqa: E402
from iqtest.models import Database, EducationLevel, NormGroup, Question, User  # noqa: E402
from iqtest.ratelimit.storage import InMemoryStorage  # noqa: E402
from iqtest.seed import NORM_GROUPS  # noqa: E402


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """
    A connected Database on a fresh schema for each test.
    """
    db = Database(TEST_DATABASE_URL)
    db.connect()
    await db.drop_all()
    await db.create_all()
    try:
        yield db
    finally:
        await db.drop_all()
        await db.dispose()


@pytest.fixture
async def async_db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def session_cache() -> SessionCache:
    return SessionCache(InMemoryStorage())


@pytest.fixture
def notification_hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
async def async_client(
    database: Database,
    session_cache: SessionCache,
    notification_hub: NotificationHub,
) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the application.

    ASGITransport does not run the lifespan, so the handles it would create
    are attached to app.state here; get_db reads the test database from it.
    """
    app.state.database = database
    app.state.session_cache = session_cache
    app.state.notifications = notification_hub
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def test_user(database: Database) -> User:
    """
    A registered user aged 22 with a bachelor's degree.
    """
    async with database.session() as db:
        user = User(
            email="test@example.com",
            username="testuser",
            password_hash=hash_password("testpassword123"),
            age=22,
            education=EducationLevel.BACHELOR,
            country="US",
        )
        db.add(user)
        await db.commit()
    return user


@pytest.fixture
async def other_user(database: Database) -> User:
    async with database.session() as db:
        user = User(email="other@example.com", username="otheruser")
        db.add(user)
        await db.commit()
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(test_user.id)}"}


@pytest.fixture
def other_auth_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}


@pytest.fixture
async def seed_questions(database: Database) -> List[Question]:
    """
    The practice bank: ten active logical_sequences questions.

    Also inserts two spatial questions and an inactive, easier
    logical_sequences question that selection must skip. Returns the ten
    practice questions in presentation order, detached from any session.
    """
    practice = [make_question(i, d) for i, d in enumerate(PRACTICE_DIFFICULTIES)]
    others = [
        make_question(100, -3.0, is_active=False),
        make_question(101, 0.1, category="spatial"),
        make_question(102, 0.2, category="spatial"),
    ]
    async with database.session() as db:
        db.add_all(practice + others)
        await db.commit()
    return practice


@pytest.fixture
async def norm_groups(database: Database) -> None:
    async with database.session() as db:
        db.add_all(NormGroup(**group) for group in NORM_GROUPS)
        await db.commit()
