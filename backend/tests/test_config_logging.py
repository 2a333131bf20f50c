"""
Tests for settings validation, logging and the small core helpers.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from pydantic import ValidationError as SettingsValidationError
from sqlalchemy.exc import OperationalError

from iqtest.core.config import Settings
from iqtest.core.datetime_utils import ensure_timezone_aware, seconds_since
from iqtest.core.db_error_handling import handle_db_error
from iqtest.core.error_responses import NotFoundError, error_envelope
from iqtest.core.graceful_failure import graceful_failure
from iqtest.core.logging_config import JSONFormatter, request_id_context
from iqtest.models.base import to_async_url


class TestSettings:
    """Tests for Settings validation."""

    def test_defaults(self):
        settings = Settings(_env_file=None, ENV="development")

        assert settings.TEST_PRESETS["practice"]["total"] == 10
        assert settings.TEST_PRESETS["full_iq"]["total"] == 60
        assert len(settings.TEST_PRESETS["full_iq"]["categories"]) == 5
        assert settings.TIME_LIMIT_MIN_SECONDS == 300
        assert settings.TIME_LIMIT_MAX_SECONDS == 7200

    def test_production_rejects_default_secrets(self):
        with pytest.raises(SettingsValidationError, match="must be set when ENV=production"):
            Settings(_env_file=None, ENV="production")

    def test_production_with_secrets(self):
        settings = Settings(
            _env_file=None,
            ENV="production",
            SECRET_KEY="s3cret",
            JWT_SECRET_KEY="jwt-s3cret",
        )
        assert settings.ENV == "production"

    def test_time_limit_bounds(self):
        with pytest.raises(SettingsValidationError):
            Settings(_env_file=None, TIME_LIMIT_MIN_SECONDS=900, TIME_LIMIT_MAX_SECONDS=600)

    def test_unknown_default_test_type(self):
        with pytest.raises(SettingsValidationError, match="DEFAULT_TEST_TYPE"):
            Settings(_env_file=None, DEFAULT_TEST_TYPE="marathon")

    def test_empty_preset(self):
        with pytest.raises(SettingsValidationError):
            Settings(
                _env_file=None,
                TEST_PRESETS={"full_iq": {"total": 0, "categories": ["verbal"]}},
            )


class TestJSONFormatter:
    """Tests for structured log output."""

    def _record(self, message="hello", level=logging.INFO, **extra):
        record = logging.LogRecord("iqtest.test", level, "file.py", 10, message, (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "iqtest.test"
        assert entry["message"] == "hello"
        assert "source" not in entry

    def test_request_id_and_extra(self):
        token = request_id_context.set("req-42")
        try:
            entry = json.loads(
                JSONFormatter().format(self._record(session_id="s1", status_code=201))
            )
        finally:
            request_id_context.reset(token)

        assert entry["request_id"] == "req-42"
        assert entry["session_id"] == "s1"
        assert entry["status_code"] == 201

    def test_errors_carry_source(self):
        entry = json.loads(JSONFormatter().format(self._record(level=logging.ERROR)))
        assert entry["source"] == "file.py:10"


class TestErrorEnvelope:
    def test_shape(self):
        body = error_envelope(404, "Test session not found")

        assert body["error"] == "Not Found"
        assert body["message"] == "Test session not found"
        assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None

    def test_extra_fields(self):
        assert error_envelope(500, "x", {"errorId": "abc"})["errorId"] == "abc"


class TestGracefulFailure:
    def test_swallows_and_logs(self, caplog):
        logger = logging.getLogger("iqtest.tests.graceful")

        with caplog.at_level(logging.WARNING, logger="iqtest.tests.graceful"):
            with graceful_failure("refresh cache", logger, context={"session_id": "s1"}):
                raise RuntimeError("boom")

        assert "Failed to refresh cache (session_id=s1): boom" in caplog.text


class TestHandleDbError:
    async def test_database_error_becomes_http_error(self):
        db = MagicMock()
        db.rollback = AsyncMock()

        with pytest.raises(HTTPException) as exc_info:
            async with handle_db_error(db, "create question"):
                raise OperationalError("INSERT", {}, Exception("locked"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Failed to create question."
        db.rollback.assert_awaited_once()

    async def test_service_errors_pass_through(self):
        db = MagicMock()
        db.rollback = AsyncMock()

        with pytest.raises(NotFoundError):
            async with handle_db_error(db, "update question"):
                raise NotFoundError("Question not found")

        db.rollback.assert_awaited_once()


class TestDatetimeUtils:
    def test_naive_becomes_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert ensure_timezone_aware(naive).tzinfo == timezone.utc

    def test_none_rejected(self):
        with pytest.raises(ValueError):
            ensure_timezone_aware(None)

    def test_seconds_since(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert seconds_since(now - timedelta(seconds=90.7), now) == 90
        assert seconds_since(now + timedelta(seconds=5), now) == 0


class TestAsyncUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgresql://u:p@db:5432/iq", "postgresql+asyncpg://u:p@db:5432/iq"),
            ("postgres://db/iq", "postgresql+asyncpg://db/iq"),
            ("sqlite:///./iq.db", "sqlite+aiosqlite:///./iq.db"),
            ("sqlite+aiosqlite:///x.db", "sqlite+aiosqlite:///x.db"),
        ],
    )
    def test_rewrites(self, url, expected):
        assert to_async_url(url) == expected

    def test_unsupported(self):
        with pytest.raises(ValueError):
            to_async_url("mysql://db/iq")
