"""
Application configuration settings.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Dict, List, Literal, Self


_INSECURE_DEFAULT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "IQ Test API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True

    # API
    API_PREFIX: str = "/api"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    # Sync URLs are rewritten to their async driver in iqtest.models.base
    DATABASE_URL: str = "postgresql://localhost:5432/iqtest_dev"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Security
    # Defaults are rejected when ENV=production
    SECRET_KEY: str = _INSECURE_DEFAULT_SECRET
    JWT_SECRET_KEY: str = _INSECURE_DEFAULT_SECRET
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Admin API
    ADMIN_TOKEN: str = Field(
        default="",
        description="Token expected in the X-Admin-Token header (admin API disabled when empty)",
    )

    # Session cache
    # "memory" for a single worker, "redis" when several workers share state
    SESSION_CACHE_STORAGE: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_CACHE_TTL_START: int = 7200  # seconds, written when a session starts
    SESSION_CACHE_TTL_READ: int = 3600  # seconds, written on a cache miss
    SESSION_CACHE_TOMBSTONE_TTL: int = 30  # seconds a refill is blocked after a mutation
    ADMIN_STATS_CACHE_TTL: int = 1800
    QUESTION_STATS_CACHE_TTL: int = 3600

    # Test composition
    # Each preset selects `total` active questions from `categories`,
    # ordered by ascending difficulty.
    TEST_PRESETS: Dict[str, Dict[str, Any]] = {
        "full_iq": {
            "total": 60,
            "categories": [
                "logical_sequences",
                "spatial",
                "verbal",
                "working_memory",
                "processing_speed",
            ],
        },
        "quick_assessment": {
            "total": 20,
            "categories": ["logical_sequences", "spatial", "verbal"],
        },
        "practice": {
            "total": 10,
            "categories": ["logical_sequences"],
        },
    }
    DEFAULT_TEST_TYPE: str = "full_iq"
    TIME_LIMIT_MIN_SECONDS: int = 300
    TIME_LIMIT_MAX_SECONDS: int = 7200

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 100  # requests per window
    RATE_LIMIT_WINDOW: int = 15 * 60  # seconds

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field(
        default="auto",
        description="json, text, or auto (json in production, text elsewhere)",
    )

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )
    SENTRY_TRACES_SAMPLE_RATE: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sentry traces sample rate (0.0-1.0, 0.1 = 10% of transactions)",
    )

    # Prometheus metrics endpoint
    PROMETHEUS_METRICS_ENABLED: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields from .env not defined in Settings
    )

    @model_validator(mode="after")
    def validate_production_secrets(self) -> Self:
        """Refuse to boot production with the development secrets."""
        if self.ENV == "production":
            insecure = [
                name
                for name in ("SECRET_KEY", "JWT_SECRET_KEY")
                if getattr(self, name) == _INSECURE_DEFAULT_SECRET
            ]
            if insecure:
                raise ValueError(
                    f"{', '.join(insecure)} must be set when ENV=production"
                )
        return self

    @model_validator(mode="after")
    def validate_test_settings(self) -> Self:
        """Validate the time limit bounds and the test presets."""
        if self.TIME_LIMIT_MIN_SECONDS > self.TIME_LIMIT_MAX_SECONDS:
            raise ValueError(
                "TIME_LIMIT_MIN_SECONDS must not exceed TIME_LIMIT_MAX_SECONDS"
            )
        for name, preset in self.TEST_PRESETS.items():
            if int(preset.get("total", 0)) <= 0 or not preset.get("categories"):
                raise ValueError(
                    f"Test preset {name!r} needs a positive total and at least one category"
                )
        if self.DEFAULT_TEST_TYPE not in self.TEST_PRESETS:
            raise ValueError(
                f"DEFAULT_TEST_TYPE {self.DEFAULT_TEST_TYPE!r} is not a configured preset"
            )
        return self


settings = Settings()
