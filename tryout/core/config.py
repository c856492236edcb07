"""
Application configuration settings.

``.env`` is loaded into the process environment as well, so variables read
directly by third-party SDKs (``OTEL_EXPORTER_*``, ``SENTRY_*``) come from
the same file as the settings below.
"""

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal, Self

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Tryout Engine API"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # API
    API_V1_PREFIX: str = "/v1"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Database
    DATABASE_URL: str = "sqlite:///./tryout.db"
    DB_POOL_SIZE: int = 10
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 3600
    # Create missing tables on startup; disable where the schema is managed externally
    DATABASE_CREATE_TABLES: bool = True

    # Security
    # Tokens are issued by the identity service; this service only verifies them.
    JWT_SECRET_KEY: str = Field(..., description="JWT verification secret key (required)")
    JWT_ALGORITHM: str = "HS256"

    # Session timer
    CHECKPOINT_INTERVAL_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="Maximum interval between persisted timer checkpoints",
    )
    TICK_INTERVAL_SECONDS: float = Field(
        default=1.0,
        gt=0,
        description="Interval between countdown ticks on live streams",
    )
    TIMER_WARNING_RATIO: float = Field(
        default=0.20,
        gt=0.0,
        lt=1.0,
        description="Fraction of the duration remaining at which the countdown turns 'warning'",
    )
    TIMER_CRITICAL_RATIO: float = Field(
        default=0.10,
        gt=0.0,
        lt=1.0,
        description="Fraction of the duration remaining at which the countdown turns 'critical'",
    )
    SUBMISSION_GRACE_SECONDS: float = Field(
        default=2.0,
        ge=0.0,
        description="Answers stamped later than the deadline plus this grace are not scored",
    )

    # Persistence retry (exponential backoff)
    PERSISTENCE_MAX_RETRIES: int = Field(default=3, ge=0)
    SUBMISSION_MAX_RETRIES: int = Field(default=5, ge=0)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=0.5, ge=0.0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0, ge=0.0)
    RETRY_EXPONENTIAL_BASE: float = Field(default=2.0, ge=1.0)

    # Expiry watcher (background sweep for abandoned tabs)
    EXPIRY_WATCHER_ENABLED: bool = True
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = Field(default=15.0, gt=0)

    # Rankings
    RANKINGS_DEFAULT_LIMIT: int = Field(default=100, ge=1)
    RANKINGS_MAX_LIMIT: int = Field(default=500, ge=1)
    RANKINGS_REFRESH_ON_COMPLETION: bool = True

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

    # OpenTelemetry
    OTEL_ENABLED: bool = False
    OTEL_METRICS_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "tryout-engine"
    OTEL_METRICS_EXPORT_INTERVAL_MILLIS: int = 60000

    @model_validator(mode="after")
    def validate_timer_thresholds(self) -> Self:
        """Ensure the critical threshold sits below the warning threshold."""
        if self.TIMER_CRITICAL_RATIO >= self.TIMER_WARNING_RATIO:
            raise ValueError(
                f"TIMER_CRITICAL_RATIO ({self.TIMER_CRITICAL_RATIO}) must be less than "
                f"TIMER_WARNING_RATIO ({self.TIMER_WARNING_RATIO})"
            )
        return self

    @model_validator(mode="after")
    def validate_retry_delays(self) -> Self:
        """Ensure the backoff cap is not below the base delay."""
        if self.RETRY_MAX_DELAY_SECONDS < self.RETRY_BASE_DELAY_SECONDS:
            raise ValueError(
                "RETRY_MAX_DELAY_SECONDS must be greater than or equal to "
                "RETRY_BASE_DELAY_SECONDS"
            )
        return self

    @model_validator(mode="after")
    def validate_ranking_limits(self) -> Self:
        """Ensure the default leaderboard page fits under the maximum."""
        if self.RANKINGS_DEFAULT_LIMIT > self.RANKINGS_MAX_LIMIT:
            raise ValueError(
                f"RANKINGS_DEFAULT_LIMIT ({self.RANKINGS_DEFAULT_LIMIT}) cannot exceed "
                f"RANKINGS_MAX_LIMIT ({self.RANKINGS_MAX_LIMIT})"
            )
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
