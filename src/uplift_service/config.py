"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import (
    CANDIDATE_POOL_SIZE,
    COLD_START_ORDER_THRESHOLD,
    CTR_LOOKBACK_DAYS,
    DECAY_HALF_LIFE_DAYS,
    DEFAULT_RECOMMENDATION_LIMIT,
    LEARNING_WINDOW_DAYS,
    MAX_ORDERS_PER_REQUEST,
    MAX_RECOMMENDATION_LIMIT,
    ORDER_LOOKBACK_DAYS,
    RECOMMENDATION_CACHE_TTL_SECONDS,
    SIMILARITY_LOOKBACK_DAYS,
    SIMILARITY_MAX_ORDERS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "cart-uplift-recommender"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 4
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # Commerce Platform API
    # -------------------------------------------------------------------------
    commerce_api_base_url: str = "https://api.bigcommerce.com/stores"
    commerce_api_token: str = ""
    commerce_api_timeout: float = 5.0

    @field_validator("commerce_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "uplift"
    postgres_password: str = ""
    postgres_db: str = "cart_uplift"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Recommendation Engine
    # -------------------------------------------------------------------------
    order_lookback_days: int = Field(default=ORDER_LOOKBACK_DAYS, ge=1)
    max_orders_per_request: int = Field(default=MAX_ORDERS_PER_REQUEST, ge=1, le=250)
    decay_half_life_days: float = Field(default=DECAY_HALF_LIFE_DAYS, gt=0)
    cold_start_order_threshold: int = Field(default=COLD_START_ORDER_THRESHOLD, ge=0)
    recommendation_cache_ttl_seconds: float = Field(default=RECOMMENDATION_CACHE_TTL_SECONDS, ge=0)
    default_recommendation_limit: int = Field(default=DEFAULT_RECOMMENDATION_LIMIT, ge=1)
    max_recommendation_limit: int = Field(default=MAX_RECOMMENDATION_LIMIT, ge=1)
    ctr_lookback_days: int = Field(default=CTR_LOOKBACK_DAYS, ge=1)
    candidate_pool_size: int = Field(default=CANDIDATE_POOL_SIZE, ge=1)
    upstream_timeout_seconds: float = Field(default=3.0, gt=0)

    # -------------------------------------------------------------------------
    # Daily Learning
    # -------------------------------------------------------------------------
    learning_window_days: int = Field(default=LEARNING_WINDOW_DAYS, ge=1)
    learning_lock_ttl_seconds: int = Field(default=1800, ge=60)
    learning_schedule_hour: int = Field(default=2, ge=0, le=23)

    # -------------------------------------------------------------------------
    # Weekly Similarity Computation
    # -------------------------------------------------------------------------
    similarity_lookback_days: int = Field(default=SIMILARITY_LOOKBACK_DAYS, ge=1)
    similarity_max_orders: int = Field(default=SIMILARITY_MAX_ORDERS, ge=1)
    similarity_schedule_day_of_week: int = Field(default=0, ge=0, le=6)  # 0 = Sunday
    similarity_schedule_hour: int = Field(default=3, ge=0, le=23)

    @model_validator(mode="after")
    def check_recommendation_limits(self) -> "Settings":
        if self.default_recommendation_limit > self.max_recommendation_limit:
            raise ValueError("default_recommendation_limit cannot exceed max_recommendation_limit")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
