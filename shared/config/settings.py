"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheBackend(str, Enum):
    """Where screening results are cached."""

    MEMORY = "memory"
    REDIS = "redis"


class CompletenessScheme(str, Enum):
    """Profile completeness weighting schemes."""

    FIELD_GROUPS = "field_groups"
    TWO_PHASE = "two_phase"


class PostgresSettings(BaseSettings):
    """PostgreSQL (regulation corpus) configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "regscreen"
    password: SecretStr = SecretStr("regscreen_dev_password")
    db: str = "regscreen"

    # Corpus table holding the law records
    corpus_table: str = "public.uk_lrt"

    pool_size: int = 10
    max_overflow: int = 20
    statement_timeout_ms: int = 10_000

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis cache configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("regscreen_redis_password")
    db: int = 0
    key_prefix: str = "regscreen"
    max_connections: int = 50
    socket_timeout_seconds: float = 2.0

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.db}"


class KafkaSettings(BaseSettings):
    """Kafka event streaming configuration."""

    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = "localhost:9092"
    security_protocol: str = "PLAINTEXT"
    client_id: str = "regscreen-applicability"
    linger_ms: int = 5


class ScreeningSettings(BaseSettings):
    """Applicability screening engine configuration."""

    model_config = SettingsConfigDict(env_prefix="SCREENING_")

    # Cache
    cache_backend: CacheBackend = CacheBackend.MEMORY
    cache_max_entries: int = Field(default=10_000, ge=1)

    # Base TTLs before the organization stability multiplier is applied
    basic_ttl_seconds: int = 4 * 3600
    enhanced_ttl_seconds: int = 2 * 3600
    comprehensive_ttl_seconds: int = 1 * 3600

    # Regulation store access
    store_timeout_seconds: float = 5.0
    screen_timeout_seconds: float | None = None
    preview_limit: int = Field(default=5, ge=1)

    # Streaming
    subscriber_queue_size: int = Field(default=16, ge=1)
    # Idle organizations whose change bookkeeping the streamer keeps
    max_tracked_organizations: int = Field(default=10_000, ge=1)
    publish_events: bool = False
    events_topic: str = "screening.results"

    # Canonical scheme used for tier selection
    completeness_scheme: CompletenessScheme = CompletenessScheme.FIELD_GROUPS


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Service port
    applicability_port: int = Field(default=8010, alias="APPLICABILITY_PORT")

    # Data stores
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)

    # Screening engine
    screening: ScreeningSettings = Field(default_factory=ScreeningSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
