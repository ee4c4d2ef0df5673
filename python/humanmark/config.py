"""Application settings loaded from environment variables.

Environment Configuration:
    HUMANMARK_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    HUMANMARK_HOST_TOKEN_SECRET: Secret for actor tokens forwarded by the host
        forum (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (rate limits, completion lock, counters)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Provider Configuration:
    HUMANMARK_API_URL: Provider base URL (must be https)
    HUMANMARK_API_KEY / HUMANMARK_API_SECRET: Provider credentials. The secret
        also verifies receipts. Missing credentials fail flow creation, not startup.

Policy Configuration:
    HUMANMARK_PROTECT_{POSTS,TOPICS,MESSAGES}: Which contexts require verification
    HUMANMARK_REVERIFY_PERIOD_{POSTS,TOPICS,MESSAGES}: Minutes a completed
        verification exempts the same user (0 = always re-verify)
    HUMANMARK_BYPASS_STAFF / HUMANMARK_BYPASS_TRUST_LEVEL: Actor bypasses
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - Reverify periods must be >= 0, rate limits >= 1, retention >= 1 day
    - HUMANMARK_HOST_TOKEN_SECRET is required in staging and prod only
    """

    humanmark_env: Environment = Field(default=Environment.LOCAL, alias="HUMANMARK_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Feature switches
    enabled: bool = Field(default=False, alias="HUMANMARK_ENABLED")
    debug_mode: bool = Field(default=False, alias="HUMANMARK_DEBUG_MODE")

    # Provider settings
    api_url: str = Field(default="https://humanmark.io", alias="HUMANMARK_API_URL")
    api_key: str | None = Field(default=None, alias="HUMANMARK_API_KEY")
    api_secret: str | None = Field(default=None, alias="HUMANMARK_API_SECRET")
    api_timeout_seconds: float = Field(default=15.0, alias="HUMANMARK_API_TIMEOUT_SECONDS")
    domain: str | None = Field(default=None, alias="HUMANMARK_DOMAIN")
    forum_hostname: str = Field(default="localhost", alias="HUMANMARK_FORUM_HOSTNAME")

    # Per-context protection
    protect_posts: bool = Field(default=True, alias="HUMANMARK_PROTECT_POSTS")
    protect_topics: bool = Field(default=True, alias="HUMANMARK_PROTECT_TOPICS")
    protect_messages: bool = Field(default=True, alias="HUMANMARK_PROTECT_MESSAGES")

    # Reverify windows (minutes)
    reverify_period_posts: int = Field(default=60, alias="HUMANMARK_REVERIFY_PERIOD_POSTS")
    reverify_period_topics: int = Field(default=60, alias="HUMANMARK_REVERIFY_PERIOD_TOPICS")
    reverify_period_messages: int = Field(default=60, alias="HUMANMARK_REVERIFY_PERIOD_MESSAGES")

    # Bypasses
    bypass_staff: bool = Field(default=True, alias="HUMANMARK_BYPASS_STAFF")
    bypass_trust_level: int = Field(default=3, ge=0, le=5, alias="HUMANMARK_BYPASS_TRUST_LEVEL")

    # Rate limits for flow creation
    max_challenges_per_user_per_minute: int = Field(
        default=5, alias="HUMANMARK_MAX_CHALLENGES_PER_USER_PER_MINUTE"
    )
    max_challenges_per_user_per_hour: int = Field(
        default=30, alias="HUMANMARK_MAX_CHALLENGES_PER_USER_PER_HOUR"
    )
    max_challenges_per_ip_per_minute: int = Field(
        default=10, alias="HUMANMARK_MAX_CHALLENGES_PER_IP_PER_MINUTE"
    )
    max_challenges_per_ip_per_hour: int = Field(
        default=100, alias="HUMANMARK_MAX_CHALLENGES_PER_IP_PER_HOUR"
    )

    # Retention
    flow_retention_days: int = Field(default=7, alias="HUMANMARK_FLOW_RETENTION_DAYS")

    # Host actor tokens
    host_token_secret: str | None = Field(default=None, alias="HUMANMARK_HOST_TOKEN_SECRET")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Reject values the policy engine cannot work with."""
        reverify = {
            "HUMANMARK_REVERIFY_PERIOD_POSTS": self.reverify_period_posts,
            "HUMANMARK_REVERIFY_PERIOD_TOPICS": self.reverify_period_topics,
            "HUMANMARK_REVERIFY_PERIOD_MESSAGES": self.reverify_period_messages,
        }
        for name, value in reverify.items():
            if value < 0:
                raise ValueError(f"{name} must be >= 0")

        limits = {
            "HUMANMARK_MAX_CHALLENGES_PER_USER_PER_MINUTE": self.max_challenges_per_user_per_minute,
            "HUMANMARK_MAX_CHALLENGES_PER_USER_PER_HOUR": self.max_challenges_per_user_per_hour,
            "HUMANMARK_MAX_CHALLENGES_PER_IP_PER_MINUTE": self.max_challenges_per_ip_per_minute,
            "HUMANMARK_MAX_CHALLENGES_PER_IP_PER_HOUR": self.max_challenges_per_ip_per_hour,
        }
        for name, value in limits.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1")

        if self.flow_retention_days < 1:
            raise ValueError("HUMANMARK_FLOW_RETENTION_DAYS must be >= 1")

        if self.humanmark_env in (Environment.STAGING, Environment.PROD):
            if not self.host_token_secret:
                raise ValueError(
                    "HUMANMARK_HOST_TOKEN_SECRET is required for "
                    f"HUMANMARK_ENV={self.humanmark_env.value}"
                )

        return self

    def is_context_protected(self, context: str) -> bool:
        """Whether verification is configured for a content context."""
        return {
            "post": self.protect_posts,
            "topic": self.protect_topics,
            "message": self.protect_messages,
        }.get(str(context), False)

    def reverify_minutes(self, context: str) -> int:
        """Reverify window in minutes for a content context (0 when unknown)."""
        return {
            "post": self.reverify_period_posts,
            "topic": self.reverify_period_topics,
            "message": self.reverify_period_messages,
        }.get(str(context), 0)

    @property
    def max_reverify_minutes(self) -> int:
        """Longest reverify window across all contexts."""
        return max(
            self.reverify_period_posts,
            self.reverify_period_topics,
            self.reverify_period_messages,
        )

    @property
    def effective_domain(self) -> str:
        """Domain sent to the provider, falling back to the forum hostname."""
        return self.domain or self.forum_hostname

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
