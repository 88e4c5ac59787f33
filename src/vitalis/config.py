"""
Vitalis Configuration Module.

Handles all application settings, feature flags, and environment configuration.
Uses pydantic-settings for validation and type safety.

Architecture: Gemini Developer API (API key per context) - NO Vertex AI.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    """Feature flags for enabling/disabling modules."""

    model_config = SettingsConfigDict(env_prefix="FEATURE_")

    ai_insights: bool = True
    hero_insight: bool = True
    cache: bool = True

    def to_dict(self) -> dict[str, bool]:
        """Return feature flags as dictionary for health endpoint."""
        return {
            "ai_insights": self.ai_insights,
            "hero_insight": self.hero_insight,
            "cache": self.cache,
        }


class GeminiSettings(BaseSettings):
    """Gemini API configuration."""

    model_config = SettingsConfigDict(env_prefix="GEMINI_")

    api_key: str = Field(default="", description="Default Gemini API key (used when a context has none)")
    model: str = Field(default="gemini-2.5-flash", description="Model used for every context")
    key_env_prefix: str = Field(
        default="GEMINI_API_KEY",
        description="Context keys are read from <prefix>_<CONTEXT> (e.g. GEMINI_API_KEY_TIMELINE)",
    )
    quota_retry_delay_seconds: float = Field(
        default=7.0,
        description="Fixed wait before the single retry after a 429 / quota response",
    )

    temperature: float = 0.7
    max_tokens: int = 1000
    top_p: float = 0.8
    top_k: int = 40


class RateLimitSettings(BaseSettings):
    """Per-context request pacing."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")

    max_requests: int = Field(default=10, ge=1, description="Provider quota per window, per context")
    window_seconds: float = Field(default=60.0, gt=0, description="Sliding window length")
    safety_margin_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Extra wait added to every computed delay so the window edge is cleared",
    )


class CacheSettings(BaseSettings):
    """AI response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    backend: Literal["memory", "file", "redis"] = "memory"
    ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    key_prefix: str = "ai_cache_"
    schema_version: str = "1.0"
    file_path: str = Field(default=".vitalis_cache.json", description="Location of the file backend")
    session_id: str | None = Field(
        default=None,
        description="If set and equal to the stored session id, the stored session epoch is resumed",
    )


class RedisSettings(BaseSettings):
    """Redis configuration (cache backend)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_log_level: str = "INFO"

    # Nested settings
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
