"""
Tests for configuration module.
"""

import pytest


class TestFeatureFlags:
    """Feature flags tests."""

    def test_default_features_enabled(self):
        """Test all features are enabled by default."""
        from vitalis.config import FeatureFlags

        flags = FeatureFlags()
        assert flags.ai_insights is True
        assert flags.hero_insight is True
        assert flags.cache is True

    def test_to_dict(self):
        """Test feature flags to dict."""
        from vitalis.config import FeatureFlags

        flags = FeatureFlags()
        result = flags.to_dict()

        assert isinstance(result, dict)
        assert len(result) == 3
        assert result["cache"] is True

    def test_env_override(self, monkeypatch):
        from vitalis.config import FeatureFlags

        monkeypatch.setenv("FEATURE_CACHE", "false")
        assert FeatureFlags().cache is False


class TestGovernanceSettings:
    """Rate limit and cache settings tests."""

    def test_rate_limit_defaults(self):
        from vitalis.config import RateLimitSettings

        settings = RateLimitSettings()
        assert settings.max_requests == 10
        assert settings.window_seconds == 60.0
        assert settings.safety_margin_seconds == 0.1

    def test_rate_limit_from_env(self, monkeypatch):
        from vitalis.config import RateLimitSettings

        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "15")
        assert RateLimitSettings().max_requests == 15

    def test_rejects_zero_quota(self, monkeypatch):
        from pydantic import ValidationError

        from vitalis.config import RateLimitSettings

        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "0")
        with pytest.raises(ValidationError):
            RateLimitSettings()

    def test_cache_defaults(self):
        from vitalis.config import CacheSettings

        settings = CacheSettings()
        assert settings.backend == "memory"
        assert settings.ttl_seconds == 86400
        assert settings.key_prefix == "ai_cache_"
        assert settings.session_id is None

    def test_is_production(self, monkeypatch):
        from vitalis.config import Settings

        monkeypatch.setenv("APP_ENV", "production")
        assert Settings().is_production is True


class TestExceptions:
    """Exception tests."""

    def test_feature_disabled_exception(self):
        """Test FeatureDisabledException."""
        from vitalis.exceptions import FeatureDisabledException

        exc = FeatureDisabledException("hero_insight")
        assert exc.status_code == 503
        assert exc.code == "FEATURE_DISABLED"
        assert "hero_insight" in exc.message

    def test_quota_exceeded_exception(self):
        from vitalis.exceptions import QuotaExceededException

        exc = QuotaExceededException("timeline")
        assert exc.status_code == 429
        assert exc.details == {"context": "timeline"}

    def test_storage_full_is_a_storage_failure(self):
        from vitalis.exceptions import StorageFailureException, StorageFullException

        exc = StorageFullException("ai_cache_x", capacity=10)
        assert isinstance(exc, StorageFailureException)
        assert exc.code == "STORAGE_FAILURE"
        assert exc.details == {"key": "ai_cache_x", "capacity": 10}

    def test_cache_key_exception(self):
        from vitalis.exceptions import CacheKeyException

        exc = CacheKeyException("weekly_summary", "missing", missing=["end_date"])
        assert exc.status_code == 400
        assert exc.details["missing"] == ["end_date"]
