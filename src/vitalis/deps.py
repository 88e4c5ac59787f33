"""
Vitalis - Dependency Injection.

FastAPI dependencies for settings, feature flags, and the governance service.
"""

from typing import Annotated

from fastapi import Depends, Request

from vitalis.config import FeatureFlags, Settings, get_settings
from vitalis.core.governance import AIGovernance
from vitalis.exceptions import FeatureDisabledException, VitalisException
from vitalis.insights.service import InsightService


# =============================================================================
# Settings Dependencies
# =============================================================================


def get_features(settings: Annotated[Settings, Depends(get_settings)]) -> FeatureFlags:
    """Get feature flags from settings."""
    return settings.features


# =============================================================================
# Governance
# =============================================================================


def get_governance(request: Request) -> AIGovernance:
    """The governance service built during application startup."""
    governance = getattr(request.app.state, "governance", None)
    if governance is None:
        raise VitalisException(
            code="NOT_READY",
            message="AI governance layer is not initialized",
            status_code=503,
        )
    return governance


def get_insight_service(governance: Annotated[AIGovernance, Depends(get_governance)]) -> InsightService:
    return InsightService(governance.client, governance.cache)


# =============================================================================
# Feature Flag Guards
# =============================================================================


def require_feature(feature_name: str):
    """Create a dependency that requires a specific feature to be enabled."""

    def check_feature(features: Annotated[FeatureFlags, Depends(get_features)]) -> bool:
        if not getattr(features, feature_name, False):
            raise FeatureDisabledException(feature_name)
        return True

    return check_feature


# Specific feature guards
require_ai_insights = Depends(require_feature("ai_insights"))
require_hero_insight = Depends(require_feature("hero_insight"))
