"""
Entitlement checking for Pro-gated features.

Every gated surface goes through the effective status rule in
app.services.pro_status, never the raw is_pro column.

This service only owns the entitlement record, so none of its own routes
are gated. require_feature and require_pro are the entry point for the
routers that serve Pro features (AI analytics, section drop-off, custom
domains) and import this module.

Usage:
    @router.get("/ai-assistant/analytics")
    def ai_analytics(user_id: str = Depends(require_feature("ai_analytics"))):
        # Only executes if the caller is effectively Pro
        pass
"""
from fastapi import Depends, HTTPException, status

from app.core.features import has_feature
from app.core.security import require_user_id
from app.services.pro_status import get_effective_status


class FeatureNotAvailableError(HTTPException):
    """Raised when a feature is not available in the user's plan."""

    def __init__(self, feature: str, plan: str):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "PRO_REQUIRED",
                "feature": feature,
                "plan": plan,
                "message": f"The '{feature}' feature requires a Pro subscription.",
                "upgrade_required": True,
            }
        )


def require_feature(feature: str):
    """Factory to create a dependency that requires a specific feature.

    Args:
        feature: The feature name to require (e.g., 'ai_analytics')

    Returns:
        A FastAPI dependency function returning the caller's user id
    """
    def dependency(user_id: str = Depends(require_user_id)) -> str:
        effective = get_effective_status(user_id)
        if not has_feature(effective.is_pro, feature):
            raise FeatureNotAvailableError(feature, effective.plan.value)
        return user_id

    return dependency


require_pro = require_feature("pro")
