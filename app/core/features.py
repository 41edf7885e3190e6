"""
Feature definitions for Pro gating.
Single source of truth for which features require an effective Pro status.

The frontend mirrors these definitions in src/lib/features.ts
"""
from enum import Enum


class Feature(str, Enum):
    """Gated feature identifiers."""
    AI_ANALYTICS = "ai_analytics"
    AI_SUGGESTIONS = "ai_suggestions"
    SECTION_DROPOFF = "section_dropoff"
    CUSTOM_DOMAIN = "custom_domain"
    BASIC_ANALYTICS = "basic_analytics"


# Features available to everyone, Pro or not
FREE_FEATURES: frozenset[Feature] = frozenset({
    Feature.BASIC_ANALYTICS,
})


def requires_pro(feature: str) -> bool:
    """Check if a feature is Pro-only.

    Unknown feature names are treated as Pro-only.
    """
    try:
        return Feature(feature) not in FREE_FEATURES
    except ValueError:
        return True


def has_feature(is_pro: bool, feature: str) -> bool:
    """Check if a user with the given effective status can use a feature."""
    return is_pro or not requires_pro(feature)
