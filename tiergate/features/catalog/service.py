"""
tiergate/features/catalog/service.py

Tier catalog: single source of truth for per-(feature, tier) allowances.

Handles:
- Static allowance configuration for every feature and tier
- Startup validation (a missing pair is a configuration error)
- Purchase and course-token lookups

To add a gated feature:
1. Add it to Feature in tiergate/models/tier.py
2. Add its configuration to TIER_LIMITS
3. Add a usage_periods column if any tier resets monthly
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from tiergate.core.config import settings
from tiergate.core.errors import ConfigurationError
from tiergate.models.tier import Feature, FeatureLimit, ResetPeriod, Tier


logger = logging.getLogger(__name__)

UNBOUNDED = None

TIER_LIMITS: Dict[Feature, Dict[str, Any]] = {
    # Trial gets one regeneration for the whole trial; starter must upgrade
    Feature.LIFEPLAN_REGEN: {
        "tiers": {
            Tier.STARTER: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.TRIAL: {"limit": 1, "reset_period": ResetPeriod.TRIAL},
            Tier.PLUS: {"limit": 4, "reset_period": ResetPeriod.MONTHLY},
            Tier.PRO: {"limit": 8, "reset_period": ResetPeriod.MONTHLY},
        },
        "single_purchase_price": Decimal("2.99"),
        "course_token_type": None,
    },
    Feature.RESUME_BUILDER: {
        "tiers": {
            Tier.STARTER: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.TRIAL: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.PLUS: {"limit": 5, "reset_period": ResetPeriod.MONTHLY},
            Tier.PRO: {"limit": 10, "reset_period": ResetPeriod.MONTHLY},
        },
        "single_purchase_price": Decimal("3.99"),
        "course_token_type": "resume",
    },
    # Starter's one free sample lives on the profile, not here
    Feature.APPLICATION_ASSIST: {
        "tiers": {
            Tier.STARTER: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.TRIAL: {"limit": 3, "reset_period": ResetPeriod.TRIAL},
            Tier.PLUS: {"limit": 15, "reset_period": ResetPeriod.MONTHLY},
            Tier.PRO: {"limit": 30, "reset_period": ResetPeriod.MONTHLY},
        },
        "single_purchase_price": Decimal("2.99"),
        "course_token_type": "application_assist",
    },
    Feature.INTERVIEW_PREP: {
        "tiers": {
            Tier.STARTER: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.TRIAL: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.PLUS: {"limit": 3, "reset_period": ResetPeriod.MONTHLY},
            Tier.PRO: {"limit": 6, "reset_period": ResetPeriod.MONTHLY},
        },
        "single_purchase_price": None,
        "course_token_type": "interview_prep",
    },
    # Starter draws on the weekly credit balance; paid tiers are soft-capped
    Feature.AI_MESSAGE: {
        "tiers": {
            Tier.STARTER: {"limit": settings.STARTER_WEEKLY_CREDITS, "reset_period": ResetPeriod.WEEKLY},
            Tier.TRIAL: {"limit": UNBOUNDED, "reset_period": ResetPeriod.NONE},
            Tier.PLUS: {"limit": 500, "reset_period": ResetPeriod.MONTHLY, "soft_cap": True},
            Tier.PRO: {"limit": 1000, "reset_period": ResetPeriod.MONTHLY, "soft_cap": True},
        },
        "single_purchase_price": None,
        "course_token_type": None,
    },
    Feature.COVER_LETTER: {
        "tiers": {
            Tier.STARTER: {"limit": 0, "reset_period": ResetPeriod.NONE},
            Tier.TRIAL: {"limit": 2, "reset_period": ResetPeriod.TRIAL},
            Tier.PLUS: {"limit": 10, "reset_period": ResetPeriod.MONTHLY},
            Tier.PRO: {"limit": 20, "reset_period": ResetPeriod.MONTHLY},
        },
        "single_purchase_price": Decimal("2.99"),
        "course_token_type": "resume",
    },
}

# usage_periods counter column per monthly-reset feature
USAGE_PERIOD_COLUMNS: Dict[Feature, str] = {
    Feature.LIFEPLAN_REGEN: "lifeplan_regens_count",
    Feature.RESUME_BUILDER: "resume_generations_count",
    Feature.APPLICATION_ASSIST: "application_assists_count",
    Feature.INTERVIEW_PREP: "interview_preps_count",
    Feature.AI_MESSAGE: "ai_messages_count",
    Feature.COVER_LETTER: "cover_letters_count",
}

# Display names used in quota messages
FEATURE_NAMES: Dict[Feature, str] = {
    Feature.LIFEPLAN_REGEN: "Life Plan regenerations",
    Feature.RESUME_BUILDER: "Resume Builder uses",
    Feature.APPLICATION_ASSIST: "Application Assistant uses",
    Feature.INTERVIEW_PREP: "Interview Prep sessions",
    Feature.AI_MESSAGE: "AI messages",
    Feature.COVER_LETTER: "Cover Letter generations",
}


def build_catalog(
    config: Mapping[Feature, Mapping[str, Any]],
    columns: Mapping[Feature, str] = USAGE_PERIOD_COLUMNS,
) -> Dict[Tuple[Feature, Tier], FeatureLimit]:
    """
    Expand feature configuration into one FeatureLimit per (feature, tier).

    Raises:
        ConfigurationError: on any missing pair, negative limit, token-eligible
            feature without a token type, or monthly feature without a counter
    """
    catalog: Dict[Tuple[Feature, Tier], FeatureLimit] = {}
    problems = []

    for feature in Feature:
        entry = config.get(feature)
        if entry is None:
            problems.append(f"{feature.value}: no catalog entry")
            continue

        tiers = entry.get("tiers", {})
        price = entry.get("single_purchase_price")
        token_type = entry.get("course_token_type")

        for tier in Tier:
            row = tiers.get(tier)
            if row is None:
                problems.append(f"{feature.value}/{tier.value}: no limit configured")
                continue

            limit = row.get("limit")
            if limit is not None and limit < 0:
                problems.append(f"{feature.value}/{tier.value}: negative limit {limit}")
                continue

            reset_period = ResetPeriod(row["reset_period"])
            if reset_period == ResetPeriod.MONTHLY and feature not in columns:
                problems.append(f"{feature.value}/{tier.value}: monthly reset without a usage column")
                continue

            catalog[(feature, tier)] = FeatureLimit(
                feature=feature,
                tier=tier,
                limit=limit,
                reset_period=reset_period,
                purchase_price=price,
                token_eligible=token_type is not None,
                token_type=token_type,
                soft_cap=bool(row.get("soft_cap", False)),
            )

    if problems:
        logger.error("[catalog] invalid tier catalog", extra={"problems": problems})
        raise ConfigurationError("Invalid tier catalog: " + "; ".join(problems))

    return catalog


def validate_catalog(config: Optional[Mapping[Feature, Mapping[str, Any]]] = None) -> None:
    """Re-check the catalog configuration. Called on application startup."""
    build_catalog(TIER_LIMITS if config is None else config)


# Built at import so a broken catalog fails the process before any request
_CATALOG = build_catalog(TIER_LIMITS)


def limits_for(feature: Feature, tier: Tier) -> FeatureLimit:
    """Allowance for a feature at a tier. Total over Feature x Tier."""
    return _CATALOG[(Feature(feature), Tier(tier))]


def can_purchase_feature(feature: Feature) -> bool:
    return TIER_LIMITS[Feature(feature)]["single_purchase_price"] is not None


def get_purchase_price(feature: Feature) -> Optional[Decimal]:
    return TIER_LIMITS[Feature(feature)]["single_purchase_price"]


def grants_course_token(feature: Feature) -> bool:
    return TIER_LIMITS[Feature(feature)]["course_token_type"] is not None


def token_type_for(feature: Feature) -> Optional[str]:
    return TIER_LIMITS[Feature(feature)]["course_token_type"]


def usage_column_for(feature: Feature) -> str:
    return USAGE_PERIOD_COLUMNS[Feature(feature)]


def feature_display_name(feature: Feature) -> str:
    return FEATURE_NAMES.get(Feature(feature), "uses")


def starter_weekly_credits() -> int:
    """Weekly starter AI credit grant; the same number the weekly usage count is measured against."""
    return limits_for(Feature.AI_MESSAGE, Tier.STARTER).limit or 0
