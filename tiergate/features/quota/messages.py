"""
tiergate/features/quota/messages.py

User-facing denial copy and upgrade links, per tier.
"""

from typing import Optional

from tiergate.core.config import settings
from tiergate.features.catalog.service import feature_display_name, limits_for
from tiergate.models.tier import Feature, Tier


STARTER_AI_CREDITS_EXHAUSTED = (
    "You've used all your weekly AI credits. "
    "Upgrade to Trial, Plus, or Pro for unlimited AI access."
)


def get_upgrade_url(tier: Tier) -> str:
    """Plus users are sent straight to the Pro upgrade; everyone else to pricing."""
    if Tier(tier) == Tier.PLUS:
        return f"{settings.PRICING_URL}?upgrade=pro"
    return settings.PRICING_URL


def build_quota_exceeded_message(feature: Feature, tier: Tier, limit: Optional[int]) -> str:
    feature = Feature(feature)
    tier = Tier(tier)
    name = feature_display_name(feature)

    if tier == Tier.STARTER:
        if feature == Feature.AI_MESSAGE:
            return STARTER_AI_CREDITS_EXHAUSTED
        return f"You've reached your limit. Upgrade to Trial, Plus, or Pro to unlock {name}."

    if tier == Tier.TRIAL:
        return (
            f"You've used your {limit} {name} for this trial period. "
            "Upgrade to Plus or Pro for monthly allowances."
        )

    if tier == Tier.PLUS:
        pro_limit = limits_for(feature, Tier.PRO).limit
        return (
            f"You've used all {limit} {name} this month. "
            f"Upgrade to Pro for {pro_limit} per month, or purchase additional uses."
        )

    return (
        f"You've used all {limit} {name} this month. "
        "Your limit will reset at the start of next month, or you can purchase additional uses."
    )
