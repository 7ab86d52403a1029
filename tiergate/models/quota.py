"""
tiergate/models/quota.py

Read-path and write-path results of the metering engine.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

from tiergate.models.tier import Feature, ResetPeriod, Tier


class QuotaDecision(BaseModel):
    """
    Outcome of evaluate().

    `limit`/`remaining` are None when the allowance is unbounded.
    `override` names the carve-out that produced the decision, if any.
    """
    model_config = ConfigDict(frozen=True)

    allowed: bool
    feature: Feature
    tier: Tier
    limit: Optional[int]
    used: int
    remaining: Optional[int]
    message: Optional[str] = None
    upgrade_url: Optional[str] = None
    can_purchase: bool = False
    purchase_price: Optional[Decimal] = None
    has_tokens: bool = False
    token_count: int = 0
    reset_period: ResetPeriod
    override: Optional[str] = None


class ConsumptionSource(str, Enum):
    """Which entitlement a commit debited."""
    STARTER_AI_CREDITS = "starter_ai_credits"
    STARTER_SAMPLE = "starter_sample"
    COURSE_TOKEN = "course_token"
    SINGLE_USE_PURCHASE = "single_use_purchase"
    TIER_ALLOWANCE = "tier_allowance"


class ConsumptionReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    feature: Feature
    tier: Tier
    source: ConsumptionSource
    event_id: int
    token_id: Optional[int] = None


class UsageSummary(BaseModel):
    """Per-feature decisions plus reset countdowns, for usage screens."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Tier
    decisions: Dict[Feature, QuotaDecision]
    days_until_weekly_reset: int
    days_until_monthly_reset: int
