"""
tiergate/models/tier.py

Tier, feature and reset-period vocabulary plus the per-(feature, tier)
FeatureLimit configuration row.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    """Subscription level. Exactly one per user, supplied by billing."""
    STARTER = "starter"
    TRIAL = "trial"
    PLUS = "plus"
    PRO = "pro"


class Feature(str, Enum):
    """Gated capabilities. Each member needs a catalog entry for every tier."""
    LIFEPLAN_REGEN = "lifeplan_regen"
    RESUME_BUILDER = "resume_builder"
    APPLICATION_ASSIST = "application_assist"
    INTERVIEW_PREP = "interview_prep"
    AI_MESSAGE = "ai_message"
    COVER_LETTER = "cover_letter"

    @property
    def used_event_type(self) -> str:
        return f"{self.value}_used"


class ResetPeriod(str, Enum):
    """How often an allowance replenishes."""
    NONE = "none"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    TRIAL = "trial"


class FeatureLimit(BaseModel):
    """
    Allowance for one (feature, tier) pair.

    `limit=None` means unbounded, so the UI can render an infinity sign
    instead of a large number.
    """
    model_config = ConfigDict(frozen=True)

    feature: Feature
    tier: Tier
    limit: Optional[int] = Field(default=None, ge=0)
    reset_period: ResetPeriod
    purchase_price: Optional[Decimal] = None
    token_eligible: bool = False
    token_type: Optional[str] = None
    soft_cap: bool = False

    @property
    def unbounded(self) -> bool:
        return self.limit is None

    @property
    def can_purchase(self) -> bool:
        return self.purchase_price is not None
