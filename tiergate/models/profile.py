"""
tiergate/models/profile.py

ProfileQuotaState: the per-user fast-path quota fields that sit outside the
monthly and trial ledgers (weekly AI credits, one-time sample flag) plus the
tier and trial window they are evaluated against.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tiergate.models.tier import Tier


class ProfileQuotaState(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Tier
    subscription_status: Optional[str] = None
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    starter_credits_remaining: int
    starter_credits_reset_at: Optional[datetime] = None
    starter_app_assist_sample_used: bool = False
    created_at: datetime

    @property
    def trial_window_start(self) -> datetime:
        """Start of trial-scoped counting; profiles without a trial stamp count from creation."""
        return self.trial_started_at or self.created_at
