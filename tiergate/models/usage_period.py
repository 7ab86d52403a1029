"""
tiergate/models/usage_period.py

UsagePeriod: one row per user per calendar month with a counter per
monthly-reset feature.
"""

from datetime import datetime
from typing import Dict

from pydantic import BaseModel, ConfigDict

from tiergate.models.tier import Feature


class UsagePeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    period_start: datetime
    period_end: datetime
    counts: Dict[Feature, int]

    def count_for(self, feature: Feature) -> int:
        return self.counts.get(feature, 0)

    def covers(self, when: datetime) -> bool:
        return self.period_start <= when <= self.period_end
