"""
tiergate/models/capability.py

Static per-tier capabilities for the jobs surface: daily search caps,
result page sizes, saved-job ceilings and on/off feature flags.
"""

from pydantic import BaseModel, ConfigDict, Field

from tiergate.models.tier import Tier


class TierCapabilities(BaseModel):
    """What one tier may do in the jobs surface. Counts of 0 mean "not allowed"."""
    model_config = ConfigDict(frozen=True)

    tier: Tier
    searches_per_day: int = Field(ge=0)
    results_per_search: int = Field(ge=0)
    saved_jobs_max: int = Field(ge=0)
    can_save_searches: bool = False
    can_create_alerts: bool = False
    max_alerts: int = Field(default=0, ge=0)
    can_use_map_view: bool = False
    can_export_jobs: bool = False
    show_upgrade_prompts: bool = True


class UpgradePrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    message: str
    target_tier: Tier
