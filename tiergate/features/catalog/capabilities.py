"""
tiergate/features/catalog/capabilities.py

Per-tier capability table for the jobs surface.

Metered features (resume builder, application assist, interview prep) are
not repeated here; their allowances live in the tier catalog and are
checked through the quota evaluator.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from tiergate.core.errors import ConfigurationError, ValidationError
from tiergate.models.capability import TierCapabilities, UpgradePrompt
from tiergate.models.tier import Tier


logger = logging.getLogger(__name__)

CAPABILITY_LIMITS: Dict[Tier, Dict[str, Any]] = {
    Tier.STARTER: {
        "searches_per_day": 5,
        "results_per_search": 10,
        "saved_jobs_max": 5,
        "can_save_searches": False,
        "can_create_alerts": False,
        "max_alerts": 0,
        "can_use_map_view": False,
        "can_export_jobs": False,
        "show_upgrade_prompts": True,
    },
    # Trial searches like Plus but saves fewer jobs and cannot export
    Tier.TRIAL: {
        "searches_per_day": 50,
        "results_per_search": 25,
        "saved_jobs_max": 15,
        "can_save_searches": True,
        "can_create_alerts": True,
        "max_alerts": 2,
        "can_use_map_view": True,
        "can_export_jobs": False,
        "show_upgrade_prompts": True,
    },
    Tier.PLUS: {
        "searches_per_day": 50,
        "results_per_search": 25,
        "saved_jobs_max": 30,
        "can_save_searches": True,
        "can_create_alerts": True,
        "max_alerts": 5,
        "can_use_map_view": True,
        "can_export_jobs": True,
        "show_upgrade_prompts": True,
    },
    Tier.PRO: {
        "searches_per_day": 200,
        "results_per_search": 50,
        "saved_jobs_max": 100,
        "can_save_searches": True,
        "can_create_alerts": True,
        "max_alerts": 20,
        "can_use_map_view": True,
        "can_export_jobs": True,
        "show_upgrade_prompts": False,
    },
}

ACTIONS = tuple(name for name in TierCapabilities.model_fields if name != "tier")


def build_capabilities(config: Mapping[Tier, Mapping[str, Any]]) -> Dict[Tier, TierCapabilities]:
    """
    Expand the capability configuration into one TierCapabilities per tier.

    Raises:
        ConfigurationError: on a missing tier or an invalid row
    """
    capabilities: Dict[Tier, TierCapabilities] = {}
    problems = []

    for tier in Tier:
        row = config.get(tier)
        if row is None:
            problems.append(f"{tier.value}: no capabilities configured")
            continue
        try:
            capabilities[tier] = TierCapabilities(tier=tier, **row)
        except PydanticValidationError as exc:
            problems.append(f"{tier.value}: {exc.error_count()} invalid field(s)")

    if problems:
        logger.error("[catalog] invalid capability table", extra={"problems": problems})
        raise ConfigurationError("Invalid capability table: " + "; ".join(problems))

    return capabilities


def validate_capabilities(config: Optional[Mapping[Tier, Mapping[str, Any]]] = None) -> None:
    """Re-check the capability table. Called on application startup."""
    build_capabilities(CAPABILITY_LIMITS if config is None else config)


_CAPABILITIES = build_capabilities(CAPABILITY_LIMITS)


def _coerce_tier(tier: Any) -> Tier:
    # Unknown tiers get the most restrictive table
    try:
        return Tier(str(getattr(tier, "value", tier)).lower())
    except ValueError:
        logger.warning("[catalog] unknown tier, using starter capabilities", extra={"tier": str(tier)})
        return Tier.STARTER


def capabilities_for(tier: Any) -> TierCapabilities:
    return _CAPABILITIES[_coerce_tier(tier)]


def can_perform(tier: Any, action: str) -> bool:
    """
    Whether a tier may take an action.

    Flags answer directly; counts allow the action when greater than zero.

    Raises:
        ValidationError: action is not a known capability
    """
    if action not in ACTIONS:
        raise ValidationError(f"Unknown capability: {action}")
    value = getattr(capabilities_for(tier), action)
    if isinstance(value, bool):
        return value
    return value > 0


def get_upgrade_prompt(feature_label: str, current_tier: Any) -> UpgradePrompt:
    """Upsell copy for a locked capability: starter to Plus, trial and Plus to Pro."""
    tier = _coerce_tier(current_tier)

    if tier == Tier.STARTER:
        return UpgradePrompt(
            title="Upgrade to Plus",
            message=f"Unlock {feature_label} and more with Plus.",
            target_tier=Tier.PLUS,
        )
    if tier in (Tier.TRIAL, Tier.PLUS):
        return UpgradePrompt(
            title="Upgrade to Pro",
            message=f"Get more {feature_label} with Pro.",
            target_tier=Tier.PRO,
        )
    return UpgradePrompt(
        title="Feature Locked",
        message=f"{feature_label} is not available on your plan.",
        target_tier=Tier.PRO,
    )
