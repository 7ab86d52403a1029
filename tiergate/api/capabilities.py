"""
Capabilities API: the caller's jobs-surface capabilities for their tier.
"""

from typing import Annotated

from fastapi import APIRouter, Header

from tiergate.features.catalog.capabilities import can_perform, capabilities_for, get_upgrade_prompt
from tiergate.features.profiles.service import get_or_create_profile

router = APIRouter(prefix="/v1/capabilities", tags=["capabilities"])


@router.get("")
def get_capabilities(user_id: Annotated[str, Header(alias="X-User-Id")]) -> dict:
    profile = get_or_create_profile(user_id)
    return capabilities_for(profile.tier).model_dump(mode="json")


@router.get("/{action}")
def check_capability(action: str, user_id: Annotated[str, Header(alias="X-User-Id")]) -> dict:
    """
    Check one capability for the caller.

    Denied checks carry an upgrade prompt for the UI.
    """
    profile = get_or_create_profile(user_id)
    allowed = can_perform(profile.tier, action)
    body = {"action": action, "tier": profile.tier.value, "allowed": allowed, "upgrade": None}
    if not allowed:
        label = action.replace("can_", "").replace("_", " ")
        body["upgrade"] = get_upgrade_prompt(label, profile.tier).model_dump(mode="json")
    return body
