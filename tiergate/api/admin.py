"""
Admin API for support tooling.

All routes require the X-Admin-Key header.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from tiergate.core.admin_auth import AdminActor, require_admin_auth
from tiergate.features.profiles.service import set_tier
from tiergate.features.tokens.service import grant_course_token
from tiergate.models.tier import Tier

logger = logging.getLogger("tiergate.admin")

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class SetTierRequest(BaseModel):
    user_id: str
    tier: Tier
    subscription_status: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id is required")
        return value


class GrantTokenRequest(BaseModel):
    user_id: str
    token_type: str
    course_purchase_id: Optional[str] = None

    @field_validator("user_id", "token_type")
    @classmethod
    def _trim(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("value is required")
        return value


@router.post("/tier")
def switch_tier(body: SetTierRequest, actor: AdminActor = Depends(require_admin_auth)) -> dict:
    """Set a user's tier (billing sync or support override)."""
    profile = set_tier(body.user_id, body.tier, subscription_status=body.subscription_status)
    logger.info(
        "[admin] tier set",
        extra={"user_id": body.user_id, "tier": body.tier.value, "actor_id": actor.actor_id},
    )
    return profile.model_dump(mode="json")


@router.post("/tokens")
def grant_token(body: GrantTokenRequest, actor: AdminActor = Depends(require_admin_auth)) -> dict:
    """Grant one course token, as a course purchase would."""
    token = grant_course_token(body.user_id, body.token_type, body.course_purchase_id)
    logger.info(
        "[admin] course token granted",
        extra={"user_id": body.user_id, "token_type": body.token_type, "actor_id": actor.actor_id},
    )
    return token.model_dump(mode="json")
