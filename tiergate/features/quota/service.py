"""
tiergate/features/quota/service.py

Quota evaluation (read path).

Handles:
- evaluate(user_id, feature): allowed/denied with remaining counts and upgrade copy
- require_quota(user_id, feature): same, raising QuotaExceededError on denial
- summarize_usage(user_id): one decision per feature plus reset countdowns

Evaluation never debits anything. The only writes it can cause are lazy
resets (weekly credit rollover, monthly period creation) and the default
profile for a first-seen user.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from tiergate.core.clock import normalize_now
from tiergate.core.database import get_db_session
from tiergate.core.errors import NotFoundError, QuotaExceededError, ValidationError
from tiergate.features.catalog.service import limits_for
from tiergate.features.profiles.service import get_or_create_profile, load_profile
from tiergate.features.quota.messages import build_quota_exceeded_message, get_upgrade_url
from tiergate.features.quota.overrides import find_override
from tiergate.features.quota.strategies import UsageContext, strategy_for
from tiergate.features.resets.service import (
    ensure_current_monthly_period,
    get_days_until_reset,
    rollover_weekly_credits,
)
from tiergate.features.tokens.service import count_unused_tokens
from tiergate.models.quota import QuotaDecision, UsageSummary
from tiergate.models.tier import Feature, ResetPeriod, Tier


logger = logging.getLogger(__name__)


def parse_feature(feature) -> Feature:
    try:
        return Feature(feature)
    except ValueError:
        raise ValidationError(f"Unknown feature: {feature}")


def apply_lazy_resets(user_id: str, feature: Feature, now: datetime) -> None:
    """Bring time-scoped state up to date before it is read or debited."""
    profile = get_or_create_profile(user_id, now=now)
    if profile.tier == Tier.STARTER:
        rollover_weekly_credits(user_id, now)
    if limits_for(feature, profile.tier).reset_period == ResetPeriod.MONTHLY:
        ensure_current_monthly_period(user_id, now)


def build_context(
    session: Session,
    user_id: str,
    feature: Feature,
    now: datetime,
    *,
    for_update: bool = False,
) -> UsageContext:
    profile = load_profile(session, user_id, for_update=for_update)
    if profile is None:
        raise NotFoundError(f"Profile for {user_id} not found")
    return UsageContext(
        user_id=user_id,
        feature=feature,
        tier=profile.tier,
        limits=limits_for(feature, profile.tier),
        profile=profile,
        now=now,
    )


def decide(session: Session, ctx: UsageContext) -> QuotaDecision:
    """
    Evaluate one context inside an open session.

    Overrides first; otherwise the tier allowance measured by the reset
    strategy, with unused course tokens able to unlock an exhausted allowance.
    """
    override = find_override(ctx)
    if override is not None:
        return override.evaluate(session, ctx)

    limits = ctx.limits
    used = strategy_for(limits.reset_period).current_usage(session, ctx)
    remaining = None if limits.unbounded else max(0, limits.limit - used)

    token_count = 0
    if limits.token_eligible:
        token_count = count_unused_tokens(session, ctx.user_id, limits.token_type)

    exhausted = remaining is not None and remaining <= 0
    allowed = token_count > 0 or not exhausted

    return QuotaDecision(
        allowed=allowed,
        feature=ctx.feature,
        tier=ctx.tier,
        limit=limits.limit,
        used=used,
        remaining=remaining,
        message=None if allowed else build_quota_exceeded_message(ctx.feature, ctx.tier, limits.limit),
        upgrade_url=None if allowed else get_upgrade_url(ctx.tier),
        can_purchase=limits.can_purchase,
        purchase_price=limits.purchase_price,
        has_tokens=token_count > 0,
        token_count=token_count,
        reset_period=limits.reset_period,
    )


def evaluate(user_id: str, feature: Feature, now: Optional[datetime] = None) -> QuotaDecision:
    """
    Check whether the user may use a feature right now.

    Args:
        user_id: Authenticated user id
        feature: Feature to check
        now: Evaluation time (defaults to now, UTC)

    Returns:
        QuotaDecision
    """
    now = normalize_now(now)
    feature = parse_feature(feature)
    apply_lazy_resets(user_id, feature, now)

    with get_db_session() as session:
        ctx = build_context(session, user_id, feature, now)
        decision = decide(session, ctx)

    if decision.allowed:
        logger.info(
            "[quota] ALLOWED",
            extra={
                "user_id": user_id,
                "feature": feature.value,
                "tier": decision.tier.value,
                "used": decision.used,
                "limit": decision.limit,
                "override": decision.override,
                "has_tokens": decision.has_tokens,
            },
        )
    else:
        logger.warning(
            "[quota] DENIED",
            extra={
                "user_id": user_id,
                "feature": feature.value,
                "tier": decision.tier.value,
                "used": decision.used,
                "limit": decision.limit,
            },
        )
    return decision


def require_quota(user_id: str, feature: Feature, now: Optional[datetime] = None) -> QuotaDecision:
    """Evaluate and raise QuotaExceededError on denial."""
    decision = evaluate(user_id, feature, now)
    if not decision.allowed:
        raise QuotaExceededError(decision.message or "Quota exceeded", decision=decision)
    return decision


def summarize_usage(user_id: str, now: Optional[datetime] = None) -> UsageSummary:
    now = normalize_now(now)
    decisions = {feature: evaluate(user_id, feature, now) for feature in Feature}
    profile = get_or_create_profile(user_id, now=now)
    return UsageSummary(
        user_id=user_id,
        tier=profile.tier,
        decisions=decisions,
        days_until_weekly_reset=get_days_until_reset(user_id, "weekly", now),
        days_until_monthly_reset=get_days_until_reset(user_id, "monthly", now),
    )
