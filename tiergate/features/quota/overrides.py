"""
tiergate/features/quota/overrides.py

Policy carve-outs checked before the generic allowance path.

Each entry pairs a predicate over (feature, tier, profile state) with how to
evaluate and how to debit that case. Entries are tried in order; the first
match wins. New carve-outs are added here rather than as branches in the
evaluator or coordinator.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from tiergate.core.errors import ConcurrencyConflictError
from tiergate.features.profiles.service import mark_sample_used
from tiergate.features.quota.messages import STARTER_AI_CREDITS_EXHAUSTED, get_upgrade_url
from tiergate.features.quota.strategies import Debit, UsageContext, strategy_for
from tiergate.features.tokens.service import count_unused_tokens
from tiergate.models.quota import ConsumptionSource, QuotaDecision
from tiergate.models.tier import Feature, ResetPeriod, Tier


@dataclass(frozen=True)
class QuotaOverride:
    name: str
    matches: Callable[[UsageContext], bool]
    evaluate: Callable[[Session, UsageContext], QuotaDecision]
    commit: Callable[[Session, UsageContext], Debit]


# --- ai_message on trial/plus/pro: never blocked, still counted ---

def _unlimited_ai_matches(ctx: UsageContext) -> bool:
    return ctx.feature == Feature.AI_MESSAGE and ctx.tier in (Tier.TRIAL, Tier.PLUS, Tier.PRO)


def _unlimited_ai_evaluate(session: Session, ctx: UsageContext) -> QuotaDecision:
    used = strategy_for(ctx.limits.reset_period).current_usage(session, ctx)
    return QuotaDecision(
        allowed=True,
        feature=ctx.feature,
        tier=ctx.tier,
        limit=None,
        used=used,
        remaining=None,
        reset_period=ctx.limits.reset_period,
        override="unlimited_ai_messages",
    )


def _unlimited_ai_commit(session: Session, ctx: UsageContext) -> Debit:
    strategy_for(ctx.limits.reset_period).record_usage(session, ctx, enforce=False)
    return Debit(ConsumptionSource.TIER_ALLOWANCE, {"tier": ctx.tier.value})


# --- ai_message on starter: weekly credit balance ---

def _starter_ai_matches(ctx: UsageContext) -> bool:
    return ctx.feature == Feature.AI_MESSAGE and ctx.tier == Tier.STARTER


def _starter_ai_evaluate(session: Session, ctx: UsageContext) -> QuotaDecision:
    remaining = max(0, ctx.profile.starter_credits_remaining)
    used = strategy_for(ResetPeriod.WEEKLY).current_usage(session, ctx)
    allowed = remaining > 0
    return QuotaDecision(
        allowed=allowed,
        feature=ctx.feature,
        tier=ctx.tier,
        limit=ctx.limits.limit,
        used=used,
        remaining=remaining,
        message=None if allowed else STARTER_AI_CREDITS_EXHAUSTED,
        upgrade_url=None if allowed else get_upgrade_url(ctx.tier),
        reset_period=ResetPeriod.WEEKLY,
        override="starter_weekly_credits",
    )


def _starter_ai_commit(session: Session, ctx: UsageContext) -> Debit:
    if not strategy_for(ResetPeriod.WEEKLY).record_usage(session, ctx):
        raise ConcurrencyConflictError("Starter AI credits changed during commit")
    return Debit(
        ConsumptionSource.STARTER_AI_CREDITS,
        {"credits_remaining": ctx.profile.starter_credits_remaining - 1},
    )


# --- application_assist on starter: one free sample ---

def _starter_sample_matches(ctx: UsageContext) -> bool:
    return (
        ctx.feature == Feature.APPLICATION_ASSIST
        and ctx.tier == Tier.STARTER
        and not ctx.profile.starter_app_assist_sample_used
    )


def _starter_sample_evaluate(session: Session, ctx: UsageContext) -> QuotaDecision:
    token_count = count_unused_tokens(session, ctx.user_id, ctx.limits.token_type) if ctx.limits.token_eligible else 0
    return QuotaDecision(
        allowed=True,
        feature=ctx.feature,
        tier=ctx.tier,
        limit=1,
        used=0,
        remaining=1,
        can_purchase=ctx.limits.can_purchase,
        purchase_price=ctx.limits.purchase_price,
        has_tokens=token_count > 0,
        token_count=token_count,
        reset_period=ResetPeriod.NONE,
        override="starter_application_assist_sample",
    )


def _starter_sample_commit(session: Session, ctx: UsageContext) -> Debit:
    if not mark_sample_used(session, ctx.user_id, ctx.now):
        raise ConcurrencyConflictError("Starter sample was used during commit")
    return Debit(ConsumptionSource.STARTER_SAMPLE)


OVERRIDES: List[QuotaOverride] = [
    QuotaOverride("unlimited_ai_messages", _unlimited_ai_matches, _unlimited_ai_evaluate, _unlimited_ai_commit),
    QuotaOverride("starter_weekly_credits", _starter_ai_matches, _starter_ai_evaluate, _starter_ai_commit),
    QuotaOverride(
        "starter_application_assist_sample",
        _starter_sample_matches,
        _starter_sample_evaluate,
        _starter_sample_commit,
    ),
]


def find_override(ctx: UsageContext) -> Optional[QuotaOverride]:
    for override in OVERRIDES:
        if override.matches(ctx):
            return override
    return None
