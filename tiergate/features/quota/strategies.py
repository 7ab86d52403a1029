"""
tiergate/features/quota/strategies.py

Usage accounting per reset period.

Each ResetPeriod maps to one strategy that knows how to read current usage
and how to record one more use:
- monthly: counter on the current UsagePeriod row
- trial:   count of <feature>_used events since the trial window opened
- weekly:  starter AI credit balance on the profile
- none:    nothing to count; only unbounded allowances can be recorded
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.orm import Session

from tiergate.core.errors import StorageError
from tiergate.features.profiles.service import decrement_starter_credit
from tiergate.features.usage.service import (
    count_events_since,
    increment_period_counter,
    load_current_period,
)
from tiergate.models.profile import ProfileQuotaState
from tiergate.models.quota import ConsumptionSource
from tiergate.models.tier import Feature, FeatureLimit, ResetPeriod, Tier


@dataclass(frozen=True)
class UsageContext:
    """Everything a strategy or override needs for one (user, feature) check."""
    user_id: str
    feature: Feature
    tier: Tier
    limits: FeatureLimit
    profile: ProfileQuotaState
    now: datetime


class Debit(NamedTuple):
    """What a commit consumed, folded into the <feature>_used audit event."""
    source: ConsumptionSource
    details: Optional[Dict[str, Any]] = None
    token_id: Optional[int] = None


class UsageStrategy:
    reset_period: ResetPeriod

    def current_usage(self, session: Session, ctx: UsageContext) -> int:
        raise NotImplementedError

    def record_usage(self, session: Session, ctx: UsageContext, enforce: bool = True) -> bool:
        """Record one use. False when an enforced limit is already reached."""
        raise NotImplementedError


class NoneStrategy(UsageStrategy):
    reset_period = ResetPeriod.NONE

    def current_usage(self, session, ctx):
        return 0

    def record_usage(self, session, ctx, enforce=True):
        # The <feature>_used event is the only record
        return ctx.limits.unbounded or not enforce


class TrialStrategy(UsageStrategy):
    reset_period = ResetPeriod.TRIAL

    def current_usage(self, session, ctx):
        return count_events_since(
            session,
            ctx.user_id,
            ctx.feature.used_event_type,
            ctx.profile.trial_window_start,
        )

    def record_usage(self, session, ctx, enforce=True):
        if not enforce or ctx.limits.unbounded:
            return True
        # Re-counted inside the caller's locked transaction
        return self.current_usage(session, ctx) < ctx.limits.limit


class MonthlyStrategy(UsageStrategy):
    reset_period = ResetPeriod.MONTHLY

    def _period(self, session, ctx):
        period = load_current_period(session, ctx.user_id, ctx.now)
        if period is None:
            raise StorageError(f"No usage period covers {ctx.now.isoformat()} for {ctx.user_id}")
        return period

    def current_usage(self, session, ctx):
        period = load_current_period(session, ctx.user_id, ctx.now)
        return period.count_for(ctx.feature) if period else 0

    def record_usage(self, session, ctx, enforce=True):
        period = self._period(session, ctx)
        limit = ctx.limits.limit if enforce and not ctx.limits.soft_cap else None
        return increment_period_counter(session, period.id, ctx.feature, ctx.now, limit=limit)


class WeeklyStrategy(UsageStrategy):
    reset_period = ResetPeriod.WEEKLY

    def current_usage(self, session, ctx):
        limit = ctx.limits.limit or 0
        return max(0, limit - ctx.profile.starter_credits_remaining)

    def record_usage(self, session, ctx, enforce=True):
        return decrement_starter_credit(session, ctx.user_id, ctx.now) is not None


STRATEGIES: Dict[ResetPeriod, UsageStrategy] = {
    strategy.reset_period: strategy
    for strategy in (NoneStrategy(), TrialStrategy(), MonthlyStrategy(), WeeklyStrategy())
}


def strategy_for(reset_period: ResetPeriod) -> UsageStrategy:
    return STRATEGIES[ResetPeriod(reset_period)]
