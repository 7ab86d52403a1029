"""
tiergate/features/resets/service.py

Lazy reset scheduling for time-scoped allowances.

Handles:
- Monthly usage period creation (first instant to last microsecond of the UTC month)
- Starter weekly AI credit rollover
- Days-until-reset countdowns for usage screens
- Old-period archival counting (rows are never deleted here)

Resets are applied on access; there is no background timer.
"""

from datetime import datetime, timedelta
import logging
import math
from typing import Literal, Optional

from sqlalchemy.exc import IntegrityError

from tiergate.core.clock import month_bounds, months_ago, normalize_now
from tiergate.core.config import settings
from tiergate.core.database import get_db_session
from tiergate.core.errors import StorageError, ValidationError
from tiergate.core.locks import user_lock
from tiergate.features.catalog.service import starter_weekly_credits
from tiergate.features.profiles.service import get_profile, load_profile, refill_starter_credits
from tiergate.features.usage.service import (
    append_usage_event,
    count_periods_ending_before,
    insert_period,
    load_current_period,
)
from tiergate.models.tier import Tier
from tiergate.models.usage_period import UsagePeriod


logger = logging.getLogger(__name__)

ResetType = Literal["weekly", "monthly"]


def get_current_usage_period(user_id: str, now: Optional[datetime] = None) -> Optional[UsagePeriod]:
    """The period covering now, or None if it has not been created yet."""
    now = normalize_now(now)
    with get_db_session() as session:
        return load_current_period(session, user_id, now)


def ensure_current_monthly_period(user_id: str, now: Optional[datetime] = None) -> UsagePeriod:
    """
    Get or create the usage period for the month containing now.

    The user's profile must already exist. Two concurrent callers may both
    try the insert; the unique (user_id, period_start) constraint rejects
    the loser, which re-reads the winner's row.

    Returns:
        UsagePeriod covering now
    """
    now = normalize_now(now)
    existing = get_current_usage_period(user_id, now)
    if existing:
        return existing

    period_start, period_end = month_bounds(now)
    try:
        with get_db_session() as session:
            period_id = insert_period(session, user_id, period_start, period_end, now)
            append_usage_event(
                session,
                user_id,
                "monthly_period_created",
                {
                    "period_id": period_id,
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                },
                now,
            )
        logger.info(
            "[resets] monthly period created",
            extra={"user_id": user_id, "period_start": period_start.isoformat()},
        )
    except IntegrityError:
        logger.info("[resets] monthly period create raced, re-reading", extra={"user_id": user_id})

    period = get_current_usage_period(user_id, now)
    if period is None:
        raise StorageError(f"Usage period for {user_id} could not be created")
    return period


def rollover_weekly_credits(user_id: str, now: Optional[datetime] = None) -> bool:
    """
    Refill starter weekly AI credits if the reset time is unset or has passed.

    Returns:
        True if a rollover happened. Always False for non-starter tiers.
    """
    now = normalize_now(now)
    with user_lock(user_id):
        with get_db_session() as session:
            profile = load_profile(session, user_id, for_update=True)
            if profile is None or profile.tier != Tier.STARTER:
                return False

            reset_at = profile.starter_credits_reset_at
            if reset_at is not None and reset_at > now:
                return False

            credits = starter_weekly_credits()
            next_reset_at = now + timedelta(days=settings.STARTER_CREDIT_RESET_DAYS)
            if not refill_starter_credits(session, user_id, credits, next_reset_at, reset_at, now):
                # Another process rolled it over between our read and write
                return False

            append_usage_event(
                session,
                user_id,
                "starter_ai_credits_reset",
                {
                    "previous_credits": profile.starter_credits_remaining,
                    "new_credits": credits,
                    "next_reset_at": next_reset_at.isoformat(),
                },
                now,
            )

    logger.info(
        "[resets] starter weekly credits reset",
        extra={"user_id": user_id, "previous_credits": profile.starter_credits_remaining},
    )
    return True


def get_days_until_reset(user_id: str, reset_type: ResetType, now: Optional[datetime] = None) -> int:
    """Whole days (rounded up, never negative) until the next weekly or monthly reset."""
    now = normalize_now(now)

    if reset_type == "weekly":
        profile = get_profile(user_id)
        if profile is None or profile.starter_credits_reset_at is None:
            return 0
        target = profile.starter_credits_reset_at
    elif reset_type == "monthly":
        _, period_end = month_bounds(now)
        target = period_end + timedelta(microseconds=1)
    else:
        raise ValidationError(f"Unknown reset type: {reset_type}")

    seconds = (target - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def archive_old_usage_periods(now: Optional[datetime] = None, retention_months: Optional[int] = None) -> int:
    """
    Count usage periods that ended before the retention window.

    Archival itself belongs to a batch job; this only reports how many rows
    are eligible so the job can be scheduled and monitored.
    """
    now = normalize_now(now)
    if retention_months is None:
        retention_months = settings.USAGE_PERIOD_RETENTION_MONTHS
    cutoff = months_ago(now, retention_months)

    with get_db_session() as session:
        count = count_periods_ending_before(session, cutoff)

    logger.info(
        "[resets] usage periods eligible for archival",
        extra={"count": count, "cutoff": cutoff.isoformat(), "retention_months": retention_months},
    )
    return count
