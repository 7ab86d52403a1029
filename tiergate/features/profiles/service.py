"""
tiergate/features/profiles/service.py

Profile quota state service.

Handles:
- get_or_create_profile(user_id): default starter profile on first sight
- set_tier(user_id, tier): tier switch supplied by billing or support
- Conditional fast-path updates (weekly credits, starter sample)
"""

from datetime import datetime, timedelta
import logging
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tiergate.core.clock import as_utc, normalize_now
from tiergate.core.config import settings
from tiergate.core.database import get_db_session, profiles
from tiergate.core.errors import NotFoundError, StorageError
from tiergate.core.locks import user_lock
from tiergate.features.catalog.service import starter_weekly_credits
from tiergate.features.usage.service import append_usage_event
from tiergate.models.profile import ProfileQuotaState
from tiergate.models.tier import Tier


logger = logging.getLogger(__name__)


def _row_to_profile(row) -> ProfileQuotaState:
    return ProfileQuotaState(
        user_id=row.user_id,
        tier=Tier(row.tier),
        subscription_status=row.subscription_status,
        trial_started_at=as_utc(row.trial_started_at),
        trial_ends_at=as_utc(row.trial_ends_at),
        starter_credits_remaining=row.starter_credits_remaining,
        starter_credits_reset_at=as_utc(row.starter_credits_reset_at),
        starter_app_assist_sample_used=bool(row.starter_app_assist_sample_used),
        created_at=as_utc(row.created_at),
    )


def _trial_window(tier: Tier, now: datetime):
    if tier != Tier.TRIAL:
        return None, None
    return now, now + timedelta(days=settings.TRIAL_LENGTH_DAYS)


def load_profile(session: Session, user_id: str, *, for_update: bool = False) -> Optional[ProfileQuotaState]:
    """Read a profile inside the caller's transaction, optionally row-locked."""
    query = select(profiles).where(profiles.c.user_id == user_id)
    if for_update:
        query = query.with_for_update()
    row = session.execute(query).first()
    return _row_to_profile(row) if row else None


def get_profile(user_id: str) -> Optional[ProfileQuotaState]:
    with get_db_session() as session:
        return load_profile(session, user_id)


def get_or_create_profile(user_id: str, tier: Tier = Tier.STARTER, now: Optional[datetime] = None) -> ProfileQuotaState:
    """Return the user's profile, creating a default one if it does not exist."""
    existing = get_profile(user_id)
    if existing:
        return existing

    now = normalize_now(now)
    tier = Tier(tier)
    trial_started_at, trial_ends_at = _trial_window(tier, now)
    try:
        with get_db_session() as session:
            session.execute(
                insert(profiles).values(
                    user_id=user_id,
                    tier=tier.value,
                    trial_started_at=trial_started_at,
                    trial_ends_at=trial_ends_at,
                    starter_credits_remaining=starter_weekly_credits(),
                    starter_credits_reset_at=None,
                    starter_app_assist_sample_used=False,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("[profiles] created", extra={"user_id": user_id, "tier": tier.value})
    except IntegrityError:
        # Created concurrently by another request
        logger.info("[profiles] create raced, re-reading", extra={"user_id": user_id})

    profile = get_profile(user_id)
    if profile is None:
        raise StorageError(f"Profile for {user_id} could not be created")
    return profile


def set_tier(
    user_id: str,
    tier: Tier,
    *,
    subscription_status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ProfileQuotaState:
    """
    Switch a user's tier and record a tier_changed audit event.

    Entering trial stamps a fresh trial window. Entering starter clears the
    weekly reset stamp so the next check refills the credit balance.
    """
    now = normalize_now(now)
    tier = Tier(tier)
    get_or_create_profile(user_id, now=now)

    with user_lock(user_id):
        with get_db_session() as session:
            current = load_profile(session, user_id, for_update=True)
            if current is None:
                raise NotFoundError(f"Profile for {user_id} not found")

            values = {
                "tier": tier.value,
                "subscription_status": subscription_status,
                "updated_at": now,
            }
            if tier == Tier.TRIAL and current.tier != Tier.TRIAL:
                values["trial_started_at"], values["trial_ends_at"] = _trial_window(tier, now)
            if tier == Tier.STARTER and current.tier != Tier.STARTER:
                values["starter_credits_reset_at"] = None

            session.execute(update(profiles).where(profiles.c.user_id == user_id).values(**values))
            append_usage_event(
                session,
                user_id,
                "tier_changed",
                {"previous_tier": current.tier.value, "new_tier": tier.value},
                now,
            )
            updated = load_profile(session, user_id)

    logger.info(
        "[profiles] tier changed",
        extra={"user_id": user_id, "tier": tier.value, "previous_tier": current.tier.value},
    )
    return updated


def decrement_starter_credit(session: Session, user_id: str, now: datetime) -> Optional[int]:
    """
    Take one weekly credit if any remain (single conditional UPDATE).

    Returns:
        Remaining credits after the decrement, or None if the balance was 0
    """
    result = session.execute(
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .where(profiles.c.starter_credits_remaining > 0)
        .values(
            starter_credits_remaining=profiles.c.starter_credits_remaining - 1,
            updated_at=now,
        )
    )
    if result.rowcount != 1:
        return None
    return session.execute(
        select(profiles.c.starter_credits_remaining).where(profiles.c.user_id == user_id)
    ).scalar_one()


def mark_sample_used(session: Session, user_id: str, now: datetime) -> bool:
    """Flip the one-time starter sample flag. False if it was already used."""
    result = session.execute(
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .where(profiles.c.starter_app_assist_sample_used.is_(False))
        .values(starter_app_assist_sample_used=True, updated_at=now)
    )
    return result.rowcount == 1


def refill_starter_credits(
    session: Session,
    user_id: str,
    credits: int,
    next_reset_at: datetime,
    expected_reset_at: Optional[datetime],
    now: datetime,
) -> bool:
    """
    Reset the weekly balance, guarded on the reset stamp still being the one
    the caller read. False means another writer already rolled it over.
    """
    stmt = (
        update(profiles)
        .where(profiles.c.user_id == user_id)
        .values(
            starter_credits_remaining=credits,
            starter_credits_reset_at=next_reset_at,
            updated_at=now,
        )
    )
    if expected_reset_at is None:
        stmt = stmt.where(profiles.c.starter_credits_reset_at.is_(None))
    else:
        stmt = stmt.where(profiles.c.starter_credits_reset_at == expected_reset_at)
    result = session.execute(stmt)
    return result.rowcount == 1
