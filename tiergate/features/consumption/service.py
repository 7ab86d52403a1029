"""
tiergate/features/consumption/service.py

Consumption coordinator (write path).

commit() debits exactly one entitlement source per successful feature use,
in priority order:
1. Starter weekly AI credits
2. Starter application-assist sample
3. Oldest unused course token
4. Single-use purchase (no purchase ledger yet)
5. Tier allowance via the reset strategy

The debit and its <feature>_used audit event share one transaction that
holds the profile row lock; a failure rolls back both.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tiergate.core.clock import normalize_now
from tiergate.core.database import get_db_session
from tiergate.core.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
)
from tiergate.core.locks import user_lock
from tiergate.core.logging import log_event
from tiergate.features.profiles.service import get_profile
from tiergate.features.quota.overrides import find_override
from tiergate.features.quota.service import apply_lazy_resets, build_context, decide, parse_feature
from tiergate.features.quota.strategies import Debit, UsageContext, strategy_for
from tiergate.features.tokens.service import mark_token_used, oldest_unused_token
from tiergate.features.usage.service import append_usage_event, emit_usage_event
from tiergate.models.quota import ConsumptionReceipt, ConsumptionSource
from tiergate.models.tier import Feature


logger = logging.getLogger(__name__)


def consume_single_use_purchase(session: Session, ctx: UsageContext) -> Optional[Debit]:
    """
    Debit a one-time purchase for this feature, if the user holds one.

    Purchases are priced in the catalog but not yet sold, so there is never
    anything to debit.
    """
    return None


def _debit(session: Session, ctx: UsageContext) -> Debit:
    override = find_override(ctx)
    if override is not None:
        return override.commit(session, ctx)

    limits = ctx.limits
    if limits.token_eligible:
        token = oldest_unused_token(session, ctx.user_id, limits.token_type, for_update=True)
        if token is not None:
            if not mark_token_used(session, token.id, ctx.now):
                raise ConcurrencyConflictError("Course token was spent during commit")
            return Debit(
                ConsumptionSource.COURSE_TOKEN,
                {"token_id": token.id, "token_type": token.token_type},
                token.id,
            )

    purchase = consume_single_use_purchase(session, ctx)
    if purchase is not None:
        return purchase

    if not strategy_for(limits.reset_period).record_usage(session, ctx):
        raise ConcurrencyConflictError(f"{ctx.feature.value} allowance changed during commit")
    return Debit(ConsumptionSource.TIER_ALLOWANCE, {"tier": ctx.tier.value})


def _record_commit_failure(
    user_id: str,
    feature: Feature,
    metadata: Optional[Dict[str, Any]],
    exc: Exception,
    now: datetime,
) -> None:
    log_event(
        "error",
        "[consumption] COMMIT_FAILED",
        user_id=user_id,
        feature=feature.value,
        event_type="usage_commit_failed",
        error_code=getattr(exc, "code", "internal_error"),
        extra={"metadata": metadata, "error_type": exc.__class__.__name__, "error_message": str(exc)},
    )
    try:
        emit_usage_event(
            user_id,
            "usage_commit_failed",
            {"feature": feature.value, "error_type": exc.__class__.__name__, "metadata": metadata},
            now,
        )
    except (StorageError, SQLAlchemyError):
        logger.error(
            "[consumption] failure event not recorded",
            exc_info=True,
            extra={"user_id": user_id, "feature": feature.value},
        )


def commit(
    user_id: str,
    feature: Feature,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> ConsumptionReceipt:
    """
    Record one successful use of a feature.

    Call after the gated work has succeeded. Nothing is debited if the work
    is abandoned before this point.

    Raises:
        NotFoundError: user has no profile
        QuotaExceededError: nothing left to debit
        ConcurrencyConflictError: a conditional debit lost a race; re-evaluate
        StorageError: ledger unavailable
    """
    now = normalize_now(now)
    feature = parse_feature(feature)

    with user_lock(user_id):
        if get_profile(user_id) is None:
            raise NotFoundError(f"Profile for {user_id} not found")

        try:
            apply_lazy_resets(user_id, feature, now)

            with get_db_session() as session:
                ctx = build_context(session, user_id, feature, now, for_update=True)
                decision = decide(session, ctx)
                if not decision.allowed:
                    raise QuotaExceededError(decision.message or "Quota exceeded", decision=decision)

                debit = _debit(session, ctx)
                event_metadata = dict(metadata or {})
                event_metadata.update(debit.details or {})
                event_metadata["source"] = debit.source.value
                event_metadata["tier"] = ctx.tier.value
                event = append_usage_event(session, user_id, feature.used_event_type, event_metadata, now)
        except QuotaExceededError:
            logger.warning(
                "[consumption] DENIED",
                extra={"user_id": user_id, "feature": feature.value},
            )
            raise
        except Exception as exc:
            _record_commit_failure(user_id, feature, metadata, exc, now)
            raise

    logger.info(
        "[consumption] COMMITTED",
        extra={
            "user_id": user_id,
            "feature": feature.value,
            "tier": ctx.tier.value,
            "source": debit.source.value,
            "event_id": event.id,
        },
    )
    return ConsumptionReceipt(
        user_id=user_id,
        feature=feature,
        tier=ctx.tier,
        source=debit.source,
        event_id=event.id,
        token_id=debit.token_id,
    )
