"""
tiergate/features/metering/service.py

evaluate -> work -> commit in one call, for gated features that have no
dedup requirement (AI messages, resume and cover letter generation, ...).
"""

from datetime import datetime
import logging
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from tiergate.core.errors import ConcurrencyConflictError, QuotaExceededError
from tiergate.features.consumption.service import commit
from tiergate.features.quota.service import evaluate, require_quota
from tiergate.models.quota import ConsumptionReceipt
from tiergate.models.tier import Feature


logger = logging.getLogger(__name__)

T = TypeVar("T")


def metered_call(
    user_id: str,
    feature: Feature,
    work: Callable[[], T],
    *,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Tuple[T, ConsumptionReceipt]:
    """
    Gate `work` on quota and debit it once it succeeds.

    A commit that loses a race is retried once against fresh state. If the
    fresh check denies, the work has already run and the mismatch is logged
    for reconciliation before QuotaExceededError is raised.
    """
    require_quota(user_id, feature, now)
    result = work()

    try:
        receipt = commit(user_id, feature, metadata, now)
    except ConcurrencyConflictError:
        logger.warning(
            "[metering] commit conflict, re-evaluating",
            extra={"user_id": user_id, "feature": Feature(feature).value},
        )
        decision = evaluate(user_id, feature, now)
        if not decision.allowed:
            logger.error(
                "[metering] UNBILLED_WORK",
                extra={"user_id": user_id, "feature": decision.feature.value, "metadata": metadata},
            )
            raise QuotaExceededError(decision.message or "Quota exceeded", decision=decision)
        receipt = commit(user_id, feature, metadata, now)

    return result, receipt
