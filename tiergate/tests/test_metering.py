"""Tests for the evaluate -> work -> commit helper."""

import pytest

from tiergate.core.errors import ConcurrencyConflictError, QuotaExceededError
from tiergate.features.consumption.service import commit
from tiergate.features.metering import service as metering_service
from tiergate.features.metering.service import metered_call
from tiergate.features.profiles.service import get_or_create_profile, set_tier
from tiergate.features.quota.service import evaluate
from tiergate.models.quota import ConsumptionSource
from tiergate.models.tier import Feature, Tier


def test_metered_call_runs_work_and_commits(user_id, now):
    set_tier(user_id, Tier.PLUS, now=now)

    result, receipt = metered_call(
        user_id, Feature.RESUME_BUILDER, lambda: "resume-1", metadata={"job_id": "j-1"}, now=now
    )

    assert result == "resume-1"
    assert receipt.source == ConsumptionSource.TIER_ALLOWANCE
    assert evaluate(user_id, Feature.RESUME_BUILDER, now).used == 1


def test_denied_call_never_runs_work(user_id, now):
    get_or_create_profile(user_id, now=now)
    calls = []

    with pytest.raises(QuotaExceededError):
        metered_call(user_id, Feature.INTERVIEW_PREP, lambda: calls.append(1), now=now)

    assert calls == []


def test_conflict_is_retried_once(user_id, now, monkeypatch):
    set_tier(user_id, Tier.PLUS, now=now)
    attempts = []

    def flaky_commit(*args, **kwargs):
        attempts.append(1)
        if len(attempts) == 1:
            raise ConcurrencyConflictError("lost race")
        return commit(*args, **kwargs)

    monkeypatch.setattr(metering_service, "commit", flaky_commit)

    _, receipt = metered_call(user_id, Feature.LIFEPLAN_REGEN, lambda: "plan", now=now)

    assert len(attempts) == 2
    assert receipt.source == ConsumptionSource.TIER_ALLOWANCE
    assert evaluate(user_id, Feature.LIFEPLAN_REGEN, now).used == 1


def test_conflict_with_exhausted_allowance_raises(user_id, now, monkeypatch):
    set_tier(user_id, Tier.PLUS, now=now)
    for _ in range(3):
        commit(user_id, Feature.LIFEPLAN_REGEN, now=now)

    def racing_commit(*args, **kwargs):
        # Another request takes the last unit first
        commit(*args, **kwargs)
        raise ConcurrencyConflictError("lost race")

    monkeypatch.setattr(metering_service, "commit", racing_commit)

    with pytest.raises(QuotaExceededError):
        metered_call(user_id, Feature.LIFEPLAN_REGEN, lambda: "plan", now=now)

    assert evaluate(user_id, Feature.LIFEPLAN_REGEN, now).used == 4
