"""Tests for the plan generation dedup guard."""

from datetime import timedelta

import pytest

from tiergate.core.errors import NotFoundError, QuotaExceededError
from tiergate.features.generation.service import (
    begin_generation,
    check_recent_generation,
    complete_generation,
    fail_generation,
    get_generation,
    run_generation,
)
from tiergate.features.profiles.service import get_or_create_profile, set_tier
from tiergate.features.quota.service import evaluate
from tiergate.models.generation import GenerationStatus
from tiergate.models.quota import ConsumptionSource
from tiergate.models.tier import Feature, Tier


class FakeGenerator:
    """Counts invocations and returns a canned plan."""

    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("model timeout")
        return f"plan-{self.calls}", {"milestones": 3}


def test_second_request_inside_window_is_duplicate(user_id, now):
    first = begin_generation(user_id, now=now)
    second = begin_generation(user_id, now=now + timedelta(seconds=30))

    assert not first.duplicate
    assert first.record.status == GenerationStatus.IN_PROGRESS
    assert second.duplicate
    assert second.record.id == first.record.id


def test_request_after_window_starts_new_generation(user_id, now):
    first = begin_generation(user_id, now=now)
    second = begin_generation(user_id, now=now + timedelta(seconds=121))

    assert not second.duplicate
    assert second.record.id != first.record.id


def test_failed_generation_does_not_block_retry(user_id, now):
    first = begin_generation(user_id, now=now)
    fail_generation(first.record.id, "model timeout")

    assert check_recent_generation(user_id, now=now + timedelta(seconds=5)) is None
    retry = begin_generation(user_id, now=now + timedelta(seconds=5))
    assert not retry.duplicate


def test_succeeded_generation_is_returned_inside_window(user_id, now):
    claim = begin_generation(user_id, now=now)
    complete_generation(claim.record.id, "plan-1", {"milestones": 3})

    recent = check_recent_generation(user_id, window_seconds=60, now=now + timedelta(seconds=10))
    assert recent.id == claim.record.id
    assert recent.status == GenerationStatus.SUCCEEDED
    assert recent.result_ref == "plan-1"
    assert recent.result == {"milestones": 3}


def test_idempotency_key_dedups_outside_window(user_id, now):
    claim = begin_generation(user_id, idempotency_key="regen-42", now=now)
    complete_generation(claim.record.id, "plan-1")

    again = begin_generation(user_id, idempotency_key="regen-42", now=now + timedelta(hours=2))

    assert again.duplicate
    assert again.record.id == claim.record.id
    assert again.record.status == GenerationStatus.SUCCEEDED


def test_failed_keyed_generation_is_reopened(user_id, now):
    claim = begin_generation(user_id, idempotency_key="regen-7", now=now)
    fail_generation(claim.record.id, "model timeout")

    retry = begin_generation(user_id, idempotency_key="regen-7", now=now + timedelta(seconds=5))

    assert not retry.duplicate
    assert retry.record.id == claim.record.id
    assert get_generation(claim.record.id).status == GenerationStatus.IN_PROGRESS


def test_finishing_unknown_generation_is_not_found():
    with pytest.raises(NotFoundError):
        complete_generation("missing", "plan-x")


def test_run_generation_charges_once(user_id, now):
    set_tier(user_id, Tier.PLUS, now=now)
    generate = FakeGenerator()

    first = run_generation(user_id, generate, now=now)
    second = run_generation(user_id, generate, now=now + timedelta(seconds=20))

    assert not first.duplicate
    assert first.record.status == GenerationStatus.SUCCEEDED
    assert first.receipt.source == ConsumptionSource.TIER_ALLOWANCE
    assert second.duplicate
    assert second.record.id == first.record.id
    assert second.receipt is None
    assert generate.calls == 1
    assert evaluate(user_id, Feature.LIFEPLAN_REGEN, now).used == 1


def test_run_generation_denied_marks_attempt_failed(user_id, now):
    get_or_create_profile(user_id, now=now)
    generate = FakeGenerator()

    with pytest.raises(QuotaExceededError):
        run_generation(user_id, generate, now=now)

    assert generate.calls == 0
    assert check_recent_generation(user_id, now=now) is None


def test_work_failure_debits_nothing(user_id, now):
    set_tier(user_id, Tier.PLUS, now=now)

    with pytest.raises(RuntimeError):
        run_generation(user_id, FakeGenerator(fail=True), idempotency_key="regen-1", now=now)

    assert evaluate(user_id, Feature.LIFEPLAN_REGEN, now).used == 0
    claim = begin_generation(user_id, idempotency_key="regen-1", now=now)
    assert not claim.duplicate


def test_uncharged_generation_is_always_allowed(user_id, now):
    get_or_create_profile(user_id, now=now)

    outcome = run_generation(user_id, FakeGenerator(), charge=False, now=now)

    assert not outcome.duplicate
    assert outcome.receipt is None
    assert outcome.record.result_ref == "plan-1"


def test_keyed_request_while_unkeyed_in_flight_is_duplicate(user_id, now):
    first = begin_generation(user_id, now=now)
    second = begin_generation(user_id, idempotency_key="retry-1", now=now + timedelta(seconds=10))

    assert second.duplicate
    assert second.record.id == first.record.id


def test_different_keys_inside_window_run_and_charge_once(user_id, now):
    set_tier(user_id, Tier.PRO, now=now)
    generate = FakeGenerator()

    first = run_generation(user_id, generate, idempotency_key="k1", now=now)
    second = run_generation(user_id, generate, idempotency_key="k2", now=now + timedelta(seconds=15))

    assert not first.duplicate
    assert second.duplicate
    assert second.record.id == first.record.id
    assert generate.calls == 1
    assert evaluate(user_id, Feature.LIFEPLAN_REGEN, now).used == 1


def test_different_key_after_window_starts_new_generation(user_id, now):
    first = begin_generation(user_id, idempotency_key="k1", now=now)
    complete_generation(first.record.id, "plan-1")

    second = begin_generation(user_id, idempotency_key="k2", now=now + timedelta(seconds=121))

    assert not second.duplicate
    assert second.record.id != first.record.id


def test_stale_keyed_claim_is_reopened(user_id, now):
    claim = begin_generation(user_id, idempotency_key="regen-9", now=now)

    still_running = begin_generation(user_id, idempotency_key="regen-9", now=now + timedelta(seconds=60))
    assert still_running.duplicate

    later = now + timedelta(minutes=10)
    retry = begin_generation(user_id, idempotency_key="regen-9", now=later)

    assert not retry.duplicate
    assert retry.record.id == claim.record.id
    assert retry.record.created_at == later
    assert check_recent_generation(user_id, now=later + timedelta(seconds=5)).id == claim.record.id
