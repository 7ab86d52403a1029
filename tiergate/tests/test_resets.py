"""Tests for lazy resets: weekly credits, monthly periods, countdowns, archival."""

from datetime import datetime, timedelta, timezone

import pytest

from tiergate.core.config import settings
from tiergate.core.errors import ValidationError
from tiergate.features.catalog.service import limits_for, starter_weekly_credits
from tiergate.features.consumption.service import commit
from tiergate.features.profiles.service import get_or_create_profile, get_profile, set_tier
from tiergate.features.resets import service as resets_service
from tiergate.features.resets.service import (
    archive_old_usage_periods,
    ensure_current_monthly_period,
    get_current_usage_period,
    get_days_until_reset,
    rollover_weekly_credits,
)
from tiergate.features.quota.service import evaluate
from tiergate.features.usage.service import get_usage_events
from tiergate.models.tier import Feature, Tier


def test_first_check_sets_weekly_reset(user_id, now):
    get_or_create_profile(user_id, now=now)

    assert rollover_weekly_credits(user_id, now) is True

    profile = get_profile(user_id)
    assert profile.starter_credits_remaining == 10
    assert profile.starter_credits_reset_at == now + timedelta(days=7)

    events = get_usage_events(user_id, "starter_ai_credits_reset")
    assert len(events) == 1
    assert events[0].metadata["previous_credits"] == 10
    assert events[0].metadata["new_credits"] == 10


def test_no_rollover_before_reset_time(user_id, now):
    get_or_create_profile(user_id, now=now)
    for _ in range(3):
        commit(user_id, Feature.AI_MESSAGE, now=now)

    assert rollover_weekly_credits(user_id, now + timedelta(days=3)) is False
    assert get_profile(user_id).starter_credits_remaining == 7


def test_rollover_after_reset_time(user_id, now):
    get_or_create_profile(user_id, now=now)
    for _ in range(10):
        commit(user_id, Feature.AI_MESSAGE, now=now)

    later = now + timedelta(days=7)
    assert rollover_weekly_credits(user_id, later) is True

    profile = get_profile(user_id)
    assert profile.starter_credits_remaining == 10
    assert profile.starter_credits_reset_at == later + timedelta(days=7)

    events = get_usage_events(user_id, "starter_ai_credits_reset")
    assert events[-1].metadata["previous_credits"] == 0


def test_evaluate_after_expiry_sees_fresh_credits(user_id, now):
    from tiergate.features.quota.service import evaluate

    get_or_create_profile(user_id, now=now)
    for _ in range(10):
        commit(user_id, Feature.AI_MESSAGE, now=now)
    assert not evaluate(user_id, Feature.AI_MESSAGE, now).allowed

    decision = evaluate(user_id, Feature.AI_MESSAGE, now + timedelta(days=8))
    assert decision.allowed
    assert decision.remaining == 10


def test_rollover_is_noop_for_paid_tiers(user_id, now):
    set_tier(user_id, Tier.PRO, now=now)

    assert rollover_weekly_credits(user_id, now) is False
    assert get_usage_events(user_id, "starter_ai_credits_reset") == []


def test_monthly_period_spans_calendar_month(user_id, now):
    get_or_create_profile(user_id, now=now)

    period = ensure_current_monthly_period(user_id, now)

    assert period.period_start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert period.period_end == datetime(2026, 3, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)
    assert all(count == 0 for count in period.counts.values())
    assert period.covers(now)


def test_monthly_period_is_created_once(user_id, now):
    get_or_create_profile(user_id, now=now)

    first = ensure_current_monthly_period(user_id, now)
    second = ensure_current_monthly_period(user_id, now + timedelta(days=10))

    assert first.id == second.id
    assert len(get_usage_events(user_id, "monthly_period_created")) == 1


def test_monthly_period_create_race_rereads_winner(user_id, now, monkeypatch):
    get_or_create_profile(user_id, now=now)
    winner = ensure_current_monthly_period(user_id, now)

    real_lookup = resets_service.get_current_usage_period
    calls = []

    def stale_then_real(uid, when=None):
        calls.append(when)
        if len(calls) == 1:
            return None
        return real_lookup(uid, when)

    monkeypatch.setattr(resets_service, "get_current_usage_period", stale_then_real)

    period = ensure_current_monthly_period(user_id, now)

    assert period.id == winner.id
    assert len(get_usage_events(user_id, "monthly_period_created")) == 1


def test_new_month_creates_new_period(user_id, now):
    get_or_create_profile(user_id, now=now)
    march = ensure_current_monthly_period(user_id, now)
    april = ensure_current_monthly_period(user_id, datetime(2026, 4, 1, tzinfo=timezone.utc))

    assert march.id != april.id
    assert april.period_start == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert get_current_usage_period(user_id, now).id == march.id


def test_december_period_ends_at_year_end(user_id):
    december = datetime(2026, 12, 20, tzinfo=timezone.utc)
    get_or_create_profile(user_id, now=december)

    period = ensure_current_monthly_period(user_id, december)

    assert period.period_end == datetime(2026, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_days_until_weekly_reset(user_id, now):
    get_or_create_profile(user_id, now=now)
    assert get_days_until_reset(user_id, "weekly", now) == 0

    rollover_weekly_credits(user_id, now)
    assert get_days_until_reset(user_id, "weekly", now) == 7
    assert get_days_until_reset(user_id, "weekly", now + timedelta(days=2, hours=1)) == 5
    assert get_days_until_reset(user_id, "weekly", now + timedelta(days=9)) == 0


def test_days_until_monthly_reset(user_id):
    last_day = datetime(2026, 3, 31, 18, 0, tzinfo=timezone.utc)
    assert get_days_until_reset(user_id, "monthly", last_day) == 1

    first_instant = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert get_days_until_reset(user_id, "monthly", first_instant) == 31


def test_unknown_reset_type(user_id, now):
    with pytest.raises(ValidationError):
        get_days_until_reset(user_id, "yearly", now)


def test_archive_counts_periods_outside_retention(user_id, now):
    get_or_create_profile(user_id, now=now)
    for when in (
        datetime(2025, 1, 10, tzinfo=timezone.utc),
        datetime(2025, 2, 10, tzinfo=timezone.utc),
        datetime(2025, 6, 10, tzinfo=timezone.utc),
        now,
    ):
        ensure_current_monthly_period(user_id, when)

    # Cutoff is 2025-03-15: January and February ended before it
    assert archive_old_usage_periods(now, retention_months=12) == 2
    assert archive_old_usage_periods(now, retention_months=6) == 3

    # Counting never deletes
    assert get_current_usage_period(user_id, datetime(2025, 1, 10, tzinfo=timezone.utc)) is not None


def test_weekly_grant_matches_starter_ai_limit():
    assert starter_weekly_credits() == limits_for(Feature.AI_MESSAGE, Tier.STARTER).limit
    assert starter_weekly_credits() == settings.STARTER_WEEKLY_CREDITS


def test_refill_and_usage_share_one_grant(user_id, now, monkeypatch):
    # A settings change after startup must not split refill from the usage count
    monkeypatch.setattr(settings, "STARTER_WEEKLY_CREDITS", 25)
    get_or_create_profile(user_id, now=now)
    for _ in range(4):
        commit(user_id, Feature.AI_MESSAGE, now=now)
    rollover_weekly_credits(user_id, now + timedelta(days=7))

    decision = evaluate(user_id, Feature.AI_MESSAGE, now + timedelta(days=7, hours=1))

    assert decision.limit == starter_weekly_credits()
    assert decision.used == 0
    assert decision.remaining == decision.limit
