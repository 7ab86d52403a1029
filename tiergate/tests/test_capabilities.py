"""Tests for the jobs-surface capability table."""

import copy

import pytest
from fastapi.testclient import TestClient

from tiergate.core.errors import ConfigurationError, ValidationError
from tiergate.features.catalog.capabilities import (
    ACTIONS,
    CAPABILITY_LIMITS,
    build_capabilities,
    can_perform,
    capabilities_for,
    get_upgrade_prompt,
    validate_capabilities,
)
from tiergate.features.profiles.service import set_tier
from tiergate.main import app
from tiergate.models.tier import Tier


def test_every_tier_has_capabilities():
    validate_capabilities()
    for tier in Tier:
        assert capabilities_for(tier).tier == tier


def test_configured_limits():
    assert capabilities_for(Tier.STARTER).searches_per_day == 5
    assert capabilities_for(Tier.TRIAL).saved_jobs_max == 15
    assert capabilities_for(Tier.PLUS).max_alerts == 5
    assert capabilities_for(Tier.PRO).results_per_search == 50


def test_flags_answer_directly():
    assert can_perform(Tier.STARTER, "can_use_map_view") is False
    assert can_perform(Tier.TRIAL, "can_use_map_view") is True
    assert can_perform(Tier.TRIAL, "can_export_jobs") is False
    assert can_perform(Tier.PLUS, "can_export_jobs") is True
    assert can_perform(Tier.PRO, "show_upgrade_prompts") is False


def test_counts_allow_when_positive():
    assert can_perform(Tier.STARTER, "searches_per_day") is True
    assert can_perform(Tier.STARTER, "max_alerts") is False
    assert can_perform(Tier.TRIAL, "max_alerts") is True


def test_tier_names_are_case_insensitive_and_unknown_falls_back_to_starter():
    assert capabilities_for("PRO").tier == Tier.PRO
    assert capabilities_for("enterprise").tier == Tier.STARTER
    assert can_perform("enterprise", "can_create_alerts") is False


def test_unknown_action_is_rejected():
    with pytest.raises(ValidationError):
        can_perform(Tier.PRO, "can_fly")


def test_actions_exclude_tier_field():
    assert "tier" not in ACTIONS
    assert "searches_per_day" in ACTIONS


def test_missing_tier_is_configuration_error():
    config = copy.deepcopy(CAPABILITY_LIMITS)
    del config[Tier.TRIAL]

    with pytest.raises(ConfigurationError) as exc:
        build_capabilities(config)
    assert "trial" in str(exc.value)


def test_negative_count_is_configuration_error():
    config = copy.deepcopy(CAPABILITY_LIMITS)
    config[Tier.PLUS]["saved_jobs_max"] = -1

    with pytest.raises(ConfigurationError):
        validate_capabilities(config)


def test_upgrade_prompt_targets_next_tier():
    starter = get_upgrade_prompt("job alerts", Tier.STARTER)
    assert starter.target_tier == Tier.PLUS
    assert "job alerts" in starter.message

    assert get_upgrade_prompt("exports", Tier.TRIAL).target_tier == Tier.PRO
    assert get_upgrade_prompt("exports", "plus").title == "Upgrade to Pro"
    assert get_upgrade_prompt("exports", Tier.PRO).title == "Feature Locked"


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_capabilities_endpoint_uses_profile_tier(client, user_id, now):
    set_tier(user_id, Tier.PLUS, now=now)

    resp = client.get("/v1/capabilities", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["tier"] == "plus"
    assert body["saved_jobs_max"] == 30
    assert body["can_export_jobs"] is True


def test_denied_capability_carries_upgrade_prompt(client, user_id):
    resp = client.get("/v1/capabilities/can_create_alerts", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["tier"] == "starter"
    assert body["allowed"] is False
    assert body["upgrade"]["target_tier"] == "plus"


def test_unknown_capability_is_400(client, user_id):
    resp = client.get("/v1/capabilities/can_fly", headers={"X-User-Id": user_id})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
