"""Tests for the HTTP surface and its error contract."""

import pytest
from fastapi.testclient import TestClient

from tiergate.api import health
from tiergate.core.config import settings
from tiergate.core.database import check_connection
from tiergate.main import app


ADMIN_KEY = "test-admin-key"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    with TestClient(app) as test_client:
        yield test_client


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_reports_ledger_tables(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_check_connection_against_ledger_db():
    assert check_connection() is True


def test_readyz_unavailable_when_database_unreachable(client, monkeypatch):
    monkeypatch.setattr(health, "check_connection", lambda: False)

    resp = client.get("/readyz")

    assert resp.status_code == 503
    assert resp.json() == {"status": "error", "detail": "database unreachable"}


def test_readyz_reports_missing_tables(client, monkeypatch):
    monkeypatch.setattr(health, "REQUIRED_TABLES", health.REQUIRED_TABLES + ["job_searches"])

    resp = client.get("/readyz")

    assert resp.status_code == 503
    assert resp.json()["detail"] == "missing tables: job_searches"


def test_quota_check_for_new_user(client, user_id):
    resp = client.get("/v1/quota/ai_message", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    assert resp.headers.get("x-request-id")
    body = resp.json()
    assert body["allowed"] is True
    assert body["tier"] == "starter"
    assert body["limit"] == 10
    assert body["remaining"] == 10


def test_request_id_is_echoed(client, user_id):
    resp = client.get("/v1/quota/ai_message", headers={"X-User-Id": user_id, "x-request-id": "rid-123"})
    assert resp.headers["x-request-id"] == "rid-123"


def test_quota_exceeded_has_standard_shape(client, user_id):
    resp = client.post("/v1/quota/lifeplan_regen/commit", headers={"X-User-Id": user_id}, json={})
    assert resp.status_code == 404

    client.get("/v1/quota/lifeplan_regen", headers={"X-User-Id": user_id})
    resp = client.post(
        "/v1/quota/lifeplan_regen/commit",
        headers={"X-User-Id": user_id},
        json={"metadata": {"plan_id": "p-1"}},
    )

    assert resp.status_code == 403
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "quota_exceeded"
    assert body["error"]["request_id"] == rid
    assert "Upgrade to Trial, Plus, or Pro" in body["detail"]
    assert body["quota"]["currentTier"] == "starter"
    assert body["quota"]["upgradeUrl"] == "/pricing"
    assert body["quota"]["canPurchase"] is True
    assert body["quota"]["purchasePrice"] == "2.99"


def test_unknown_feature_is_validation_error(client, user_id):
    resp = client.get("/v1/quota/time_travel", headers={"X-User-Id": user_id})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_commit_returns_receipt(client, user_id):
    client.get("/v1/quota/ai_message", headers={"X-User-Id": user_id})
    resp = client.post("/v1/quota/ai_message/commit", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "starter_ai_credits"
    assert body["feature"] == "ai_message"
    assert isinstance(body["event_id"], int)


def test_usage_summary(client, user_id):
    resp = client.get("/v1/quota", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    body = resp.json()
    assert body["tier"] == "starter"
    assert set(body["decisions"]) == {
        "lifeplan_regen",
        "resume_builder",
        "application_assist",
        "interview_prep",
        "ai_message",
        "cover_letter",
    }
    assert body["days_until_weekly_reset"] == 7


def test_admin_requires_key(client, user_id):
    resp = client.post("/v1/admin/tier", json={"user_id": user_id, "tier": "pro"})

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"

    resp = client.post(
        "/v1/admin/tier",
        headers={"X-Admin-Key": "wrong"},
        json={"user_id": user_id, "tier": "pro"},
    )
    assert resp.status_code == 403


def test_admin_tier_switch_changes_allowance(client, user_id):
    resp = client.post(
        "/v1/admin/tier",
        headers={"X-Admin-Key": ADMIN_KEY},
        json={"user_id": user_id, "tier": "plus", "subscription_status": "active"},
    )
    assert resp.status_code == 200
    assert resp.json()["tier"] == "plus"

    body = client.get("/v1/quota/lifeplan_regen", headers={"X-User-Id": user_id}).json()
    assert body["allowed"] is True
    assert body["limit"] == 4


def test_admin_token_grant_unlocks_feature(client, user_id):
    resp = client.post(
        "/v1/admin/tokens",
        headers={"X-Admin-Key": ADMIN_KEY},
        json={"user_id": user_id, "token_type": "resume", "course_purchase_id": "course-9"},
    )
    assert resp.status_code == 200
    assert resp.json()["used"] is False

    body = client.get("/v1/quota/resume_builder", headers={"X-User-Id": user_id}).json()
    assert body["allowed"] is True
    assert body["has_tokens"] is True


def test_admin_rejects_unknown_token_type(client, user_id):
    resp = client.post(
        "/v1/admin/tokens",
        headers={"X-Admin-Key": ADMIN_KEY},
        json={"user_id": user_id, "token_type": "gold_star"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_recent_generation_is_null_without_attempts(client, user_id):
    resp = client.get("/v1/generations/recent", headers={"X-User-Id": user_id})

    assert resp.status_code == 200
    assert resp.json() is None
