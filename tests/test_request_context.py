"""
Tests for request context: the middleware's ledger/job binding, the error
body it feeds, and the settings env prefix.
"""

import pytest
from fastapi.testclient import TestClient

from trafficledger.config import Settings
from trafficledger.core.log_middleware import JOB_HEADER, manual_job, path_template
from trafficledger.core.structured_logging import _inject_context, campaign_id_var


@pytest.fixture
def client(registered_vendor):
    from trafficledger.main import create_app
    return TestClient(create_app())


class TestPathHelpers:
    @pytest.mark.parametrize("path,template", [
        ("/api/campaigns/c-1", "/api/campaigns/{campaign_id}"),
        ("/api/campaigns/c-1/reconcile", "/api/campaigns/{campaign_id}/reconcile"),
        ("/api/accounts/a-9/credits", "/api/accounts/{account_id}/credits"),
        ("/api/admin/reconcile-all", "/api/admin/reconcile-all"),
        ("/api/health", "/api/health"),
    ])
    def test_path_template(self, path, template):
        assert path_template(path) == template

    @pytest.mark.parametrize("method,path,job", [
        ("POST", "/api/admin/reconcile-all", "reconcile"),
        ("POST", "/api/admin/archive/purge", "archive_purge"),
        ("POST", "/api/campaigns/c-1/reconcile", "reconcile"),
        ("POST", "/api/campaigns/c-1/rebaseline", "rebaseline"),
        ("POST", "/api/campaigns/c-1/pause", None),
        ("GET", "/api/admin/reconcile-all", None),
        ("GET", "/api/campaigns/c-1", None),
    ])
    def test_manual_job(self, method, path, job):
        assert manual_job(method, path) == job


class TestMiddleware:
    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"x-request-id": "req-abc"})
        assert response.headers["x-request-id"] == "req-abc"
        assert JOB_HEADER not in response.headers

    def test_manual_reconcile_gets_job_header(self, client, make_account, make_campaign):
        account = make_account(credits=100)
        campaign = make_campaign(account.id)

        response = client.post(
            f"/api/campaigns/{campaign.id}/reconcile", headers={"x-request-id": "0123456789abcdef"},
        )

        assert response.status_code == 200
        assert response.headers[JOB_HEADER] == "manual-reconcile:01234567"

    def test_error_body_carries_request_and_campaign_id(self, client):
        response = client.get("/api/campaigns/missing-1", headers={"x-request-id": "req-404"})

        error = response.json()["error"]
        assert response.status_code == 404
        assert error["code"] == "TL-CMP-001"
        assert error["campaign_id"] == "missing-1"
        assert error["request_id"] == "req-404"

    def test_error_body_hides_internal_detail(self, client, make_account, make_campaign):
        account = make_account(credits=0)
        campaign = make_campaign(account.id, state="paused", pause_reason="insolvent")

        error = client.post(f"/api/campaigns/{campaign.id}/resume").json()["error"]

        assert error["code"] == "TL-BAL-001"
        assert "detail" not in error
        assert set(error) >= {"title", "message", "retryable", "user_action_required", "remediation"}


class TestLedgerLogContext:
    def test_campaign_id_injected_when_bound(self):
        token = campaign_id_var.set("c-7")
        try:
            event = _inject_context(None, "info", {"event": "x"})
            explicit = _inject_context(None, "info", {"event": "x", "campaign_id": "c-8"})
        finally:
            campaign_id_var.reset(token)

        assert event["campaign_id"] == "c-7"
        assert explicit["campaign_id"] == "c-8"

    def test_nothing_injected_when_unbound(self):
        event = _inject_context(None, "info", {"event": "x"})
        assert "campaign_id" not in event
        assert "account_id" not in event


class TestSettings:
    def test_env_prefix_applies(self, monkeypatch):
        monkeypatch.setenv("TRAFFICLEDGER_RESUME_SPEED", "75")
        monkeypatch.setenv("TRAFFICLEDGER_ADMIN_API_KEY", "k1")

        fresh = Settings(_env_file=None)

        assert fresh.resume_speed == 75
        assert fresh.admin_api_key == "k1"

    def test_unprefixed_env_is_ignored(self, monkeypatch):
        monkeypatch.delenv("TRAFFICLEDGER_RESUME_SPEED", raising=False)
        monkeypatch.setenv("RESUME_SPEED", "75")

        assert Settings(_env_file=None).resume_speed == 200
