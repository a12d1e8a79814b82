import pytest
from fastapi.testclient import TestClient

from factories import make_lead
from leadenrich.errors import RateLimitExceeded
from leadenrich.web.app import app
from leadenrich.web.common import get_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_enrich_and_status(client):
    resp = client.post("/enrichment/leads/1/enrich", json={"force_refresh": True})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["data"]["sources"] == ["property", "social", "credit"]

    status = client.get("/enrichment/leads/1/status").json()["data"]
    assert status["status"] == "completed"
    assert status["history"][0]["event_type"] == "completed"


def test_unknown_lead_is_404(client):
    resp = client.post("/enrichment/leads/99/enrich")
    assert resp.status_code == 404
    assert "not found" in resp.json()["error"]


def test_denied_consent_is_403(client, lead_store):
    lead_store.add(make_lead(2, enrichment_consent=False))
    resp = client.post("/enrichment/leads/2/enrich")
    assert resp.status_code == 403
    assert resp.json()["error"] == "No enrichment consent granted"


def test_lead_without_contact_is_400(client, lead_store):
    lead_store.add(make_lead(3, email=None, phone=None))
    assert client.post("/enrichment/leads/3/enrich").status_code == 400


def test_batch_enrich(client):
    resp = client.post("/enrichment/leads/batch-enrich", json={"lead_ids": [1, 99]})
    assert resp.status_code == 200
    summary = resp.json()["data"]
    assert summary["successful"] == 1
    assert summary["failed"] == 1


def test_batch_validation(client):
    assert client.post("/enrichment/leads/batch-enrich", json={}).status_code == 400
    assert client.post("/enrichment/leads/batch-enrich", json={"lead_ids": list(range(51))}).status_code == 400


def test_rate_limited_provider_maps_to_429(client, service):
    async def limited(lead_id, force_refresh=False, sources=None):
        raise RateLimitExceeded("credit_reporting", 10)

    service.enrich_lead = limited
    assert client.post("/enrichment/leads/1/enrich").status_code == 429


def test_delete_enrichment_data(client, lead_store):
    client.post("/enrichment/leads/1/enrich")
    resp = client.delete("/enrichment/leads/1/data")
    assert resp.status_code == 200
    assert resp.json()["data"]["deleted"] is True


def test_consent_grant_withdraw_and_status(client, lead_store):
    lead_store.add(make_lead(4, enrichment_consent=False, consent_id=None))

    grant = client.post("/enrichment/consent/4/grant", json={"consent_text": "I agree"})
    assert grant.status_code == 200
    assert grant.json()["data"]["consent_text"] == "I agree"
    assert client.get("/enrichment/consent/4/status").json()["data"]["valid"] is True

    withdraw = client.post("/enrichment/consent/4/withdraw", json={"reason": "user_request"})
    assert withdraw.status_code == 200
    status = client.get("/enrichment/consent/4/status").json()["data"]
    assert status["valid"] is False


def test_privacy_delete_and_export(client):
    export = client.get("/enrichment/privacy/1/export")
    assert export.status_code == 200
    assert export.json()["data"]["personal_data"]["name"] == "Jane Q Smith"

    assert client.post("/enrichment/privacy/1/delete", json={"type": "ccpa"}).status_code == 403
    resp = client.post("/enrichment/privacy/1/delete", json={"type": "gdpr"})
    assert resp.status_code == 200
    assert resp.json()["data"]["deletion_completed"] is True

    assert client.get("/enrichment/privacy/1/export").status_code == 403


def test_compliance_report(client):
    resp = client.get("/enrichment/compliance/1/report")
    assert resp.status_code == 200
    assert resp.json()["data"]["consent_status"]["valid"] is True


def test_health_and_analytics(client):
    health = client.get("/enrichment/health")
    assert health.status_code == 200
    assert health.json()["data"]["overall"] == "healthy"

    analytics = client.get("/enrichment/analytics", params={"period": "7d"})
    assert analytics.status_code == 200
    assert analytics.json()["data"]["filters"] == {"period": "7d"}


def test_invalid_json_body_is_400(client):
    resp = client.post(
        "/enrichment/leads/1/enrich",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 400
