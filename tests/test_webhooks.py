import asyncio
import hashlib
import hmac
import json

import httpx

from conftest import no_sleep
from factories import credit_output, fake_providers, make_lead
from leadenrich.config import settings
from leadenrich.db.stores import InMemoryAuditStore, InMemoryLeadStore
from leadenrich.enrich.service import EnrichmentService
from leadenrich.enrich.triggers import EnrichmentTriggers
from leadenrich.monitoring.service import MonitoringService
from leadenrich.notify.webhooks import (
    CONSENT_CHANGED,
    DATA_DELETED,
    ENRICHMENT_COMPLETED,
    ENRICHMENT_FAILED,
    Webhook,
    WebhookNotifier,
    sanitize_data,
    webhooks_from_settings,
)


def _recording(statuses=None):
    """Transport that records each request and answers with queued statuses (default 200)."""
    seen = []
    queue = list(statuses or [])

    def handler(request):
        seen.append(request)
        return httpx.Response(queue.pop(0) if queue else 200, json={"ok": True})

    return httpx.MockTransport(handler), seen


def _notifier(webhooks, transport, **kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("retry_delay_seconds", 0)
    return WebhookNotifier(webhooks, transport=transport, sleep=no_sleep, **kwargs)


def test_delivery_is_signed_with_the_webhook_secret():
    transport, seen = _recording()
    notifier = _notifier([Webhook("crm", "https://crm.test/hook", secret="s3cret")], transport)

    results = asyncio.run(notifier.send_consent_notification(7, "granted", {"consent_id": "c-1"}))

    assert results == [{"webhook_id": "crm", "success": True, "attempts": 1, "status_code": 200}]
    request = seen[0]
    expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
    assert request.headers["X-Signature"] == expected
    assert request.headers["X-Webhook-ID"] == "crm"
    body = json.loads(request.content)
    assert body["event_type"] == CONSENT_CHANGED
    assert body["action"] == "granted"
    assert body["consent_id"] == "c-1"


def test_only_subscribed_webhooks_receive_an_event():
    transport, seen = _recording()
    notifier = _notifier(
        [
            Webhook("deletes", "https://a.test/hook", events=(DATA_DELETED,)),
            Webhook("everything", "https://b.test/hook"),
            Webhook("paused", "https://c.test/hook", active=False),
        ],
        transport,
    )

    results = asyncio.run(notifier.send_enrichment_notification(1, event_type=ENRICHMENT_FAILED, error="boom"))

    assert [r["webhook_id"] for r in results] == ["everything"]
    assert [str(r.url) for r in seen] == ["https://b.test/hook"]
    assert json.loads(seen[0].content)["error"] == "boom"


def test_no_matching_webhook_sends_nothing():
    transport, seen = _recording()
    notifier = _notifier([], transport)

    assert asyncio.run(notifier.send_deletion_notification(1, {"request_type": "gdpr"})) == []
    assert seen == []
    assert notifier.stats()["total"] == 0


def test_server_error_is_retried_until_success():
    transport, seen = _recording([503, 502, 200])
    notifier = _notifier([Webhook("crm", "https://crm.test/hook")], transport)

    results = asyncio.run(notifier.send_consent_notification(1, "withdrawn"))

    assert len(seen) == 3
    assert results[0]["success"] is True
    assert results[0]["attempts"] == 3


def test_client_error_counts_as_delivered_without_retry():
    transport, seen = _recording([410])
    notifier = _notifier([Webhook("crm", "https://crm.test/hook")], transport)

    results = asyncio.run(notifier.send_consent_notification(1, "granted"))

    assert len(seen) == 1
    assert results[0]["success"] is True
    assert results[0]["status_code"] == 410


def test_exhausted_retries_report_failure_and_feed_stats():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    notifier = _notifier(
        [Webhook("down", "https://down.test/hook"), Webhook("up", "https://up.test/hook")],
        httpx.MockTransport(lambda r: refuse(r) if r.url.host == "down.test" else httpx.Response(200)),
        max_retries=2,
    )

    results = asyncio.run(notifier.send_deletion_notification(5, {"request_type": "ccpa"}))

    down = next(r for r in results if r["webhook_id"] == "down")
    assert down["success"] is False
    assert down["attempts"] == 2
    assert "connection refused" in down["error"]
    stats = notifier.stats()
    assert stats["total"] == 2
    assert stats["successful"] == 1
    assert stats["success_rate_pct"] == 50.0
    assert stats["recent_failures"][0]["webhook_id"] == "down"
    assert notifier.stats("up")["failed"] == 0


def test_credit_data_is_reduced_to_shareable_fields():
    data = {"property": {"estimated_value": 1}, "credit": credit_output()}

    shared = sanitize_data(data)["credit"]

    assert shared == {
        "score_verified": True,
        "credit_rating": "good",
        "confidence": 0.92,
        "vendor": "experian",
        "credit_score": 742,
    }
    unverified = sanitize_data({"credit": credit_output(score_verified=False)})["credit"]
    assert "credit_score" not in unverified
    assert data["credit"]["debt_to_income_ratio"] == 0.28


def test_webhooks_are_built_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "WEBHOOK_URLS", "https://a.test/hook, https://b.test/hook")
    monkeypatch.setattr(settings, "WEBHOOK_EVENTS", "data_deleted")
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", "k")

    hooks = webhooks_from_settings()

    assert [h.id for h in hooks] == ["webhook_1", "webhook_2"]
    assert hooks[1].url == "https://b.test/hook"
    assert hooks[0].events == (DATA_DELETED,)
    assert hooks[0].secret == "k"


def _service_with_hooks(transport, lead=None):
    notifier = _notifier([Webhook("crm", "https://crm.test/hook")], transport)
    return EnrichmentService(
        InMemoryLeadStore([lead or make_lead()]),
        InMemoryAuditStore(),
        providers=fake_providers(),
        monitoring=MonitoringService(),
        notifier=notifier,
        sleep=no_sleep,
    )


def test_trigger_sends_completed_event_with_sanitized_credit():
    transport, seen = _recording()
    service = _service_with_hooks(transport)

    asyncio.run(EnrichmentTriggers(service, sleep=no_sleep).manual_trigger(1))

    body = json.loads(seen[0].content)
    assert body["event_type"] == ENRICHMENT_COMPLETED
    assert body["lead_id"] == 1
    assert set(body["sources"]) == {"property", "social", "credit"}
    assert "debt_to_income_ratio" not in body["data"]["credit"]


def test_trigger_failure_sends_failed_event():
    transport, seen = _recording()
    service = _service_with_hooks(transport, make_lead(enrichment_consent=False))

    asyncio.run(EnrichmentTriggers(service, sleep=no_sleep).manual_trigger(1))

    body = json.loads(seen[0].content)
    assert body["event_type"] == ENRICHMENT_FAILED
    assert body["error"]


def test_consent_and_deletion_changes_are_announced():
    transport, seen = _recording()
    service = _service_with_hooks(transport)

    asyncio.run(service.withdraw_consent(1, "user_request"))
    asyncio.run(service.handle_deletion_request(1, "gdpr"))

    events = [json.loads(r.content) for r in seen]
    assert [(e["event_type"], e.get("action")) for e in events] == [
        (CONSENT_CHANGED, "withdrawn"),
        (DATA_DELETED, None),
    ]
    assert events[0]["reason"] == "user_request"
    assert events[1]["request_type"] == "gdpr"
