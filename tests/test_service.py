import asyncio

import pytest

from conftest import no_sleep
from factories import failing_provider, fake_providers, make_lead, property_output
from leadenrich.db.stores import InMemoryAuditStore, InMemoryLeadStore
from leadenrich.enrich.service import EnrichmentService
from leadenrich.errors import BatchTooLarge, ComplianceDenied, LeadNotFound
from leadenrich.monitoring.service import MonitoringService


def _service(leads=None, providers=None, **kwargs):
    return EnrichmentService(
        InMemoryLeadStore(leads or [make_lead()]),
        InMemoryAuditStore(),
        providers=providers or fake_providers(),
        monitoring=MonitoringService(),
        sleep=no_sleep,
        **kwargs,
    )


def _calls(service):
    return sum(p.calls for p in service.providers.values())


def test_enrich_all_three_sources(service, lead_store, audit_store):
    result = asyncio.run(service.enrich_lead(1))

    assert result.sources == ("property", "social", "credit")
    assert result.quality_score > 90
    stored = asyncio.run(lead_store.get_by_id(1))
    assert stored.enrichment_data["enrichment_id"] == result.enrichment_id
    assert stored.enrichment_data["status"] == "completed"
    completed = [e for e in audit_store.events if e["event_type"] == "completed"]
    assert completed[0]["metadata"]["data_quality"] == result.quality_score


def test_no_consent_raises_before_any_provider_call():
    service = _service([make_lead(enrichment_consent=False)])
    with pytest.raises(ComplianceDenied):
        asyncio.run(service.enrich_lead(1))
    assert _calls(service) == 0
    assert service.audit_store.event_types(1) == ["failed"]
    assert service.monitoring.metrics["failed_enrichments"] == 1


def test_california_lead_without_ccpa_consent_is_denied():
    service = _service([make_lead(address="500 Mission St", location="San Francisco, CA", ccpa_consent=False)])
    with pytest.raises(ComplianceDenied, match="CCPA consent required for California residents"):
        asyncio.run(service.enrich_lead(1))
    assert _calls(service) == 0


def test_one_failing_provider_still_produces_result():
    service = _service(providers=fake_providers(credit=failing_provider("credit")))
    result = asyncio.run(service.enrich_lead(1))

    assert len(result.sources) == 2
    assert len(result.errors) == 1
    assert result.quality_score > 0


def test_mortgage_anomaly_lowers_confidence():
    providers = fake_providers()
    providers["property"].output = property_output(property_value=250_000, mortgage_balance=300_000)
    service = _service(providers=providers)
    result = asyncio.run(service.enrich_lead(1, sources=["property"]))

    issues = [i["type"] for i in result.validation["issues"]]
    assert "anomalous_ratio" in issues
    assert result.confidence < 0.8


def test_anomalous_result_is_stored_as_degraded():
    providers = fake_providers()
    providers["property"].output = property_output(property_value=250_000, mortgage_balance=300_000)
    service = _service(providers=providers)
    asyncio.run(service.enrich_lead(1, sources=["property"]))

    stored = asyncio.run(service.lead_store.get_by_id(1)).enrichment_data
    assert stored["degraded"] is True
    assert stored["validation"]["is_valid"] is False
    assert "anomalous_ratio" in [i["type"] for i in stored["validation"]["issues"]]


def test_warm_cache_second_call_makes_no_provider_calls(service):
    first = asyncio.run(service.enrich_lead(1))
    calls_after_first = _calls(service)
    second = asyncio.run(service.enrich_lead(1))

    assert _calls(service) == calls_after_first
    assert second.enrichment_id == first.enrichment_id
    assert second.data == first.data
    assert service.audit_store.event_types(1)[-1] == "cache_hit"


def test_force_refresh_bypasses_cache(service):
    first = asyncio.run(service.enrich_lead(1))
    second = asyncio.run(service.enrich_lead(1, force_refresh=True))
    assert second.enrichment_id != first.enrichment_id
    assert _calls(service) == 6


def test_unknown_lead_raises():
    with pytest.raises(LeadNotFound):
        asyncio.run(_service().enrich_lead(42))


def test_batch_over_limit_rejected_without_calls():
    service = _service()
    with pytest.raises(BatchTooLarge):
        asyncio.run(service.enrich_leads_batch(list(range(1, 52))))
    assert _calls(service) == 0


def test_batch_reports_per_lead_outcome():
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    service = EnrichmentService(
        InMemoryLeadStore([make_lead(1), make_lead(2, enrichment_consent=False)]),
        InMemoryAuditStore(),
        providers=fake_providers(),
        monitoring=MonitoringService(),
        batch_delay_seconds=0.25,
        sleep=record_sleep,
    )
    summary = asyncio.run(service.enrich_leads_batch([1, 2, 3]))

    assert summary["total"] == 3
    assert summary["successful"] == 1
    assert summary["failed"] == 2
    assert [r["status"] for r in summary["results"]] == ["success", "failed", "failed"]
    assert sleeps == [0.25, 0.25]


def test_status_and_history(service):
    status = asyncio.run(service.get_enrichment_status(1))
    assert status["status"] == "not_started"
    assert status["next_scheduled_enrichment"]

    asyncio.run(service.enrich_lead(1))
    status = asyncio.run(service.get_enrichment_status(1))
    history = asyncio.run(service.get_enrichment_history(1))

    assert status["status"] == "completed"
    assert status["sources"] == ["property", "social", "credit"]
    assert history[0]["event_type"] == "completed"


def test_gdpr_deletion_clears_data_and_cache(service, lead_store, audit_store):
    asyncio.run(service.enrich_lead(1))
    asyncio.run(service.handle_deletion_request(1, "gdpr"))

    stored = asyncio.run(lead_store.get_by_id(1))
    assert stored.enrichment_data is None
    assert stored.enrichment_consent is False
    assert "data_deleted" in audit_store.event_types(1)
    assert asyncio.run(service.cache.get("enrichment:1")) is None


def test_delete_enrichment_data(service, lead_store, audit_store):
    asyncio.run(service.enrich_lead(1))
    result = asyncio.run(service.delete_enrichment_data(1))

    assert result == {"lead_id": 1, "deleted": True}
    stored = asyncio.run(lead_store.get_by_id(1))
    assert stored.enrichment_data is None
    assert audit_store.event_types(1)[-1] == "data_deleted"


def test_delete_enrichment_data_for_unknown_lead_is_audited(service, audit_store):
    with pytest.raises(LeadNotFound):
        asyncio.run(service.delete_enrichment_data(7))
    assert audit_store.event_types(7) == ["deletion_failed"]


def test_withdraw_consent_invalidates_cache(service):
    asyncio.run(service.enrich_lead(1))
    asyncio.run(service.withdraw_consent(1))

    with pytest.raises(ComplianceDenied, match="No enrichment consent"):
        asyncio.run(service.enrich_lead(1))


def test_health_is_cached_and_includes_cache_stats(service):
    first = asyncio.run(service.get_health())
    second = asyncio.run(service.get_health())

    assert first["overall"] == "healthy"
    assert set(first["provider_status"]) == {"property", "social", "credit"}
    assert "hit_rate" in second["cache"]
    assert asyncio.run(service.cache.exists("health:providers")) is True


def test_analytics_after_enrichment(service):
    asyncio.run(service.enrich_lead(1))
    analytics = asyncio.run(service.get_analytics())
    assert analytics["summary"]["total_enrichments"] == 1
    assert analytics["summary"]["success_rate_pct"] == 100.0


def test_cache_warmed_from_stored_lead_serves_the_stored_result():
    service = _service()
    first = asyncio.run(service.enrich_lead(1))
    asyncio.run(service.cache.clear_prefix())
    stored = asyncio.run(service.lead_store.get_by_id(1))
    asyncio.run(service.cache.warm([stored]))

    calls = _calls(service)
    again = asyncio.run(service.enrich_lead(1))
    assert _calls(service) == calls
    assert again.enrichment_id == first.enrichment_id
