import asyncio
from datetime import timedelta

from conftest import no_sleep
from factories import fake_providers, make_lead
from leadenrich.db.stores import InMemoryAuditStore, InMemoryLeadStore
from leadenrich.enrich.service import EnrichmentService
from leadenrich.enrich.triggers import EnrichmentTriggers, Trigger
from leadenrich.monitoring.service import MonitoringService
from leadenrich.schemas import utcnow


def _triggers(*leads, providers=None):
    service = EnrichmentService(
        InMemoryLeadStore(list(leads) or [make_lead()]),
        InMemoryAuditStore(),
        providers=providers or fake_providers(),
        monitoring=MonitoringService(),
        sleep=no_sleep,
    )
    return EnrichmentTriggers(service, sleep=no_sleep)


def _enriched(days_ago: float) -> dict:
    return {"status": "completed", "last_enrichment_at": (utcnow() - timedelta(days=days_ago)).isoformat()}


def test_default_registry():
    triggers = _triggers()
    ids = [t["id"] for t in triggers.registered()]
    assert ids == ["consent_granted", "lead_created", "lead_updated_contact", "periodic_refresh"]
    assert triggers.stats()["triggers_by_event"]["lead_updated"] == 1


def test_lead_created_fires_enrichment_and_records_monitoring():
    triggers = _triggers()
    fired = asyncio.run(triggers.on_lead_created(make_lead()))

    assert fired == "lead_created"
    stats = triggers.service.monitoring.metrics["enrichment_triggers"]["lead_created"]
    assert stats == {"total_executions": 1, "successful_executions": 1, "last_execution": stats["last_execution"]}


def test_lead_created_skips_recently_enriched_or_nameless_leads():
    triggers = _triggers()
    assert asyncio.run(triggers.on_lead_created(make_lead(enrichment_data=_enriched(0.5)))) is None
    assert asyncio.run(triggers.on_lead_created(make_lead(name=None))) is None
    assert asyncio.run(triggers.on_lead_created(make_lead(enrichment_consent=False))) is None
    assert asyncio.run(triggers.on_lead_created(make_lead(enrichment_data=_enriched(2)))) == "lead_created"


def test_lead_updated_requires_contact_change():
    triggers = _triggers()
    assert asyncio.run(triggers.on_lead_updated(make_lead(), {"notes": "called"})) is None
    assert asyncio.run(triggers.on_lead_updated(make_lead(), {"phone": "+1-512-555-0199"})) == "lead_updated_contact"


def test_consent_granted_only_when_never_enriched():
    triggers = _triggers()
    assert asyncio.run(triggers.on_consent_granted(make_lead())) == "consent_granted"
    assert asyncio.run(triggers.on_consent_granted(make_lead(enrichment_data=_enriched(40)))) is None


def test_disabled_trigger_does_not_fire():
    triggers = _triggers()
    triggers.set_enabled("lead_created", False)
    assert asyncio.run(triggers.on_lead_created(make_lead())) is None
    assert triggers.stats()["disabled_triggers"] == 1


def test_higher_priority_trigger_wins():
    triggers = _triggers()
    triggers.register(Trigger("vip_created", "lead_created", lambda lead, _: True, priority=0))
    assert asyncio.run(triggers.on_lead_created(make_lead())) == "vip_created"

    triggers.unregister("vip_created")
    assert asyncio.run(triggers.on_lead_created(make_lead())) == "lead_created"


def test_failures_are_recorded_not_raised():
    def boom(lead, changes):
        raise ValueError("bad condition")

    triggers = _triggers(make_lead(enrichment_consent=False))
    triggers.register(Trigger("broken", "lead_updated", boom, priority=1))
    # enrichment itself fails on consent; the trigger swallows it
    fired = asyncio.run(triggers.on_lead_updated(make_lead(), {"email": "new@example.com"}))

    assert fired == "lead_updated_contact"
    stats = triggers.service.monitoring.metrics["enrichment_triggers"]["lead_updated_contact"]
    assert stats["successful_executions"] == 0


def test_periodic_refresh_only_enriches_stale_leads():
    leads = [
        make_lead(1, enrichment_data=_enriched(45)),
        make_lead(2, enrichment_data=_enriched(3)),
        make_lead(3, enrichment_data=_enriched(31)),
    ]
    providers = fake_providers()
    triggers = _triggers(*leads, providers=providers)

    processed = asyncio.run(triggers.process_periodic_refresh(batch_size=50))

    assert processed == 2
    assert providers["property"].calls == 2
    refreshed = asyncio.run(triggers.service.lead_store.get_by_id(1))
    assert refreshed.enrichment_data["status"] == "completed"
    assert refreshed.enrichment_data["enrichment_id"]


def test_manual_trigger_runs_enrichment():
    providers = fake_providers()
    triggers = _triggers(providers=providers)
    result = asyncio.run(triggers.manual_trigger(1, "operator_request"))
    assert result == {"success": True, "lead_id": 1, "trigger_reason": "operator_request"}
    assert providers["social"].calls == 1
    assert triggers.service.monitoring.metrics["enrichment_triggers"]["operator_request"]["total_executions"] == 1
