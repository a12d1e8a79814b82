"""EnrichmentService: public entry point for lead enrichment.

Wires the lead/audit stores, providers, compliance gate, validation, cache and
monitoring together and owns the enrich/batch/status/delete operations.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable

from leadenrich.cache.layer import CacheLayer, enrichment_key
from leadenrich.compliance.gate import ComplianceGate
from leadenrich.compliance.jurisdiction import JurisdictionClassifier
from leadenrich.config import settings
from leadenrich.db.stores import AuditStore, LeadStore, build_audit_event
from leadenrich.enrich.base import EnrichmentProvider
from leadenrich.enrich.codec import SensitiveDataCodec
from leadenrich.enrich.credit import CreditReportingProvider
from leadenrich.enrich.pipeline import EnrichmentPipeline
from leadenrich.enrich.property import PropertyDataProvider
from leadenrich.enrich.social import SocialMediaProvider
from leadenrich.errors import BatchTooLarge, LeadNotFound
from leadenrich.monitoring.service import MonitoringService
from leadenrich.notify.webhooks import WebhookNotifier
from leadenrich.schemas import EnrichmentResult, LeadRecord, as_utc, utcnow
from leadenrich.validation.engine import ValidationEngine

logger = logging.getLogger(__name__)

HEALTH_CACHE_KEY = "health:providers"
FIRST_ENRICHMENT_DELAY = timedelta(hours=24)


def build_default_providers(
    codec: SensitiveDataCodec,
    classifier: JurisdictionClassifier | None = None,
    audit_logger=None,
) -> dict[str, EnrichmentProvider]:
    return {
        "property": PropertyDataProvider(),
        "social": SocialMediaProvider(),
        "credit": CreditReportingProvider(codec=codec, classifier=classifier, audit_logger=audit_logger),
    }


def build_sql_service() -> "EnrichmentService":
    """Service over the SQLAlchemy stores bound to ``DATABASE_URL``."""
    from leadenrich.db.stores import SqlAuditStore, SqlLeadStore

    return EnrichmentService(SqlLeadStore(), SqlAuditStore())


class EnrichmentService:
    def __init__(
        self,
        lead_store: LeadStore,
        audit_store: AuditStore,
        providers: dict[str, EnrichmentProvider] | None = None,
        cache: CacheLayer | None = None,
        gate: ComplianceGate | None = None,
        validator: ValidationEngine | None = None,
        monitoring: MonitoringService | None = None,
        codec: SensitiveDataCodec | None = None,
        classifier: JurisdictionClassifier | None = None,
        notifier: WebhookNotifier | None = None,
        batch_max_leads: int | None = None,
        batch_delay_seconds: float | None = None,
        refresh_interval_days: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.lead_store = lead_store
        self.audit_store = audit_store
        self.codec = codec or SensitiveDataCodec()
        self.gate = gate or ComplianceGate(lead_store, audit_store, classifier=classifier)
        if providers is None:
            providers = build_default_providers(self.codec, self.gate.classifier, self.gate.log_event)
        self.providers = providers
        self.cache = cache or CacheLayer()
        self.monitoring = monitoring or MonitoringService()
        self.notifier = notifier or WebhookNotifier()
        self.pipeline = EnrichmentPipeline(providers, self.gate, validator=validator, codec=self.codec)
        self.batch_max_leads = batch_max_leads or settings.BATCH_MAX_LEADS
        self.batch_delay_seconds = (
            settings.BATCH_DELAY_SECONDS if batch_delay_seconds is None else batch_delay_seconds
        )
        self.refresh_interval = timedelta(days=refresh_interval_days or settings.REFRESH_INTERVAL_DAYS)
        self._sleep = sleep

    async def _load(self, lead_id) -> LeadRecord:
        lead = await self.lead_store.get_by_id(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    async def _audit(self, lead_id, event_type: str, data: Any = None, metadata: dict | None = None) -> None:
        try:
            await self.audit_store.create(build_audit_event(lead_id, event_type, data, metadata))
        except Exception:
            logger.exception("audit.write_failed", extra={"lead_id": lead_id, "event_type": event_type})

    async def enrich_lead(self, lead_id, force_refresh: bool = False, sources=None) -> EnrichmentResult:
        started = time.perf_counter()
        try:
            lead = await self._load(lead_id)

            if not force_refresh:
                cached = await self.cache.get(enrichment_key(lead_id))
                self.monitoring.record_cache(cached is not None)
                if cached is not None:
                    result = EnrichmentResult.from_dict(cached)
                    await self._audit(
                        lead_id,
                        "cache_hit",
                        {"enrichment_id": result.enrichment_id, "sources": list(result.sources)},
                    )
                    logger.info("enrichment.cache_hit", extra={"lead_id": lead_id})
                    return result

            result = await self.pipeline.run(lead, sources)
            await self._persist(lead_id, result)
            await self.cache.set(enrichment_key(lead_id), result.to_dict())

            duration_ms = int((time.perf_counter() - started) * 1000)
            await self._audit(
                lead_id,
                "completed",
                {"enrichment_id": result.enrichment_id, "sources": list(result.sources), "errors": list(result.errors)},
                {"duration_ms": duration_ms, "data_quality": result.quality_score},
            )
            self.monitoring.record_completion(result, duration_ms)
            logger.info(
                "enrichment.completed",
                extra={
                    "lead_id": lead_id,
                    "enrichment_id": result.enrichment_id,
                    "quality_score": result.quality_score,
                    "duration_ms": duration_ms,
                },
            )
            return result
        except Exception as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            await self._audit(lead_id, "failed", None, {"error": str(exc), "duration_ms": duration_ms})
            self.monitoring.record_failure(exc, provider="enrichment")
            logger.warning(
                "enrichment.failed",
                extra={"lead_id": lead_id, "error_type": type(exc).__name__, "duration_ms": duration_ms},
            )
            raise

    async def _persist(self, lead_id, result: EnrichmentResult) -> None:
        payload = result.to_dict()
        # Same keys as EnrichmentResult.to_dict so CacheLayer.warm can reload it.
        enrichment_data = {
            "lead_id": lead_id,
            "status": result.status,
            "timestamp": payload["timestamp"],
            "completed_at": payload["completed_at"],
            "last_enrichment_at": (result.completed_at or utcnow()).isoformat(),
            "enrichment_id": result.enrichment_id,
            "sources": payload["sources"],
            "quality_score": result.quality_score,
            "confidence": result.confidence,
            "errors": payload["errors"],
            "data": payload["data"],
            "validation": payload["validation"],
            "degraded": result.is_degraded,
        }
        await self.lead_store.update(lead_id, {"enrichment_data": enrichment_data})

    async def enrich_leads_batch(self, lead_ids: list, force_refresh: bool = False, sources=None) -> dict:
        lead_ids = list(lead_ids)
        if len(lead_ids) > self.batch_max_leads:
            raise BatchTooLarge(len(lead_ids), self.batch_max_leads)

        summary = {"total": len(lead_ids), "successful": 0, "failed": 0, "results": []}
        for index, lead_id in enumerate(lead_ids):
            try:
                result = await self.enrich_lead(lead_id, force_refresh=force_refresh, sources=sources)
            except Exception as exc:
                summary["failed"] += 1
                summary["results"].append({"lead_id": lead_id, "status": "failed", "error": str(exc)})
            else:
                summary["successful"] += 1
                summary["results"].append({"lead_id": lead_id, "status": "success", "data": result.to_dict()})
            if index < len(lead_ids) - 1:
                await self._sleep(self.batch_delay_seconds)
        return summary

    def next_scheduled_enrichment(self, last_enrichment_at) -> str:
        if not last_enrichment_at:
            return (utcnow() + FIRST_ENRICHMENT_DELAY).isoformat()
        return (as_utc(last_enrichment_at) + self.refresh_interval).isoformat()

    async def get_enrichment_status(self, lead_id) -> dict:
        lead = await self._load(lead_id)
        data = lead.enrichment_data or {}
        last = data.get("last_enrichment_at")
        return {
            "lead_id": lead_id,
            "status": data.get("status", "not_started"),
            "last_enrichment_at": last,
            "data_quality": data.get("quality_score"),
            "confidence": data.get("confidence"),
            "sources": data.get("sources", []),
            "next_scheduled_enrichment": self.next_scheduled_enrichment(last),
        }

    async def get_enrichment_history(self, lead_id, limit: int = 20) -> list[dict]:
        await self._load(lead_id)
        rows = await self.audit_store.list_for_lead(lead_id, limit=limit, newest_first=True)
        return [
            {
                "timestamp": as_utc(row["timestamp"]).isoformat(),
                "event_type": row["event_type"],
                "metadata": row.get("metadata") or {},
            }
            for row in rows
        ]

    async def delete_enrichment_data(self, lead_id) -> dict:
        try:
            await self.gate.validate_deletion_request(lead_id)
            await self.cache.delete(enrichment_key(lead_id))
            await self.lead_store.update(lead_id, {"enrichment_data": None, "enrichment_consent": False})
            await self._audit(lead_id, "data_deleted", {"reason": "user_request"})
        except Exception as exc:
            await self._audit(lead_id, "deletion_failed", None, {"error": str(exc)})
            raise
        logger.info("enrichment.data_deleted", extra={"lead_id": lead_id})
        await self.notifier.send_deletion_notification(
            lead_id,
            {
                "request_type": "enrichment_data",
                "deleted_at": utcnow().isoformat(),
                "data_removed": ["enrichment_data"],
            },
        )
        return {"lead_id": lead_id, "deleted": True}

    async def handle_deletion_request(self, lead_id, kind: str = "gdpr") -> dict:
        result = await self.gate.handle_deletion_request(lead_id, kind)
        await self.cache.delete(enrichment_key(lead_id))
        await self.notifier.send_deletion_notification(lead_id, result)
        return result

    async def grant_consent(self, lead_id, payload: dict | None = None) -> dict:
        record = await self.gate.grant_consent(lead_id, payload)
        granted = record.to_dict()
        await self.notifier.send_consent_notification(lead_id, "granted", granted)
        return granted

    async def withdraw_consent(self, lead_id, reason: str = "user_request") -> bool:
        withdrawn = await self.gate.withdraw_consent(lead_id, reason)
        await self.cache.delete(enrichment_key(lead_id))
        await self.notifier.send_consent_notification(
            lead_id, "withdrawn", {"reason": reason, "withdrawn_at": utcnow().isoformat()}
        )
        return withdrawn

    async def get_consent_status(self, lead_id) -> dict:
        return await self.gate.get_consent_status(lead_id)

    async def export_lead_data(self, lead_id) -> dict:
        return await self.gate.export_for_portability(lead_id)

    async def get_compliance_report(self, lead_id) -> dict:
        return await self.gate.get_compliance_report(lead_id)

    async def get_health(self) -> dict:
        health = await self.cache.get_with_fallback(
            HEALTH_CACHE_KEY,
            lambda: self.monitoring.provider_status(self.providers),
            ttl=settings.HEALTH_CACHE_TTL_SECONDS,
        )
        status = await self.monitoring.get_status(provider_status=health["data"] or {})
        status["cache"] = await self.cache.get_stats()
        return status

    async def get_analytics(self, filters: dict | None = None) -> dict:
        analytics = self.monitoring.get_analytics(filters)
        analytics["cache"] = await self.cache.get_stats()
        return analytics
