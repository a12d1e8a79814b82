"""Event-driven enrichment triggers.

Each event (lead created, lead updated, consent granted, periodic refresh) is
matched against registered triggers in priority order; the first enabled
trigger whose condition holds runs an enrichment. Trigger failures are logged
and recorded in monitoring, never raised to the event source.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from leadenrich.config import settings
from leadenrich.enrich.service import EnrichmentService
from leadenrich.errors import LeadNotFound
from leadenrich.notify.webhooks import ENRICHMENT_COMPLETED, ENRICHMENT_FAILED
from leadenrich.schemas import LeadRecord, as_utc, utcnow

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("email", "phone", "address")
RECENT_ENRICHMENT = timedelta(hours=24)

Condition = Callable[[LeadRecord, dict], bool]


@dataclass
class Trigger:
    id: str
    event: str
    condition: Condition
    priority: int = 1
    enabled: bool = True
    force_refresh: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def describe(self) -> dict:
        return {
            "id": self.id,
            "event": self.event,
            "priority": self.priority,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat(),
        }


def last_enriched_at(lead: LeadRecord) -> datetime | None:
    raw = (lead.enrichment_data or {}).get("last_enrichment_at")
    return as_utc(raw) if raw else None


class EnrichmentTriggers:
    def __init__(
        self,
        service: EnrichmentService,
        refresh_interval_days: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.refresh_interval = timedelta(days=refresh_interval_days or settings.REFRESH_INTERVAL_DAYS)
        self.batch_delay_seconds = (
            settings.BATCH_DELAY_SECONDS if batch_delay_seconds is None else batch_delay_seconds
        )
        self._sleep = sleep
        self.triggers: dict[str, Trigger] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self.register(Trigger("lead_created", "lead_created", lambda lead, _: self.should_enrich(lead), priority=1))
        self.register(
            Trigger("lead_updated_contact", "lead_updated", lambda _, changes: self.has_new_contact_info(changes), 2)
        )
        self.register(
            Trigger(
                "consent_granted",
                "consent_granted",
                lambda lead, _: bool(lead.enrichment_consent) and not lead.enrichment_data,
                priority=1,
            )
        )
        self.register(
            Trigger(
                "periodic_refresh",
                "periodic_refresh",
                lambda lead, _: self.should_refresh(lead),
                priority=4,
                force_refresh=True,
            )
        )

    def register(self, trigger: Trigger) -> None:
        self.triggers[trigger.id] = trigger

    def unregister(self, trigger_id: str) -> None:
        self.triggers.pop(trigger_id, None)

    def set_enabled(self, trigger_id: str, enabled: bool) -> None:
        if trigger_id in self.triggers:
            self.triggers[trigger_id].enabled = enabled

    def registered(self) -> list[dict]:
        return [t.describe() for t in sorted(self.triggers.values(), key=lambda t: (t.priority, t.id))]

    def stats(self) -> dict:
        by_event: dict[str, int] = {}
        for trigger in self.triggers.values():
            by_event[trigger.event] = by_event.get(trigger.event, 0) + 1
        enabled = sum(1 for t in self.triggers.values() if t.enabled)
        return {
            "total_triggers": len(self.triggers),
            "enabled_triggers": enabled,
            "disabled_triggers": len(self.triggers) - enabled,
            "triggers_by_event": by_event,
        }

    def should_enrich(self, lead: LeadRecord) -> bool:
        has_identity = bool(lead.name) and bool(lead.email or lead.phone)
        last = last_enriched_at(lead)
        not_recent = last is None or utcnow() - last > RECENT_ENRICHMENT
        return has_identity and bool(lead.enrichment_consent) and not_recent

    @staticmethod
    def has_new_contact_info(changes: dict | None) -> bool:
        return any((changes or {}).get(name) for name in CONTACT_FIELDS)

    def should_refresh(self, lead: LeadRecord) -> bool:
        last = last_enriched_at(lead)
        return bool(lead.enrichment_data) and last is not None and utcnow() - last > self.refresh_interval

    async def process(self, event: str, lead: LeadRecord, changes: dict | None = None) -> str | None:
        """Run the first matching trigger for ``event``; return its id or None."""
        if not settings.TRIGGERS_ENABLED:
            return None
        matching = sorted(
            (t for t in self.triggers.values() if t.event == event and t.enabled),
            key=lambda t: t.priority,
        )
        for trigger in matching:
            try:
                matched = trigger.condition(lead, changes or {})
            except Exception:
                logger.exception("trigger.condition_failed", extra={"trigger_id": trigger.id, "lead_id": lead.id})
                continue
            if not matched:
                continue
            await self._fire(trigger, lead)
            return trigger.id
        return None

    async def _fire(self, trigger: Trigger, lead: LeadRecord) -> None:
        logger.info("trigger.fired", extra={"trigger_id": trigger.id, "lead_id": lead.id})
        try:
            result = await self.service.enrich_lead(lead.id, force_refresh=trigger.force_refresh)
        except Exception as exc:
            self.service.monitoring.record_trigger(trigger.id, False)
            logger.warning(
                "trigger.enrichment_failed",
                extra={"trigger_id": trigger.id, "lead_id": lead.id, "error": str(exc)},
            )
            await self.service.notifier.send_enrichment_notification(
                lead.id, event_type=ENRICHMENT_FAILED, error=str(exc)
            )
            return
        self.service.monitoring.record_trigger(trigger.id, True)
        await self.service.notifier.send_enrichment_notification(lead.id, result, ENRICHMENT_COMPLETED)

    async def on_lead_created(self, lead: LeadRecord) -> str | None:
        return await self.process("lead_created", lead)

    async def on_lead_updated(self, lead: LeadRecord, changes: dict) -> str | None:
        return await self.process("lead_updated", lead, changes)

    async def on_consent_granted(self, lead: LeadRecord) -> str | None:
        return await self.process("consent_granted", lead)

    async def process_periodic_refresh(self, batch_size: int = 50) -> int:
        cutoff = utcnow() - self.refresh_interval
        leads = await self.service.lead_store.list_due_for_refresh(cutoff, batch_size)
        for index, lead in enumerate(leads):
            await self.process("periodic_refresh", lead)
            if index < len(leads) - 1:
                await self._sleep(self.batch_delay_seconds)
        logger.info("trigger.periodic_refresh", extra={"eligible": len(leads)})
        return len(leads)

    async def manual_trigger(self, lead_id, reason: str = "manual") -> dict:
        lead = await self.service.lead_store.get_by_id(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        await self._fire(Trigger(reason, "manual", lambda *_: True), lead)
        return {"success": True, "lead_id": lead_id, "trigger_reason": reason}
