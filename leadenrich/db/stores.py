"""Lead and audit stores consumed by the enrichment core.

The core only needs ``get_by_id``/``update`` on leads and an append-only
``create`` on the audit trail. SQLAlchemy-backed stores run their blocking
session work in a worker thread; in-memory stores back the tests and local runs.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from leadenrich.schemas import LeadRecord, as_utc, utcnow

logger = logging.getLogger(__name__)


def build_audit_event(
    lead_id,
    event_type: str,
    data: Any = None,
    metadata: dict | None = None,
    user_agent: str = "EnrichmentService",
) -> dict:
    return {
        "id": uuid.uuid4().hex,
        "lead_id": lead_id,
        "event_type": event_type,
        "data": json.dumps(data, default=str) if data is not None else None,
        "metadata": metadata or {},
        "timestamp": utcnow(),
        "ip_address": "system",
        "user_agent": user_agent,
    }


def _last_enriched_at(lead: LeadRecord) -> datetime | None:
    data = lead.enrichment_data or {}
    raw = data.get("last_enrichment_at")
    return as_utc(raw) if raw else None


class LeadStore(ABC):
    @abstractmethod
    async def get_by_id(self, lead_id) -> LeadRecord | None:
        """Return a detached lead record or None."""

    @abstractmethod
    async def update(self, lead_id, patch: dict) -> LeadRecord:
        """Apply ``patch`` to the lead and return the updated record."""

    @abstractmethod
    async def list_due_for_refresh(self, cutoff: datetime, limit: int) -> list[LeadRecord]:
        """Consenting leads never enriched or last enriched before ``cutoff``."""


class AuditStore(ABC):
    @abstractmethod
    async def create(self, event: dict) -> dict:
        """Append one audit event."""

    @abstractmethod
    async def list_for_lead(self, lead_id, limit: int | None = None, newest_first: bool = False) -> list[dict]:
        """Return audit events for a lead ordered by timestamp."""


class InMemoryLeadStore(LeadStore):
    def __init__(self, leads: list[LeadRecord] | None = None) -> None:
        self._leads: dict[Any, LeadRecord] = {}
        for lead in leads or []:
            self.add(lead)

    def add(self, lead: LeadRecord) -> LeadRecord:
        self._leads[lead.id] = copy.deepcopy(lead)
        return lead

    async def get_by_id(self, lead_id) -> LeadRecord | None:
        lead = self._leads.get(lead_id)
        return copy.deepcopy(lead) if lead else None

    async def update(self, lead_id, patch: dict) -> LeadRecord:
        lead = self._leads.get(lead_id)
        if lead is None:
            raise KeyError(lead_id)
        lead.apply(patch)
        lead.updated_at = utcnow()
        return copy.deepcopy(lead)

    async def list_due_for_refresh(self, cutoff: datetime, limit: int) -> list[LeadRecord]:
        due = []
        for lead in self._leads.values():
            if not lead.enrichment_consent:
                continue
            last = _last_enriched_at(lead)
            if last is None or last < cutoff:
                due.append(copy.deepcopy(lead))
            if len(due) >= limit:
                break
        return due


class InMemoryAuditStore(AuditStore):
    def __init__(self) -> None:
        self.events: list[dict] = []

    async def create(self, event: dict) -> dict:
        stored = dict(event)
        stored.setdefault("id", uuid.uuid4().hex)
        stored.setdefault("timestamp", utcnow())
        self.events.append(stored)
        return stored

    async def list_for_lead(self, lead_id, limit: int | None = None, newest_first: bool = False) -> list[dict]:
        rows = sorted(
            (e for e in self.events if e.get("lead_id") == lead_id),
            key=lambda e: e["timestamp"],
            reverse=newest_first,
        )
        return rows[:limit] if limit else rows

    def event_types(self, lead_id=None) -> list[str]:
        return [e["event_type"] for e in self.events if lead_id is None or e.get("lead_id") == lead_id]


def _row_to_record(row) -> LeadRecord:
    values = {name: getattr(row, name) for name in LeadRecord.field_names() if hasattr(row, name)}
    for key in ("consent_granted_at", "consent_expires_at", "consent_withdrawn_at", "created_at", "updated_at"):
        values[key] = as_utc(values.get(key))
    values["enrichment_data"] = copy.deepcopy(values.get("enrichment_data"))
    return LeadRecord(**values)


class SqlLeadStore(LeadStore):
    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from leadenrich.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    def _get(self, lead_id) -> LeadRecord | None:
        from leadenrich.db.models import Lead

        session = self.session_factory()
        try:
            row = session.get(Lead, lead_id)
            return _row_to_record(row) if row else None
        finally:
            session.close()

    def _update(self, lead_id, patch: dict) -> LeadRecord:
        from leadenrich.db.models import Lead

        unknown = set(patch) - LeadRecord.field_names()
        if unknown:
            raise ValueError(f"Unknown lead fields: {sorted(unknown)}")

        session = self.session_factory()
        try:
            row = session.get(Lead, lead_id)
            if row is None:
                raise KeyError(lead_id)
            for key, value in patch.items():
                setattr(row, key, copy.deepcopy(value))
            if "enrichment_data" in patch:
                row.enrichment_updated_at = utcnow() if patch["enrichment_data"] else None
            session.add(row)
            session.commit()
            session.refresh(row)
            return _row_to_record(row)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _list_due(self, cutoff: datetime, limit: int) -> list[LeadRecord]:
        from sqlalchemy import or_

        from leadenrich.db.models import Lead

        session = self.session_factory()
        try:
            rows = (
                session.query(Lead)
                .filter(Lead.enrichment_consent.is_(True))
                .filter(or_(Lead.enrichment_updated_at.is_(None), Lead.enrichment_updated_at < cutoff))
                .order_by(Lead.enrichment_updated_at.asc(), Lead.id.asc())
                .limit(limit)
                .all()
            )
            return [_row_to_record(row) for row in rows]
        finally:
            session.close()

    async def get_by_id(self, lead_id) -> LeadRecord | None:
        return await asyncio.to_thread(self._get, lead_id)

    async def update(self, lead_id, patch: dict) -> LeadRecord:
        return await asyncio.to_thread(self._update, lead_id, patch)

    async def list_due_for_refresh(self, cutoff: datetime, limit: int) -> list[LeadRecord]:
        return await asyncio.to_thread(self._list_due, cutoff, limit)


class SqlAuditStore(AuditStore):
    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from leadenrich.db.session import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    def _create(self, event: dict) -> dict:
        from leadenrich.db.models import EnrichmentAudit

        session = self.session_factory()
        try:
            row = EnrichmentAudit(
                id=event.get("id") or uuid.uuid4().hex,
                lead_id=event["lead_id"],
                event_type=event["event_type"],
                data=event.get("data"),
                event_metadata=json.dumps(event.get("metadata") or {}, default=str),
                timestamp=event.get("timestamp") or utcnow(),
                ip_address=event.get("ip_address", "system"),
                user_agent=event.get("user_agent"),
            )
            session.add(row)
            session.commit()
            return dict(event, id=row.id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _list(self, lead_id, limit: int | None, newest_first: bool) -> list[dict]:
        from leadenrich.db.models import EnrichmentAudit

        session = self.session_factory()
        try:
            order = EnrichmentAudit.timestamp.desc() if newest_first else EnrichmentAudit.timestamp.asc()
            query = session.query(EnrichmentAudit).filter(EnrichmentAudit.lead_id == lead_id).order_by(order)
            if limit:
                query = query.limit(limit)
            return [
                {
                    "id": row.id,
                    "lead_id": row.lead_id,
                    "event_type": row.event_type,
                    "data": row.data,
                    "metadata": json.loads(row.event_metadata or "{}"),
                    "timestamp": as_utc(row.timestamp),
                    "ip_address": row.ip_address,
                    "user_agent": row.user_agent,
                }
                for row in query.all()
            ]
        finally:
            session.close()

    async def create(self, event: dict) -> dict:
        return await asyncio.to_thread(self._create, event)

    async def list_for_lead(self, lead_id, limit: int | None = None, newest_first: bool = False) -> list[dict]:
        return await asyncio.to_thread(self._list, lead_id, limit, newest_first)
