"""Consent gating, consent lifecycle and data-subject requests."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta
from typing import Any

from leadenrich.compliance.jurisdiction import CCPA, GDPR, JurisdictionClassifier, KeywordJurisdictionClassifier
from leadenrich.config import settings
from leadenrich.db.stores import AuditStore, LeadStore, build_audit_event
from leadenrich.errors import ComplianceDenied, InvalidLeadInput, LeadNotFound
from leadenrich.schemas import PII_FIELDS, SOURCES, ComplianceDecision, ConsentRecord, LeadRecord, as_utc, utcnow

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

NO_CONSENT = "No enrichment consent granted"
CONSENT_WITHDRAWN = "Consent has been withdrawn"
CONSENT_EXPIRED = "Consent has expired"
CCPA_REQUIRED = "CCPA consent required for California residents"
CREDIT_CONSENT_REQUIRED = "Credit data consent and permissible purpose required"

AGGREGATE_KEYS = ("status", "sources", "quality_score", "confidence", "last_enrichment_at")


class ComplianceGate:
    def __init__(
        self,
        lead_store: LeadStore,
        audit_store: AuditStore,
        classifier: JurisdictionClassifier | None = None,
        consent_retention_days: int | None = None,
        data_retention_days: int | None = None,
    ) -> None:
        self.lead_store = lead_store
        self.audit_store = audit_store
        self.classifier = classifier or KeywordJurisdictionClassifier()
        self.consent_retention = timedelta(days=consent_retention_days or settings.CONSENT_RETENTION_DAYS)
        self.data_retention = timedelta(days=data_retention_days or settings.DATA_RETENTION_DAYS)

    async def _load(self, lead_id) -> LeadRecord:
        lead = await self.lead_store.get_by_id(lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def jurisdictions(self, lead: LeadRecord) -> frozenset[str]:
        return self.classifier.classify(lead.jurisdiction_text())

    def check_consent(self, lead: LeadRecord, sources=None) -> ComplianceDecision:
        """Evaluate the consent rules in order; the first failing rule decides."""
        requested = set(sources or SOURCES)
        jurisdictions = self.jurisdictions(lead)
        now = utcnow()
        expires_at = as_utc(lead.consent_expires_at)

        reason = None
        if not lead.enrichment_consent:
            reason = NO_CONSENT
        elif lead.consent_withdrawn_at is not None:
            reason = CONSENT_WITHDRAWN
        elif expires_at is not None and expires_at < now:
            reason = CONSENT_EXPIRED
        if reason:
            return ComplianceDecision(
                approved=False,
                reason=reason,
                gdpr_compliant=GDPR not in jurisdictions,
                ccpa_compliant=CCPA not in jurisdictions,
                jurisdictions=jurisdictions,
            )

        if CCPA in jurisdictions and not lead.ccpa_consent:
            return ComplianceDecision(
                approved=False,
                reason=CCPA_REQUIRED,
                ccpa_compliant=False,
                jurisdictions=jurisdictions,
            )

        restricted: dict[str, str] = {}
        if "credit" in requested and not (lead.credit_data_consent and lead.permissible_purpose):
            if requested == {"credit"}:
                return ComplianceDecision(approved=False, reason=CREDIT_CONSENT_REQUIRED, jurisdictions=jurisdictions)
            restricted["credit"] = CREDIT_CONSENT_REQUIRED

        return ComplianceDecision(approved=True, jurisdictions=jurisdictions, restricted_sources=restricted)

    def validate_consent(self, lead: LeadRecord) -> dict:
        if not lead.enrichment_consent:
            return {"valid": False, "reason": "consent_not_granted"}
        expires_at = as_utc(lead.consent_expires_at)
        if expires_at is not None and utcnow() > expires_at:
            return {"valid": False, "reason": "consent_expired"}
        if lead.consent_withdrawn_at is not None:
            return {"valid": False, "reason": "consent_withdrawn"}
        return {
            "valid": True,
            "consent_id": lead.consent_id,
            "granted_at": lead.consent_granted_at.isoformat() if lead.consent_granted_at else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }

    async def log_event(self, lead_id, event_type: str, data: Any = None, framework: str = "gdpr_ccpa") -> dict:
        event = build_audit_event(
            lead_id,
            event_type,
            data,
            metadata={"framework": framework, "logged_by": "ComplianceGate"},
            user_agent="ComplianceGate",
        )
        logger.info("compliance.%s" % event_type, extra={"lead_id": lead_id})
        return await self.audit_store.create(event)

    async def grant_consent(self, lead_id, payload: dict | None = None) -> ConsentRecord:
        payload = payload or {}
        await self._load(lead_id)
        granted_at = utcnow()
        record = ConsentRecord(
            consent_id=uuid.uuid4().hex,
            lead_id=lead_id,
            granted_at=granted_at,
            expires_at=granted_at + self.consent_retention,
            ip_address=payload.get("ip_address"),
            user_agent=payload.get("user_agent"),
            consent_text=payload.get("consent_text"),
            consent_version=payload.get("consent_version") or "1.0",
            purposes=tuple(payload.get("purposes") or ("enrichment",)),
            data_types=tuple(payload.get("data_types") or SOURCES),
        )
        patch = {
            "enrichment_consent": True,
            "consent_id": record.consent_id,
            "consent_granted_at": record.granted_at,
            "consent_expires_at": record.expires_at,
            "consent_withdrawn_at": None,
            "consent_withdrawal_reason": None,
        }
        for flag in ("credit_data_consent", "permissible_purpose", "ccpa_consent"):
            if flag in payload:
                patch[flag] = bool(payload[flag])
        await self.lead_store.update(lead_id, patch)
        await self.log_event(lead_id, "consent_granted", record.to_dict())
        return record

    async def withdraw_consent(self, lead_id, reason: str = "user_request") -> bool:
        lead = await self._load(lead_id)
        await self.lead_store.update(
            lead_id,
            {
                "enrichment_consent": False,
                "consent_withdrawn_at": utcnow(),
                "consent_withdrawal_reason": reason,
            },
        )
        await self.log_event(lead_id, "consent_withdrawn", {"reason": reason, "previous_consent_id": lead.consent_id})
        return True

    async def get_consent_status(self, lead_id) -> dict:
        lead = await self._load(lead_id)
        status = self.validate_consent(lead)
        status.update(
            {
                "lead_id": lead_id,
                "credit_data_consent": lead.credit_data_consent,
                "permissible_purpose": lead.permissible_purpose,
                "ccpa_consent": lead.ccpa_consent,
                "jurisdictions": sorted(self.jurisdictions(lead)),
                "withdrawn_at": lead.consent_withdrawn_at.isoformat() if lead.consent_withdrawn_at else None,
            }
        )
        return status

    async def validate_deletion_request(self, lead_id) -> bool:
        """Deletion is always allowed; deleting without valid consent is recorded."""
        lead = await self._load(lead_id)
        validation = self.validate_consent(lead)
        if not validation["valid"]:
            await self.log_event(
                lead_id,
                "deletion_without_consent",
                {"reason": validation["reason"], "deletion_approved": True},
            )
        return True

    async def handle_deletion_request(self, lead_id, kind: str = "gdpr") -> dict:
        if kind not in (GDPR, CCPA):
            raise InvalidLeadInput(f"Unsupported deletion request type: {kind}")
        lead = await self._load(lead_id)
        if kind == CCPA and CCPA not in self.jurisdictions(lead):
            raise ComplianceDenied("Lead is not identified as a California resident for CCPA request")

        await self.validate_deletion_request(lead_id)
        requested_at = utcnow()
        await self.log_event(lead_id, "deletion_requested", {"request_type": kind}, framework=kind)

        patch = self._deletion_patch(lead, kind, requested_at)
        await self.lead_store.update(lead_id, patch)

        removed = {
            "enrichment_data": kind == GDPR or not lead.enrichment_data,
            "personal_fields": sorted(k for k in patch if k in PII_FIELDS),
            "consent_records_retained": True,
        }
        await self.log_event(
            lead_id,
            "data_deleted",
            {"request_type": kind, "data_removed": removed, "deleted_at": requested_at.isoformat()},
            framework=kind,
        )
        return {
            "lead_id": lead_id,
            "deletion_completed": True,
            "deleted_at": requested_at.isoformat(),
            "request_type": kind,
            "data_removed": removed,
        }

    def _deletion_patch(self, lead: LeadRecord, kind: str, now) -> dict:
        consent_reset = {
            "enrichment_consent": False,
            "credit_data_consent": False,
            "permissible_purpose": False,
            "consent_withdrawn_at": now,
            "consent_withdrawal_reason": "data_deletion",
        }
        if kind == GDPR:
            return {
                "name": None,
                "email": None,
                "phone": None,
                "address": None,
                "location": None,
                "date_of_birth": None,
                "ssn_last4": None,
                "enrichment_data": None,
                "consent_id": None,
                "consent_granted_at": None,
                "consent_expires_at": None,
                "ccpa_consent": False,
                **consent_reset,
            }
        aggregates = None
        if lead.enrichment_data:
            aggregates = {k: lead.enrichment_data[k] for k in AGGREGATE_KEYS if k in lead.enrichment_data}
        return {
            "name": REDACTED,
            "email": REDACTED,
            "phone": REDACTED,
            "address": None,
            "date_of_birth": None,
            "ssn_last4": None,
            "enrichment_data": aggregates,
            **consent_reset,
        }

    async def _audit_summary(self, lead_id, limit=None, newest_first=False) -> list[dict]:
        rows = await self.audit_store.list_for_lead(lead_id, limit=limit, newest_first=newest_first)
        return [
            {
                "timestamp": as_utc(row["timestamp"]).isoformat(),
                "event_type": row["event_type"],
                "metadata": row.get("metadata") or {},
            }
            for row in rows
        ]

    def _retention_years(self, period: timedelta) -> str:
        return "%g years" % round(period.days / 365, 1)

    async def export_for_portability(self, lead_id) -> dict:
        lead = await self._load(lead_id)
        validation = self.validate_consent(lead)
        if not validation["valid"]:
            raise ComplianceDenied(f"Cannot export data: {validation['reason']}")

        package = {
            "lead_id": lead_id,
            "export_date": utcnow().isoformat(),
            "consent_information": validation,
            "personal_data": {"name": lead.name, "email": lead.email, "phone": lead.phone, "address": lead.address},
            "enrichment_data": lead.enrichment_data or {},
            "audit_trail": await self._audit_summary(lead_id),
            "data_retention": {
                "enrichment_data_retention": self._retention_years(self.data_retention),
                "consent_retention": self._retention_years(self.consent_retention),
            },
        }
        await self.log_event(
            lead_id,
            "data_exported",
            {"export_type": "portability", "package_size": len(json.dumps(package, default=str))},
        )
        return package

    def compliance_flags(self, lead: LeadRecord) -> dict:
        jurisdictions = self.jurisdictions(lead)
        decision = self.check_consent(lead)
        expires_at = as_utc(lead.consent_expires_at)
        last_run = (lead.enrichment_data or {}).get("last_enrichment_at")
        return {
            "consent_expired": expires_at is not None and utcnow() > expires_at,
            "consent_withdrawn": lead.consent_withdrawn_at is not None,
            "data_retention_exceeded": bool(last_run) and utcnow() - as_utc(last_run) > self.data_retention,
            "gdpr_applicable": GDPR in jurisdictions,
            "ccpa_applicable": CCPA in jurisdictions,
            "gdpr_compliance": decision.gdpr_compliant,
            "ccpa_compliance": decision.ccpa_compliant,
        }

    async def get_compliance_report(self, lead_id) -> dict:
        lead = await self._load(lead_id)
        last_run = (lead.enrichment_data or {}).get("last_enrichment_at")
        return {
            "lead_id": lead_id,
            "consent_status": self.validate_consent(lead),
            "data_retention": {
                "enrichment_data": "present" if lead.enrichment_data else "not_present",
                "last_enrichment": last_run,
                "data_age_days": (utcnow() - as_utc(last_run)).days if last_run else None,
            },
            "recent_activity": await self._audit_summary(lead_id, limit=10, newest_first=True),
            "compliance_flags": self.compliance_flags(lead),
        }
