"""Domain records passed between the enrichment components."""

from __future__ import annotations

import copy
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

SOURCES = ("property", "social", "credit")

PII_FIELDS = ("name", "email", "phone", "address", "location", "date_of_birth", "ssn_last4")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | str | None) -> datetime | None:
    """Normalize naive datetimes (SQLite drops tzinfo) and ISO strings to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_enrichment_id() -> str:
    return uuid.uuid4().hex


@dataclass
class LeadRecord:
    """Detached view of a lead: identity fields, consent flags and enrichment payload."""

    id: Any
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    location: str | None = None
    date_of_birth: str | None = None
    ssn_last4: str | None = None
    enrichment_consent: bool = False
    consent_id: str | None = None
    consent_granted_at: datetime | None = None
    consent_expires_at: datetime | None = None
    consent_withdrawn_at: datetime | None = None
    consent_withdrawal_reason: str | None = None
    credit_data_consent: bool = False
    permissible_purpose: bool = False
    ccpa_consent: bool = False
    enrichment_data: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    def jurisdiction_text(self) -> str:
        return " ".join(part for part in (self.address, self.location) if part)

    def apply(self, patch: dict) -> "LeadRecord":
        unknown = set(patch) - self.field_names()
        if unknown:
            raise ValueError(f"Unknown lead fields: {sorted(unknown)}")
        for key, value in patch.items():
            setattr(self, key, copy.deepcopy(value))
        return self


@dataclass(frozen=True)
class Issue:
    type: str
    severity: str
    message: str
    source: str
    field: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class Correction:
    type: str
    source: str
    field: str
    original_value: Any
    corrected_value: Any

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ValidationReport:
    is_valid: bool = False
    quality_score: int = 0
    confidence: float = 0.0
    issues: list[Issue] = field(default_factory=list)
    corrections: list[Correction] = field(default_factory=list)
    excluded_fields: list[str] = field(default_factory=list)
    source_confidences: dict[str, float] = field(default_factory=dict)
    # Corrected copy of the draft data with excluded fields removed.
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "quality_score": self.quality_score,
            "confidence": self.confidence,
            "issues": [issue.to_dict() for issue in self.issues],
            "corrections": [c.to_dict() for c in self.corrections],
            "excluded_fields": list(self.excluded_fields),
        }


@dataclass(frozen=True)
class EnrichmentResult:
    lead_id: Any
    enrichment_id: str
    sources: tuple[str, ...]
    data: dict
    quality_score: int
    confidence: float
    timestamp: datetime
    errors: tuple[str, ...] = ()
    status: str = "completed"
    completed_at: datetime | None = None
    validation: dict | None = None

    @property
    def is_degraded(self) -> bool:
        return not (self.validation or {}).get("is_valid", False)

    def to_dict(self) -> dict:
        return {
            "lead_id": self.lead_id,
            "enrichment_id": self.enrichment_id,
            "sources": list(self.sources),
            "data": copy.deepcopy(self.data),
            "quality_score": self.quality_score,
            "confidence": self.confidence,
            "errors": list(self.errors),
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "validation": copy.deepcopy(self.validation),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "EnrichmentResult":
        return cls(
            lead_id=payload["lead_id"],
            enrichment_id=payload["enrichment_id"],
            sources=tuple(payload.get("sources") or ()),
            data=copy.deepcopy(payload.get("data") or {}),
            quality_score=int(payload.get("quality_score") or 0),
            confidence=float(payload.get("confidence") or 0.0),
            errors=tuple(payload.get("errors") or ()),
            timestamp=as_utc(payload["timestamp"]),
            status=payload.get("status", "completed"),
            completed_at=as_utc(payload.get("completed_at")),
            validation=copy.deepcopy(payload.get("validation")),
        )


@dataclass(frozen=True)
class ComplianceDecision:
    approved: bool
    reason: str | None = None
    gdpr_compliant: bool = True
    ccpa_compliant: bool = True
    jurisdictions: frozenset[str] = frozenset()
    restricted_sources: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "gdpr_compliant": self.gdpr_compliant,
            "ccpa_compliant": self.ccpa_compliant,
            "jurisdictions": sorted(self.jurisdictions),
            "restricted_sources": dict(self.restricted_sources),
        }


@dataclass(frozen=True)
class ConsentRecord:
    consent_id: str
    lead_id: Any
    granted_at: datetime
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    consent_text: str | None = None
    consent_version: str = "1.0"
    purposes: tuple[str, ...] = ("enrichment",)
    data_types: tuple[str, ...] = SOURCES
    withdrawal_method: str = "api_call"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["granted_at"] = self.granted_at.isoformat()
        payload["expires_at"] = self.expires_at.isoformat()
        payload["purposes"] = list(self.purposes)
        payload["data_types"] = list(self.data_types)
        return payload


@dataclass(frozen=True)
class CacheEntry:
    key: str
    data: Any
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "CacheEntry":
        return cls(
            key=payload["key"],
            data=payload.get("data"),
            created_at=as_utc(payload["created_at"]),
            expires_at=as_utc(payload["expires_at"]),
        )
