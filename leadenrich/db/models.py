"""SQLAlchemy models for the lead record and the enrichment audit trail."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base, validates

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventEnum(enum.Enum):
    cache_hit = "cache_hit"
    completed = "completed"
    failed = "failed"
    data_deleted = "data_deleted"
    deletion_failed = "deletion_failed"
    deletion_requested = "deletion_requested"
    deletion_without_consent = "deletion_without_consent"
    consent_granted = "consent_granted"
    consent_withdrawn = "consent_withdrawn"
    data_exported = "data_exported"
    credit_data_accessed = "credit_data_accessed"
    credit_data_access_failed = "credit_data_access_failed"


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = {"extend_existing": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String)
    email = Column(String)
    phone = Column(String)
    address = Column(Text)
    location = Column(String)
    date_of_birth = Column(String)
    ssn_last4 = Column(String(4))

    enrichment_consent = Column(Boolean, nullable=False, default=False)
    consent_id = Column(String(64))
    consent_granted_at = Column(DateTime(timezone=True))
    consent_expires_at = Column(DateTime(timezone=True))
    consent_withdrawn_at = Column(DateTime(timezone=True))
    consent_withdrawal_reason = Column(Text)
    credit_data_consent = Column(Boolean, nullable=False, default=False)
    permissible_purpose = Column(Boolean, nullable=False, default=False)
    ccpa_consent = Column(Boolean, nullable=False, default=False)

    enrichment_data = Column(JSON)
    enrichment_updated_at = Column(DateTime(timezone=True), index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @validates("ssn_last4")
    def validate_ssn_last4(self, _key, value):
        if value is None:
            return value
        value = str(value)
        if len(value) != 4 or not value.isdigit():
            raise ValueError("ssn_last4 must be exactly four digits")
        return value


class EnrichmentAudit(Base):
    """Append-only audit trail; rows outlive lead deletion, so there is no FK."""

    __tablename__ = "enrichment_audit"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    lead_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    data = Column(Text)
    event_metadata = Column("metadata", Text)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    ip_address = Column(String, default="system")
    user_agent = Column(String)

    @validates("event_type")
    def validate_event_type(self, _key, value):
        if isinstance(value, AuditEventEnum):
            return value.value
        allowed = {e.value for e in AuditEventEnum}
        if value not in allowed:
            raise ValueError(f"Invalid audit event type '{value}'")
        return value
