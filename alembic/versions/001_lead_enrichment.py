"""Leads table with consent and enrichment columns, plus the enrichment audit trail.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String),
        sa.Column("email", sa.String),
        sa.Column("phone", sa.String),
        sa.Column("address", sa.Text),
        sa.Column("location", sa.String),
        sa.Column("date_of_birth", sa.String),
        sa.Column("ssn_last4", sa.String(4)),
        sa.Column("enrichment_consent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("consent_id", sa.String(64)),
        sa.Column("consent_granted_at", sa.DateTime(timezone=True)),
        sa.Column("consent_expires_at", sa.DateTime(timezone=True)),
        sa.Column("consent_withdrawn_at", sa.DateTime(timezone=True)),
        sa.Column("consent_withdrawal_reason", sa.Text),
        sa.Column("credit_data_consent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("permissible_purpose", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ccpa_consent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("enrichment_data", sa.JSON),
        sa.Column("enrichment_updated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_leads_enrichment_updated_at", "leads", ["enrichment_updated_at"])
    op.create_index("ix_leads_enrichment_consent", "leads", ["enrichment_consent"])

    op.create_table(
        "enrichment_audit",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("lead_id", sa.Integer, nullable=False),
        sa.Column("event_type", sa.String, nullable=False),
        sa.Column("data", sa.Text),
        sa.Column("metadata", sa.Text),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ip_address", sa.String, server_default="system"),
        sa.Column("user_agent", sa.String),
    )
    op.create_index("ix_enrichment_audit_lead_id", "enrichment_audit", ["lead_id"])
    op.create_index("ix_enrichment_audit_event_type", "enrichment_audit", ["event_type"])
    op.create_index("ix_enrichment_audit_timestamp", "enrichment_audit", ["timestamp"])


def downgrade() -> None:
    op.drop_table("enrichment_audit")
    op.drop_table("leads")
