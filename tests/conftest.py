"""Shared fixtures built on in-memory stores and fake providers."""

from __future__ import annotations

import os

import pytest

# Point the module-level engine at SQLite before anything imports leadenrich.db.session.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from factories import TEST_SECRET, fake_providers, make_lead
from leadenrich.db.stores import InMemoryAuditStore, InMemoryLeadStore
from leadenrich.enrich.codec import SensitiveDataCodec
from leadenrich.enrich.service import EnrichmentService
from leadenrich.monitoring.service import MonitoringService


async def no_sleep(_seconds):
    return None


@pytest.fixture
def lead_store():
    return InMemoryLeadStore([make_lead()])


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def codec():
    return SensitiveDataCodec(TEST_SECRET)


@pytest.fixture
def providers():
    return fake_providers()


@pytest.fixture
def service(lead_store, audit_store, providers, codec):
    return EnrichmentService(
        lead_store,
        audit_store,
        providers=providers,
        monitoring=MonitoringService(),
        codec=codec,
        sleep=no_sleep,
    )
