"""Lead records, provider payloads and fake providers shared by the tests."""

from __future__ import annotations

from datetime import timedelta

from leadenrich.errors import ProviderError
from leadenrich.schemas import LeadRecord, utcnow

TEST_SECRET = "unit-test-credit-secret"


def make_lead(lead_id=1, **overrides) -> LeadRecord:
    now = utcnow()
    values = dict(
        id=lead_id,
        name="Jane Q Smith",
        email="jane.smith@example.com",
        phone="+1-512-555-0100",
        address="123 Main St, Austin, TX, 78701",
        location="Austin, TX",
        date_of_birth="1980-04-12",
        ssn_last4="1234",
        enrichment_consent=True,
        consent_id="consent-1",
        consent_granted_at=now - timedelta(days=10),
        consent_expires_at=now + timedelta(days=700),
        credit_data_consent=True,
        permissible_purpose=True,
    )
    values.update(overrides)
    return LeadRecord(**values)


def property_output(**overrides) -> dict:
    output = {
        "properties_found": 2,
        "property_id": "zp-1",
        "address": "123 Main St, Austin, TX",
        "ownership_status": "owned",
        "property_value": 450_000,
        "mortgage_balance": 200_000,
        "property_type": "single_family",
        "ownership_verified": True,
        "transaction_history": [],
        "last_transaction_date": "2019-06-01",
        "confidence": 0.95,
        "vendor": "zillow",
    }
    output.update(overrides)
    return output


def social_output(**overrides) -> dict:
    output = {
        "linkedin_profile": "https://linkedin.com/in/janesmith",
        "professional_title": "Broker",
        "company": "Smith Realty",
        "industry": "Real Estate",
        "connections": 540,
        "email_verified": True,
        "profile_verified": True,
        "social_profiles": [],
        "location": "Austin, TX",
        "email": "jane.smith@example.com",
        "confidence": 0.87,
        "vendor": "linkedin",
    }
    output.update(overrides)
    return output


def credit_output(**overrides) -> dict:
    output = {
        "credit_score": 742,
        "credit_rating": "good",
        "payment_history": "good",
        "debt_to_income_ratio": 0.28,
        "credit_utilization": 0.2,
        "score_verified": True,
        "report_date": utcnow().date().isoformat(),
        "credit_factors": [],
        "risk_indicators": [],
        "confidence": 0.92,
        "vendor": "experian",
    }
    output.update(overrides)
    return output


class FakeProvider:
    """Stands in for a provider: returns a fixed payload or raises ``error``."""

    def __init__(self, source: str, output: dict | None = None, error: Exception | None = None) -> None:
        self.source = source
        self.output = output
        self.error = error
        self.calls = 0

    async def enrich(self, lead):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.output or {})

    async def get_health_status(self):
        return {"overall": "healthy", "primary": "fake", "rate_limit_remaining": 10, "providers": {}}


def fake_providers(**overrides) -> dict:
    providers = {
        "property": FakeProvider("property", property_output()),
        "social": FakeProvider("social", social_output()),
        "credit": FakeProvider("credit", credit_output()),
    }
    providers.update(overrides)
    return providers


def failing_provider(source: str, status: int = 503) -> FakeProvider:
    return FakeProvider(source, error=ProviderError(status, f"All {source} vendors failed", provider=source))
