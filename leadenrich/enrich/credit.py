"""Credit bureau enrichment.

Credit data is the most regulated source: consent, FCRA permissible purpose and
identity are checked before any vendor is contacted, every access attempt is
compliance-logged, and vendor payloads are sealed with the
``SensitiveDataCodec`` as soon as they are normalized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable

import httpx

from leadenrich.compliance.jurisdiction import JurisdictionClassifier, KeywordJurisdictionClassifier
from leadenrich.config import settings
from leadenrich.enrich.base import EnrichmentProvider, Vendor, parse_name
from leadenrich.enrich.codec import SensitiveDataCodec
from leadenrich.errors import ComplianceDenied, ProviderError
from leadenrich.schemas import LeadRecord, as_utc, utcnow

logger = logging.getLogger(__name__)

AuditLogger = Callable[[Any, str, dict], Awaitable[Any]]

# Sealed output keeps only what is safe to store next to the ciphertext.
CLEAR_FIELDS = ("score_verified", "confidence", "vendor", "retrieved_at", "report_date")


@dataclass(frozen=True)
class _CreditApi:
    path: str
    root: str
    fields: dict[str, str]
    request_extras: dict[str, str] = field(default_factory=dict)


_COMMON_FIELDS = {
    "credit_score": "score",
    "credit_rating": "rating",
    "payment_history": "paymentHistory",
    "debt_to_income_ratio": "debtToIncomeRatio",
    "credit_utilization": "creditUtilization",
    "score_verified": "verified",
    "report_date": "reportDate",
    "credit_factors": "factors",
    "risk_indicators": "riskIndicators",
}

CREDIT_APIS: dict[str, _CreditApi] = {
    "experian": _CreditApi(
        "/credit-reports",
        "creditProfile",
        _COMMON_FIELDS,
        {"reportType": "soft_inquiry", "purpose": "real_estate_qualification"},
    ),
    "equifax": _CreditApi(
        "/credit-reports",
        "consumerCreditReport",
        dict(_COMMON_FIELDS, credit_score="creditScore", score_verified="scoreVerified"),
        {"inquiryType": "soft", "businessPurpose": "mortgage_pre_qualification"},
    ),
    "transunion": _CreditApi(
        "/credit-reports",
        "report",
        dict(_COMMON_FIELDS, credit_score="vantageScore", payment_history="payment_history", report_date="report_date"),
        {"inquiry_type": "soft_inquiry", "permissible_purpose": "mortgage"},
    ),
    "creditkarma": _CreditApi(
        "/credit-scores",
        "data",
        _COMMON_FIELDS,
        {"inquiry_type": "consumer_report"},
    ),
}


def default_credit_vendors() -> list[Vendor]:
    return [
        Vendor(
            "experian",
            settings.EXPERIAN_BASE_URL,
            "basic",
            {"client_id": settings.EXPERIAN_CLIENT_ID, "client_secret": settings.EXPERIAN_CLIENT_SECRET},
        ),
        Vendor(
            "equifax",
            settings.EQUIFAX_BASE_URL,
            "basic",
            {"username": settings.EQUIFAX_USERNAME, "password": settings.EQUIFAX_PASSWORD},
            health_path="/status",
        ),
        Vendor(
            "transunion",
            settings.TRANSUNION_BASE_URL,
            "bearer",
            {"api_key": settings.TRANSUNION_API_KEY},
            health_path="/ping",
        ),
        Vendor("creditkarma", settings.CREDITKARMA_BASE_URL, "api_key_header", {"api_key": settings.CREDITKARMA_API_KEY}),
    ]


def mask_ssn(ssn_last4: str | None) -> str:
    return f"XXX-XX-{ssn_last4}" if ssn_last4 else ""


def _days_since(value) -> float | None:
    if not value:
        return None
    try:
        if isinstance(value, date) and not isinstance(value, datetime):
            value = datetime(value.year, value.month, value.day)
        moment = as_utc(value)
    except (TypeError, ValueError):
        return None
    return (utcnow() - moment).total_seconds() / 86400


class CreditReportingProvider(EnrichmentProvider):
    name = "credit_reporting"
    source = "credit"

    def __init__(
        self,
        vendors: list[Vendor] | None = None,
        primary_vendor: str | None = None,
        codec: SensitiveDataCodec | None = None,
        classifier: JurisdictionClassifier | None = None,
        audit_logger: AuditLogger | None = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("rate_limit_per_min", settings.CREDIT_RATE_LIMIT_PER_MIN)
        kwargs.setdefault("timeout_seconds", settings.CREDIT_TIMEOUT_SECONDS)
        super().__init__(
            vendors if vendors is not None else default_credit_vendors(),
            primary_vendor or settings.CREDIT_PRIMARY_VENDOR,
            **kwargs,
        )
        self.codec = codec or SensitiveDataCodec()
        self.classifier = classifier or KeywordJurisdictionClassifier()
        self.audit_logger = audit_logger

    def compliance_failure(self, lead: LeadRecord) -> str | None:
        if not (lead.enrichment_consent and lead.credit_data_consent):
            return "Credit data consent required"
        if "ccpa" in self.classifier.classify(lead.jurisdiction_text()) and not lead.ccpa_consent:
            return "CCPA consent required for California residents"
        if not lead.permissible_purpose:
            return "FCRA permissible purpose not established"
        return None

    @staticmethod
    def identity_verified(lead: LeadRecord) -> bool:
        ssn = (lead.ssn_last4 or "").strip()
        return len(ssn) == 4 and ssn.isdigit() and bool(lead.date_of_birth) and bool(lead.address)

    async def preflight(self, lead: LeadRecord) -> None:
        reason = self.compliance_failure(lead)
        if reason is None and not self.identity_verified(lead):
            reason = "Identity verification required for credit check"
        if reason:
            raise ComplianceDenied(reason)

    async def enrich(self, lead: LeadRecord) -> dict:
        try:
            output = await super().enrich(lead)
        except Exception as exc:
            await self._log_access(
                lead.id,
                "credit_data_access_failed",
                {"error": str(exc), "provider": self.primary_vendor},
            )
            raise
        await self._log_access(
            lead.id,
            "credit_data_accessed",
            {"vendor": output.get("vendor"), "score_verified": output.get("score_verified")},
        )
        return output

    async def _log_access(self, lead_id, event_type: str, data: dict) -> None:
        logger.info("credit.%s" % event_type, extra={"lead_id": lead_id, **data})
        if self.audit_logger is not None:
            await self.audit_logger(lead_id, event_type, data)

    def build_request(self, lead: LeadRecord, api: _CreditApi) -> dict:
        name = parse_name(lead.name)
        return {
            "firstName": name["first_name"],
            "lastName": name["last_name"],
            "dateOfBirth": lead.date_of_birth,
            "ssn": mask_ssn(lead.ssn_last4),
            "address": lead.address,
            **api.request_extras,
        }

    async def fetch(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict:
        api = CREDIT_APIS.get(vendor.name)
        if api is None:
            raise ProviderError(None, f"no credit API mapping for {vendor.name}", provider=vendor.name)
        headers = {**vendor.auth_headers(), "Content-Type": "application/json"}
        resp = await client.post(vendor.url(api.path), json=self.build_request(lead, api), headers=headers)
        resp.raise_for_status()
        report = (resp.json() or {}).get(api.root) or {}
        if not report:
            raise ProviderError(404, "no credit file found", provider=vendor.name)

        output = {key: report.get(remote) for key, remote in api.fields.items()}
        output["score_verified"] = bool(output.get("score_verified"))
        output["credit_factors"] = list(output.get("credit_factors") or [])
        output["risk_indicators"] = list(output.get("risk_indicators") or [])
        return output

    async def finalize_output(self, lead: LeadRecord, vendor: Vendor, output: dict) -> dict:
        sealed = {key: output.get(key) for key in CLEAR_FIELDS}
        sealed["encrypted_payload"] = self.codec.encrypt(output)
        return sealed

    def compute_confidence(self, output: dict) -> float:
        confidence = 0.0
        if output.get("score_verified"):
            confidence += 0.5
        age = _days_since(output.get("report_date"))
        if age is not None:
            if age <= 30:
                confidence += 0.3
            elif age <= 90:
                confidence += 0.2
        factors = output.get("credit_factors") or []
        if factors:
            confidence += min(len(factors) * 0.05, 0.2)
        return min(confidence, 1.0)

    def open_payload(self, output: dict) -> dict:
        """Return the decrypted credit fields merged with the clear flags."""
        envelope = output.get("encrypted_payload")
        if not self.codec.is_envelope(envelope):
            return dict(output)
        opened = self.codec.decrypt(envelope)
        opened.update({k: output[k] for k in CLEAR_FIELDS if k in output})
        return opened
