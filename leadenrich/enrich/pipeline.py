"""Fixed-order enrichment pipeline.

validate_input -> check_consent -> gather property/social/credit (concurrently)
-> validate_data_quality -> calculate_confidence_scores -> finalize.

Input and consent failures abort the run. Gather failures are recorded as
``"<step>: <message>"`` in ``errors`` and never block sibling steps.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

from leadenrich.compliance.gate import ComplianceGate
from leadenrich.enrich.base import EnrichmentProvider
from leadenrich.enrich.codec import SensitiveDataCodec
from leadenrich.enrich.credit import CLEAR_FIELDS
from leadenrich.errors import CodecError, ComplianceDenied, InvalidLeadInput
from leadenrich.schemas import (
    SOURCES,
    ComplianceDecision,
    EnrichmentResult,
    LeadRecord,
    ValidationReport,
    new_enrichment_id,
    utcnow,
)
from leadenrich.validation.engine import ValidationEngine

logger = logging.getLogger(__name__)

GATHER_STEPS = {
    "property": "gather_property_data",
    "social": "gather_social_data",
    "credit": "gather_credit_data",
}


@dataclass
class PipelineRun:
    lead: LeadRecord
    requested: tuple[str, ...]
    enrichment_id: str = field(default_factory=new_enrichment_id)
    timestamp: datetime = field(default_factory=utcnow)
    data: dict = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    denials: list[ComplianceDenied] = field(default_factory=list)
    sealed: set = field(default_factory=set)
    decision: ComplianceDecision | None = None
    report: ValidationReport | None = None
    confidences: dict[str, float] = field(default_factory=dict)

    @property
    def sources(self) -> list[str]:
        return [s for s in SOURCES if s in self.data]

    def draft(self) -> dict:
        return {
            "lead_id": self.lead.id,
            "enrichment_id": self.enrichment_id,
            "sources": self.sources,
            "data": self.data,
        }


class EnrichmentPipeline:
    def __init__(
        self,
        providers: dict[str, EnrichmentProvider],
        gate: ComplianceGate,
        validator: ValidationEngine | None = None,
        codec: SensitiveDataCodec | None = None,
    ) -> None:
        self.providers = providers
        self.gate = gate
        self.validator = validator or ValidationEngine()
        self.codec = codec or SensitiveDataCodec()

    async def run(self, lead: LeadRecord, sources=None) -> EnrichmentResult:
        run = PipelineRun(lead=lead, requested=tuple(sources or SOURCES))
        self.validate_input(run)
        self.check_consent(run)
        await self.gather(run)
        self.validate_data_quality(run)
        self.calculate_confidence_scores(run)
        return self.finalize(run)

    def validate_input(self, run: PipelineRun) -> None:
        if not (run.lead.email or run.lead.phone):
            raise InvalidLeadInput("Lead must have email or phone for enrichment")
        unknown = [s for s in run.requested if s not in SOURCES]
        if unknown:
            raise InvalidLeadInput(f"Unknown enrichment sources: {', '.join(unknown)}")

    def check_consent(self, run: PipelineRun) -> None:
        run.decision = self.gate.check_consent(run.lead, run.requested)
        if not run.decision.approved:
            raise ComplianceDenied(run.decision.reason)
        for source, reason in run.decision.restricted_sources.items():
            if source in run.requested:
                run.errors.append(f"{GATHER_STEPS[source]}: {reason}")

    async def gather(self, run: PipelineRun) -> None:
        restricted = run.decision.restricted_sources if run.decision else {}
        wanted = [s for s in SOURCES if s in run.requested and s not in restricted]
        await asyncio.gather(*(self._gather_source(run, source) for source in wanted))

        # A lone credit request refused by the provider's own checks is still a denial.
        if run.denials and not run.data and len(run.denials) == len(wanted):
            raise run.denials[0]

    async def _gather_source(self, run: PipelineRun, source: str) -> None:
        step = GATHER_STEPS[source]
        provider = self.providers.get(source)
        if provider is None:
            run.errors.append(f"{step}: provider not configured")
            return
        started = time.perf_counter()
        try:
            output = await provider.enrich(run.lead)
        except Exception as exc:
            if isinstance(exc, ComplianceDenied):
                run.denials.append(exc)
            run.errors.append(f"{step}: {exc}")
            logger.warning(
                "pipeline.step_failed",
                extra={"lead_id": run.lead.id, "step": step, "error_type": type(exc).__name__},
            )
            return
        if not output:
            run.errors.append(f"{step}: no data returned")
            return
        run.data[source] = output
        logger.info(
            "pipeline.step_completed",
            extra={
                "lead_id": run.lead.id,
                "step": step,
                "duration_ms": int((time.perf_counter() - started) * 1000),
            },
        )

    def _open_credit(self, run: PipelineRun) -> None:
        credit = run.data.get("credit")
        if not credit or not self.codec.is_envelope(credit.get("encrypted_payload")):
            return
        try:
            opened = self.codec.decrypt(credit["encrypted_payload"])
        except CodecError as exc:
            run.data.pop("credit")
            run.errors.append(f"validate_data_quality: {exc}")
            return
        opened.update({k: credit[k] for k in CLEAR_FIELDS if k in credit})
        run.data["credit"] = opened
        run.sealed.add("credit")

    def _seal_credit(self, data: dict) -> None:
        credit = data.get("credit")
        if credit is None:
            return
        sealed = {k: credit.get(k) for k in CLEAR_FIELDS if k in credit}
        sealed["encrypted_payload"] = self.codec.encrypt(credit)
        data["credit"] = sealed

    def validate_data_quality(self, run: PipelineRun) -> None:
        self._open_credit(run)
        run.report = self.validator.validate(run.draft())
        run.data = copy.deepcopy(run.report.data)
        if "credit" in run.sealed:
            self._seal_credit(run.data)

    def calculate_confidence_scores(self, run: PipelineRun) -> None:
        run.confidences = dict(run.report.source_confidences) if run.report else {}

    def finalize(self, run: PipelineRun) -> EnrichmentResult:
        report = run.report or ValidationReport()
        validation = report.to_dict()
        validation["source_confidences"] = dict(run.confidences)
        result = EnrichmentResult(
            lead_id=run.lead.id,
            enrichment_id=run.enrichment_id,
            sources=tuple(run.sources),
            data=run.data,
            quality_score=report.quality_score,
            confidence=report.confidence,
            timestamp=run.timestamp,
            errors=tuple(run.errors),
            status="completed",
            completed_at=utcnow(),
            validation=validation,
        )
        logger.info(
            "pipeline.finalized",
            extra={
                "lead_id": run.lead.id,
                "enrichment_id": run.enrichment_id,
                "sources": list(result.sources),
                "quality_score": result.quality_score,
                "errors": len(result.errors),
            },
        )
        return result
