"""ValidationEngine: checks an enrichment draft and scores its quality and confidence.

Order of work: structure check, per-source validators, automatic correction of
low-severity whitelisted issues, exclusion of out-of-range fields, then quality
and confidence scoring over the sources that are present.
"""

from __future__ import annotations

import copy
import logging
from typing import Mapping

from leadenrich.errors import ValidationFailure
from leadenrich.schemas import Correction, Issue, ValidationReport
from leadenrich.validation.config import QualityConfig, quality_config
from leadenrich.validation.rules import CORRECTIONS, EXCLUDING_ISSUES, SOURCE_VALIDATORS, in_range

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("lead_id", "enrichment_id", "sources", "data")


class ValidationEngine:
    def __init__(self, config: QualityConfig | None = None) -> None:
        self.config = config or quality_config

    def validate(self, draft: Mapping) -> ValidationReport:
        if not isinstance(draft, Mapping):
            raise ValidationFailure("Enrichment draft must be a mapping")

        data = copy.deepcopy(dict(draft.get("data") or {}))
        report = ValidationReport(data=data)
        try:
            issues = self._structure_issues(draft)
            present = [s for s in (draft.get("sources") or []) if isinstance(data.get(s), dict)]
            for source in present:
                validator = SOURCE_VALIDATORS.get(source)
                if validator is not None:
                    issues.extend(validator(data[source], self.config))

            issues, corrections = self._apply_corrections(issues, data)
            report.issues = issues
            report.corrections = corrections
            report.excluded_fields = self._exclude_fields(issues, data, present)
            report.quality_score = self.quality_score(present, issues)
            report.source_confidences = self.source_confidences(present, data, issues)
            report.confidence = self.confidence(report.source_confidences)
        except Exception as exc:
            logger.exception("validation.failed", extra={"lead_id": draft.get("lead_id")})
            report.issues = list(report.issues) + [
                Issue("validation_error", "critical", f"Validation failed: {exc}", "system")
            ]
            report.is_valid = False
            return report

        report.is_valid = report.quality_score >= self.config.min_quality and not report.issues
        return report

    def _structure_issues(self, draft: Mapping) -> list[Issue]:
        issues = [
            Issue("missing_field", "critical", f"Required field '{name}' is missing", "structure", field=name)
            for name in REQUIRED_FIELDS
            if draft.get(name) is None
        ]
        data = draft.get("data") or {}
        if not [s for s in (draft.get("sources") or []) if data.get(s)]:
            issues.append(
                Issue("no_data_sources", "critical", "No data sources were successfully enriched", "structure")
            )
        return issues

    def _apply_corrections(self, issues: list[Issue], data: dict) -> tuple[list[Issue], list[Correction]]:
        remaining, corrections = [], []
        for issue in issues:
            fixer = CORRECTIONS.get(issue.type)
            if issue.severity == "low" and issue.type in self.config.auto_correctable and fixer is not None:
                correction = fixer(data.get(issue.source) or {}, self.config)
                if correction is not None:
                    corrections.append(correction)
                    continue
            remaining.append(issue)
        return remaining, corrections

    def _exclude_fields(self, issues: list[Issue], data: dict, present: list[str]) -> list[str]:
        excluded = []
        flagged = {(i.source, i.field) for i in issues if i.type in EXCLUDING_ISSUES and i.field}
        for source in present:
            payload = data[source]
            for name in list(payload):
                if name == "confidence":
                    continue
                if (source, name) in flagged or not in_range(self.config, name, payload[name]):
                    if payload[name] is None:
                        continue
                    payload.pop(name)
                    excluded.append(f"{source}.{name}")
        return excluded

    def quality_score(self, present: list[str], issues: list[Issue]) -> int:
        total = weight_sum = 0.0
        for source in present:
            weight = self.config.source_weights.get(source, 0.0)
            base = self.config.base_scores.get(source, 0.0)
            penalty = self.config.issue_penalty * sum(1 for i in issues if i.source == source)
            total += max(0.0, base - penalty) * weight
            weight_sum += weight
        return int(round(total / weight_sum)) if weight_sum else 0

    def source_confidences(self, present: list[str], data: dict, issues: list[Issue]) -> dict[str, float]:
        scores = {}
        for source in present:
            raw = data[source].get("confidence")
            base = float(raw) if in_range(self.config, "confidence", raw) else 0.0
            penalty = sum(self.config.severity_penalties.get(i.severity, 0.0) for i in issues if i.source == source)
            scores[source] = round(max(0.0, base - penalty), 4)
        return scores

    def confidence(self, source_confidences: dict[str, float]) -> float:
        total = weight_sum = 0.0
        for source, score in source_confidences.items():
            weight = self.config.source_weights.get(source, 0.0)
            total += score * weight
            weight_sum += weight
        return round(total / weight_sum, 4) if weight_sum else 0.0
