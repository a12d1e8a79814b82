"""QualityConfig: scoring weights, thresholds and field ranges for validation.

All parameters sourced from environment variables with safe defaults.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, Tuple


def _parse_json_dict(raw: str, default: dict) -> dict:
    """Parse a JSON string from env var, returning default on failure."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return default
    return parsed if isinstance(parsed, dict) else default


DEFAULT_FIELD_RANGES: Dict[str, Tuple[float, float]] = {
    "property_value": (0, 10_000_000),
    "mortgage_balance": (0, 50_000_000),
    "credit_score": (300, 850),
    "debt_to_income_ratio": (0, 1),
    "credit_utilization": (0, 1),
    "connections": (0, 50_000),
    "confidence": (0, 1),
}


@dataclass(frozen=True)
class QualityConfig:
    # ── Per-source weights (quality and confidence) ────────────────────────
    source_weights: Dict[str, float] = field(
        default_factory=lambda: _parse_json_dict(
            os.getenv("QUALITY_SOURCE_WEIGHTS", '{"property": 0.4, "social": 0.3, "credit": 0.3}'),
            {"property": 0.4, "social": 0.3, "credit": 0.3},
        )
    )

    # ── Base quality per source, minus a penalty per remaining issue ───────
    base_scores: Dict[str, float] = field(
        default_factory=lambda: _parse_json_dict(
            os.getenv("QUALITY_BASE_SCORES", '{"property": 95, "social": 92, "credit": 98}'),
            {"property": 95, "social": 92, "credit": 98},
        )
    )
    issue_penalty: float = field(default_factory=lambda: float(os.getenv("QUALITY_ISSUE_PENALTY", "5")))

    # ── Confidence penalty per remaining issue, by severity ────────────────
    severity_penalties: Dict[str, float] = field(
        default_factory=lambda: {"low": 0.02, "medium": 0.1, "high": 0.2, "critical": 0.4}
    )

    # ── Acceptance ─────────────────────────────────────────────────────────
    min_quality: int = field(default_factory=lambda: int(os.getenv("VALIDATION_MIN_QUALITY", "95")))

    # ── Field rules ────────────────────────────────────────────────────────
    field_ranges: Dict[str, Tuple[float, float]] = field(default_factory=lambda: dict(DEFAULT_FIELD_RANGES))
    connection_cap: int = field(default_factory=lambda: int(os.getenv("VALIDATION_CONNECTION_CAP", "30000")))
    high_debt_ratio: float = field(default_factory=lambda: float(os.getenv("VALIDATION_HIGH_DEBT_RATIO", "0.6")))
    auto_correctable: Tuple[str, ...] = (
        "invalid_transaction_date",
        "invalid_professional_title",
        "suspicious_connection_count",
    )


quality_config = QualityConfig()
