"""Per-source field validators, anomaly detectors and automatic corrections."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Callable

from leadenrich.schemas import Correction, Issue, utcnow
from leadenrich.validation.config import QualityConfig

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SUSPICIOUS_TITLE_PATTERNS = ("test", "fake", "spam", "123")
TITLE_ABBREVIATIONS = {
    "ceo": "Chief Executive Officer",
    "cfo": "Chief Financial Officer",
    "cto": "Chief Technology Officer",
    "coo": "Chief Operating Officer",
    "vp": "Vice President",
    "svp": "Senior Vice President",
    "mgr": "Manager",
    "dir": "Director",
    "sr": "Senior",
    "jr": "Junior",
}
_ABBREVIATION_RE = re.compile(r"\b(%s)\b\.?" % "|".join(TITLE_ABBREVIATIONS), re.IGNORECASE)
PAYMENT_HISTORY_STATUSES = ("excellent", "good", "fair", "poor")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y", "%b %d, %Y", "%B %d, %Y")

# Issues whose field is dropped from the merged result if it is still flagged.
EXCLUDING_ISSUES = ("invalid_property_value", "invalid_credit_score", "invalid_debt_ratio")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def in_range(config: QualityConfig, field_name: str, value: Any) -> bool:
    bounds = config.field_ranges.get(field_name)
    if bounds is None:
        return True
    lo, hi = bounds
    return is_number(value) and lo <= value <= hi


def _parse_iso_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10]) if len(value) >= 10 and value[4] == "-" else None
    except ValueError:
        return None


def _parse_any_date(value: Any) -> date | None:
    parsed = _parse_iso_date(value)
    if parsed is not None or not isinstance(value, str):
        return parsed
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def _title_problem(title: Any) -> str | None:
    if not isinstance(title, str) or len(title.strip()) < 2:
        return "Professional title is too short or invalid"
    lowered = title.lower()
    if any(pattern in lowered for pattern in SUSPICIOUS_TITLE_PATTERNS):
        return "Professional title contains suspicious content"
    if _ABBREVIATION_RE.search(title):
        return "Professional title uses abbreviations"
    return None


# ── property ──────────────────────────────────────────────────────────────


def validate_property(data: dict, config: QualityConfig) -> list[Issue]:
    issues = []
    if not data.get("ownership_verified"):
        issues.append(
            Issue(
                "unverified_ownership",
                "high",
                "Property ownership not verified",
                "property",
                suggestion="Cross-reference with multiple public records",
            )
        )

    value = data.get("property_value")
    if value is not None:
        if not is_number(value) or value <= 0:
            issues.append(
                Issue(
                    "invalid_property_value",
                    "medium",
                    "Property value must be a positive number",
                    "property",
                    field="property_value",
                    suggestion="Verify property value from multiple sources",
                )
            )
        elif not in_range(config, "property_value", value):
            issues.append(
                Issue(
                    "invalid_property_value",
                    "medium",
                    "Property value seems unusually high",
                    "property",
                    field="property_value",
                    suggestion="Cross-reference with recent comparable sales",
                )
            )

    last_date = data.get("last_transaction_date")
    if last_date:
        parsed = _parse_iso_date(last_date)
        if parsed is None:
            issues.append(
                Issue(
                    "invalid_transaction_date",
                    "low",
                    "Invalid transaction date format",
                    "property",
                    field="last_transaction_date",
                )
            )
        elif parsed > utcnow().date():
            issues.append(
                Issue(
                    "invalid_transaction_date",
                    "low",
                    "Transaction date cannot be in the future",
                    "property",
                    field="last_transaction_date",
                )
            )

    mortgage = data.get("mortgage_balance")
    if is_number(mortgage) and is_number(value) and value > 0 and mortgage > value:
        issues.append(
            Issue(
                "anomalous_ratio",
                "high",
                "Mortgage balance exceeds property value (loan-to-value %.2f)" % (mortgage / value),
                "property",
                field="mortgage_balance",
                suggestion="Confirm the mortgage balance and valuation with the lender or public records",
            )
        )
    return issues


# ── social ────────────────────────────────────────────────────────────────


def validate_social(data: dict, config: QualityConfig) -> list[Issue]:
    issues = []
    if not data.get("profile_verified"):
        issues.append(
            Issue(
                "unverified_profile",
                "medium",
                "Social profile not verified",
                "social",
                suggestion="Verify profile authenticity through multiple signals",
            )
        )

    title = data.get("professional_title")
    if title is not None:
        problem = _title_problem(title)
        if problem:
            issues.append(Issue("invalid_professional_title", "low", problem, "social", field="professional_title"))

    connections = data.get("connections")
    if connections is not None:
        if not is_number(connections):
            issues.append(
                Issue(
                    "suspicious_connection_count",
                    "low",
                    "Connection count must be a number",
                    "social",
                    field="connections",
                )
            )
        elif connections > config.connection_cap:
            issues.append(
                Issue(
                    "suspicious_connection_count",
                    "low",
                    "Connection count seems unusually high",
                    "social",
                    field="connections",
                )
            )

    email = data.get("email")
    if email and not EMAIL_RE.match(str(email)):
        issues.append(Issue("invalid_email", "high", "Invalid email format", "social", field="email"))
    return issues


# ── credit ────────────────────────────────────────────────────────────────


def validate_credit(data: dict, config: QualityConfig) -> list[Issue]:
    issues = []
    score = data.get("credit_score")
    if score is not None and not in_range(config, "credit_score", score):
        lo, hi = config.field_ranges["credit_score"]
        issues.append(
            Issue(
                "invalid_credit_score",
                "high",
                "Credit score must be between %d and %d" % (lo, hi),
                "credit",
                field="credit_score",
            )
        )

    history = data.get("payment_history")
    if history is not None:
        normalized = str(history).strip().lower()
        if normalized not in PAYMENT_HISTORY_STATUSES:
            issues.append(
                Issue(
                    "invalid_payment_history",
                    "medium",
                    "Invalid payment history status",
                    "credit",
                    field="payment_history",
                )
            )
        elif normalized == "poor":
            issues.append(
                Issue(
                    "poor_payment_history",
                    "high",
                    "Payment history indicates high risk",
                    "credit",
                    field="payment_history",
                )
            )

    ratio = data.get("debt_to_income_ratio")
    if ratio is not None:
        if not in_range(config, "debt_to_income_ratio", ratio):
            issues.append(
                Issue(
                    "invalid_debt_ratio",
                    "medium",
                    "Debt-to-income ratio must be between 0 and 1",
                    "credit",
                    field="debt_to_income_ratio",
                )
            )
        elif ratio > config.high_debt_ratio:
            issues.append(
                Issue(
                    "high_debt_ratio",
                    "medium",
                    "Debt-to-income ratio is quite high",
                    "credit",
                    field="debt_to_income_ratio",
                )
            )

    if not data.get("score_verified"):
        issues.append(
            Issue(
                "unverified_credit_score",
                "critical",
                "Credit score not verified by reporting agency",
                "credit",
            )
        )
    return issues


SOURCE_VALIDATORS: dict[str, Callable[[dict, QualityConfig], list[Issue]]] = {
    "property": validate_property,
    "social": validate_social,
    "credit": validate_credit,
}


# ── corrections ───────────────────────────────────────────────────────────


def correct_transaction_date(data: dict, config: QualityConfig) -> Correction | None:
    original = data.get("last_transaction_date")
    parsed = _parse_any_date(original)
    if parsed is None or parsed > utcnow().date():
        return None
    corrected = parsed.isoformat()
    data["last_transaction_date"] = corrected
    return Correction("date_format_correction", "property", "last_transaction_date", original, corrected)


def correct_professional_title(data: dict, config: QualityConfig) -> Correction | None:
    original = data.get("professional_title")
    if not isinstance(original, str):
        return None
    corrected = _ABBREVIATION_RE.sub(lambda m: TITLE_ABBREVIATIONS[m.group(1).lower()], original).strip()
    if corrected == original or _title_problem(corrected):
        return None
    data["professional_title"] = corrected
    return Correction("title_standardization", "social", "professional_title", original, corrected)


def correct_connection_count(data: dict, config: QualityConfig) -> Correction | None:
    original = data.get("connections")
    if not is_number(original) or original <= config.connection_cap:
        return None
    data["connections"] = config.connection_cap
    return Correction("connection_count_correction", "social", "connections", original, config.connection_cap)


CORRECTIONS: dict[str, Callable[[dict, QualityConfig], Correction | None]] = {
    "invalid_transaction_date": correct_transaction_date,
    "invalid_professional_title": correct_professional_title,
    "suspicious_connection_count": correct_connection_count,
}
