import dataclasses

import pytest

from factories import credit_output, property_output, social_output
from leadenrich.errors import ValidationFailure
from leadenrich.validation.config import QualityConfig
from leadenrich.validation.engine import ValidationEngine
from leadenrich.validation.rules import validate_credit, validate_property, validate_social


def _draft(**data):
    return {"lead_id": 1, "enrichment_id": "e-1", "sources": list(data), "data": data}


@pytest.fixture
def engine():
    return ValidationEngine(QualityConfig())


def test_clean_three_source_draft_scores_high(engine):
    report = engine.validate(_draft(property=property_output(), social=social_output(), credit=credit_output()))

    assert report.issues == []
    assert report.quality_score == 95
    assert report.is_valid is True
    assert report.source_confidences == {"property": 0.95, "social": 0.87, "credit": 0.92}
    assert report.confidence == pytest.approx(0.4 * 0.95 + 0.3 * 0.87 + 0.3 * 0.92, abs=1e-4)


def test_mortgage_above_value_flags_anomaly_and_lowers_confidence(engine):
    report = engine.validate(_draft(property=property_output(property_value=250_000, mortgage_balance=300_000)))

    assert [i.type for i in report.issues] == ["anomalous_ratio"]
    assert report.issues[0].severity == "high"
    assert report.confidence < 0.8
    assert report.is_valid is False


def test_out_of_range_credit_score_is_excluded(engine):
    report = engine.validate(_draft(credit=credit_output(credit_score=900)))

    assert "invalid_credit_score" in [i.type for i in report.issues]
    assert "credit.credit_score" in report.excluded_fields
    assert "credit_score" not in report.data["credit"]


def test_in_range_credit_score_is_kept(engine):
    report = engine.validate(_draft(credit=credit_output(credit_score=300)))
    assert report.data["credit"]["credit_score"] == 300


def test_unverified_credit_score_is_critical():
    issues = validate_credit(credit_output(score_verified=False), QualityConfig())
    assert [(i.type, i.severity) for i in issues] == [("unverified_credit_score", "critical")]


def test_poor_payment_history_and_high_debt_ratio():
    issues = validate_credit(credit_output(payment_history="Poor", debt_to_income_ratio=0.7), QualityConfig())
    assert {i.type for i in issues} == {"poor_payment_history", "high_debt_ratio"}


def test_invalid_payment_history_status():
    issues = validate_credit(credit_output(payment_history="spotless"), QualityConfig())
    assert [i.type for i in issues] == ["invalid_payment_history"]


def test_property_rules():
    config = QualityConfig()
    assert [i.type for i in validate_property(property_output(ownership_verified=False), config)] == [
        "unverified_ownership"
    ]
    assert [i.type for i in validate_property(property_output(property_value=-5), config)] == [
        "invalid_property_value"
    ]
    future = validate_property(property_output(last_transaction_date="2999-01-01"), config)
    assert [i.type for i in future] == ["invalid_transaction_date"]


def test_social_rules():
    config = QualityConfig()
    issues = validate_social(social_output(email="not-an-email", professional_title="test user"), config)
    assert {i.type for i in issues} == {"invalid_email", "invalid_professional_title"}


def test_transaction_date_is_corrected_to_iso(engine):
    report = engine.validate(_draft(property=property_output(last_transaction_date="06/15/2018")))

    assert report.issues == []
    assert report.data["property"]["last_transaction_date"] == "2018-06-15"
    assert report.corrections[0].type == "date_format_correction"


def test_title_abbreviations_are_expanded(engine):
    report = engine.validate(_draft(social=social_output(professional_title="Sr. VP of Sales")))

    assert report.data["social"]["professional_title"] == "Senior Vice President of Sales"
    assert [c.type for c in report.corrections] == ["title_standardization"]


def test_connection_count_is_capped(engine):
    report = engine.validate(_draft(social=social_output(connections=45_000)))

    assert report.data["social"]["connections"] == 30_000
    assert report.issues == []


def test_suspicious_title_is_not_corrected(engine):
    report = engine.validate(_draft(social=social_output(professional_title="fake title")))
    assert [i.type for i in report.issues] == ["invalid_professional_title"]
    assert report.corrections == []


def test_empty_draft_has_structure_issues(engine):
    report = engine.validate({"lead_id": 1, "enrichment_id": "e-1", "sources": [], "data": {}})

    assert [i.type for i in report.issues] == ["no_data_sources"]
    assert report.quality_score == 0
    assert report.confidence == 0.0


def test_missing_required_fields(engine):
    report = engine.validate({"sources": ["property"], "data": {"property": property_output()}})
    missing = sorted(i.field for i in report.issues if i.type == "missing_field")
    assert missing == ["enrichment_id", "lead_id"]


def test_non_mapping_draft_is_rejected(engine):
    with pytest.raises(ValidationFailure):
        engine.validate(["not", "a", "draft"])


def test_validator_does_not_mutate_input(engine):
    credit = credit_output(credit_score=900)
    engine.validate(_draft(credit=credit))
    assert credit["credit_score"] == 900


def test_min_quality_threshold_is_configurable():
    config = dataclasses.replace(QualityConfig(), min_quality=99)
    report = ValidationEngine(config).validate(_draft(property=property_output()))
    assert report.issues == []
    assert report.is_valid is False


def test_quality_penalty_per_issue(engine):
    report = engine.validate(_draft(property=property_output(ownership_verified=False)))
    assert report.quality_score == 90
