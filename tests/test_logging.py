import json
import logging

from leadenrich.logging_utils import REDACTED, JsonLogFormatter, log_event, redact


def _record(event: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("leadenrich.test", logging.INFO, __file__, 1, event, (), None)
    record.__dict__.update(extra)
    return record


def test_formatter_emits_event_and_extra_fields():
    payload = json.loads(JsonLogFormatter().format(_record("enrichment.completed", lead_id=7, quality_score=95)))
    assert payload["event"] == "enrichment.completed"
    assert payload["level"] == "info"
    assert payload["module"] == "leadenrich.test"
    assert payload["data"] == {"lead_id": 7, "quality_score": 95}


def test_sensitive_fields_are_redacted_at_any_depth():
    payload = json.loads(
        JsonLogFormatter().format(_record("credit.lookup", ssn_last4="1234", lead={"date_of_birth": "1980-04-12"}))
    )
    assert payload["data"]["ssn_last4"] == REDACTED
    assert payload["data"]["lead"]["date_of_birth"] == REDACTED


def test_redact_leaves_other_values_alone():
    assert redact({"email": "a@b.com", "items": [{"password": "x"}]}) == {
        "email": "a@b.com",
        "items": [{"password": REDACTED}],
    }


def test_log_event_passes_level_and_data(caplog):
    logger = logging.getLogger("leadenrich.test.events")
    with caplog.at_level(logging.WARNING, logger="leadenrich.test.events"):
        log_event(logger, "trigger.refresh_failed", level=logging.WARNING, lead_id=3)
    assert caplog.records[0].getMessage() == "trigger.refresh_failed"
    assert caplog.records[0].lead_id == 3
