import json
import logging

import pytest

from netledger.errors import EntityNotFoundError, ValidationError
from netledger.logging import (
    JsonFormatter,
    RequestIdFilter,
    clear_log_context,
    get_log_context,
    log_context,
    log_extra,
    redact,
    set_log_context,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


def make_record(**extra):
    record = logging.makeLogRecord({"name": "netledger.test", "levelno": logging.INFO, "levelname": "INFO", "msg": "event"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_log_extra_drops_none():
    assert log_extra(network_id="net-1", task_id=None, count=2) == {"network_id": "net-1", "count": 2}
    assert log_extra(request_id="req-1") == {"request_id": "req-1"}


def test_log_context_is_scoped():
    set_log_context(request_id="req-1")
    with log_context(network_id="net-1") as bound:
        assert bound == {"request_id": "req-1", "network_id": "net-1"}
    assert get_log_context() == {"request_id": "req-1"}


def test_filter_fills_fields_and_keeps_extras():
    record = make_record(task_id="from-extra")

    with log_context(network_id="net-1", task_id="from-context"):
        assert RequestIdFilter().filter(record)

    assert record.network_id == "net-1"
    assert record.task_id == "from-extra"
    assert record.artifact_id == "-"


def test_redaction():
    assert redact("api_key", "abc") == "[REDACTED]"
    assert redact("db_url", "postgresql://user:pw@db:5432/ledger") == "postgresql://db:5432/ledger"
    assert redact("payload", {"password": "x", "items": ["https://a:b@host/x"]}) == {
        "password": "[REDACTED]",
        "items": ["https://host/x"],
    }


def test_json_formatter():
    record = make_record(network_id="net-1", token="hunter2", to_stage="planning")
    RequestIdFilter().filter(record)

    data = json.loads(JsonFormatter().format(record))

    assert data["message"] == "event"
    assert data["network_id"] == "net-1"
    assert data["request_id"] == "-"
    assert data["to_stage"] == "planning"
    assert data["token"] == "[REDACTED]"


def test_error_log_fields():
    missing = EntityNotFoundError("Task t-1 not found", metadata={"task_id": "t-1"})
    assert isinstance(missing, KeyError)
    assert str(missing) == "Task t-1 not found"
    assert missing.log_fields() == {
        "category": "storage",
        "retryable": False,
        "error": "Task t-1 not found",
        "task_id": "t-1",
    }
    assert ValidationError("bad", retryable=True).retryable is True
