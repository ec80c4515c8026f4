"""Tests for structured logging and correlation IDs."""

import json
import logging

from instaflow.observability.correlation import (
    correlation_scope,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from instaflow.observability.logging import JsonFormatter, get_logger


def _record(msg="hello", level=logging.INFO, extra_fields=None, exc_info=None):
    record = logging.LogRecord("instaflow.test", level, __file__, 1, msg, (), exc_info)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


class TestJsonFormatter:
    def test_core_fields(self):
        entry = json.loads(JsonFormatter(service="instaflow-worker").format(_record(level=logging.WARNING)))

        assert entry["severity"] == "WARNING"
        assert entry["logger"] == "instaflow.test"
        assert entry["message"] == "hello"
        assert entry["service"] == "instaflow-worker"
        assert entry["timestamp"].endswith("+00:00")
        assert "correlationId" not in entry

    def test_correlation_id_included(self):
        with correlation_scope("cid-42"):
            entry = json.loads(JsonFormatter().format(_record()))

        assert entry["correlationId"] == "cid-42"

    def test_extra_fields_cannot_override_core_keys(self):
        record = _record(extra_fields={"severity": "DEBUG", "message": "forged", "kind": "send-message"})

        entry = json.loads(JsonFormatter().format(record))

        assert entry["severity"] == "INFO"
        assert entry["message"] == "hello"
        assert entry["kind"] == "send-message"

    def test_exception_type(self):
        try:
            raise KeyError("missing")
        except KeyError:
            import sys

            record = _record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(JsonFormatter().format(record))

        assert entry["error_type"] == "KeyError"
        assert "Traceback" in entry["exception"]


def test_get_logger_configured_once(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")

    logger = get_logger("instaflow.test.once")
    again = get_logger("instaflow.test.once")

    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False


def test_unknown_log_level_defaults_to_info(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    assert get_logger("instaflow.test.level").level == logging.INFO


class TestCorrelation:
    def test_scope_generates_and_resets(self):
        assert get_correlation_id() == ""

        with correlation_scope(None) as cid:
            assert cid
            assert get_correlation_id() == cid

        assert get_correlation_id() == ""

    def test_scopes_nest(self):
        token = set_correlation_id("outer")
        try:
            with correlation_scope("inner"):
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
        finally:
            reset_correlation_id(token)
