"""Tests for logging helpers."""

import json
import logging

import pytest

from core.logging import ContextFormatter, CustomJsonFormatter, LogContext, record_context


def make_record(**extra):
    record = logging.LogRecord("services.booking_service", logging.INFO, __file__, 1, "Created booking", (), None)
    record.__dict__.update(extra)
    return record


class TestFormatters:
    """Booking context in both output formats."""

    def test_record_context_only_has_extras(self):
        assert record_context(make_record(castle="Pirate Ship")) == {"castle": "Pirate Ship"}

    def test_plain_text_appends_context(self):
        line = ContextFormatter("%(message)s").format(make_record(castle="Pirate Ship", booking_ref="TS240501001"))
        assert line == "Created booking [booking_ref=TS240501001 castle=Pirate Ship]"

    def test_plain_text_without_context(self):
        assert ContextFormatter("%(message)s").format(make_record()) == "Created booking"

    def test_json_record(self):
        payload = json.loads(CustomJsonFormatter("%(message)s").format(make_record(castle="Pirate Ship")))

        assert payload["message"] == "Created booking"
        assert payload["castle"] == "Pirate Ship"
        assert payload["level"] == "INFO"
        assert "business" in payload


class TestLogContext:
    """Context blocks around booking writes."""

    def test_context_fields_on_records(self, caplog):
        logger = logging.getLogger("tests.log_context")
        with caplog.at_level(logging.INFO, logger="tests.log_context"):
            with LogContext(logger, castle="Pirate Ship") as ctx:
                ctx.log("info", "stored", booking_id=3)

        assert caplog.records[0].castle == "Pirate Ship"
        assert caplog.records[0].booking_id == 3

    def test_expected_exception_is_a_warning(self, caplog):
        logger = logging.getLogger("tests.log_context")
        with caplog.at_level(logging.INFO, logger="tests.log_context"):
            with pytest.raises(KeyError):
                with LogContext(logger, expected=(KeyError,), castle="Pirate Ship"):
                    raise KeyError("slot")

        assert caplog.records[0].levelno == logging.WARNING
        assert caplog.records[0].exc_info is None

    def test_unexpected_exception_is_an_error(self, caplog):
        logger = logging.getLogger("tests.log_context")
        with caplog.at_level(logging.INFO, logger="tests.log_context"):
            with pytest.raises(RuntimeError):
                with LogContext(logger, expected=(KeyError,)):
                    raise RuntimeError("database gone")

        assert caplog.records[0].levelno == logging.ERROR
        assert caplog.records[0].exc_info is not None
