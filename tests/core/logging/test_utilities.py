"""Tests for core.logging.utilities module."""

import logging

from core.errors.exceptions import PersistenceError
from core.logging.utilities import (
    MAX_PAYLOAD_LOG_CHARS,
    format_payload,
    log_exception,
    log_with_context,
)

logger = logging.getLogger("test.utilities")


class TestLogWithContext:
    def test_passes_extra_fields(self, caplog):
        with caplog.at_level(logging.INFO, logger="test.utilities"):
            log_with_context(logger, logging.INFO, "Loaded", tenant_count=2)
        assert caplog.records[0].tenant_count == 2

    def test_filters_reserved_keys(self, caplog):
        with caplog.at_level(logging.INFO, logger="test.utilities"):
            log_with_context(logger, logging.INFO, "Loaded", message="clash", module="clash", rows=1)
        record = caplog.records[0]
        assert record.getMessage() == "Loaded"
        assert record.rows == 1


class TestLogException:
    def test_pipeline_error_category(self, caplog):
        err = PersistenceError("insert failed", cause=ValueError("column missing"))
        with caplog.at_level(logging.ERROR, logger="test.utilities"):
            log_exception(logger, err, "Unable to save data", include_traceback=False, payload="{}")
        record = caplog.records[0]
        assert record.error_category == "unknown"
        assert record.error_type == "PersistenceError"
        assert "column missing" in record.error_message
        assert record.payload == "{}"
        assert record.exc_info is None

    def test_plain_exception_has_no_category(self, caplog):
        with caplog.at_level(logging.ERROR, logger="test.utilities"):
            log_exception(logger, RuntimeError("x"), "Oops")
        record = caplog.records[0]
        assert not hasattr(record, "error_category")
        assert record.exc_info is not None

    def test_truncates_long_messages(self, caplog):
        with caplog.at_level(logging.ERROR, logger="test.utilities"):
            log_exception(logger, ValueError("x" * 1000), "Oops", include_traceback=False)
        assert len(caplog.records[0].error_message) == 503

    def test_custom_level(self, caplog):
        with caplog.at_level(logging.WARNING, logger="test.utilities"):
            log_exception(logger, ValueError("bad"), "Rejected", level=logging.WARNING)
        assert caplog.records[0].levelno == logging.WARNING


class TestFormatPayload:
    def test_none(self):
        assert format_payload(None) == ""

    def test_bytes_decoded(self):
        assert format_payload(b'{"device_id": 1}') == '{"device_id": 1}'

    def test_invalid_utf8_replaced(self):
        assert format_payload(b"\xff\xfe") == "��"

    def test_truncated(self):
        result = format_payload("a" * (MAX_PAYLOAD_LOG_CHARS + 10))
        assert len(result) == MAX_PAYLOAD_LOG_CHARS + 3
        assert result.endswith("...")
