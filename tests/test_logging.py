"""Tests for JSON log output."""

import io
import json
import logging
import sys

from rediskeyscanner.logging import JsonFormatter, log_with_context, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("rediskeyscanner", logging.INFO, __file__, 1, "Progress update", None, None)
    record.extra_fields = {"keys_scanned": 10}

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["message"] == "Progress update"
    assert payload["logger"] == "rediskeyscanner"
    assert payload["extra_fields"] == {"keys_scanned": 10}


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("rediskeyscanner", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))

    assert payload["error_type"] == "ValueError"
    assert "boom" in payload["error"]


def test_setup_logging_does_not_duplicate_handlers():
    stream = io.StringIO()
    logger = setup_logging("rediskeyscanner.test.handlers", "DEBUG", stream)
    setup_logging("rediskeyscanner.test.handlers", "DEBUG", stream)

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG


def test_log_with_context_writes_json_line():
    stream = io.StringIO()
    logger = setup_logging("rediskeyscanner.test.context", "INFO", stream)
    logger.propagate = False

    log_with_context(logger, "info", "Key scan completed", {"keys_scanned": 4, "keys_selected": 4})

    payload = json.loads(stream.getvalue().strip())
    assert payload["message"] == "Key scan completed"
    assert payload["extra_fields"] == {"keys_scanned": 4, "keys_selected": 4}


def test_debug_option_forces_debug_level():
    from rediskeyscanner.scanner import KeyScanner

    scanner = KeyScanner({"host": "localhost", "port": 6379, "debug": True})

    assert scanner.logger.isEnabledFor(logging.DEBUG)
