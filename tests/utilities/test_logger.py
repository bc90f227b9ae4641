"""
Tests for the logging setup.
"""

import json
import logging

import structlog

from utilities.logger import get_logger, redact_sensitive, setup_logging


def test_redacts_credentials():
    event = redact_sensitive(None, "info", {"event": "auth", "token": "secret", "path": "/myBooks"})
    assert event == {"event": "auth", "token": "[redacted]", "path": "/myBooks"}


def test_json_log_file(tmp_path):
    log_file = tmp_path / "logs" / "api.log"
    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        setup_logging(log_level="INFO", log_format="json", log_file=str(log_file))
        get_logger("tests").info("Book created", book_id="abc", authorization="Bearer xyz")
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers:
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        structlog.reset_defaults()

    lines = [json.loads(line) for line in log_file.read_text().splitlines() if line.startswith("{")]
    created = [line for line in lines if line["event"] == "Book created"]
    assert created[0]["book_id"] == "abc"
    assert created[0]["authorization"] == "[redacted]"
    assert created[0]["level"] == "info"
