from __future__ import annotations

import json
import logging

from chronostore.utils.logging import JsonFormatter, _json_formatter, configure_logging

EXPECTED_ROWS = 10
EXPECTED_COLUMNS = 3


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_json_formatter_promotes_standard_extra_fields() -> None:
    record = _record()
    record.rows = EXPECTED_ROWS
    record.sqlstate = "23505"

    payload = json.loads(_json_formatter(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "test.logger"
    assert payload["message"] == "hello"
    assert payload["rows"] == EXPECTED_ROWS
    assert payload["sqlstate"] == "23505"


def test_json_formatter_supports_legacy_nested_extra_field() -> None:
    record = _record()
    record.extra = {"columns_added": EXPECTED_COLUMNS}

    payload = json.loads(_json_formatter(record))

    assert payload["columns_added"] == EXPECTED_COLUMNS


def test_json_formatter_serializes_unknown_values_as_text() -> None:
    record = _record()
    record.table = object()

    payload = json.loads(JsonFormatter().format(record))

    assert payload["table"].startswith("<object object")


def test_configure_logging_without_force_keeps_existing_handlers() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        configure_logging(level="WARNING", json_logs=True, force=True)
        handlers = list(root.handlers)

        configure_logging(level="DEBUG", force=False)

        assert root.handlers == handlers
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
