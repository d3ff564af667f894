"""Tests for structured (JSON) logging output.

A log pipeline that expects JSON silently stops indexing when plain text
arrives; these tests pin the format.
"""

from __future__ import annotations

import json
import logging
import sys

from classwork.core.logging import _ContainerFormatter, _JsonFormatter


def _record(msg: str, *args, level: int = logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="classwork.services.submission_workflow",
        level=level,
        pathname="submission_workflow.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def test_json_formatter_produces_valid_json() -> None:
    output = _JsonFormatter().format(_record("Submission graded id=%s", "abc"))
    parsed = json.loads(output)
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "classwork.services.submission_workflow"
    assert parsed["message"] == "Submission graded id=abc"
    assert "timestamp" in parsed


def test_json_formatter_includes_context_fields() -> None:
    record = _record("GET /v1/submissions/x")
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.method = "GET"  # type: ignore[attr-defined]
    record.path = "/v1/submissions/x"  # type: ignore[attr-defined]
    record.duration_ms = 12.5  # type: ignore[attr-defined]
    record.submission_id = "sub-1"  # type: ignore[attr-defined]
    record.operation = "grade"  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))

    assert parsed["request_id"] == "abc-123"
    assert parsed["method"] == "GET"
    assert parsed["path"] == "/v1/submissions/x"
    assert parsed["duration_ms"] == 12.5
    assert parsed["submission_id"] == "sub-1"
    assert parsed["operation"] == "grade"


def test_json_formatter_omits_absent_context_fields() -> None:
    parsed = json.loads(_JsonFormatter().format(_record("plain")))
    assert "submission_id" not in parsed
    assert "user_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ConnectionError("database unavailable")
    except ConnectionError:
        record = _record("submit failed", level=logging.ERROR, exc_info=sys.exc_info())
        output = _JsonFormatter().format(record)

    parsed = json.loads(output)
    assert "ConnectionError: database unavailable" in parsed["exception"]


def test_container_formatter_is_plain_text() -> None:
    output = _ContainerFormatter().format(_record("server started"))
    assert "INFO" in output
    assert "classwork.services.submission_workflow" in output
    assert "server started" in output
    try:
        json.loads(output)
        raise AssertionError("Container format should not be valid JSON")
    except json.JSONDecodeError:
        pass
