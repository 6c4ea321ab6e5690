"""
safeguard-audit — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction and structlog routing.

What this test file should cover
- JSON line validity and redaction guarantees.
- structlog events arrive as event name plus ``fields``.
- Context fields bound with ``audit_scope``.
- Text format, file sink and shutdown behavior.
"""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest
import structlog

from safeguard_audit.observability.logging import (
    LoggingConfig,
    audit_scope,
    default_log_redactor,
    get_active_logging_handle,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"safeguard_audit.tests.logging.{uuid4().hex}"


def _json_lines(text: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def test_json_logging_redacts_secrets() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(LoggingConfig(logger_name=logger_name, stream=stream))
    logger = logging.getLogger(logger_name)

    logger.info(
        "payload token=tok-FAKE and api_key=sk-FAKE123456789012345",
        extra={"nested": {"password": "hunter2", "safe": "ok"}},
    )

    (record,) = _json_lines(stream.getvalue())
    assert record["level"] == "INFO"
    assert record["logger"] == logger_name
    assert record["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}
    text = stream.getvalue()
    assert "tok-FAKE" not in text
    assert "sk-FAKE" not in text
    assert "hunter2" not in text


def test_structlog_events_route_through_stdlib_handlers() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(LoggingConfig(logger_name=logger_name, stream=stream, level="DEBUG"))
    log = structlog.get_logger(logger_name)

    with audit_scope(environment="production"):
        log.info("safeguard_rule_completed", rule_id="app-key-is-set", passed=True)
    log.debug("safeguard_rule_started", rule_id="csrf-enabled")

    first, second = _json_lines(stream.getvalue())
    assert first["event"] == "safeguard_rule_completed"
    assert first["fields"] == {
        "environment": "production",
        "passed": True,
        "rule_id": "app-key-is-set",
    }
    assert second["level"] == "DEBUG"
    assert second["fields"] == {"rule_id": "csrf-enabled"}


def test_level_filtering_drops_lower_events() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_logging({"log_level": "WARNING"}, stream=stream, logger_name=logger_name)

    structlog.get_logger(logger_name).info("ignored")
    structlog.get_logger(logger_name).warning("kept", detail="x")

    assert [item["event"] for item in _json_lines(stream.getvalue())] == ["kept"]


def test_secret_finding_content_is_redacted_in_fields() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_logging({}, stream=stream, logger_name=logger_name)

    structlog.get_logger(logger_name).warning(
        "finding", content="STRIPE_SECRET = 'sk_live_abc'", app="base64:QUJDREVGR0hJSktMTU5PUA=="
    )

    text = stream.getvalue()
    assert "sk_live_abc" not in text
    assert "QUJDREVGR0hJSktMTU5PUA" not in text


def test_redaction_can_be_disabled() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_logging({"redact_secrets": False}, stream=stream, logger_name=logger_name)

    logging.getLogger(logger_name).info("token=visible")

    assert _json_lines(stream.getvalue())[0]["event"] == "token=visible"


def test_text_format_renders_key_value_pairs() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_logging({"log_format": "text"}, stream=stream, logger_name=logger_name)

    structlog.get_logger(logger_name).info("safeguard_run_completed", total=3, failed=1)

    assert stream.getvalue().strip() == f"INFO {logger_name} safeguard_run_completed failed=1 total=3"


def test_file_sink_writes_json_lines_and_shutdown_detaches(tmp_path: Path) -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    log_path = tmp_path / "logs" / "audit.jsonl"
    setup_logging({"log_format": "text"}, stream=stream, log_path=log_path, logger_name=logger_name)
    handle = get_active_logging_handle()
    assert handle is not None

    logging.getLogger(logger_name).info("written")
    shutdown_logging()
    logging.getLogger(logger_name).info("after shutdown")

    assert handle.is_shutdown
    assert get_active_logging_handle() is None
    assert [item["event"] for item in _json_lines(log_path.read_text(encoding="utf-8"))] == [
        "written"
    ]


def test_new_setup_replaces_active_handle() -> None:
    first = setup_structured_logging(LoggingConfig(logger_name=_logger_name(), stream=io.StringIO()))
    second = setup_structured_logging(LoggingConfig(logger_name=_logger_name(), stream=io.StringIO()))

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    ("config", "match"),
    [
        (LoggingConfig(logger_name="  "), "must not be empty"),
        (LoggingConfig(logger_name="x", level="LOUD"), "unsupported logging level"),
    ],
)
def test_invalid_logging_config_raises(config: LoggingConfig, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        setup_structured_logging(config)


def test_default_redactor_is_recursive_and_non_destructive() -> None:
    payload = {"outer": [{"client_secret": "abc", "name": "ok"}], "header": "Bearer abc.def"}

    redacted = default_log_redactor(payload)

    assert redacted == {
        "outer": [{"client_secret": "***REDACTED***", "name": "ok"}],
        "header": "Bearer ***REDACTED***",
    }
    assert payload["outer"][0]["client_secret"] == "abc"
