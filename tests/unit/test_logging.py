"""Unit tests for the structured logging configuration.

Verifies that ``configure_logging()`` produces well-formed output, that the
``request_id_var`` context variable is propagated, and that credential-bearing
fields are redacted.
"""

from __future__ import annotations

import json
import logging
from io import StringIO

from page_relay.core.logging_config import (
    _redact_secrets,
    _scrub_urls,
    configure_logging,
    request_id_var,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capture_log_output(log_level: str, message: str) -> str:
    """Emit a single log record and capture the raw text written to stdout."""
    configure_logging(log_level)

    buffer = StringIO()
    root = logging.getLogger()
    original_streams = []
    for handler in root.handlers:
        if hasattr(handler, "stream"):
            original_streams.append((handler, handler.stream))
            handler.stream = buffer

    logging.getLogger("test.logging_config").info(message)

    for handler, stream in original_streams:
        handler.flush()
        handler.stream = stream

    return buffer.getvalue()


def _find_record(output: str, event: str) -> dict | None:
    lines = [line for line in output.strip().splitlines() if line.strip()]
    records = [json.loads(line) for line in lines]
    return next((r for r in records if r.get("event") == event), None)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestConfigureLoggingJson:
    """INFO-level (production) JSON output."""

    def test_logging_produces_json(self) -> None:
        output = _capture_log_output("INFO", "test_message_json")
        lines = [line for line in output.strip().splitlines() if line.strip()]
        assert lines, "Expected at least one log line, got none"
        for line in lines:
            assert isinstance(json.loads(line), dict)

    def test_json_contains_required_fields(self) -> None:
        target = _find_record(_capture_log_output("INFO", "required_fields"), "required_fields")
        assert target is not None
        assert "timestamp" in target
        assert target["level"] == "info"
        assert target["logger"] == "test.logging_config"

    def test_httpx_logger_is_quietened(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


class TestRequestIdContextVar:
    def test_request_id_appears_in_json_output(self) -> None:
        token = request_id_var.set("req-1234")
        try:
            output = _capture_log_output("INFO", "request_id_propagation")
        finally:
            request_id_var.reset(token)

        target = _find_record(output, "request_id_propagation")
        assert target is not None
        assert target.get("request_id") == "req-1234"

    def test_no_request_id_when_var_unset(self) -> None:
        request_id_var.set(None)
        target = _find_record(_capture_log_output("INFO", "no_request_id"), "no_request_id")
        assert target is not None
        assert target.get("request_id") is None


class TestRedactSecrets:
    def test_api_key_fields_redacted(self) -> None:
        event = _redact_secrets(
            None, "info", {"event": "fetch", "api_key": "abc123", "url": "https://x"}
        )
        assert event["api_key"] == "[REDACTED]"
        assert event["url"] == "https://x"

    def test_nested_params_redacted(self) -> None:
        event = _redact_secrets(
            None, "info", {"event": "fetch", "params": {"api_key": "abc123", "render": "true"}}
        )
        assert event["params"]["api_key"] == "[REDACTED]"
        assert event["params"]["render"] == "true"

    def test_match_is_case_insensitive(self) -> None:
        event = _redact_secrets(None, "info", {"event": "x", "Authorization": "Bearer t"})
        assert event["Authorization"] == "[REDACTED]"


class TestScrubUrls:
    def test_query_credential_masked_in_strings(self) -> None:
        event = _scrub_urls(
            None,
            "info",
            {"event": "GET https://api.scraperapi.com/?api_key=abc123&url=https%3A%2F%2Fx"},
        )
        assert "abc123" not in event["event"]
        assert "api_key=[REDACTED]&url=" in event["event"]

    def test_non_string_values_untouched(self) -> None:
        event = _scrub_urls(None, "info", {"event": "x", "status": 200})
        assert event["status"] == 200

    def test_stdlib_message_scrubbed_in_output(self) -> None:
        output = _capture_log_output("INFO", "fetching ?apikey=topsecret&render=true")
        assert "topsecret" not in output
        assert "[REDACTED]" in output


class TestConfigureLoggingIdempotent:
    def test_calling_twice_does_not_duplicate_handlers(self) -> None:
        configure_logging("INFO")
        configure_logging("INFO")
        assert len(logging.getLogger().handlers) == 1
