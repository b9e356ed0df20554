"""Tests for accesscore.logging module."""

from __future__ import annotations

import json
import logging
import os
from typing import Iterator
from unittest.mock import patch

import pytest

from accesscore import (
    AccessCoreConfig,
    AccessCoreFormatter,
    Decision,
    DecisionReason,
    LogLevel,
    get_access_logger,
    redact_secrets,
    safe_log_value,
    safe_preview,
    setup_logging,
)


def _record(msg: str = "Test message", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("accesscore").setLevel(logging.NOTSET)


class TestSafePreview:
    """Tests for safe_preview function."""

    def test_none_value(self) -> None:
        """Test that None returns empty string."""
        assert safe_preview(None) == ""

    def test_string_with_whitespace(self) -> None:
        """Test that whitespace is normalized."""
        assert safe_preview("hello\n\tworld  test") == "hello world test"

    def test_string_truncation(self) -> None:
        """Test that long strings are truncated."""
        result = safe_preview("a" * 300, limit=100)
        assert len(result) == 100
        assert result.endswith("…")

    def test_dict_value(self) -> None:
        """Test that dicts are rendered as JSON."""
        assert safe_preview({"role": "viewer"}) == '{"role": "viewer"}'


class TestRedactSecrets:
    """Tests for redact_secrets function."""

    def test_password_pattern(self) -> None:
        """Test password redaction."""
        result = redact_secrets('password: "secret123"')
        assert "[REDACTED]" in result
        assert "secret123" not in result

    def test_bearer_token(self) -> None:
        """Test bearer token redaction."""
        assert "[REDACTED]" in redact_secrets("Authorization: Bearer abc123def456")

    def test_permission_names_untouched(self) -> None:
        """Test that ordinary check messages are not modified."""
        text = "user u-1 denied storage.delete via role viewer"
        assert redact_secrets(text) == text

    def test_non_string_passthrough(self) -> None:
        """Test that non-strings are returned unchanged."""
        assert redact_secrets(42) == 42  # type: ignore[arg-type]


class TestSafeLogValue:
    """Tests for safe_log_value function."""

    def test_with_redaction(self) -> None:
        """Test that secrets are redacted."""
        assert "[REDACTED]" in safe_log_value("api_key: sk-1234567890")

    def test_without_redaction(self) -> None:
        """Test that redaction can be disabled."""
        assert "sk-1234567890" in safe_log_value("api_key: sk-1234567890", redact=False)


class TestAccessCoreFormatter:
    """Tests for AccessCoreFormatter."""

    def test_json_carries_check_fields(self) -> None:
        """Test that user_id/permission/request_id land in the JSON object."""
        formatter = AccessCoreFormatter(json_format=True, service_name="billing-api")
        record = _record(user_id="u-1", permission="storage.read", request_id="req-7", allowed=False)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["service"] == "billing-api"
        assert data["user_id"] == "u-1"
        assert data["permission"] == "storage.read"
        assert data["request_id"] == "req-7"
        assert data["allowed"] == "False"

    def test_plain_format(self) -> None:
        """Test plain text formatter."""
        formatter = AccessCoreFormatter(json_format=False)
        result = formatter.format(_record(user_id="u-1"))
        assert "INFO" in result
        assert "user_id=u-1" in result
        assert "Test message" in result
        assert not result.startswith("{")

    def test_message_redacted(self) -> None:
        """Test that secrets in the message are redacted."""
        formatter = AccessCoreFormatter(json_format=True)
        data = json.loads(formatter.format(_record("login with password=hunter22")))
        assert "hunter22" not in data["message"]

    def test_redaction_can_be_disabled(self) -> None:
        """Test redact_secrets=False keeps the message as-is."""
        formatter = AccessCoreFormatter(json_format=True, redact_secrets=False)
        data = json.loads(formatter.format(_record("login with password=hunter22")))
        assert "hunter22" in data["message"]


class TestDecisionLoggerAdapter:
    """Tests for the decision-aware logger adapter."""

    def test_bound_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that bound user_id/request_id appear on every record."""
        log = get_access_logger("test.access", user_id="u-1", request_id="req-7")
        with caplog.at_level(logging.INFO, logger="test.access"):
            log.info("checking")
        record = caplog.records[-1]
        assert record.user_id == "u-1"
        assert record.request_id == "req-7"

    def test_decision_fields(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a decision fills user, permission, allowed and reason."""
        decision = Decision(
            user_id="u-2",
            permission="storage.delete",
            allowed=False,
            reason=DecisionReason.DENIED,
            role="viewer",
        )
        log = get_access_logger("test.access")
        with caplog.at_level(logging.INFO, logger="test.access"):
            log.info("checked", decision=decision)
        record = caplog.records[-1]
        assert record.user_id == "u-2"
        assert record.permission == "storage.delete"
        assert record.allowed is False
        assert record.reason == "denied"

    def test_per_call_override(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that a per-call user_id beats the bound one."""
        log = get_access_logger("test.access", user_id="u-1")
        with caplog.at_level(logging.INFO, logger="test.access"):
            log.info("checking", user_id="u-9", permission="bucket.read")
        record = caplog.records[-1]
        assert record.user_id == "u-9"
        assert record.permission == "bucket.read"


@pytest.mark.usefixtures("restore_root_logger")
class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_with_config(self) -> None:
        """Test logging setup with AccessCoreConfig."""
        setup_logging(config=AccessCoreConfig(log_level=LogLevel.DEBUG), json_format=False)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("accesscore").level == logging.DEBUG

    def test_setup_with_env(self) -> None:
        """Test logging setup loading from environment."""
        with patch.dict(os.environ, {"ACCESSCORE_LOG_LEVEL": "WARNING"}):
            setup_logging(json_format=False)
        assert logging.getLogger().level == logging.WARNING

    def test_json_format(self, capsys: pytest.CaptureFixture) -> None:
        """Test JSON format output."""
        setup_logging(config=AccessCoreConfig(service_name="svc"), json_format=True)
        logging.getLogger("test").info("Test message")

        data = json.loads(capsys.readouterr().err.strip())
        assert data["message"] == "Test message"
        assert data["logger"] == "test"
        assert data["service"] == "svc"

    def test_plain_format_from_config(self, capsys: pytest.CaptureFixture) -> None:
        """Test that log_json=False selects the plain formatter."""
        setup_logging(config=AccessCoreConfig(log_json=False))
        logging.getLogger("test").info("Test message")

        output = capsys.readouterr().err.strip()
        assert "Test message" in output
        assert not output.startswith("{")
