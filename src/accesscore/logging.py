"""Logging for accesscore.

``setup_logging`` installs one stream handler on the root logger, formatted
by :class:`AccessCoreFormatter` as JSON lines (or plain text when
``log_json`` is off). Access checks are logged through
:class:`DecisionLoggerAdapter`, which attaches ``user_id``, ``permission``
and ``request_id`` to each record. Caller-supplied values are previewed and
scrubbed of anything that looks like a credential before output.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import AccessCoreConfig, LogLevel

_REDACTION_RES = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r'(?:password|passwd|pwd|secret|token|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
        r"(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)",
        r"(?:sk-|pk-)[a-zA-Z0-9]{32,}",
        r"[a-f0-9]{32,}",  # hashes and raw keys
    )
)

_CONTEXT_FIELDS = ("user_id", "permission", "request_id")

# Attributes every LogRecord has; anything else on a record is a caller extra.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName", *_CONTEXT_FIELDS}


def safe_preview(value: Any, limit: int = 240) -> str:
    """One-line rendering of ``value``, at most ``limit`` characters.

    Dicts and lists are dumped as JSON. Runs of whitespace collapse to a
    single space and overlong text ends in ``…``.
    """
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        try:
            text = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            text = str(value)
    else:
        text = value if isinstance(value, str) else str(value)

    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Blank out passwords, tokens, API keys and long hex strings."""
    if not isinstance(text, str):
        return text
    for regex in _REDACTION_RES:
        text = regex.sub(replacement, text)
    return text


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """``safe_preview`` followed by ``redact_secrets`` unless ``redact`` is off."""
    text = safe_preview(value, limit=limit)
    return redact_secrets(text) if redact else text


class AccessCoreFormatter(logging.Formatter):
    """Formats records as a JSON object or a single plain-text line.

    ``user_id``, ``permission`` and ``request_id`` are promoted to top-level
    keys; any other extra attribute is included after preview/redaction.
    """

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        service_name: Optional[str] = None,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets
        self.service_name = service_name

    def _fields(self, record: logging.LogRecord) -> dict[str, Any]:
        message = record.getMessage()
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(message) if self.redact_secrets else message,
        }
        if self.service_name:
            fields["service"] = self.service_name
        fields.update(
            (name, str(getattr(record, name))) for name in _CONTEXT_FIELDS if getattr(record, name, None)
        )
        fields.update(
            (key, safe_log_value(value, redact=self.redact_secrets))
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return fields

    def format(self, record: logging.LogRecord) -> str:
        fields = self._fields(record)
        if self.json_format:
            return json.dumps(fields, default=str, ensure_ascii=False)

        line = f"[{fields['timestamp']}] {fields['level']} {fields['logger']}"
        for name in _CONTEXT_FIELDS:
            if name in fields:
                line += f" {name}={fields[name]}"
        line += f" : {fields['message']}"
        if "exception" in fields:
            line += "\n" + fields["exception"]
        return line


class DecisionLoggerAdapter(logging.LoggerAdapter):
    """Binds a caller and request to a logger; accepts ``decision=`` per call.

    Example::

        log = get_access_logger(__name__, request_id="req-7")
        log.info("checked", decision=engine.explain(user_id, perm))

    Per-call ``user_id`` / ``request_id`` / ``permission`` keywords win over
    the bound values and over the decision's own.
    """

    def __init__(
        self,
        logger: logging.Logger,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.user_id = user_id
        self.request_id = request_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        context = {
            "user_id": kwargs.pop("user_id", None) or self.user_id,
            "request_id": kwargs.pop("request_id", None) or self.request_id,
            "permission": kwargs.pop("permission", None),
        }
        decision = kwargs.pop("decision", None)
        if decision is not None:
            context["user_id"] = context["user_id"] or decision.user_id
            context["permission"] = context["permission"] or decision.permission
            extra["allowed"] = decision.allowed
            extra["reason"] = str(decision.reason)

        extra.update((key, value) for key, value in context.items() if value)
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    config: Optional[AccessCoreConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Replace the root logger's handlers with a single formatted stream handler.

    Args:
        config: Settings; read from ``ACCESSCORE_*`` environment variables when None.
        json_format: Overrides ``config.log_json`` when given.
        redact_secrets: Scrub credentials from messages and extras.
    """
    if config is None:
        from .config import load_config_from_env

        config = load_config_from_env()

    level = logging.getLevelName(LogLevel(config.log_level).value)

    formatter = AccessCoreFormatter(
        json_format=config.log_json if json_format is None else json_format,
        redact_secrets=redact_secrets,
        service_name=config.service_name,
    )
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("accesscore").setLevel(level)


def get_access_logger(
    name: str,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> DecisionLoggerAdapter:
    """Logger adapter bound to a caller and request."""
    return DecisionLoggerAdapter(logging.getLogger(name), user_id=user_id, request_id=request_id)


__all__ = [
    "AccessCoreFormatter",
    "DecisionLoggerAdapter",
    "get_access_logger",
    "redact_secrets",
    "safe_log_value",
    "safe_preview",
    "setup_logging",
]
