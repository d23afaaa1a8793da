from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Iterator, Mapping
from uuid import uuid4


_request_id: ContextVar[str] = ContextVar("portal_request_id", default="-")

_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,127}")

# Keys whose values are never logged, matched after lower-casing and "-" to "_".
_SENSITIVE_KEY = re.compile(
    r"(password|secret|token|api_key|private_key|authorization|cookie|^email$|^smtp_user$)"
)

_TEXT_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\b"), "[REDACTED_JWT]"),
    (re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"), "[REDACTED_AWS_ACCESS_KEY]"),
    # Stored password hashes: 64-byte scrypt digest, 16-byte salt.
    (re.compile(r"\b[0-9a-f]{128}\.[0-9a-f]{32}\b"), "[REDACTED_HASH]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
)

_HANDLER_MARKER = "_portal_json_handler"


def normalize_request_id(candidate: str | None) -> str:
    value = (candidate or "").strip()
    return value if _VALID_REQUEST_ID.fullmatch(value) else str(uuid4())


def get_request_id() -> str:
    return _request_id.get()


@contextmanager
def bind_request_id(request_id: str) -> Iterator[str]:
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


def _is_sensitive_key(key: str) -> bool:
    return bool(_SENSITIVE_KEY.search(key.strip().lower().replace("-", "_")))


def _scrub_text(text: str, limit: int) -> str:
    for pattern, replacement in _TEXT_REDACTIONS:
        text = pattern.sub(replacement, text)
    return text if len(text) <= limit else f"{text[:limit]}...[truncated]"


def sanitize_for_logging(value: Any, *, max_string_length: int = 240) -> Any:
    """Return a copy of ``value`` that is safe to emit in structured logs.

    Mapping entries under credential-like keys are replaced wholesale. Free
    text is scrubbed of bearer tokens, JWTs, AWS access keys, password hashes
    and email addresses, then cut to ``max_string_length`` characters.
    """
    if isinstance(value, str):
        return _scrub_text(value, max_string_length)
    if isinstance(value, bytes):
        return f"[{len(value)} bytes]"
    if isinstance(value, Mapping):
        return {
            str(key): "[REDACTED]"
            if _is_sensitive_key(str(key))
            else sanitize_for_logging(item, max_string_length=max_string_length)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_for_logging(item, max_string_length=max_string_length) for item in value)
    return value


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are merged in after sanitizing."""

    _RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None) or get_request_id(),
        }
        entry.update(
            (key, sanitize_for_logging(value))
            for key, value in vars(record).items()
            if key not in self._RESERVED and key not in entry
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    if any(getattr(handler, _HANDLER_MARKER, False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
