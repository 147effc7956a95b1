"""Helpers for safe logging.

Broker payloads can be large binary blobs and the Pulsar OAuth2 settings carry
credentials. This module renders such values into something that is safe and
short enough to put into a log record.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "private_key",
        "privatekey",
        "client_secret",
        "clientsecret",
        "password",
        "token",
        "authorization",
    }
)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)


def describe_message(message: Any, *, max_string: int = 512) -> dict[str, Any]:
    """Summarize a broker message for a log record.

    The payload is decoded as UTF-8 where possible (registry snapshots are
    JSON) and otherwise reported by size only.
    """
    data = message.data()
    try:
        payload: Any = redact_for_log(data.decode("utf-8"), max_string=max_string)
    except UnicodeDecodeError:
        payload = redact_for_log(data)
    return {
        "topic": message.topic_name(),
        "message_id": str(message.message_id()),
        "event_timestamp": message.event_timestamp(),
        "properties": redact_for_log(dict(message.properties())),
        "data": payload,
    }
