# ABOUTME: Truncation and extraction helpers for tool inputs and outputs.
# ABOUTME: Bounds output size and picks the meaningful field out of JSON tool results.

from __future__ import annotations

import json
from typing import Any

from .models import CodeContent, JsonContent, MessageContent

OUTPUT_LIMIT = 500
ELLIPSIS = " [...] "

_PRIMARY_FIELDS = ("content", "result", "output")


def truncate(text: str, limit: int = OUTPUT_LIMIT) -> str:
    """Cut text down to ``limit`` characters, keeping its beginning and its end."""
    if len(text) <= limit:
        return text
    remaining = limit - len(ELLIPSIS)
    if remaining <= 0:
        return text[:limit]
    head = remaining // 2
    tail = remaining - head
    return f"{text[:head]}{ELLIPSIS}{text[-tail:]}"


def to_json_text(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def extract_primary_field(value: Any) -> str:
    """Pick the most meaningful scalar out of a tool output value."""
    if value is None:
        return "{}"
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return to_json_text(value)
    if not isinstance(value, dict):
        return to_json_text(value)

    for key in _PRIMARY_FIELDS:
        scalar = _scalar_text(value.get(key))
        if scalar is not None:
            return scalar

    error = _scalar_text(value.get("error"))
    message = _scalar_text(value.get("message"))
    if error is not None or message is not None:
        return error if error is not None else message  # type: ignore[return-value]

    return to_json_text(value)


def format_tool_output(value: Any) -> list[MessageContent]:
    return [CodeContent(truncate(extract_primary_field(value)))]


def json_to_map(value: Any) -> dict[str, str]:
    """Flatten a JSON object into ordered string parameters."""
    if not isinstance(value, dict):
        return {}
    return {str(key): _stringify(item) for key, item in value.items()}


def classify_tool_text(text: str) -> list[MessageContent]:
    """Wrap raw tool output as a diff, JSON or plain code block."""
    if "---" in text and "+++" in text:
        return [CodeContent(truncate(text), "diff")]
    if text.lstrip().startswith("{"):
        try:
            json.loads(text)
        except ValueError:
            pass
        else:
            return [JsonContent(text)]
    return [CodeContent(truncate(text))]


def format_duration(millis: int) -> str:
    total_seconds = max(int(millis), 0) // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or hours > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return to_json_text(value)


def _scalar_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, str):
        return value
    return to_json_text(value)
