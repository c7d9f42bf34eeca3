# ABOUTME: Finder and parser for Droid (Factory CLI) JSONL sessions.
# ABOUTME: Sessions live in ~/.factory/sessions/<sanitized project path>/<file>.jsonl.

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..correlator import correlate
from ..markdown import text_or_markdown
from ..models import (
    AssistantText,
    ParsedMessage,
    Provider,
    SessionDetail,
    SessionMetadata,
    SessionSummary,
    TextContent,
    ToolResult,
    ToolUse,
    UserMessage,
)
from ..timestamps import from_mtime, latest, parse_timestamp
from ..tool_output import classify_tool_text, json_to_map, to_json_text
from .base import (
    UNIT_ERRORS,
    cap_title,
    get_dict,
    get_list,
    get_str,
    iter_jsonl,
    list_dirs,
    list_files,
    loads_object,
    malformed_unit,
    read_first_line,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Droid Session"
_GENERIC_TITLE = "New Session"


def unsanitize_project_dir(name: str) -> str:
    """Recover a project path from its directory name, e.g. ``-home-me-app`` -> ``/home/me/app``."""
    if name.startswith("-"):
        name = "/" + name[1:]
    return name.replace("-", "/")


def session_files(root: Path) -> list[Path]:
    return [
        path
        for project_dir in list_dirs(root)
        for path in list_files(project_dir, "*.jsonl")
        if not path.name.endswith(".settings.jsonl")
    ]


def read_session_start(path: Path) -> dict[str, Any] | None:
    line = read_first_line(path)
    if line is None:
        return None
    record = loads_object(line)
    if record is None or get_str(record, "type") != "session_start":
        return None
    return record


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.DROID, root_dir)
    if not root.exists():
        logger.debug("Droid sessions directory %s does not exist", root)
        return []
    summaries = summarize_all(session_files(root), _summarize)
    if project_path is None:
        return summaries
    return [summary for summary in summaries if summary.project_path == project_path]


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.DROID, root_dir)
    for path in session_files(root):
        start = read_session_start(path)
        if start is not None and get_str(start, "id") == session_id:
            return path
    return None


def parse_session(path: Path) -> SessionDetail | None:
    if not path.is_file():
        return None
    text = read_text(path)
    if text is None:
        return None
    return parse_content(text)


def parse_content(text: str) -> SessionDetail | None:
    lines = list(iter_jsonl(text))
    if not lines:
        return None
    _, start = lines[0]
    if start is None or get_str(start, "type") != "session_start":
        return None
    session_id = get_str(start, "id")
    if session_id is None:
        return None

    raw_messages: list[ParsedMessage] = []
    tool_names: dict[str, str] = {}
    created: datetime | None = None
    modified: datetime | None = None

    for line, record in lines[1:]:
        if record is None:
            logger.warning("Skipping malformed Droid record: %.80s", line)
            raw_messages.append(malformed_unit(line))
            continue
        if get_str(record, "type") != "message":
            continue
        timestamp = parse_timestamp(record.get("timestamp"))
        created = created or timestamp
        modified = latest(modified, timestamp)
        try:
            raw_messages.extend(_parse_message(get_dict(record, "message"), timestamp, tool_names))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Droid message: %s", exc)
            raw_messages.append(malformed_unit(line, timestamp))

    messages = correlate(raw_messages)
    return SessionDetail(
        session_id=session_id,
        title=_title(start, messages),
        messages=messages,
        metadata=SessionMetadata(
            working_directory=get_str(start, "cwd"),
            created_at=created,
            modified_at=modified,
            message_count=len(raw_messages),
        ),
        provider=Provider.DROID,
    )


def _parse_message(
    message: dict[str, Any],
    timestamp: datetime | None,
    tool_names: dict[str, str],
) -> list[ParsedMessage]:
    role = get_str(message, "role")
    parsed: list[ParsedMessage] = []
    for block in get_list(message, "content"):
        block_type = get_str(block, "type")
        if role == "user" and block_type == "tool_result":
            call_id = get_str(block, "tool_use_id")
            content = block.get("content")
            text = content if isinstance(content, str) else to_json_text(content) if content else ""
            parsed.append(
                ToolResult(
                    timestamp=timestamp,
                    tool_name=tool_names.get(call_id) if call_id else None,
                    tool_call_id=call_id,
                    output=classify_tool_text(text),
                    is_error=block.get("is_error") is True,
                )
            )
        elif role == "user" and block_type == "text":
            text = get_str(block, "text") or ""
            if text:
                parsed.append(UserMessage(timestamp=timestamp, content=[TextContent(text)]))
        elif role == "assistant" and block_type == "tool_use":
            call_id = get_str(block, "id") or ""
            name = get_str(block, "name") or "tool"
            tool_names[call_id] = name
            parsed.append(
                ToolUse(
                    timestamp=timestamp,
                    tool_name=name,
                    tool_call_id=call_id,
                    input=json_to_map(block.get("input")),
                )
            )
        elif role == "assistant" and block_type == "text":
            text = get_str(block, "text") or ""
            if text:
                parsed.append(AssistantText(timestamp=timestamp, content=[text_or_markdown(text)]))
    return parsed


def _title(start: dict[str, Any], messages: list[ParsedMessage]) -> str:
    title = get_str(start, "title")
    if title and title != _GENERIC_TITLE:
        return title
    for message in messages:
        if isinstance(message, UserMessage):
            texts = [block.text for block in message.content if isinstance(block, TextContent)]
            if texts and texts[0]:
                return cap_title(texts[0])
    return DEFAULT_TITLE


def _summarize(path: Path) -> SessionSummary | None:
    start = read_session_start(path)
    if start is None:
        return None
    session_id = get_str(start, "id")
    if session_id is None:
        return None
    text = read_text(path)
    if text is None:
        return None

    project_path = get_str(start, "cwd") or unsanitize_project_dir(path.parent.name)
    modified = from_mtime(path.stat().st_mtime)
    line_count = sum(1 for line in text.splitlines() if line.strip())
    return SessionSummary(
        session_id=session_id,
        title=get_str(start, "title") or get_str(start, "sessionTitle") or DEFAULT_TITLE,
        provider=Provider.DROID,
        created_at=modified,
        updated_at=modified,
        message_count=max(line_count - 1, 0),
        project_path=project_path,
        location=path,
    )
