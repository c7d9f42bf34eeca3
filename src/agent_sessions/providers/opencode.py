# ABOUTME: Finder and parser for the OpenCode storage tree.
# ABOUTME: Projects, sessions, messages and parts are separate JSON files joined by id.

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..models import (
    AssistantText,
    AssistantThinking,
    CodeContent,
    InfoMessage,
    InfoStyle,
    JsonContent,
    MarkdownContent,
    MessageContent,
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
from ..timestamps import parse_timestamp
from ..tool_output import format_tool_output, json_to_map
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    dig,
    get_dict,
    get_str,
    list_dirs,
    list_files,
    loads_object,
    malformed_unit,
    read_json,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

GLOBAL_PROJECT = "global"
_SKIPPED_PARTS = frozenset({"step-start", "step-finish"})


@dataclass
class RawMessage:
    """One message file with its parts, before mapping to ParsedMessage."""

    path: Path
    raw: str
    data: dict[str, Any] | None
    parts: list[dict[str, Any]] = field(default_factory=list)
    broken_parts: list[str] = field(default_factory=list)


def project_ids_for(root: Path, project_path: str) -> list[str]:
    ids = []
    for path in list_files(root / "project", "*.json"):
        document = read_json(path)
        if get_str(document, "worktree") == project_path:
            ids.append(get_str(document, "id") or path.stem)
    return ids


def session_files(root: Path, project_path: str | None = None) -> list[Path]:
    session_root = root / "session"
    if project_path is None:
        return [path for project_dir in list_dirs(session_root) for path in list_files(project_dir, "*.json")]
    files = []
    for project_id in project_ids_for(root, project_path):
        if project_id != GLOBAL_PROJECT:
            files.extend(list_files(session_root / project_id, "*.json"))
    for path in list_files(session_root / GLOBAL_PROJECT, "*.json"):
        if get_str(read_json(path), "directory") == project_path:
            files.append(path)
    return files


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.OPENCODE, root_dir)
    if not root.exists():
        logger.debug("OpenCode storage directory %s does not exist", root)
        return []
    return summarize_all(session_files(root, project_path), lambda path: _summarize(root, path))


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.OPENCODE, root_dir)
    for project_dir in list_dirs(root / "session"):
        candidate = project_dir / f"{session_id}.json"
        if candidate.is_file():
            return candidate
    for path in session_files(root):
        if get_str(read_json(path), "id") == session_id:
            return path
    return None


def parse_session(path: Path) -> SessionDetail | None:
    session = read_json(path) if path.is_file() else None
    if not isinstance(session, dict):
        return None
    session_id = get_str(session, "id") or path.stem
    # path is <root>/session/<projectId>/<sessionId>.json
    root = path.parent.parent.parent
    return parse_messages(session, load_raw_messages(root, session_id))


def load_raw_messages(root: Path, session_id: str) -> list[RawMessage]:
    loaded = []
    for path in list_files(root / "message" / session_id, "*.json"):
        raw = read_text(path)
        if raw is None:
            loaded.append(RawMessage(path, "", None))
            continue
        data = loads_object(raw)
        if data is None or get_str(data, "id") is None:
            logger.warning("Failed to parse OpenCode message %s", path)
            loaded.append(RawMessage(path, raw, None))
            continue
        message = RawMessage(path, raw, data)
        _load_parts(root / "part" / get_str(data, "id"), message)
        loaded.append(message)

    ordered = sorted(enumerate(loaded), key=lambda item: (_millis(dig(item[1].data, "time", "created")), item[0]))
    return [message for _, message in ordered]


def _load_parts(part_dir: Path, message: RawMessage) -> None:
    parts = []
    for path in list_files(part_dir, "*.json"):
        raw = read_text(path)
        part = loads_object(raw) if raw is not None else None
        if part is None:
            logger.warning("Failed to parse OpenCode part %s", path)
            message.broken_parts.append(raw or "")
            continue
        parts.append(part)
    message.parts = [
        part
        for _, part in sorted(
            enumerate(parts),
            key=lambda item: (
                _millis(dig(item[1], "time", "start")),
                _millis(dig(item[1], "time", "end")),
                item[0],
            ),
        )
    ]


def parse_messages(session: dict[str, Any], loaded: list[RawMessage]) -> SessionDetail:
    models = ModelCounter()
    messages: list[ParsedMessage] = []
    for message in loaded:
        models.add(dig(message.data, "model", "modelID") or get_str(message.data, "modelID"))
        try:
            messages.extend(_parse_raw_message(message))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse OpenCode message %s: %s", message.path, exc)
            messages.append(malformed_unit(message.raw))

    time = get_dict(session, "time")
    return SessionDetail(
        session_id=get_str(session, "id") or "",
        title=get_str(session, "title") or "Untitled",
        messages=messages,
        metadata=SessionMetadata(
            working_directory=get_str(session, "directory"),
            created_at=parse_timestamp(time.get("created")),
            modified_at=parse_timestamp(time.get("updated")),
            message_count=len(loaded),
            model_usage=models.usage(),
        ),
        provider=Provider.OPENCODE,
    )


def _parse_raw_message(message: RawMessage) -> list[ParsedMessage]:
    if message.data is None:
        return [malformed_unit(message.raw)]

    timestamp = parse_timestamp(dig(message.data, "time", "created"))
    role = get_str(message.data, "role")
    if role == "user":
        return [_parse_user(message, timestamp), *(malformed_unit(raw, timestamp) for raw in message.broken_parts)]
    if role == "assistant":
        return _parse_assistant(message, timestamp)
    return [InfoMessage(timestamp=timestamp, title=role or "unknown", content=JsonContent(message.raw))]


def _parse_user(message: RawMessage, timestamp: datetime | None) -> UserMessage:
    texts = [
        text.strip()
        for text in (get_str(part, "text") for part in message.parts if get_str(part, "type") == "text")
        if text and text.strip()
    ]
    content: list[MessageContent]
    if texts:
        content = [TextContent("\n\n".join(texts))]
    elif not message.parts:
        content = [CodeContent(message.raw)]
    else:
        content = [
            TextContent(f"User message with {len(message.parts)} part(s), no text content"),
            CodeContent(message.raw),
        ]
    return UserMessage(timestamp=timestamp, content=content)


def _parse_assistant(message: RawMessage, timestamp: datetime | None) -> list[ParsedMessage]:
    parsed: list[ParsedMessage] = [malformed_unit(raw, timestamp) for raw in message.broken_parts]
    for part in message.parts:
        part_time = get_dict(part, "time")
        part_timestamp = parse_timestamp(part_time.get("start")) or parse_timestamp(part_time.get("end")) or timestamp
        part_type = get_str(part, "type")
        text = (get_str(part, "text") or "").strip()

        if part_type == "text":
            if text:
                parsed.append(AssistantText(timestamp=part_timestamp, content=[MarkdownContent(text)]))
        elif part_type == "reasoning":
            if text:
                parsed.append(AssistantThinking(timestamp=part_timestamp, thinking=text))
        elif part_type == "tool":
            parsed.append(_tool_part(part, part_timestamp))
        elif part_type not in _SKIPPED_PARTS:
            parsed.append(
                InfoMessage(
                    timestamp=part_timestamp,
                    title=part_type or "part",
                    content=JsonContent(json.dumps(part, ensure_ascii=False)),
                )
            )

    if parsed:
        return parsed

    error = get_dict(message.data, "error")
    if error:
        return [
            InfoMessage(
                timestamp=timestamp,
                title="error",
                subtitle=get_str(error, "name"),
                content=TextContent(get_str(get_dict(error, "data"), "message") or message.raw),
                style=InfoStyle.ERROR,
            )
        ]
    return [
        AssistantText(
            timestamp=timestamp,
            content=[CodeContent(f"Assistant message with 0 part(s)\n{message.raw}")],
        )
    ]


def _tool_part(part: dict[str, Any], timestamp: datetime | None) -> ToolUse:
    state = get_dict(part, "state")
    status = get_str(state, "status")
    call_id = get_str(part, "callID")
    name = get_str(part, "tool") or "tool"
    results = []
    if status in ("completed", "error"):
        results.append(
            ToolResult(
                timestamp=timestamp,
                tool_name=name,
                tool_call_id=call_id,
                output=format_tool_output(state.get("error") if status == "error" else state.get("output")),
                is_error=status == "error",
            )
        )
    return ToolUse(
        timestamp=timestamp,
        tool_name=name,
        tool_call_id=call_id,
        input=json_to_map(state.get("input")),
        results=results,
    )


def _millis(value: Any) -> float:
    """Sort key for an epoch-millisecond field; missing values sort last."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return value
    return math.inf


def _summarize(root: Path, path: Path) -> SessionSummary | None:
    session = read_json(path)
    session_id = get_str(session, "id")
    if session_id is None:
        return None
    time = get_dict(session, "time")
    return SessionSummary(
        session_id=session_id,
        title=get_str(session, "title") or "Untitled",
        provider=Provider.OPENCODE,
        created_at=parse_timestamp(time.get("created")),
        updated_at=parse_timestamp(time.get("updated")),
        message_count=len(list_files(root / "message" / session_id, "*.json")),
        project_path=get_str(session, "directory"),
        location=path,
    )
