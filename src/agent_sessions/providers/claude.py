# ABOUTME: Finder and parser for Claude Code JSONL transcripts.
# ABOUTME: Sessions live in ~/.claude/projects/<encoded project path>/<session id>.jsonl.

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..correlator import correlate
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
from ..timestamps import from_mtime, parse_timestamp
from ..tool_output import format_duration, json_to_map, to_json_text, truncate
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    cap_title,
    dig,
    get_dict,
    get_list,
    get_number,
    get_str,
    iter_jsonl,
    list_dirs,
    list_files,
    loads_object,
    malformed_unit,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

TITLE_SCAN_LINES = 10
RAW_PREVIEW_LIMIT = 1000
_TIMESTAMP_MARKER = '"timestamp":"'
_COMMAND_MARKERS = ("<command-name>", "<local-command-stdout>")


def encode_project_path(project_path: str) -> str:
    """Directory name Claude Code uses for a project path."""
    return project_path.replace("/", "-").replace(":", "")


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.CLAUDE, root_dir)
    if not root.exists():
        logger.debug("Claude projects directory %s does not exist", root)
        return []

    if project_path is not None:
        project_dirs = [root / encode_project_path(project_path)]
    else:
        project_dirs = list_dirs(root)

    files = [path for directory in project_dirs for path in list_files(directory, "*.jsonl")]
    return summarize_all(files, lambda path: _summarize(path, project_path))


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.CLAUDE, root_dir)
    for project_dir in list_dirs(root):
        candidate = project_dir / f"{session_id}.jsonl"
        if candidate.is_file():
            return candidate
    return None


def parse_session(path: Path) -> SessionDetail | None:
    if not path.is_file():
        return None
    text = read_text(path)
    if text is None:
        return None
    return parse_content(text, session_id=path.stem)


def parse_content(text: str, session_id: str) -> SessionDetail:
    messages, metadata = parse_messages(text)
    return SessionDetail(
        session_id=session_id,
        title=_detail_title(messages),
        messages=messages,
        metadata=metadata,
        provider=Provider.CLAUDE,
    )


def parse_messages(text: str) -> tuple[list[ParsedMessage], SessionMetadata | None]:
    raw_messages: list[ParsedMessage] = []
    models = ModelCounter()
    header: dict[str, Any] | None = None
    created: datetime | None = None
    modified: datetime | None = None

    for line, record in iter_jsonl(text):
        if not line.startswith("{"):
            continue
        if record is None:
            logger.warning("Skipping malformed Claude record: %.80s", line)
            raw_messages.append(malformed_unit(line))
            continue

        record_type = get_str(record, "type")
        timestamp = parse_timestamp(record.get("timestamp") or dig(record, "snapshot", "timestamp"))
        if timestamp is not None:
            created = created or timestamp
            modified = timestamp

        if header is None and record_type in ("user", "assistant"):
            header = record

        message = get_dict(record, "message")
        models.add(get_str(message, "model"))

        if timestamp is None:
            logger.debug("Skipping Claude %s record without a timestamp", record_type or "untyped")
            continue
        try:
            raw_messages.extend(_parse_record(record_type, record, line, timestamp))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Claude record: %s", exc)
            raw_messages.append(malformed_unit(line, timestamp))

    messages = correlate(raw_messages)
    if header is None:
        return messages, None

    metadata = SessionMetadata(
        tool_version=get_str(header, "version"),
        git_branch=get_str(header, "gitBranch") or None,
        working_directory=get_str(header, "cwd"),
        created_at=created,
        modified_at=modified,
        message_count=len(raw_messages),
        model_usage=models.usage(),
    )
    return messages, metadata


def _parse_record(
    record_type: str | None,
    record: dict[str, Any],
    line: str,
    timestamp: datetime,
) -> list[ParsedMessage]:
    message = get_dict(record, "message")
    if record_type is None:
        return [
            InfoMessage(
                timestamp=timestamp,
                title="error",
                subtitle="schema",
                content=TextContent(
                    f"Schema Error: Missing 'type' field in this conversation entry.\n{line}"
                ),
                style=InfoStyle.ERROR,
            )
        ]
    if record_type == "user":
        return _parse_user(message, record, timestamp)
    if record_type == "assistant":
        return _parse_assistant(message, timestamp)
    if record_type == "tool_use":
        return _parse_blocks_as_tool_uses(message, timestamp)
    if record_type == "tool_result":
        return [_parse_tool_result_record(message, record, timestamp)]
    if record_type == "thinking":
        return [_parse_thinking_record(message, timestamp)]
    if record_type == "queue-operation":
        content = get_str(record, "content")
        return [
            InfoMessage(
                timestamp=timestamp,
                title="queue",
                subtitle=get_str(record, "operation") or "unknown",
                content=TextContent(content) if content else None,
            )
        ]
    if record_type == "system":
        return [_parse_system(message, record, line, timestamp)]
    if record_type == "summary":
        return [
            InfoMessage(
                timestamp=timestamp,
                title="summary",
                content=MarkdownContent(get_str(record, "summary") or "Session summary"),
            )
        ]
    # file-history-snapshot and other bookkeeping records carry no conversation content
    return []


def _parse_user(message: dict[str, Any], record: dict[str, Any], timestamp: datetime) -> list[ParsedMessage]:
    content = message.get("content")
    if isinstance(content, str):
        return [UserMessage(timestamp=timestamp, content=[TextContent(content)])]
    if not isinstance(content, list):
        raw = to_json_text(message) if message else to_json_text(record)
        return [
            UserMessage(
                timestamp=timestamp,
                content=[CodeContent(f"[User Message - Unrecognized format] {raw[:RAW_PREVIEW_LIMIT]}")],
            )
        ]

    parsed: list[ParsedMessage] = []
    blocks: list[MessageContent] = []
    for block in content:
        block_type = get_str(block, "type")
        if block_type == "text":
            text = get_str(block, "text") or ""
            if text:
                blocks.append(TextContent(text))
        elif block_type == "tool_result":
            parsed.append(
                ToolResult(
                    timestamp=timestamp,
                    tool_call_id=get_str(block, "tool_use_id"),
                    output=_result_output(block.get("content")),
                    is_error=block.get("is_error") is True,
                )
            )
        elif block_type == "image":
            media_type = get_str(get_dict(block, "source"), "media_type") or "image"
            blocks.append(TextContent(f"[Image: {media_type}]"))
        else:
            blocks.append(_unknown_block(block_type, block))

    if blocks:
        parsed.insert(0, UserMessage(timestamp=timestamp, content=blocks))
    if not parsed:
        raw = to_json_text(message)[:RAW_PREVIEW_LIMIT]
        parsed.append(
            UserMessage(
                timestamp=timestamp,
                content=[CodeContent(f"[User Message - No parsable content] {raw}")],
            )
        )
    return parsed


def _parse_assistant(message: dict[str, Any], timestamp: datetime) -> list[ParsedMessage]:
    parsed: list[ParsedMessage] = []
    text_blocks: list[MessageContent] = []

    def flush_text() -> None:
        if text_blocks:
            parsed.append(AssistantText(timestamp=timestamp, content=list(text_blocks)))
            text_blocks.clear()

    content = message.get("content")
    if isinstance(content, str):
        content = [{"type": "text", "text": content}]

    for block in content if isinstance(content, list) else []:
        block_type = get_str(block, "type")
        if block_type == "text":
            text = get_str(block, "text") or ""
            if text:
                text_blocks.append(MarkdownContent(text))
        elif block_type == "thinking":
            thinking = get_str(block, "thinking")
            if thinking:
                flush_text()
                parsed.append(AssistantThinking(timestamp=timestamp, thinking=thinking))
        elif block_type == "redacted_thinking":
            continue
        elif block_type in ("tool_use", "server_tool_use"):
            flush_text()
            parsed.append(_tool_use(block, timestamp))
        elif block_type in ("tool_result", "web_search_tool_result"):
            flush_text()
            parsed.append(
                ToolResult(
                    timestamp=timestamp,
                    tool_call_id=get_str(block, "tool_use_id"),
                    output=_result_output(block.get("content")),
                    is_error=block.get("is_error") is True,
                )
            )
        else:
            text_blocks.append(_unknown_block(block_type, block))
    flush_text()

    if not parsed:
        raw = to_json_text(message)[:RAW_PREVIEW_LIMIT]
        parsed.append(
            AssistantText(
                timestamp=timestamp,
                content=[CodeContent(f"[Assistant Message - No parsable content] {raw}")],
            )
        )
    return parsed


def _parse_blocks_as_tool_uses(message: dict[str, Any], timestamp: datetime) -> list[ParsedMessage]:
    uses: list[ParsedMessage] = [
        _tool_use(block, timestamp)
        for block in get_list(message, "content")
        if get_str(block, "type") == "tool_use"
    ]
    return uses or [ToolUse(timestamp=timestamp, tool_name="tool")]


def _parse_tool_result_record(
    message: dict[str, Any], record: dict[str, Any], timestamp: datetime
) -> ToolResult:
    content = record.get("content", message.get("content"))
    if isinstance(content, (str, list)):
        output = _result_output(content)
    else:
        fallback = (
            get_str(message, "result")
            or (to_json_text(message)[:RAW_PREVIEW_LIMIT] if message else None)
            or get_str(record, "result")
            or to_json_text(record)[:RAW_PREVIEW_LIMIT]
        )
        output = [CodeContent(truncate(fallback))]
    return ToolResult(
        timestamp=timestamp,
        tool_call_id=get_str(record, "tool_use_id") or get_str(message, "tool_use_id"),
        output=output,
    )


def _parse_thinking_record(message: dict[str, Any], timestamp: datetime) -> AssistantThinking:
    parts = [
        get_str(block, "thinking") or ""
        for block in get_list(message, "content")
        if get_str(block, "type") == "thinking"
    ]
    thinking = "\n\n".join(part for part in parts if part)
    return AssistantThinking(
        timestamp=timestamp,
        thinking=thinking or "[Thinking message with no parsable content]",
    )


def _parse_system(
    message: dict[str, Any], record: dict[str, Any], line: str, timestamp: datetime
) -> InfoMessage:
    subtype = get_str(record, "subtype")
    if subtype == "turn_duration":
        duration = get_number(record, "durationMs")
        return InfoMessage(
            timestamp=timestamp,
            title="duration",
            subtitle="turn_duration",
            content=TextContent(format_duration(int(duration))) if duration is not None else JsonContent(line),
        )

    text = get_str(message, "content") or get_str(record, "content")
    return InfoMessage(
        timestamp=timestamp,
        title="system",
        subtitle=subtype,
        content=TextContent(text) if text is not None else JsonContent(line),
        style=InfoStyle.ERROR if get_str(record, "level") == "error" else InfoStyle.DEFAULT,
    )


def _tool_use(block: dict[str, Any], timestamp: datetime) -> ToolUse:
    return ToolUse(
        timestamp=timestamp,
        tool_name=get_str(block, "name") or "tool",
        tool_call_id=get_str(block, "id"),
        input=json_to_map(block.get("input")),
    )


def _result_output(content: Any) -> list[MessageContent]:
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text = "".join(
            get_str(item, "text") or "" for item in content if get_str(item, "type") == "text"
        )
    elif content is None:
        text = ""
    else:
        text = to_json_text(content)
    return [CodeContent(truncate(text))] if text else []


def _unknown_block(block_type: str | None, block: Any) -> CodeContent:
    raw = to_json_text(block)[:RAW_PREVIEW_LIMIT]
    return CodeContent(f"[Unknown Content: {block_type}] {raw}")


def _detail_title(messages: list[ParsedMessage]) -> str:
    for message in messages:
        if isinstance(message, UserMessage):
            texts = [block.text for block in message.content if isinstance(block, TextContent)]
            if not texts:
                texts = [block.markdown for block in message.content if isinstance(block, MarkdownContent)]
            text = " ".join(texts)
            return cap_title(text) if text.strip() else "Untitled"
    return "Untitled"


def _summarize(path: Path, project_path: str | None) -> SessionSummary | None:
    text = read_text(path)
    if text is None:
        return None

    title: str | None = None
    message_count = 0
    scanned = 0
    created: str | None = None
    last: str | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line.startswith("{"):
            continue
        message_count += 1

        stamp = _find_timestamp(line)
        if stamp is not None:
            created = created or stamp
            last = stamp

        if title is None and scanned < TITLE_SCAN_LINES:
            scanned += 1
            title = _title_candidate(line)

    mtime = from_mtime(path.stat().st_mtime)
    return SessionSummary(
        session_id=path.stem,
        title=title or "Untitled",
        provider=Provider.CLAUDE,
        created_at=parse_timestamp(created) or mtime,
        updated_at=parse_timestamp(last) or mtime,
        message_count=message_count,
        project_path=project_path,
        location=path,
    )


def _title_candidate(line: str) -> str | None:
    record = loads_object(line)
    if record is None or record.get("isMeta") is True:
        return None
    if get_str(record, "type") != "user":
        return None

    content = get_dict(record, "message").get("content")
    if isinstance(content, str):
        if any(marker in content for marker in _COMMAND_MARKERS):
            return None
        text = content
    elif isinstance(content, list):
        text = "".join(get_str(item, "text") or "" for item in content)
    else:
        return None
    return cap_title(text) if text else None


def _find_timestamp(line: str) -> str | None:
    start = line.find(_TIMESTAMP_MARKER)
    if start == -1:
        return None
    start += len(_TIMESTAMP_MARKER)
    end = line.find('"', start)
    if end == -1:
        return None
    return line[start:end]
