# ABOUTME: Finder and parser for Amp thread documents.
# ABOUTME: Threads live in ~/.local/share/amp/threads/T-<id>.json.

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..correlator import correlate
from ..markdown import text_or_markdown
from ..models import (
    AssistantText,
    AssistantThinking,
    CodeContent,
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
from ..tool_output import json_to_map, to_json_text, truncate
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    cap_title,
    dig,
    get_dict,
    get_list,
    get_str,
    list_files,
    malformed_unit,
    read_json,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

THREAD_GLOB = "T-*.json"
EMPTY_ASSISTANT = "[Empty assistant message]"


def working_directory(document: dict[str, Any]) -> str | None:
    """First workspace tree of the thread environment, without its file:// scheme."""
    trees = get_list(get_dict(get_dict(document, "env"), "initial"), "trees")
    if not trees:
        return None
    uri = get_str(trees[0], "uri")
    if uri is None:
        return None
    return uri[len("file://"):] if uri.startswith("file://") else uri


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.AMP, root_dir)
    if not root.exists():
        logger.debug("Amp threads directory %s does not exist", root)
        return []
    summaries = summarize_all(list_files(root, THREAD_GLOB), _summarize)
    if project_path is None:
        return summaries
    return [
        summary
        for summary in summaries
        if summary.project_path is None or summary.project_path.startswith(project_path)
    ]


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.AMP, root_dir)
    candidate = root / f"{session_id}.json"
    return candidate if candidate.is_file() else None


def parse_session(path: Path) -> SessionDetail | None:
    if not path.is_file():
        return None
    text = read_text(path)
    if text is None:
        return None
    return parse_content(text)


def parse_content(text: str) -> SessionDetail | None:
    try:
        document = json.loads(text)
    except ValueError as exc:
        logger.warning("Amp thread is not valid JSON: %s", exc)
        return None
    if not isinstance(document, dict):
        return None
    session_id = get_str(document, "id")
    if session_id is None:
        return None

    raw_messages: list[ParsedMessage] = []
    models = ModelCounter()
    for message in get_list(document, "messages"):
        if not isinstance(message, dict):
            raw_messages.append(malformed_unit(to_json_text(message)))
            continue
        models.add(get_str(get_dict(message, "usage"), "model"))
        try:
            raw_messages.extend(_parse_message(message))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Amp message: %s", exc)
            raw_messages.append(malformed_unit(to_json_text(message), _message_timestamp(message)))

    messages = correlate(raw_messages)
    created = parse_timestamp(document.get("created"))
    return SessionDetail(
        session_id=session_id,
        title=get_str(document, "title") or _first_prompt(messages) or "Untitled",
        messages=messages,
        metadata=SessionMetadata(
            working_directory=working_directory(document),
            created_at=created,
            modified_at=created,
            message_count=len(raw_messages),
            model_usage=models.usage(),
        ),
        provider=Provider.AMP,
    )


def _parse_message(message: dict[str, Any]) -> list[ParsedMessage]:
    role = get_str(message, "role")
    timestamp = _message_timestamp(message)
    content = get_list(message, "content")
    if role == "user":
        return _parse_user(content, timestamp)
    if role == "assistant":
        return _parse_assistant(content, timestamp)
    return []


def _parse_user(content: list[Any], timestamp: datetime | None) -> list[ParsedMessage]:
    parsed: list[ParsedMessage] = []
    blocks: list[MessageContent] = []
    for block in content:
        block_type = get_str(block, "type")
        if block_type == "text":
            text = get_str(block, "text")
            if text and text.strip():
                blocks.append(TextContent(text))
        elif block_type == "tool_result":
            result = _tool_result(block, timestamp)
            if result is not None:
                parsed.append(result)
    if blocks:
        parsed.insert(0, UserMessage(timestamp=timestamp, content=blocks))
    return parsed


def _parse_assistant(content: list[Any], timestamp: datetime | None) -> list[ParsedMessage]:
    parsed: list[ParsedMessage] = []
    text_blocks: list[MessageContent] = []
    thinking: AssistantThinking | None = None

    for block in content:
        block_type = get_str(block, "type")
        if block_type == "thinking":
            text = get_str(block, "thinking")
            if text and text.strip():
                thinking = AssistantThinking(timestamp=timestamp, thinking=text)
        elif block_type == "text":
            text = get_str(block, "text")
            if text and text.strip():
                text_blocks.append(text_or_markdown(text))
        elif block_type == "tool_use":
            if text_blocks:
                parsed.append(AssistantText(timestamp=timestamp, content=list(text_blocks)))
                text_blocks.clear()
            parsed.append(
                ToolUse(
                    timestamp=timestamp,
                    tool_name=get_str(block, "name") or "tool",
                    tool_call_id=get_str(block, "id"),
                    input=json_to_map(block.get("input")),
                )
            )

    if thinking is not None:
        parsed.insert(0, thinking)
    if text_blocks:
        parsed.append(AssistantText(timestamp=timestamp, content=text_blocks))
    if not parsed:
        parsed.append(AssistantText(timestamp=timestamp, content=[TextContent(EMPTY_ASSISTANT)]))
    return parsed


def _tool_result(block: dict[str, Any], timestamp: datetime | None) -> ToolResult | None:
    run = get_dict(block, "run")
    if not run:
        return None
    result = run.get("result")
    # Edits report only a diff here; the tool_use already carries it
    if isinstance(result, dict) and "diff" in result and len(result) <= 2:
        return None

    status = get_str(run, "status")
    error = run.get("error")
    if error is not None:
        text = f"Error: {error if isinstance(error, str) else to_json_text(error)}"
    elif isinstance(result, dict):
        text = get_str(result, "content") or to_json_text(result)
    elif isinstance(result, str):
        text = result
    elif result is not None:
        text = to_json_text(result)
    else:
        text = f"[{status}]"

    return ToolResult(
        timestamp=timestamp,
        tool_call_id=get_str(block, "toolUseID"),
        output=[CodeContent(truncate(text))],
        is_error=error is not None or status == "error",
    )


def _message_timestamp(message: dict[str, Any]) -> datetime | None:
    return parse_timestamp(dig(message, "meta", "sentAt")) or parse_timestamp(
        dig(message, "usage", "timestamp")
    )


def _first_prompt(messages: list[ParsedMessage]) -> str | None:
    for message in messages:
        if isinstance(message, UserMessage):
            for block in message.content:
                if isinstance(block, TextContent) and block.text.strip():
                    return cap_title(block.text)
    return None


def _first_prompt_raw(document: dict[str, Any]) -> str | None:
    for message in get_list(document, "messages"):
        if get_str(message, "role") != "user":
            continue
        for block in get_list(message, "content"):
            text = get_str(block, "text") if get_str(block, "type") == "text" else None
            if text and text.strip():
                return cap_title(text)
    return None


def _summarize(path: Path) -> SessionSummary | None:
    document = read_json(path)
    if not isinstance(document, dict):
        return None
    created = parse_timestamp(document.get("created"))
    return SessionSummary(
        session_id=get_str(document, "id") or path.stem,
        title=get_str(document, "title") or _first_prompt_raw(document) or "Untitled",
        provider=Provider.AMP,
        created_at=created,
        updated_at=created,
        message_count=len(get_list(document, "messages")),
        project_path=working_directory(document),
        location=path,
    )
