# ABOUTME: Finder and parser for Gemini CLI chat documents.
# ABOUTME: Sessions live in ~/.gemini/tmp/<project hash>/chats/session-*.json next to a .project_root marker.

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..markdown import text_or_markdown
from ..models import (
    AssistantText,
    AssistantThinking,
    CodeContent,
    InfoMessage,
    InfoStyle,
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
    list_dirs,
    list_files,
    malformed_unit,
    read_json,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT_MARKER = ".project_root"
SESSION_GLOB = "session-*.json"


def read_project_root(project_dir: Path) -> str | None:
    marker = project_dir / PROJECT_ROOT_MARKER
    if not marker.is_file():
        return None
    text = read_text(marker)
    if text is None:
        return None
    return text.strip() or None


def project_dirs_for(root: Path, project_path: str | None = None) -> list[tuple[Path, str]]:
    """Project-hash directories whose marker resolves, optionally only those matching project_path."""
    matches = []
    for project_dir in list_dirs(root):
        project_root = read_project_root(project_dir)
        if project_root is None:
            continue
        if project_path is not None and project_root != project_path:
            continue
        matches.append((project_dir, project_root))
    return matches


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.GEMINI, root_dir)
    if not root.exists():
        logger.debug("Gemini tmp directory %s does not exist", root)
        return []

    candidates = [
        (path, project_root)
        for project_dir, project_root in project_dirs_for(root, project_path)
        for path in list_files(project_dir / "chats", SESSION_GLOB)
    ]
    return summarize_all(candidates, lambda item: _summarize(*item))


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.GEMINI, root_dir)
    for project_dir in list_dirs(root):
        for path in list_files(project_dir / "chats", SESSION_GLOB):
            document = read_json(path)
            if isinstance(document, dict) and document.get("sessionId") == session_id:
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
    try:
        document = json.loads(text)
    except ValueError as exc:
        logger.warning("Gemini session is not valid JSON: %s", exc)
        return None
    if not isinstance(document, dict):
        return None

    messages: list[ParsedMessage] = []
    models = ModelCounter()
    raw_messages = get_list(document, "messages")
    for raw in raw_messages:
        if not isinstance(raw, dict):
            messages.append(malformed_unit(to_json_text(raw)))
            continue
        models.add(get_str(raw, "model"))
        try:
            messages.extend(_parse_message(raw))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Gemini message: %s", exc)
            messages.append(malformed_unit(to_json_text(raw), parse_timestamp(raw.get("timestamp"))))

    return SessionDetail(
        session_id=get_str(document, "sessionId") or "",
        title=_title(raw_messages),
        messages=messages,
        metadata=SessionMetadata(
            created_at=parse_timestamp(document.get("startTime")),
            modified_at=parse_timestamp(document.get("lastUpdated")),
            message_count=len(messages),
            model_usage=models.usage(),
        ),
        provider=Provider.GEMINI,
    )


def _parse_message(raw: dict[str, Any]) -> list[ParsedMessage]:
    timestamp = parse_timestamp(raw.get("timestamp"))
    message_type = get_str(raw, "type")
    content = _content_text(raw.get("content"))

    if message_type == "user":
        return [UserMessage(timestamp=timestamp, content=[TextContent(content)])]

    if message_type == "gemini":
        parsed: list[ParsedMessage] = []
        for thought in get_list(raw, "thoughts"):
            subject = get_str(thought, "subject") or ""
            description = get_str(thought, "description") or ""
            parsed.append(
                AssistantThinking(
                    timestamp=parse_timestamp(get_str(thought, "timestamp")) or timestamp,
                    thinking=f"[{subject}]\n{description}",
                )
            )
        for tool_call in get_list(raw, "toolCalls"):
            parsed.append(_tool_call(tool_call, timestamp))
        if content.strip():
            parsed.append(AssistantText(timestamp=timestamp, content=[text_or_markdown(content)]))
        return parsed

    if message_type == "error":
        return [
            InfoMessage(
                timestamp=timestamp,
                title="error",
                content=TextContent(content),
                style=InfoStyle.ERROR,
            )
        ]

    if message_type == "info":
        return [InfoMessage(timestamp=timestamp, title="info", content=TextContent(content))]

    return [
        InfoMessage(
            timestamp=timestamp,
            title=message_type or "unknown",
            content=CodeContent(truncate(to_json_text(raw)), "json"),
        )
    ]


def _tool_call(tool_call: dict[str, Any], timestamp: datetime | None) -> ToolUse:
    call_id = get_str(tool_call, "id")
    name = get_str(tool_call, "displayName") or get_str(tool_call, "name") or "tool"
    is_error = get_str(tool_call, "status") == "error"

    results: list[ToolResult] = []
    for item in get_list(tool_call, "result"):
        output = dig(item, "functionResponse", "response", "output")
        if output is None:
            continue
        text = output if isinstance(output, str) else to_json_text(output)
        results.append(
            ToolResult(
                timestamp=timestamp,
                tool_name=name,
                tool_call_id=call_id,
                output=_result_output(text),
                is_error=is_error,
            )
        )

    file_diff = get_str(get_dict(tool_call, "resultDisplay"), "fileDiff")
    if file_diff:
        results.append(
            ToolResult(
                timestamp=timestamp,
                tool_name=name,
                tool_call_id=call_id,
                output=[CodeContent(truncate(file_diff), "diff")],
            )
        )

    return ToolUse(
        timestamp=timestamp,
        tool_name=name,
        tool_call_id=call_id,
        input=json_to_map(tool_call.get("args")),
        results=results,
    )


def _result_output(text: str) -> list[MessageContent]:
    if "---" in text and "+++" in text:
        return [CodeContent(truncate(text), "diff")]
    return [CodeContent(truncate(text))]


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(text for text in (get_str(item, "text") for item in content) if text is not None)
    return ""


def _title(raw_messages: list[Any]) -> str:
    for raw in raw_messages:
        if get_str(raw, "type") == "user":
            content = _content_text(raw.get("content"))
            if content.strip():
                return cap_title(content)
    return "Gemini Session"


def _summarize(path: Path, project_root: str) -> SessionSummary | None:
    document = read_json(path)
    if not isinstance(document, dict):
        return None
    session_id = get_str(document, "sessionId")
    if session_id is None:
        return None
    return SessionSummary(
        session_id=session_id,
        title=_title(get_list(document, "messages")),
        provider=Provider.GEMINI,
        created_at=parse_timestamp(document.get("startTime")),
        updated_at=parse_timestamp(document.get("lastUpdated")),
        message_count=len(get_list(document, "messages")),
        project_path=project_root,
        location=path,
    )
