# ABOUTME: Finder and parser for Codex CLI rollout logs.
# ABOUTME: Sessions live in ~/.codex/sessions/YYYY/MM/DD/rollout-<timestamp>-<uuid>.jsonl.

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from ..config import CODEX_LOOKBACK_DAYS, resolve_root
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
from ..timestamps import from_mtime, parse_timestamp
from ..tool_output import json_to_map, truncate
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    cap_title,
    get_dict,
    get_list,
    get_str,
    iter_jsonl,
    list_files,
    loads_object,
    malformed_unit,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

CUSTOM_INPUT_LIMIT = 2000
_SESSION_ID_PATTERN = re.compile(r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$")
_INJECTED_CONTEXT_MARKERS = (
    "<permissions instructions>",
    "<environment_context>",
    "# AGENTS.md instructions",
)


def extract_session_id(path: Path) -> str | None:
    """Session id is the UUID at the end of ``rollout-<timestamp>-<uuid>.jsonl``."""
    if not path.name.startswith("rollout-") or path.suffix != ".jsonl":
        return None
    match = _SESSION_ID_PATTERN.search(path.stem)
    return match.group(1) if match else None


def recent_session_files(root: Path, today: date | None = None) -> list[Path]:
    """Rollout files from the last CODEX_LOOKBACK_DAYS day directories, newest copy per id."""
    today = today or date.today()
    latest: dict[str, Path] = {}
    for offset in range(CODEX_LOOKBACK_DAYS):
        day = today - timedelta(days=offset)
        day_dir = root / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}"
        for path in list_files(day_dir, "rollout-*.jsonl"):
            _keep_latest(latest, path)
    return sorted(latest.values(), key=_mtime, reverse=True)


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.CODEX, root_dir)
    if not root.exists():
        logger.debug("Codex sessions directory %s does not exist", root)
        return []
    summaries = summarize_all(recent_session_files(root), _summarize)
    if project_path is None:
        return summaries
    return [summary for summary in summaries if summary.project_path == project_path]


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    if _SESSION_ID_PATTERN.fullmatch(session_id) is None:
        return None
    root = resolve_root(Provider.CODEX, root_dir)
    if not root.exists():
        return None
    latest: dict[str, Path] = {}
    try:
        candidates = sorted(root.rglob(f"rollout-*-{session_id}.jsonl"))
    except OSError:
        return None
    for path in candidates:
        _keep_latest(latest, path)
    return latest.get(session_id)


def parse_session(path: Path) -> SessionDetail | None:
    if not path.is_file():
        return None
    text = read_text(path)
    if text is None:
        return None
    return parse_content(text, session_id=extract_session_id(path) or path.stem)


def parse_content(text: str, session_id: str) -> SessionDetail:
    raw_messages: list[ParsedMessage] = []
    models = ModelCounter()
    session_meta: dict[str, Any] = {}
    created: datetime | None = None
    modified: datetime | None = None
    first_prompt: str | None = None

    for line, record in iter_jsonl(text):
        if not line.startswith("{"):
            continue
        if record is None:
            logger.warning("Skipping malformed Codex record: %.80s", line)
            raw_messages.append(malformed_unit(line))
            continue

        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp is not None:
            created = created or timestamp
            modified = timestamp

        record_type = get_str(record, "type")
        payload = get_dict(record, "payload")
        if record_type == "session_meta":
            session_meta = session_meta or payload
        elif record_type == "turn_context":
            models.add(get_str(payload, "model"))
        elif record_type == "event_msg":
            if first_prompt is None and get_str(payload, "type") == "user_message":
                first_prompt = get_str(payload, "message") or None
        elif record_type == "response_item":
            try:
                raw_messages.extend(_parse_response_item(payload, timestamp))
            except UNIT_ERRORS as exc:
                logger.warning("Failed to parse Codex response item: %s", exc)
                raw_messages.append(malformed_unit(line, timestamp))

    messages = correlate(raw_messages)
    git = get_dict(session_meta, "git")
    metadata = SessionMetadata(
        tool_version=get_str(session_meta, "cli_version"),
        git_branch=get_str(git, "branch"),
        working_directory=get_str(session_meta, "cwd"),
        created_at=created,
        modified_at=modified,
        message_count=len(raw_messages),
        model_usage=models.usage(),
    )
    return SessionDetail(
        session_id=get_str(session_meta, "id") or session_id,
        title=cap_title(first_prompt) if first_prompt else _first_user_text(messages),
        messages=messages,
        metadata=metadata,
        provider=Provider.CODEX,
    )


def _parse_response_item(payload: dict[str, Any], timestamp: datetime | None) -> list[ParsedMessage]:
    payload_type = get_str(payload, "type")
    if payload_type == "message":
        message = _parse_message_payload(payload, timestamp)
        return [message] if message is not None else []

    if payload_type == "function_call":
        arguments = get_str(payload, "arguments")
        tool_input: dict[str, str] = {}
        if arguments is not None:
            decoded = loads_object(arguments)
            tool_input = json_to_map(decoded) if decoded is not None else {"arguments": arguments}
        return [
            ToolUse(
                timestamp=timestamp,
                tool_name=get_str(payload, "name") or "function",
                tool_call_id=get_str(payload, "call_id"),
                input=tool_input,
            )
        ]

    if payload_type == "function_call_output":
        output = payload.get("output")
        if isinstance(output, dict):
            output = get_str(output, "content") or json.dumps(output)
        return [
            ToolResult(
                timestamp=timestamp,
                tool_call_id=get_str(payload, "call_id"),
                output=_code_output(output if isinstance(output, str) else ""),
            )
        ]

    if payload_type == "custom_tool_call":
        raw_input = get_str(payload, "input")
        return [
            ToolUse(
                timestamp=timestamp,
                tool_name=get_str(payload, "name") or "tool",
                tool_call_id=get_str(payload, "call_id"),
                input={"input": raw_input[:CUSTOM_INPUT_LIMIT]} if raw_input is not None else {},
            )
        ]

    if payload_type == "custom_tool_call_output":
        output = get_str(payload, "output") or ""
        wrapped = loads_object(output) if output else None
        if wrapped is not None:
            output = get_str(wrapped, "output") or output
        return [
            ToolResult(
                timestamp=timestamp,
                tool_call_id=get_str(payload, "call_id"),
                output=_code_output(output),
            )
        ]

    if payload_type == "reasoning":
        summary = "\n".join(
            text for text in (get_str(item, "text") for item in get_list(payload, "summary")) if text
        )
        return [AssistantThinking(timestamp=timestamp, thinking=summary)] if summary else []

    return []


def _parse_message_payload(payload: dict[str, Any], timestamp: datetime | None) -> ParsedMessage | None:
    role = get_str(payload, "role")
    if role in ("developer", "system"):
        return None

    blocks: list[MessageContent] = []
    for item in get_list(payload, "content"):
        item_type = get_str(item, "type")
        text = get_str(item, "text")
        if text is None:
            continue
        if item_type == "input_text":
            if any(marker in text for marker in _INJECTED_CONTEXT_MARKERS):
                continue
            blocks.append(TextContent(text))
        elif item_type == "output_text":
            blocks.append(text_or_markdown(text))
        elif item_type == "text":
            blocks.append(TextContent(text))

    if not blocks:
        return None
    if role == "assistant":
        return AssistantText(timestamp=timestamp, content=blocks)
    return UserMessage(timestamp=timestamp, content=blocks)


def _code_output(output: str) -> list[MessageContent]:
    return [CodeContent(truncate(output))] if output else []


def _first_user_text(messages: list[ParsedMessage]) -> str:
    for message in messages:
        if isinstance(message, UserMessage):
            text = " ".join(block.text for block in message.content if isinstance(block, TextContent))
            if text.strip():
                return cap_title(text)
    return "Untitled"


def _summarize(path: Path) -> SessionSummary | None:
    session_id = extract_session_id(path)
    text = read_text(path)
    if session_id is None or text is None:
        return None

    title: str | None = None
    cwd: str | None = None
    message_count = 0
    created: datetime | None = None
    updated: datetime | None = None

    for line, record in iter_jsonl(text):
        if not line.startswith("{"):
            continue
        message_count += 1
        if record is None:
            continue
        timestamp = parse_timestamp(record.get("timestamp"))
        if timestamp is not None:
            created = created or timestamp
            updated = timestamp

        payload = get_dict(record, "payload")
        record_type = get_str(record, "type")
        if record_type == "session_meta" and cwd is None:
            cwd = get_str(payload, "cwd")
        elif record_type == "event_msg" and title is None and get_str(payload, "type") == "user_message":
            message = get_str(payload, "message")
            title = cap_title(message) if message else None

    mtime = from_mtime(_mtime(path))
    return SessionSummary(
        session_id=session_id,
        title=title or "Untitled",
        provider=Provider.CODEX,
        created_at=created or mtime,
        updated_at=updated or mtime,
        message_count=message_count,
        project_path=cwd,
        location=path,
    )


def _keep_latest(latest: dict[str, Path], path: Path) -> None:
    session_id = extract_session_id(path)
    if session_id is None:
        return
    existing = latest.get(session_id)
    if existing is None or _mtime(path) > _mtime(existing):
        latest[session_id] = path


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0
