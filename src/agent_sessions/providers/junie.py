# ABOUTME: Finder and parser for Junie CLI event logs.
# ABOUTME: Sessions are listed in ~/.junie/sessions/index.jsonl with events in <id>/events.jsonl.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..config import resolve_root
from ..markdown import text_or_markdown
from ..models import (
    AssistantText,
    CodeContent,
    InfoMessage,
    InfoStyle,
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
from ..tool_output import truncate
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    cap_title,
    get_dict,
    get_list,
    get_str,
    iter_jsonl,
    list_files,
    malformed_unit,
    read_text,
    summarize_all,
)

logger = logging.getLogger(__name__)

INDEX_FILE = "index.jsonl"
EVENTS_FILE = "events.jsonl"

STEP_EVENT_KINDS = frozenset(
    {
        "ToolBlockUpdatedEvent",
        "TerminalBlockUpdatedEvent",
        "ViewFilesBlockUpdatedEvent",
        "FileChangesBlockUpdatedEvent",
        "ResultBlockUpdatedEvent",
    }
)

_CD_PATTERN = re.compile(r'"command"\s*:\s*"cd\s+(/[^\s"&;\\]+)')
_PROJECT_ROOT_PATTERN = re.compile(r"Project root directory:\s*(\S+)")


@dataclass(frozen=True)
class IndexEntry:
    """One line of index.jsonl."""

    session_id: str
    created_at: datetime | None
    updated_at: datetime | None
    task_name: str | None
    status: str | None


def read_index(root: Path) -> list[IndexEntry]:
    text = read_text(root / INDEX_FILE) if (root / INDEX_FILE).is_file() else None
    if text is None:
        return []
    entries = []
    for line, record in iter_jsonl(text):
        if record is None:
            logger.warning("Skipping malformed Junie index line: %.80s", line)
            continue
        session_id = get_str(record, "sessionId")
        if session_id is None:
            continue
        entries.append(
            IndexEntry(
                session_id=session_id,
                created_at=parse_timestamp(record.get("createdAt")),
                updated_at=parse_timestamp(record.get("updatedAt")),
                task_name=get_str(record, "taskName"),
                status=get_str(record, "status"),
            )
        )
    return entries


def extract_working_directory(session_dir: Path) -> str | None:
    """Project root from the work description file, else the first terminal ``cd``."""
    for path in list_files(session_dir):
        if path.suffix == ".jsonl":
            continue
        text = read_text(path)
        if text is None:
            continue
        match = _PROJECT_ROOT_PATTERN.search(text)
        if match:
            return match.group(1)

    events = session_dir / EVENTS_FILE
    if not events.is_file():
        return None
    try:
        with events.open(encoding="utf-8") as handle:
            for line in handle:
                if "AgentStateUpdatedEvent" in line or "TerminalBlockUpdatedEvent" not in line:
                    continue
                match = _CD_PATTERN.search(line)
                if match:
                    return match.group(1)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read %s: %s", events, exc)
    return None


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.JUNIE, root_dir)
    if not root.exists():
        logger.debug("Junie sessions directory %s does not exist", root)
        return []
    summaries = summarize_all(read_index(root), lambda entry: _summarize(root, entry))
    if project_path is None:
        return summaries
    return [
        summary
        for summary in summaries
        if summary.project_path is None or summary.project_path == project_path
    ]


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    root = resolve_root(Provider.JUNIE, root_dir)
    events = root / session_id / EVENTS_FILE
    return events if events.is_file() else None


def parse_session(path: Path) -> SessionDetail | None:
    if not path.is_file():
        return None
    text = read_text(path)
    if text is None:
        return None
    session_id = path.parent.name
    task_name = next(
        (entry.task_name for entry in read_index(path.parent.parent) if entry.session_id == session_id),
        None,
    )
    return parse_content(
        text,
        session_id=session_id,
        title=task_name,
        working_directory=extract_working_directory(path.parent),
    )


def parse_content(
    text: str,
    session_id: str,
    title: str | None = None,
    working_directory: str | None = None,
) -> SessionDetail:
    models = ModelCounter()
    messages: list[ParsedMessage] = []

    for timestamp, kind, agent_event, raw in _ordered_events(text):
        if kind == "malformed":
            messages.append(malformed_unit(raw))
            continue
        if kind == "LlmResponseMetadataEvent":
            for usage in get_list(agent_event, "modelUsage"):
                models.add(get_str(usage, "model"))
            continue
        try:
            messages.extend(_parse_event(kind, agent_event, timestamp))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Junie event %s: %s", kind, exc)
            messages.append(malformed_unit(raw, timestamp))

    timestamps = [message.timestamp for message in messages if message.timestamp is not None]
    return SessionDetail(
        session_id=session_id,
        title=title or _first_prompt(messages) or "Untitled",
        messages=messages,
        metadata=SessionMetadata(
            working_directory=working_directory,
            created_at=min(timestamps) if timestamps else None,
            modified_at=max(timestamps) if timestamps else None,
            message_count=len(messages),
            model_usage=models.usage(),
        ),
        provider=Provider.JUNIE,
    )


def _ordered_events(text: str) -> list[tuple[datetime | None, str, dict[str, Any], str]]:
    """Events in file order with each step collapsed to its latest payload at its first position."""
    slots: list[Any] = []
    latest_step: dict[str, tuple[datetime | None, str, dict[str, Any], str]] = {}

    for line, record in iter_jsonl(text):
        if not line.startswith("{"):
            continue
        if record is None:
            logger.warning("Skipping malformed Junie event: %.80s", line)
            slots.append((None, "malformed", {}, line))
            continue

        timestamp = parse_timestamp(record.get("timestamp"))
        top_kind = get_str(record, "kind")
        if top_kind == "UserPromptEvent":
            slots.append((timestamp, top_kind, record, line))
            continue
        if top_kind != "SessionA2uxEvent":
            continue

        agent_event = get_dict(get_dict(record, "event"), "agentEvent")
        kind = get_str(agent_event, "kind")
        if kind is None:
            continue
        step_id = get_str(agent_event, "stepId")
        if step_id is not None and kind in STEP_EVENT_KINDS:
            if step_id not in latest_step:
                slots.append(step_id)
            latest_step[step_id] = (timestamp, kind, agent_event, line)
        else:
            slots.append((timestamp, kind, agent_event, line))

    return [latest_step[slot] if isinstance(slot, str) else slot for slot in slots]


def _parse_event(kind: str, event: dict[str, Any], timestamp: datetime | None) -> list[ParsedMessage]:
    if kind == "UserPromptEvent":
        prompt = get_str(event, "prompt")
        return [UserMessage(timestamp=timestamp, content=[TextContent(prompt)])] if prompt is not None else []

    if kind == "ToolBlockUpdatedEvent":
        action = get_str(event, "text")
        arguments = {"action": action} if action is not None else {}
        return [_tool_use("tool", arguments, get_str(event, "details"), timestamp)]

    if kind == "TerminalBlockUpdatedEvent":
        command = get_str(event, "command")
        arguments = {"command": command} if command is not None else {}
        return [_tool_use("terminal", arguments, get_str(event, "output"), timestamp)]

    if kind == "ViewFilesBlockUpdatedEvent":
        paths = [get_str(item, "relativePath") for item in get_list(event, "files")]
        joined = ", ".join(path for path in paths if path)
        return [
            InfoMessage(
                timestamp=timestamp,
                title="Opened file",
                content=TextContent(joined) if "files" in event else None,
            )
        ]

    if kind == "FileChangesBlockUpdatedEvent":
        edited = []
        for change in get_list(event, "changes"):
            path = get_str(change, "afterRelativePath") or get_str(change, "beforeRelativePath")
            if path:
                edited.append(InfoMessage(timestamp=timestamp, title="Edited file", content=TextContent(path)))
        return edited

    if kind == "ResultBlockUpdatedEvent":
        result = get_str(event, "result")
        if event.get("cancelled") in (True, "true") or not result or not result.strip() or result == "Empty":
            return []
        return [AssistantText(timestamp=timestamp, content=[text_or_markdown(result)])]

    if kind == "AgentFailureEvent":
        message = get_str(event, "message")
        if not message or not message.strip():
            return []
        return [
            InfoMessage(
                timestamp=timestamp,
                title="Error",
                content=TextContent(message),
                style=InfoStyle.ERROR,
            )
        ]

    return []


def _tool_use(name: str, tool_input: dict[str, str], output: str | None, timestamp: datetime | None) -> ToolUse:
    results = []
    if output and output.strip():
        results.append(ToolResult(timestamp=timestamp, tool_name=name, output=[CodeContent(truncate(output))]))
    return ToolUse(timestamp=timestamp, tool_name=name, input=tool_input, results=results)


def _first_prompt(messages: list[ParsedMessage]) -> str | None:
    for message in messages:
        if isinstance(message, UserMessage):
            for block in message.content:
                if isinstance(block, TextContent) and block.text.strip():
                    return cap_title(block.text)
    return None


def _summarize(root: Path, entry: IndexEntry) -> SessionSummary:
    session_dir = root / entry.session_id
    return SessionSummary(
        session_id=entry.session_id,
        title=entry.task_name or "Untitled",
        provider=Provider.JUNIE,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        project_path=extract_working_directory(session_dir) if session_dir.is_dir() else None,
        location=session_dir / EVENTS_FILE,
    )
