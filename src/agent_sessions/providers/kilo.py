# ABOUTME: Finder and parser for Kilo Code CLI tasks.
# ABOUTME: Workspaces map projects to task ids; each task keeps UI messages and API history as JSON.

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePath
from typing import Any

from ..config import resolve_root
from ..correlator import correlate
from ..markdown import text_or_markdown
from ..models import (
    AssistantText,
    AssistantThinking,
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
from ..timestamps import from_mtime, parse_timestamp
from ..tool_output import format_tool_output, json_to_map, to_json_text
from .base import (
    UNIT_ERRORS,
    ModelCounter,
    cap_title,
    get_dict,
    get_list,
    get_str,
    loads_object,
    malformed_unit,
    read_json,
    summarize_all,
)

logger = logging.getLogger(__name__)

UI_MESSAGES_FILE = "ui_messages.json"
API_HISTORY_FILE = "api_conversation_history.json"
TASK_METADATA_FILE = "task_metadata.json"

_MODEL_TAG = re.compile(r"<model>([^<]+)</model>")
_QUIET_SAYS = frozenset({"checkpoint_saved", "api_req_started", "api_req_finished"})


@dataclass(frozen=True)
class KiloTask:
    """A task directory together with the session and project it belongs to."""

    task_path: Path
    task_id: str
    session_id: str
    project_path: str


def tasks_dir(root: Path) -> Path:
    return root / "global" / "tasks"


def load_workspace_map(root: Path) -> dict[str, str]:
    document = read_json(root / "workspaces" / "workspace-map.json")
    if not isinstance(document, dict):
        return {}
    return {project: workspace for project, workspace in document.items() if isinstance(workspace, str)}


def list_tasks(root: Path) -> list[KiloTask]:
    tasks = []
    for project_path, workspace_dir in load_workspace_map(root).items():
        session_file = root / "workspaces" / workspace_dir / "session.json"
        if not session_file.is_file():
            continue
        task_map = get_dict(read_json(session_file), "taskSessionMap")
        for task_id, session_id in task_map.items():
            task_path = tasks_dir(root) / task_id
            if isinstance(session_id, str) and task_path.is_dir():
                tasks.append(KiloTask(task_path, task_id, session_id, project_path))
    return tasks


def list_sessions(project_path: str | None = None, root_dir: Path | None = None) -> list[SessionSummary]:
    root = resolve_root(Provider.KILO, root_dir)
    if not root.exists():
        logger.debug("Kilo Code directory %s does not exist", root)
        return []
    tasks = [task for task in list_tasks(root) if project_path is None or task.project_path == project_path]
    return summarize_all(tasks, _summarize)


def find_session(session_id: str, root_dir: Path | None = None) -> Path | None:
    """Task directory for a session id or a task id."""
    root = resolve_root(Provider.KILO, root_dir)
    for task in list_tasks(root):
        if session_id in (task.session_id, task.task_id):
            return task.task_path
    return None


def parse_session(path: Path, session_id: str | None = None) -> SessionDetail | None:
    ui_messages = read_json(path / UI_MESSAGES_FILE) if (path / UI_MESSAGES_FILE).is_file() else None
    if not isinstance(ui_messages, list):
        return None
    api_history = read_json(path / API_HISTORY_FILE) if (path / API_HISTORY_FILE).is_file() else None
    metadata = read_json(path / TASK_METADATA_FILE) if (path / TASK_METADATA_FILE).is_file() else None

    if session_id is None:
        session_id = _session_id_for_task(path)
    return parse_content(
        ui_messages,
        api_history if isinstance(api_history, list) else [],
        metadata if isinstance(metadata, dict) else {},
        session_id=session_id,
    )


def parse_content(
    ui_messages: list[Any],
    api_history: list[Any],
    task_metadata: dict[str, Any],
    session_id: str,
) -> SessionDetail:
    raw_messages: list[ParsedMessage] = []

    for api_message in api_history:
        if not isinstance(api_message, dict) or get_str(api_message, "role") is None:
            logger.warning("Skipping malformed Kilo API message: %.80s", to_json_text(api_message))
            raw_messages.append(malformed_unit(to_json_text(api_message)))
            continue
        try:
            raw_messages.extend(_parse_api_message(api_message))
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Kilo API message: %s", exc)
            raw_messages.append(malformed_unit(to_json_text(api_message)))

    first: datetime | None = None
    last: datetime | None = None
    for ui_message in ui_messages:
        if not isinstance(ui_message, dict) or get_str(ui_message, "type") is None:
            logger.warning("Skipping malformed Kilo UI message: %.80s", to_json_text(ui_message))
            raw_messages.append(malformed_unit(to_json_text(ui_message)))
            continue
        timestamp = parse_timestamp(ui_message.get("ts"))
        if timestamp is not None:
            first = first or timestamp
            last = timestamp
        try:
            parsed = _parse_ui_message(ui_message, timestamp)
        except UNIT_ERRORS as exc:
            logger.warning("Failed to parse Kilo UI message: %s", exc)
            parsed = malformed_unit(to_json_text(ui_message), timestamp)
        if parsed is not None:
            raw_messages.append(parsed)

    models = ModelCounter()
    models.add(extract_model(api_history))
    messages = correlate(raw_messages)
    return SessionDetail(
        session_id=session_id,
        title=extract_title(ui_messages, api_history) or f"Kilo Session {session_id[:8]}",
        messages=messages,
        metadata=SessionMetadata(
            working_directory=extract_workspace(task_metadata),
            created_at=first,
            modified_at=last,
            message_count=len(messages),
            model_usage=models.usage(),
        ),
        provider=Provider.KILO,
    )


def _parse_api_message(api_message: Any) -> list[ParsedMessage]:
    role = get_str(api_message, "role")
    timestamp = parse_timestamp(api_message.get("ts")) if isinstance(api_message, dict) else None
    parsed: list[ParsedMessage] = []
    for block in get_list(api_message, "content"):
        block_type = get_str(block, "type")
        if role == "assistant" and block_type == "tool_use":
            call_id = get_str(block, "id")
            if call_id is None:
                continue
            parsed.append(
                ToolUse(
                    timestamp=timestamp,
                    tool_name=get_str(block, "name") or "unknown",
                    tool_call_id=call_id,
                    input=json_to_map(block.get("input")),
                )
            )
        elif role == "user" and block_type == "tool_result":
            parsed.append(
                ToolResult(
                    timestamp=timestamp,
                    tool_call_id=get_str(block, "tool_use_id"),
                    output=format_tool_output(_tool_result_value(block.get("content"))),
                    is_error=block.get("is_error") is True,
                )
            )
    return parsed


def _tool_result_value(content: Any) -> Any:
    if isinstance(content, list):
        texts = [get_str(item, "text") for item in content]
        joined = "\n".join(text for text in texts if text)
        return joined or content
    return content


def _parse_ui_message(ui_message: Any, timestamp: datetime | None) -> ParsedMessage | None:
    message_type = get_str(ui_message, "type")
    text = get_str(ui_message, "text") or ""

    if message_type == "say":
        say = get_str(ui_message, "say")
        if say in ("text", "user_feedback"):
            return UserMessage(timestamp=timestamp, content=[TextContent(text)])
        if say == "reasoning":
            return AssistantThinking(timestamp=timestamp, thinking=text)
        if say == "completion_result":
            return AssistantText(timestamp=timestamp, content=[text_or_markdown(text)]) if text.strip() else None
        if say == "error":
            return InfoMessage(
                timestamp=timestamp,
                title="error",
                content=TextContent(text or "Unknown error"),
                style=InfoStyle.ERROR,
            )
        if say not in _QUIET_SAYS:
            logger.debug("Ignoring Kilo say message %s", say)
        return None

    if message_type == "ask":
        ask = get_str(ui_message, "ask")
        if ask == "tool":
            tool_data = loads_object(text)
            if tool_data is None:
                return InfoMessage(
                    timestamp=timestamp,
                    title="tool_error",
                    content=TextContent(f"Failed to parse tool: {text}"),
                    style=InfoStyle.ERROR,
                )
            tool_input = json_to_map(tool_data)
            tool_input.pop("tool", None)
            return ToolUse(timestamp=timestamp, tool_name=get_str(tool_data, "tool") or "unknown", input=tool_input)
        if ask == "followup":
            return InfoMessage(timestamp=timestamp, title="followup", subtitle="question", content=TextContent(text))
        if ask == "command":
            return InfoMessage(timestamp=timestamp, title="command", content=TextContent(text))
    return None


def _user_texts(api_message: Any) -> list[str]:
    content = api_message.get("content") if isinstance(api_message, dict) else None
    if isinstance(content, str):
        return [content]
    return [text for text in (get_str(item, "text") for item in get_list(api_message, "content")) if text]


def extract_model(api_history: list[Any]) -> str | None:
    """Model named in the first ``<environment_details>`` block of the user turns."""
    for api_message in api_history:
        if get_str(api_message, "role") != "user":
            continue
        for text in _user_texts(api_message):
            if "<environment_details>" in text:
                match = _MODEL_TAG.search(text)
                if match:
                    return match.group(1)
    return None


def extract_workspace(task_metadata: dict[str, Any]) -> str | None:
    cwd = get_str(task_metadata, "cwd")
    if cwd is not None:
        return cwd
    files = get_list(task_metadata, "files_in_context")
    path = get_str(files[0], "path") if files else None
    return str(PurePath(path).parent) if path else None


def extract_title(ui_messages: list[Any], api_history: list[Any]) -> str | None:
    for ui_message in ui_messages:
        if get_str(ui_message, "type") == "say" and get_str(ui_message, "say") == "text":
            text = (get_str(ui_message, "text") or "").strip()
            if text:
                return cap_title(text)
    for api_message in api_history:
        if get_str(api_message, "role") != "user":
            continue
        texts = _user_texts(api_message)
        if texts and texts[0].strip():
            return cap_title(texts[0])
    return None


def _session_id_for_task(task_path: Path) -> str:
    # task_path is <root>/global/tasks/<taskId>
    task_id = task_path.name
    root = task_path.parent.parent.parent
    for task in list_tasks(root):
        if task.task_id == task_id:
            return task.session_id
    return task_id


def _summarize(task: KiloTask) -> SessionSummary | None:
    detail = parse_session(task.task_path, session_id=task.session_id)
    if detail is None:
        return None
    try:
        modified = from_mtime(task.task_path.stat().st_mtime)
    except OSError:
        modified = None
    return SessionSummary(
        session_id=task.session_id,
        title=detail.title,
        provider=Provider.KILO,
        created_at=detail.metadata.created_at or modified,
        updated_at=detail.metadata.modified_at or modified,
        message_count=len(detail.messages),
        project_path=task.project_path,
        location=task.task_path,
    )
