# ABOUTME: Tests for the Kilo Code provider.
# ABOUTME: Verifies workspace mapping, UI and API history parsing, and task lookup.

import json
from pathlib import Path

from conftest import write_json

from agent_sessions.models import (
    AssistantText,
    AssistantThinking,
    InfoMessage,
    InfoStyle,
    TextContent,
    ToolUse,
    UserMessage,
)
from agent_sessions.providers import kilo

SESSION_ID = "session-abc12345"
TASK_ID = "task-1"

UI_MESSAGES = [
    {"ts": 1735725600000, "type": "say", "say": "text", "text": "Build the CLI"},
    {"ts": 1735725601000, "type": "say", "say": "api_req_started", "text": "{}"},
    {"ts": 1735725602000, "type": "say", "say": "reasoning", "text": "Need a parser"},
    {"ts": 1735725603000, "type": "ask", "ask": "tool", "text": json.dumps({"tool": "readFile", "path": "cli.py"})},
    {"ts": 1735725604000, "type": "say", "say": "completion_result", "text": "CLI is ready"},
    {"ts": 1735725605000, "type": "say", "say": "error", "text": ""},
    {"ts": 1735725606000, "type": "ask", "ask": "tool", "text": "not json"},
    {"ts": 1735725607000, "type": "ask", "ask": "followup", "text": "Which shell?"},
]

API_HISTORY = [
    {
        "role": "user",
        "content": [
            {"type": "text", "text": "Build the CLI"},
            {"type": "text", "text": "<environment_details><model>claude-sonnet-4</model></environment_details>"},
        ],
    },
    {
        "role": "assistant",
        "content": [{"type": "tool_use", "id": "tu1", "name": "read_file", "input": {"path": "cli.py"}}],
    },
    {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "tu1", "content": [{"type": "text", "text": "import click"}]}],
    },
]


def _write_task(root: Path, ui_messages: list = UI_MESSAGES, metadata: dict | None = None) -> Path:
    write_json(root / "workspaces" / "workspace-map.json", {"/home/me/app": "ws-1"})
    write_json(root / "workspaces" / "ws-1" / "session.json", {"taskSessionMap": {TASK_ID: SESSION_ID}})
    task_path = root / "global" / "tasks" / TASK_ID
    write_json(task_path / "ui_messages.json", ui_messages)
    write_json(task_path / "api_conversation_history.json", API_HISTORY)
    write_json(task_path / "task_metadata.json", metadata if metadata is not None else {"cwd": "/home/me/app"})
    return task_path


class TestParseContent:
    """Tests for parsing Kilo tasks."""

    def test_parse_is_deterministic(self) -> None:
        """Parsing the same task twice gives equal sessions."""
        first = kilo.parse_content(UI_MESSAGES, API_HISTORY, {}, session_id=SESSION_ID)

        assert first == kilo.parse_content(UI_MESSAGES, API_HISTORY, {}, session_id=SESSION_ID)

    def test_message_sequence(self) -> None:
        """API tool calls come first, then the UI conversation."""
        detail = kilo.parse_content(UI_MESSAGES, API_HISTORY, {}, session_id=SESSION_ID)

        kinds = [type(message) for message in detail.messages]
        assert kinds == [
            ToolUse,
            UserMessage,
            AssistantThinking,
            ToolUse,
            AssistantText,
            InfoMessage,
            InfoMessage,
            InfoMessage,
        ]

    def test_api_tool_result_correlated(self) -> None:
        """Tool results from the API history nest under their tool use."""
        detail = kilo.parse_content(UI_MESSAGES, API_HISTORY, {}, session_id=SESSION_ID)

        use = detail.messages[0]
        assert use.tool_name == "read_file"
        assert use.results[0].output[0].code == "import click"

    def test_ui_tool_and_errors(self) -> None:
        """UI tool asks drop the tool key and bad payloads become errors."""
        detail = kilo.parse_content(UI_MESSAGES, API_HISTORY, {}, session_id=SESSION_ID)

        assert detail.messages[3].tool_name == "readFile"
        assert detail.messages[3].input == {"path": "cli.py"}
        assert detail.messages[5].content == TextContent("Unknown error")
        assert detail.messages[5].style is InfoStyle.ERROR
        assert detail.messages[6].title == "tool_error"
        assert detail.messages[7].subtitle == "question"

    def test_metadata(self) -> None:
        """Title, model and times come from the task files."""
        detail = kilo.parse_content(UI_MESSAGES, API_HISTORY, {"cwd": "/home/me/app"}, session_id=SESSION_ID)

        assert detail.title == "Build the CLI"
        assert detail.metadata.model_usage == [("claude-sonnet-4", 1)]
        assert detail.metadata.working_directory == "/home/me/app"
        assert detail.metadata.created_at.isoformat() == "2025-01-01T10:00:00+00:00"
        assert detail.metadata.modified_at.isoformat() == "2025-01-01T10:00:07+00:00"

    def test_malformed_entries_are_visible(self) -> None:
        """Entries that are not message objects become error messages instead of vanishing."""
        ui_messages = [{"type": "say", "say": "text", "text": "hi", "ts": 1700000000000}, "garbage-entry", 42]
        api_history = ["not-a-message", {"content": []}]

        detail = kilo.parse_content(ui_messages, api_history, {}, session_id="s")

        assert len(detail.messages) == 5
        errors = [message for message in detail.messages if isinstance(message, InfoMessage)]
        assert [error.style for error in errors] == [InfoStyle.ERROR] * 4
        assert errors[2].content.json == '"garbage-entry"'
        assert errors[3].content.json == "42"
        assert detail.title == "hi"

    def test_fallback_title(self) -> None:
        """Tasks without any prompt are named after the session."""
        detail = kilo.parse_content([], [], {}, session_id=SESSION_ID)

        assert detail.title == "Kilo Session session-"

    def test_workspace_from_files_in_context(self) -> None:
        """Without a cwd the first file in context locates the workspace."""
        metadata = {"files_in_context": [{"path": "/home/me/app/src/cli.py"}]}

        assert kilo.extract_workspace(metadata) == "/home/me/app/src"
        assert kilo.extract_workspace({}) is None


class TestDiscovery:
    """Tests for listing and finding Kilo tasks."""

    def test_list_sessions(self, tmp_path: Path) -> None:
        """Tasks mapped to a workspace are listed under their session id."""
        _write_task(tmp_path)

        summaries = kilo.list_sessions(root_dir=tmp_path)

        assert [summary.session_id for summary in summaries] == [SESSION_ID]
        assert summaries[0].project_path == "/home/me/app"
        assert summaries[0].title == "Build the CLI"
        assert kilo.list_sessions("/other", root_dir=tmp_path) == []

    def test_find_by_session_or_task_id(self, tmp_path: Path) -> None:
        """Both the session id and the task id resolve to the task directory."""
        task_path = _write_task(tmp_path)

        assert kilo.find_session(SESSION_ID, root_dir=tmp_path) == task_path
        assert kilo.find_session(TASK_ID, root_dir=tmp_path) == task_path
        assert kilo.find_session("missing", root_dir=tmp_path) is None

    def test_parse_session_resolves_session_id(self, tmp_path: Path) -> None:
        """Parsing a task directory reports the mapped session id."""
        task_path = _write_task(tmp_path)

        detail = kilo.parse_session(task_path)

        assert detail.session_id == SESSION_ID

    def test_parse_session_requires_ui_messages(self, tmp_path: Path) -> None:
        """Tasks whose UI messages are not a list do not parse."""
        task_path = _write_task(tmp_path, ui_messages={"not": "a list"})

        assert kilo.parse_session(task_path) is None
