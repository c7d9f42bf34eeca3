# ABOUTME: Tests for the Codex provider.
# ABOUTME: Verifies rollout parsing, session id extraction and the dated directory scan.

import json
from datetime import date
from pathlib import Path

from conftest import write_jsonl

from agent_sessions.models import AssistantText, AssistantThinking, Provider, TextContent, ToolUse, UserMessage
from agent_sessions.providers import codex

SESSION_ID = "0199a1b2-c3d4-4e5f-8a9b-0c1d2e3f4a5b"
ROLLOUT_NAME = f"rollout-2025-01-01T10-00-00-{SESSION_ID}.jsonl"


def _rollout_records(cwd: str = "/home/me/app") -> list[dict]:
    return [
        {
            "timestamp": "2025-01-01T10:00:00Z",
            "type": "session_meta",
            "payload": {"id": SESSION_ID, "cwd": cwd, "cli_version": "0.40.0", "git": {"branch": "main"}},
        },
        {"timestamp": "2025-01-01T10:00:00Z", "type": "turn_context", "payload": {"model": "gpt-5"}},
        {
            "timestamp": "2025-01-01T10:00:01Z",
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": "<environment_context>cwd</environment_context>"}],
            },
        },
        {
            "timestamp": "2025-01-01T10:00:01Z",
            "type": "event_msg",
            "payload": {"type": "user_message", "message": "Fix the failing tests"},
        },
        {
            "timestamp": "2025-01-01T10:00:01Z",
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": "Fix the failing tests"}],
            },
        },
        {
            "timestamp": "2025-01-01T10:00:02Z",
            "type": "response_item",
            "payload": {"type": "reasoning", "summary": [{"type": "summary_text", "text": "Run the suite first"}]},
        },
        {
            "timestamp": "2025-01-01T10:00:03Z",
            "type": "response_item",
            "payload": {
                "type": "function_call",
                "name": "shell",
                "call_id": "c1",
                "arguments": json.dumps({"command": ["pytest", "-q"]}),
            },
        },
        {
            "timestamp": "2025-01-01T10:00:04Z",
            "type": "response_item",
            "payload": {"type": "function_call_output", "call_id": "c1", "output": "1 failed"},
        },
        {
            "timestamp": "2025-01-01T10:00:05Z",
            "type": "response_item",
            "payload": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": "Fixed the assertion."}],
            },
        },
    ]


def _rollout_text(records: list) -> str:
    return "\n".join(json.dumps(record) for record in records)


class TestExtractSessionId:
    """Tests for session id extraction from file names."""

    def test_rollout_name(self) -> None:
        """The trailing UUID of a rollout file is its session id."""
        assert codex.extract_session_id(Path(ROLLOUT_NAME)) == SESSION_ID

    def test_other_names(self) -> None:
        """Files that are not rollouts have no session id."""
        assert codex.extract_session_id(Path("notes.jsonl")) is None
        assert codex.extract_session_id(Path("rollout-2025-01-01.jsonl")) is None


class TestParseContent:
    """Tests for parsing Codex rollouts."""

    def test_parse_is_deterministic(self) -> None:
        """Parsing the same rollout twice gives equal sessions."""
        text = _rollout_text(_rollout_records())

        assert codex.parse_content(text, session_id="s") == codex.parse_content(text, session_id="s")

    def test_message_sequence(self) -> None:
        """Response items map to the canonical message kinds."""
        detail = codex.parse_content(_rollout_text(_rollout_records()), session_id="fallback")

        kinds = [type(message) for message in detail.messages]
        assert kinds == [UserMessage, AssistantThinking, ToolUse, AssistantText]
        assert detail.messages[0].content == [TextContent("Fix the failing tests")]
        assert detail.messages[1].thinking == "Run the suite first"

    def test_function_call_correlated(self) -> None:
        """Function call output is nested under its call."""
        detail = codex.parse_content(_rollout_text(_rollout_records()), session_id="fallback")

        use = detail.messages[2]
        assert use.tool_name == "shell"
        assert use.input == {"command": '["pytest","-q"]'}
        assert use.results[0].output[0].code == "1 failed"

    def test_metadata_and_title(self) -> None:
        """Session meta and the first user message fill metadata and title."""
        detail = codex.parse_content(_rollout_text(_rollout_records()), session_id="fallback")

        assert detail.session_id == SESSION_ID
        assert detail.title == "Fix the failing tests"
        assert detail.provider is Provider.CODEX
        assert detail.metadata.working_directory == "/home/me/app"
        assert detail.metadata.tool_version == "0.40.0"
        assert detail.metadata.git_branch == "main"
        assert detail.metadata.model_usage == [("gpt-5", 1)]

    def test_invalid_arguments_kept_raw(self) -> None:
        """Arguments that are not a JSON object are kept as one parameter."""
        record = {
            "timestamp": "2025-01-01T10:00:00Z",
            "type": "response_item",
            "payload": {"type": "function_call", "name": "shell", "call_id": "c9", "arguments": "not json"},
        }

        detail = codex.parse_content(json.dumps(record), session_id="s")

        assert detail.messages[0].input == {"arguments": "not json"}

    def test_malformed_line(self) -> None:
        """Broken lines become error messages between valid ones."""
        records = _rollout_records()
        text = "\n".join([json.dumps(records[4]), "{broken", json.dumps(records[8])])

        detail = codex.parse_content(text, session_id="s")

        assert len(detail.messages) == 3
        assert detail.messages[1].title == "error"


class TestDiscovery:
    """Tests for the dated directory scan."""

    def test_recent_files_respect_lookback(self, tmp_path: Path) -> None:
        """Only day directories inside the lookback window are scanned."""
        write_jsonl(tmp_path / "2025" / "01" / "31" / ROLLOUT_NAME, _rollout_records())
        old_id = "11111111-2222-3333-4444-555555555555"
        write_jsonl(tmp_path / "2024" / "11" / "01" / f"rollout-2024-11-01T10-00-00-{old_id}.jsonl", [])

        files = codex.recent_session_files(tmp_path, today=date(2025, 1, 31))

        assert [path.name for path in files] == [ROLLOUT_NAME]

    def test_list_and_find(self, tmp_path: Path) -> None:
        """Sessions from today are listed, filtered by project and found by id."""
        today = date.today()
        day_dir = tmp_path / f"{today.year:04d}" / f"{today.month:02d}" / f"{today.day:02d}"
        write_jsonl(day_dir / ROLLOUT_NAME, _rollout_records())

        summaries = codex.list_sessions(root_dir=tmp_path)

        assert len(summaries) == 1
        assert summaries[0].session_id == SESSION_ID
        assert summaries[0].title == "Fix the failing tests"
        assert summaries[0].project_path == "/home/me/app"
        assert codex.list_sessions("/home/me/app", root_dir=tmp_path) != []
        assert codex.list_sessions("/other", root_dir=tmp_path) == []
        assert codex.find_session(SESSION_ID, root_dir=tmp_path) == day_dir / ROLLOUT_NAME
        assert codex.find_session("missing", root_dir=tmp_path) is None
        assert codex.find_session("*", root_dir=tmp_path) is None
        assert codex.find_session(f"[0-9a-f]*{SESSION_ID[-4:]}", root_dir=tmp_path) is None
