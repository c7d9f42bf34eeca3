# ABOUTME: Tests for tool output helpers and Markdown detection.
# ABOUTME: Verifies truncation, primary field extraction and text classification.

from agent_sessions.markdown import is_markdown, text_or_markdown
from agent_sessions.models import CodeContent, JsonContent, MarkdownContent, TextContent
from agent_sessions.tool_output import (
    ELLIPSIS,
    OUTPUT_LIMIT,
    classify_tool_text,
    extract_primary_field,
    format_duration,
    format_tool_output,
    json_to_map,
    truncate,
)


class TestTruncate:
    """Tests for the truncate function."""

    def test_short_text_unchanged(self) -> None:
        """Text within the limit is returned as is."""
        assert truncate("short") == "short"

    def test_long_text_keeps_head_and_tail(self) -> None:
        """Long text is cut to the limit with an ellipsis in the middle."""
        text = "a" * 600 + "b" * 600

        result = truncate(text)

        assert len(result) == OUTPUT_LIMIT
        assert ELLIPSIS in result
        assert result.startswith("a")
        assert result.endswith("b")

    def test_exact_limit_unchanged(self) -> None:
        """Text of exactly the limit length is not truncated."""
        text = "x" * OUTPUT_LIMIT

        assert truncate(text) == text


class TestExtractPrimaryField:
    """Tests for picking the meaningful field of tool output."""

    def test_none_is_empty_object(self) -> None:
        """Missing output renders as an empty object."""
        assert extract_primary_field(None) == "{}"

    def test_prefers_content(self) -> None:
        """The content field wins over result and output."""
        assert extract_primary_field({"content": "c", "result": "r", "output": "o"}) == "c"

    def test_falls_back_to_output(self) -> None:
        """Output is used when content and result are absent."""
        assert extract_primary_field({"output": "listing", "metadata": {}}) == "listing"

    def test_error_message(self) -> None:
        """Error text is used when no primary field exists."""
        assert extract_primary_field({"error": "boom"}) == "boom"
        assert extract_primary_field({"message": "failed"}) == "failed"

    def test_object_without_known_fields(self) -> None:
        """Unknown objects are serialized as JSON."""
        assert extract_primary_field({"exit": 1}) == '{"exit":1}'

    def test_format_tool_output_wraps_code(self) -> None:
        """Formatted output is a single code block."""
        assert format_tool_output("done") == [CodeContent("done")]


class TestJsonToMap:
    """Tests for flattening tool input."""

    def test_stringifies_values(self) -> None:
        """Non-string values are rendered as JSON text."""
        result = json_to_map({"path": "a.py", "limit": 10, "flags": ["-r"]})

        assert result == {"path": "a.py", "limit": "10", "flags": '["-r"]'}

    def test_non_object_is_empty(self) -> None:
        """Anything but an object gives no parameters."""
        assert json_to_map(["a"]) == {}
        assert json_to_map(None) == {}


class TestClassifyToolText:
    """Tests for wrapping raw tool output."""

    def test_diff(self) -> None:
        """Unified diffs get the diff language."""
        result = classify_tool_text("--- a/x\n+++ b/x\n@@ -1 +1 @@")

        assert result == [CodeContent("--- a/x\n+++ b/x\n@@ -1 +1 @@", "diff")]

    def test_json_object(self) -> None:
        """Valid JSON objects become JSON content."""
        assert classify_tool_text('{"ok": true}') == [JsonContent('{"ok": true}')]

    def test_invalid_json_is_code(self) -> None:
        """Broken JSON falls back to a code block."""
        assert classify_tool_text("{oops") == [CodeContent("{oops")]


class TestFormatDuration:
    """Tests for duration formatting."""

    def test_seconds(self) -> None:
        """Short durations only show seconds."""
        assert format_duration(5000) == "5s"

    def test_minutes_and_hours(self) -> None:
        """Longer durations show every larger unit."""
        assert format_duration(65000) == "1m 5s"
        assert format_duration(3_600_000) == "1h 0m 0s"


class TestMarkdownDetection:
    """Tests for Markdown heuristics."""

    def test_detects_markdown(self) -> None:
        """Common Markdown constructs are recognized."""
        assert is_markdown("This is **bold**")
        assert is_markdown("# Heading")
        assert is_markdown("- item one\n- item two")
        assert is_markdown("Run `make test`")

    def test_plain_text(self) -> None:
        """Plain prose and blank text are not Markdown."""
        assert not is_markdown("Just a plain sentence.")
        assert not is_markdown("")
        assert not is_markdown("   ")

    def test_text_or_markdown(self) -> None:
        """Text is wrapped according to the heuristic."""
        assert text_or_markdown("plain") == TextContent("plain")
        assert text_or_markdown("**bold**") == MarkdownContent("**bold**")
