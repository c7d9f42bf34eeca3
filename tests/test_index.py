# ABOUTME: Tests for the DuckDB search index.
# ABOUTME: Verifies indexing of parsed sessions, snippet search, filters and statistics.

from datetime import datetime, timezone

import pytest

from agent_sessions.index import SearchIndex, clamp_limit, find_snippets
from agent_sessions.models import (
    AssistantText,
    CodeContent,
    MarkdownContent,
    Provider,
    SessionDetail,
    SessionMetadata,
    TextContent,
    ToolResult,
    ToolUse,
    UserMessage,
)

T0 = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


def _detail(session_id: str, provider: Provider, *texts: str) -> SessionDetail:
    messages = []
    for index, text in enumerate(texts):
        if index % 2 == 0:
            messages.append(UserMessage(timestamp=T0, content=[TextContent(text)]))
        else:
            messages.append(AssistantText(timestamp=T0, content=[MarkdownContent(text)]))
    return SessionDetail(
        session_id=session_id,
        title=f"Session {session_id}",
        messages=messages,
        metadata=SessionMetadata(working_directory="/home/me/app", created_at=T0, modified_at=T0),
        provider=provider,
    )


@pytest.fixture
def search_index() -> SearchIndex:
    """Create an in-memory search index."""
    index = SearchIndex()
    yield index
    index.close()


@pytest.fixture
def indexed_search(search_index: SearchIndex) -> SearchIndex:
    """An index with one Claude and one Codex session."""
    search_index.index_session(
        _detail("c1", Provider.CLAUDE, "How do I parse JSON?", "Use json.loads to parse it.", "And YAML?")
    )
    search_index.index_session(_detail("x1", Provider.CODEX, "Write a JSON parser", "Done."))
    return search_index


class TestFindSnippets:
    """Tests for snippet extraction."""

    def test_case_insensitive_with_context(self) -> None:
        """Matches ignore case and carry ellipses when cut."""
        text = "a" * 200 + "needle" + "b" * 200

        snippets = find_snippets(text, "NEEDLE")

        assert len(snippets) == 1
        assert snippets[0].startswith("...")
        assert snippets[0].endswith("...")
        assert "needle" in snippets[0]

    def test_whole_text_without_ellipses(self) -> None:
        """Short text is returned whole."""
        assert find_snippets("find the needle here", "needle") == ["find the needle here"]

    def test_limit_and_overlap(self) -> None:
        """Nearby matches share a snippet and the limit caps the count."""
        assert len(find_snippets("x x x", "x")) == 1
        spaced = " ".join(["hit"] + ["." * 400, "hit"] * 10)
        assert len(find_snippets(spaced, "hit", limit=3)) == 3

    def test_empty_query(self) -> None:
        """An empty query finds nothing."""
        assert find_snippets("anything", "") == []

    def test_regex_characters_are_literal(self) -> None:
        """Queries are matched literally."""
        assert find_snippets("call foo(bar) now", "foo(bar)") == ["call foo(bar) now"]


class TestSearchIndex:
    """Tests for the SearchIndex class."""

    def test_empty_on_creation(self, search_index: SearchIndex) -> None:
        """A fresh index is empty."""
        assert search_index.get_stats() == {"session_count": 0, "message_count": 0, "providers": {}}

    def test_search_ranks_by_matches(self, indexed_search: SearchIndex) -> None:
        """Sessions with more matching snippets rank first."""
        hits = indexed_search.search("parse")

        assert [hit.session_id for hit in hits] == ["c1", "x1"]
        assert hits[0].score == 2
        assert hits[0].provider == "claude"
        assert hits[0].title == "Session c1"

    def test_provider_filter(self, indexed_search: SearchIndex) -> None:
        """Search can be limited to one provider."""
        hits = indexed_search.search("json", provider=Provider.CODEX)

        assert [hit.session_id for hit in hits] == ["x1"]

    def test_role_filter(self, indexed_search: SearchIndex) -> None:
        """Search can be limited to one role."""
        hits = indexed_search.search("parse", role="assistant")

        assert [hit.session_id for hit in hits] == ["c1"]
        assert hits[0].score == 1

    def test_like_wildcards_are_literal(self, indexed_search: SearchIndex) -> None:
        """Percent signs and underscores do not act as wildcards."""
        assert indexed_search.search("%") == []
        assert indexed_search.search("_") == []

    def test_blank_query(self, indexed_search: SearchIndex) -> None:
        """Blank queries return nothing."""
        assert indexed_search.search("   ") == []

    def test_limit(self, indexed_search: SearchIndex) -> None:
        """The limit caps the number of sessions."""
        assert len(indexed_search.search("json", limit=1)) == 1
        assert clamp_limit(0) == 1
        assert clamp_limit(500) == 50

    def test_snippet_cap_per_session(self, search_index: SearchIndex) -> None:
        """Each session reports at most five snippets."""
        search_index.index_session(_detail("many", Provider.GEMINI, *["repeat me"] * 8))

        hits = search_index.search("repeat")

        assert hits[0].score == 5
        assert len(hits[0].snippets) == 5

    def test_tool_results_are_searchable(self, search_index: SearchIndex) -> None:
        """Nested tool output is indexed with its tool use."""
        use = ToolUse(
            timestamp=T0,
            tool_name="Bash",
            input={"command": "cat log"},
            results=[ToolResult(timestamp=T0, output=[CodeContent("segfault at 0x0")])],
        )
        search_index.index_session(SessionDetail(session_id="t", title="Tools", messages=[use], provider=Provider.AMP))

        hits = search_index.search("segfault")

        assert [hit.session_id for hit in hits] == ["t"]

    def test_reindex_replaces_session(self, indexed_search: SearchIndex) -> None:
        """Indexing a session again replaces its messages."""
        indexed_search.index_session(_detail("c1", Provider.CLAUDE, "Nothing relevant"))

        assert [hit.session_id for hit in indexed_search.search("parse")] == ["x1"]
        assert indexed_search.get_stats()["providers"]["claude"] == {"sessions": 1, "messages": 1}

    def test_stats(self, indexed_search: SearchIndex) -> None:
        """Stats count sessions and messages per provider."""
        stats = indexed_search.get_stats()

        assert stats["session_count"] == 2
        assert stats["message_count"] == 5
        assert stats["providers"] == {
            "claude": {"sessions": 1, "messages": 3},
            "codex": {"sessions": 1, "messages": 2},
        }
