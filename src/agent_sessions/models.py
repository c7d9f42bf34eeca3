# ABOUTME: Canonical message model shared by every provider parser.
# ABOUTME: Defines message content, parsed messages, session summaries and details.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Union


class Provider(str, Enum):
    """One of the supported AI coding CLIs."""

    CLAUDE = "claude"
    CODEX = "codex"
    OPENCODE = "opencode"
    AMP = "amp"
    JUNIE = "junie"
    KILO = "kilo"
    DROID = "droid"
    GEMINI = "gemini"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Provider.CLAUDE: "Claude Code",
    Provider.CODEX: "Codex",
    Provider.OPENCODE: "OpenCode",
    Provider.AMP: "Amp",
    Provider.JUNIE: "Junie",
    Provider.KILO: "Kilo Code",
    Provider.DROID: "Droid",
    Provider.GEMINI: "Gemini",
}


class InfoStyle(str, Enum):
    DEFAULT = "default"
    ERROR = "error"


@dataclass(frozen=True)
class TextContent:
    """Plain text, escaped by whoever renders it."""

    text: str


@dataclass(frozen=True)
class CodeContent:
    """Content shown as a code block."""

    code: str
    language: str | None = None


@dataclass(frozen=True)
class MarkdownContent:
    markdown: str


@dataclass(frozen=True)
class JsonContent:
    """Raw JSON text for payloads that could not be decoded into anything richer."""

    json: str


MessageContent = Union[TextContent, CodeContent, MarkdownContent, JsonContent]


@dataclass(frozen=True)
class UserMessage:
    timestamp: datetime | None
    content: list[MessageContent] = field(default_factory=list)


@dataclass(frozen=True)
class AssistantText:
    timestamp: datetime | None
    content: list[MessageContent] = field(default_factory=list)


@dataclass(frozen=True)
class AssistantThinking:
    timestamp: datetime | None
    thinking: str


@dataclass(frozen=True)
class ToolResult:
    """Output of a tool invocation; nested under its ToolUse once correlated."""

    timestamp: datetime | None
    output: list[MessageContent] = field(default_factory=list)
    tool_name: str | None = None
    tool_call_id: str | None = None
    is_error: bool = False


@dataclass(frozen=True)
class ToolUse:
    """A tool invocation with its input parameters and any correlated results."""

    timestamp: datetime | None
    tool_name: str
    input: dict[str, str] = field(default_factory=dict)
    tool_call_id: str | None = None
    results: list[ToolResult] = field(default_factory=list)

    @property
    def has_results(self) -> bool:
        return bool(self.results)


@dataclass(frozen=True)
class InfoMessage:
    """Status line, summary, error or any other non-conversational event."""

    timestamp: datetime | None
    title: str
    subtitle: str | None = None
    content: MessageContent | None = None
    style: InfoStyle = InfoStyle.DEFAULT


ParsedMessage = Union[UserMessage, AssistantText, AssistantThinking, ToolUse, ToolResult, InfoMessage]


@dataclass(frozen=True)
class SessionMetadata:
    """Session-level facts gathered while parsing."""

    tool_version: str | None = None
    git_branch: str | None = None
    working_directory: str | None = None
    created_at: datetime | None = None
    modified_at: datetime | None = None
    message_count: int | None = None
    model_usage: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class SessionSummary:
    """Lightweight listing entry produced by a finder scan."""

    session_id: str
    title: str
    provider: Provider
    created_at: datetime | None = None
    updated_at: datetime | None = None
    message_count: int | None = None
    project_path: str | None = None
    location: Path | None = None

    @property
    def sort_key(self) -> datetime | None:
        return self.updated_at or self.created_at


@dataclass(frozen=True)
class SessionDetail:
    """A fully parsed session."""

    session_id: str
    title: str
    messages: list[ParsedMessage] = field(default_factory=list)
    metadata: SessionMetadata | None = None
    provider: Provider | None = None
