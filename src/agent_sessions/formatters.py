from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from .models import (
    AssistantText,
    AssistantThinking,
    CodeContent,
    InfoMessage,
    InfoStyle,
    JsonContent,
    MarkdownContent,
    MessageContent,
    ParsedMessage,
    SessionDetail,
    SessionMetadata,
    SessionSummary,
    TextContent,
    ToolResult,
    ToolUse,
    UserMessage,
)
from .timestamps import format_timestamp

if TYPE_CHECKING:
    from .index import SearchHit

ROLE_STYLES = {
    "user": "cyan",
    "assistant": "green",
    "thinking": "bright_black",
    "tool_use": "magenta",
    "tool_result": "magenta",
    "info": "yellow",
}

ROLES = tuple(ROLE_STYLES)


def message_role(message: ParsedMessage) -> str:
    if isinstance(message, UserMessage):
        return "user"
    if isinstance(message, AssistantText):
        return "assistant"
    if isinstance(message, AssistantThinking):
        return "thinking"
    if isinstance(message, ToolUse):
        return "tool_use"
    if isinstance(message, ToolResult):
        return "tool_result"
    return "info"


def message_title(message: ParsedMessage) -> str | None:
    if isinstance(message, ToolUse):
        return message.tool_name
    if isinstance(message, InfoMessage):
        return message.title
    return None


def message_subtitle(message: ParsedMessage) -> str | None:
    if isinstance(message, ToolUse):
        return message.tool_call_id
    if isinstance(message, ToolResult):
        return message.tool_name
    if isinstance(message, InfoMessage):
        return message.subtitle
    return None


def content_text(block: MessageContent) -> str:
    if isinstance(block, TextContent):
        return block.text
    if isinstance(block, MarkdownContent):
        return block.markdown
    if isinstance(block, CodeContent):
        return f"```{block.language or ''}\n{block.code}\n```"
    if isinstance(block, JsonContent):
        return f"```json\n{block.json}\n```"
    return ""


def format_message_content(message: ParsedMessage) -> str:
    """Plain-text rendering of one message, as served to clients and indexed for search."""
    if isinstance(message, (UserMessage, AssistantText)):
        return "\n\n".join(content_text(block) for block in message.content)
    if isinstance(message, AssistantThinking):
        return message.thinking
    if isinstance(message, ToolUse):
        lines = [f"tool: {message.tool_name}"]
        lines.extend(f"  {key}: {value}" for key, value in message.input.items())
        for result in message.results:
            lines.append("error:" if result.is_error else "result:")
            lines.append(format_message_content(result))
        return "\n".join(lines)
    if isinstance(message, ToolResult):
        return "\n\n".join(content_text(block) for block in message.output)
    header = message.title if message.subtitle is None else f"{message.title} - {message.subtitle}"
    if message.content is None:
        return header
    return f"{header}\n{content_text(message.content)}"


def message_to_wire(message: ParsedMessage, sequence: int) -> dict[str, Any]:
    return {
        "sequence": sequence,
        "role": message_role(message),
        "title": message_title(message),
        "subtitle": message_subtitle(message),
        "timestamp": format_timestamp(message.timestamp),
        "content": format_message_content(message),
    }


def metadata_to_dict(metadata: SessionMetadata | None) -> dict[str, Any] | None:
    if metadata is None:
        return None
    return {
        "tool_version": metadata.tool_version,
        "git_branch": metadata.git_branch,
        "working_directory": metadata.working_directory,
        "created_at": format_timestamp(metadata.created_at),
        "modified_at": format_timestamp(metadata.modified_at),
        "message_count": metadata.message_count,
        "model_usage": [{"model": model, "count": count} for model, count in metadata.model_usage],
    }


def session_to_wire(detail: SessionDetail) -> dict[str, Any]:
    return {
        "session_id": detail.session_id,
        "title": detail.title,
        "provider": detail.provider.display_name if detail.provider else None,
        "metadata": metadata_to_dict(detail.metadata),
        "messages": [message_to_wire(message, index) for index, message in enumerate(detail.messages, start=1)],
    }


def summary_to_dict(summary: SessionSummary) -> dict[str, Any]:
    return {
        "session_id": summary.session_id,
        "title": summary.title,
        "provider": summary.provider.value,
        "provider_name": summary.provider.display_name,
        "created_at": format_timestamp(summary.created_at),
        "updated_at": format_timestamp(summary.updated_at),
        "message_count": summary.message_count,
        "project_path": summary.project_path,
        "location": str(summary.location) if summary.location else None,
    }


def format_results(results: list[dict[str, Any]] | dict[str, Any], output_format: str) -> str | None:
    if output_format == "json":
        return json.dumps(results, ensure_ascii=False, indent=2, default=str)
    return None


def render_sessions_table(summaries: list[SessionSummary], console: Console | None = None) -> None:
    console = console or Console()
    table = Table(title="Sessions")
    table.add_column("Provider", style="magenta")
    table.add_column("Session", style="cyan")
    table.add_column("Title", style="white")
    table.add_column("Messages", style="green", justify="right")
    table.add_column("Updated", style="yellow")

    for summary in summaries:
        updated = summary.sort_key
        table.add_row(
            summary.provider.display_name,
            summary.session_id[:12],
            escape(summary.title[:80]),
            "" if summary.message_count is None else str(summary.message_count),
            updated.strftime("%Y-%m-%d %H:%M") if updated else "-",
        )
    console.print(table)


def render_session(detail: SessionDetail, console: Console | None = None) -> None:
    console = console or Console()
    provider = detail.provider.display_name if detail.provider else "unknown"
    console.print(f"[bold]{escape(detail.title)}[/bold]  [dim]{provider} | {escape(detail.session_id)}[/dim]")
    for index, message in enumerate(detail.messages, start=1):
        role = message_role(message)
        parts = (f"#{index}", role, message_title(message), message_subtitle(message))
        if isinstance(message, ToolUse) and not message.has_results:
            parts += ("no result",)
        header = " | ".join(part for part in parts if part)
        border = "red" if isinstance(message, InfoMessage) and message.style is InfoStyle.ERROR else ROLE_STYLES[role]
        console.print(Panel(_renderable(message), title=escape(header), border_style=border))


def render_search_hits(hits: list[SearchHit], console: Console | None = None) -> None:
    console = console or Console()
    if not hits:
        console.print("No matches.")
        return
    for hit in hits:
        header = f"{hit.provider} | {hit.session_id[:12]} | score {hit.score}"
        body = Text("\n\n".join(hit.snippets))
        console.print(Panel(body, title=escape(header), subtitle=escape(hit.title[:80]), border_style="cyan"))


def _renderable(message: ParsedMessage) -> Any:
    if isinstance(message, AssistantText) and len(message.content) == 1:
        block = message.content[0]
        if isinstance(block, MarkdownContent):
            return Markdown(block.markdown)
    if isinstance(message, ToolResult) and len(message.output) == 1:
        block = message.output[0]
        if isinstance(block, CodeContent):
            return Syntax(block.code, block.language or "text", word_wrap=True)
    return Text(format_message_content(message))
