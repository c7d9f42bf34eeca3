# ABOUTME: Heuristic Markdown detection for free-form message text.
# ABOUTME: Decides whether text is wrapped as Markdown or plain text content.

from __future__ import annotations

import re

from .models import MarkdownContent, TextContent

MARKDOWN_PATTERNS = [
    re.compile(r"\*\*[^*]+\*\*"),  # **bold**
    re.compile(r"__[^_]+__"),  # __bold__
    re.compile(r"\*[^*]+\*"),  # *italic*
    re.compile(r"_[^_]+_"),  # _italic_
    re.compile(r"`[^`]+`"),  # `code`
    re.compile(r"\[.+]\(.+\)"),  # [link](url)
    re.compile(r"^#{1,6}\s+.+", re.MULTILINE),  # heading
    re.compile(r"^[-*+]\s+.+", re.MULTILINE),  # list item
    re.compile(r"^\d+\.\s+.+", re.MULTILINE),  # numbered list
    re.compile(r"```[\s\S]*?```"),  # fenced block
]


def is_markdown(text: str) -> bool:
    if not text or not text.strip():
        return False
    return any(pattern.search(text) for pattern in MARKDOWN_PATTERNS)


def text_or_markdown(text: str) -> TextContent | MarkdownContent:
    if is_markdown(text):
        return MarkdownContent(text)
    return TextContent(text)
