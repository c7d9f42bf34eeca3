from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable

import duckdb

from .formatters import message_to_wire
from .models import Provider, SessionDetail
from .timestamps import format_timestamp

MAX_SNIPPETS = 5
SNIPPET_CONTEXT = 150
MAX_LIMIT = 50


@dataclass
class SearchHit:
    """One session matching a query, with the text around each match."""

    session_id: str
    title: str
    provider: str
    score: int = 0
    snippets: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def find_snippets(text: str, query: str, limit: int = MAX_SNIPPETS, context: int = SNIPPET_CONTEXT) -> list[str]:
    """Case-insensitive matches of ``query`` in ``text`` with surrounding context."""
    if not query or limit <= 0:
        return []
    snippets: list[str] = []
    covered = -1
    for match in re.finditer(re.escape(query), text, re.IGNORECASE):
        if match.start() < covered:
            continue
        start = max(0, match.start() - context)
        end = min(len(text), match.end() + context)
        prefix = "..." if start > 0 else ""
        suffix = "..." if end < len(text) else ""
        snippets.append(f"{prefix}{text[start:end]}{suffix}")
        covered = end
        if len(snippets) >= limit:
            break
    return snippets


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


class SearchIndex:
    def __init__(self) -> None:
        self.conn = duckdb.connect(":memory:")
        self._init_schema()

    def _init_schema(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        self.conn.execute(schema_path.read_text())

    def close(self) -> None:
        self.conn.close()

    def index_session(self, detail: SessionDetail, project_path: str | None = None) -> None:
        provider = detail.provider.value if detail.provider else "unknown"
        session_key = f"{provider}:{detail.session_id}"
        self._delete_session(session_key)

        position_row = self.conn.execute("SELECT COALESCE(MAX(position), 0) + 1 FROM sessions").fetchone()
        metadata = detail.metadata
        self.conn.execute(
            """
            INSERT INTO sessions (
                session_key, session_id, provider, title, project_path,
                created_at, updated_at, message_count, position
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                session_key,
                detail.session_id,
                provider,
                detail.title,
                project_path or (metadata.working_directory if metadata else None),
                format_timestamp(metadata.created_at) if metadata else None,
                format_timestamp(metadata.modified_at) if metadata else None,
                len(detail.messages),
                position_row[0] if position_row else 1,
            ],
        )

        rows = [message_to_wire(message, index) for index, message in enumerate(detail.messages, start=1)]
        if rows:
            self.conn.executemany(
                """
                INSERT INTO messages (session_key, sequence_num, role, title, timestamp, content)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (session_key, row["sequence"], row["role"], row["title"], row["timestamp"], row["content"])
                    for row in rows
                ],
            )

    def _delete_session(self, session_key: str) -> None:
        self.conn.execute("DELETE FROM messages WHERE session_key = ?", [session_key])
        self.conn.execute("DELETE FROM sessions WHERE session_key = ?", [session_key])

    def search(
        self,
        query: str,
        provider: Provider | str | None = None,
        role: str | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        if not query.strip():
            return []
        sql = (
            "SELECT s.session_key, s.session_id, s.provider, s.title, m.content "
            "FROM messages m JOIN sessions s ON m.session_key = s.session_key "
            "WHERE m.content ILIKE ? ESCAPE '\\'"
        )
        params: list[Any] = [f"%{_escape_like(query)}%"]
        if provider:
            sql += " AND s.provider = ?"
            params.append(Provider(provider).value)
        if role:
            sql += " AND m.role = ?"
            params.append(role)
        sql += " ORDER BY s.position ASC, m.sequence_num ASC"

        hits: dict[str, SearchHit] = {}
        for row in self._fetchall(sql, params):
            hit = hits.get(row["session_key"])
            if hit is None:
                hit = hits[row["session_key"]] = SearchHit(
                    session_id=row["session_id"],
                    title=row["title"] or "",
                    provider=row["provider"],
                )
            remaining = MAX_SNIPPETS - len(hit.snippets)
            if remaining > 0:
                hit.snippets.extend(find_snippets(row["content"] or "", query, limit=remaining))
                hit.score = len(hit.snippets)

        ranked = sorted((hit for hit in hits.values() if hit.score > 0), key=lambda hit: hit.score, reverse=True)
        return ranked[: clamp_limit(limit)]

    def get_stats(self) -> dict[str, Any]:
        session_row = self.conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
        message_row = self.conn.execute("SELECT COUNT(*) FROM messages").fetchone()
        per_provider = self._fetchall(
            """
            SELECT s.provider, COUNT(DISTINCT s.session_key) AS sessions, COUNT(m.session_key) AS messages
            FROM sessions s LEFT JOIN messages m ON m.session_key = s.session_key
            GROUP BY s.provider ORDER BY s.provider
            """
        )
        return {
            "session_count": int(session_row[0]) if session_row else 0,
            "message_count": int(message_row[0]) if message_row else 0,
            "providers": {
                row["provider"]: {"sessions": int(row["sessions"]), "messages": int(row["messages"])}
                for row in per_provider
            },
        }

    def _fetchall(self, sql: str, params: Iterable[Any] | None = None) -> list[dict[str, Any]]:
        cursor = self.conn.execute(sql, list(params or []))
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
