# ABOUTME: Facade over the provider backends used by the CLI and the HTTP API.
# ABOUTME: Lists sessions across providers, loads one session and searches parsed sessions.

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Iterable

from .config import LIST_WORKERS, enabled_providers
from .index import SearchHit, SearchIndex
from .models import Provider, SessionDetail, SessionSummary
from .providers import get_backend
from .timestamps import sort_value

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        providers: Iterable[Provider] | None = None,
        roots: dict[Provider, Path] | None = None,
    ) -> None:
        selected = list(providers) if providers is not None else enabled_providers()
        # Enum order, whatever order the caller used
        self.providers = [provider for provider in Provider if provider in selected]
        self.roots = dict(roots or {})

    def list_sessions(self, project_path: str | None = None) -> list[SessionSummary]:
        if not self.providers:
            return []
        with ThreadPoolExecutor(max_workers=LIST_WORKERS) as pool:
            results = list(pool.map(lambda provider: self._list_provider(provider, project_path), self.providers))

        summaries = [summary for batch in results for summary in batch]
        summaries.sort(key=lambda summary: sort_value(summary.sort_key), reverse=True)
        return summaries

    def _list_provider(self, provider: Provider, project_path: str | None) -> list[SessionSummary]:
        try:
            summaries = get_backend(provider).list_sessions(project_path, root_dir=self.roots.get(provider))
        except Exception:
            logger.warning("Listing %s sessions failed", provider.value, exc_info=True)
            return []
        logger.debug("Found %d %s sessions", len(summaries), provider.value)
        return summaries

    def get_session_detail(self, session_id: str, provider: Provider | str) -> SessionDetail | None:
        backend = get_backend(provider)
        provider = backend.provider
        location = backend.find_session(session_id, root_dir=self.roots.get(provider))
        if location is None:
            return None
        detail = backend.parse_session(location)
        if detail is None:
            return None
        return replace(detail, provider=provider)

    def find_session_detail(self, session_id: str) -> SessionDetail | None:
        for provider in self.providers:
            detail = self.get_session_detail(session_id, provider)
            if detail is not None:
                return detail
        return None

    def load_summary(self, summary: SessionSummary) -> SessionDetail | None:
        """Parse a listed session from its location, falling back to a lookup by id."""
        backend = get_backend(summary.provider)
        detail = backend.parse_session(summary.location) if summary.location is not None else None
        if detail is None:
            return self.get_session_detail(summary.session_id, summary.provider)
        return replace(detail, provider=summary.provider)

    def build_index(self, project_path: str | None = None) -> SearchIndex:
        index = SearchIndex()
        for summary in self.list_sessions(project_path):
            detail = self.load_summary(summary)
            if detail is None:
                logger.warning("Skipping %s session %s: not found", summary.provider.value, summary.session_id)
                continue
            index.index_session(detail, project_path=summary.project_path)
        return index

    def search(
        self,
        query: str,
        project_path: str | None = None,
        provider: Provider | str | None = None,
        role: str | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        """Search every listed session, optionally narrowed to one provider or message role."""
        index = self.build_index(project_path)
        try:
            return index.search(query, provider=provider, role=role, limit=limit)
        finally:
            index.close()
