from __future__ import annotations

import webbrowser

import uvicorn
from fastapi import FastAPI, HTTPException, Query

from ..formatters import ROLES, session_to_wire, summary_to_dict
from ..models import Provider
from ..service import SessionService
from .models import (
    ProviderInfo,
    SearchHitResponse,
    SearchResponse,
    SessionDetailResponse,
    SessionSummaryResponse,
)


def create_app(service: SessionService) -> FastAPI:
    app = FastAPI(title="Agent Sessions")
    app.state.service = service

    @app.get("/api/providers", response_model=list[ProviderInfo])
    def list_providers() -> list[ProviderInfo]:
        return [ProviderInfo(id=provider.value, name=provider.display_name) for provider in app.state.service.providers]

    @app.get("/api/sessions", response_model=list[SessionSummaryResponse])
    def list_sessions(project: str | None = Query(None)) -> list[dict[str, object]]:
        return [summary_to_dict(summary) for summary in app.state.service.list_sessions(project)]

    @app.get("/api/sessions/{provider}/{session_id}", response_model=SessionDetailResponse)
    def get_provider_session(provider: Provider, session_id: str) -> dict[str, object]:
        detail = app.state.service.get_session_detail(session_id, provider)
        if detail is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session_to_wire(detail)

    @app.get("/api/sessions/{session_id}", response_model=SessionDetailResponse)
    def get_session(session_id: str) -> dict[str, object]:
        detail = app.state.service.find_session_detail(session_id)
        if detail is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session_to_wire(detail)

    @app.get("/api/search", response_model=SearchResponse)
    def search(
        q: str = Query(..., min_length=1),
        project: str | None = Query(None),
        provider: Provider | None = Query(None),
        role: str | None = Query(None),
        limit: int = Query(20, ge=1, le=50),
    ) -> SearchResponse:
        if role is not None and role not in ROLES:
            raise HTTPException(status_code=422, detail=f"Unknown role: {role}")
        hits = app.state.service.search(q, project_path=project, provider=provider, role=role, limit=limit)
        return SearchResponse(
            results=[SearchHitResponse(**hit.to_dict()) for hit in hits],
            total=len(hits),
            query=q,
        )

    return app


def run_server(service: SessionService, host: str, port: int, open_browser: bool) -> None:
    app = create_app(service)
    if open_browser:
        webbrowser.open(f"http://{host}:{port}/docs")
    uvicorn.run(app, host=host, port=port, log_level="warning")
