# ABOUTME: Pydantic models for API responses.
# ABOUTME: Mirrors the wire contract for session summaries, details and search hits.

from pydantic import BaseModel, Field


class ProviderInfo(BaseModel):
    """An enabled provider."""

    id: str
    name: str


class SessionSummaryResponse(BaseModel):
    """Listing entry for one session."""

    session_id: str
    title: str
    provider: str
    provider_name: str
    created_at: str | None
    updated_at: str | None
    message_count: int | None
    project_path: str | None
    location: str | None


class ModelUsage(BaseModel):
    model: str
    count: int


class SessionMetadataResponse(BaseModel):
    """Session-level facts gathered while parsing."""

    tool_version: str | None
    git_branch: str | None
    working_directory: str | None
    created_at: str | None
    modified_at: str | None
    message_count: int | None
    model_usage: list[ModelUsage] = Field(default_factory=list)


class WireMessage(BaseModel):
    """One normalized message."""

    sequence: int
    role: str
    title: str | None
    subtitle: str | None
    timestamp: str | None
    content: str


class SessionDetailResponse(BaseModel):
    """A fully parsed session in wire format."""

    session_id: str
    title: str
    provider: str | None
    metadata: SessionMetadataResponse | None
    messages: list[WireMessage] = Field(default_factory=list)


class SearchHitResponse(BaseModel):
    """A session matching a search query."""

    session_id: str
    title: str
    provider: str
    score: int
    snippets: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Search response with hits and the query that produced them."""

    results: list[SearchHitResponse]
    total: int
    query: str
