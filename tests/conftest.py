# ABOUTME: Pytest configuration and shared fixtures.
# ABOUTME: Builds provider storage trees under tmp_path and services reading from them.

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any

import pytest

from agent_sessions.config import ENV_PROVIDERS, env_var_for
from agent_sessions.models import Provider
from agent_sessions.service import SessionService

FIXTURES_DIR = Path(__file__).parent / "fixtures"

CLAUDE_PROJECT = "/home/me/app"
CLAUDE_SESSION_ID = "sess-1"


def write_jsonl(path: Path, records: list[Any]) -> Path:
    """Write records as JSON lines; strings are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [record if isinstance(record, str) else json.dumps(record) for record in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_json(path: Path, document: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real session directories under $HOME."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv(ENV_PROVIDERS, raising=False)
    for provider in Provider:
        monkeypatch.delenv(env_var_for(provider), raising=False)


@pytest.fixture
def claude_root(tmp_path: Path) -> Path:
    """A Claude projects directory holding the sample session."""
    root = tmp_path / "claude"
    project_dir = root / "-home-me-app"
    project_dir.mkdir(parents=True)
    shutil.copy(FIXTURES_DIR / "claude_session.jsonl", project_dir / f"{CLAUDE_SESSION_ID}.jsonl")
    return root


@pytest.fixture
def gemini_root(tmp_path: Path) -> Path:
    """A Gemini tmp directory with one chat for /home/me/app."""
    root = tmp_path / "gemini"
    project_dir = root / "abc123"
    project_dir.mkdir(parents=True)
    (project_dir / ".project_root").write_text(CLAUDE_PROJECT + "\n")
    write_json(
        project_dir / "chats" / "session-2025-01-02T10-00-g1.json",
        {
            "sessionId": "g1",
            "startTime": "2025-01-02T10:00:00Z",
            "lastUpdated": "2025-01-02T10:05:00Z",
            "messages": [
                {"id": "1", "type": "user", "timestamp": "2025-01-02T10:00:00Z", "content": "Explain the parser"},
                {
                    "id": "2",
                    "type": "gemini",
                    "timestamp": "2025-01-02T10:00:03Z",
                    "model": "gemini-2.5-pro",
                    "content": "The parser reads tokens.",
                },
            ],
        },
    )
    return root


@pytest.fixture
def service(claude_root: Path, gemini_root: Path) -> SessionService:
    """A service over the Claude and Gemini sample trees."""
    return SessionService(
        providers=[Provider.GEMINI, Provider.CLAUDE],
        roots={Provider.CLAUDE: claude_root, Provider.GEMINI: gemini_root},
    )
