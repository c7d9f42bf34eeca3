# ABOUTME: HTTP API package for agent sessions.
# ABOUTME: Provides the FastAPI application and the uvicorn runner.

from agent_sessions.server.app import create_app, run_server

__all__ = ["create_app", "run_server"]
