from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import click
import questionary
from click_default_group import DefaultGroup

from .config import enabled_providers
from .formatters import (
    ROLES,
    format_results,
    render_search_hits,
    render_session,
    render_sessions_table,
    session_to_wire,
    summary_to_dict,
)
from .models import Provider, SessionDetail, SessionSummary
from .server.app import run_server
from .service import SessionService

PROVIDER_NAMES = [provider.value for provider in Provider]


def _common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")(func)
    func = click.option(
        "--provider",
        "providers",
        multiple=True,
        type=click.Choice(PROVIDER_NAMES, case_sensitive=False),
        help="Only use this provider (repeatable)",
    )(func)
    return func


def _format_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--format",
        "output_format",
        type=click.Choice(["rich", "json"], case_sensitive=False),
        default="rich",
        show_default=True,
    )(func)


@click.group(cls=DefaultGroup, default="list", default_if_no_args=True)
def cli() -> None:
    """Browse and search session logs of AI coding CLIs."""


@cli.command(name="list")
@click.option("--project", default=None, help="Only sessions of this project path")
@_format_option
@_common_options
def list_sessions(project: str | None, output_format: str, providers: tuple[str, ...], verbose: bool) -> None:
    """List sessions across providers, newest first."""
    service = _build_service(providers, verbose)
    summaries = service.list_sessions(project)

    formatted = format_results([summary_to_dict(summary) for summary in summaries], output_format)
    if formatted is not None:
        click.echo(formatted)
        return
    if not summaries:
        click.echo(_no_sessions_hint())
        return
    render_sessions_table(summaries)


@cli.command()
@click.argument("session_id", required=False)
@click.option("--project", default=None, help="Only offer sessions of this project path")
@_format_option
@_common_options
def show(
    session_id: str | None,
    project: str | None,
    output_format: str,
    providers: tuple[str, ...],
    verbose: bool,
) -> None:
    """Show one session; prompts for a session when no id is given."""
    service = _build_service(providers, verbose)
    if session_id is None:
        summary = _select_session(service, project)
        if summary is None:
            click.echo(_no_sessions_hint())
            return
        detail = service.get_session_detail(summary.session_id, summary.provider)
        if detail is None:
            raise click.ClickException(f"Session not found: {summary.session_id}")
    else:
        detail = _require_detail(service, session_id)

    formatted = format_results(session_to_wire(detail), output_format)
    if formatted is not None:
        click.echo(formatted)
        return
    render_session(detail)


@cli.command()
@click.argument("query")
@click.option("--project", default=None, help="Only search sessions of this project path")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(1, 50), help="Max sessions")
@click.option("--role", type=click.Choice(ROLES), default=None, help="Only match messages with this role")
@_format_option
@_common_options
def search(
    query: str,
    project: str | None,
    limit: int,
    role: str | None,
    output_format: str,
    providers: tuple[str, ...],
    verbose: bool,
) -> None:
    """Search message text of every listed session."""
    service = _build_service(providers, verbose)
    hits = service.search(query, project_path=project, role=role, limit=limit)

    formatted = format_results([hit.to_dict() for hit in hits], output_format)
    if formatted is not None:
        click.echo(formatted)
        return
    render_search_hits(hits)


@cli.command()
@click.argument("session_id")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="File to write the session JSON to",
)
@_common_options
def dump(session_id: str, output: Path, providers: tuple[str, ...], verbose: bool) -> None:
    """Write one session in wire format to a JSON file."""
    service = _build_service(providers, verbose)
    detail = _require_detail(service, session_id)
    output.write_text(json.dumps(session_to_wire(detail), ensure_ascii=False, indent=2), encoding="utf-8")
    click.echo(f"Wrote {len(detail.messages)} messages to {output}")


@cli.command()
@click.option("--project", default=None, help="Only count sessions of this project path")
@_common_options
def stats(project: str | None, providers: tuple[str, ...], verbose: bool) -> None:
    """Show session and message counts per provider."""
    service = _build_service(providers, verbose)
    index = service.build_index(project)
    try:
        data = index.get_stats()
    finally:
        index.close()
    click.echo(f"Sessions: {data['session_count']}")
    click.echo(f"Messages: {data['message_count']}")
    for provider, counts in data["providers"].items():
        click.echo(f"  {Provider(provider).display_name}: {counts['sessions']} sessions, {counts['messages']} messages")


@cli.command()
@click.option("--port", default=8765, show_default=True, help="Port to serve on")
@click.option("--host", default="127.0.0.1", show_default=True, help="Host to bind to")
@click.option("--no-open", is_flag=True, help="Don't open browser automatically")
@_common_options
def serve(port: int, host: str, no_open: bool, providers: tuple[str, ...], verbose: bool) -> None:
    """Serve the HTTP API."""
    service = _build_service(providers, verbose)
    click.echo(f"\nStarting server at http://{host}:{port}")
    run_server(service, host, port, open_browser=not no_open)


def _build_service(providers: tuple[str, ...], verbose: bool) -> SessionService:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    selected = [Provider(name.lower()) for name in providers] if providers else enabled_providers()
    return SessionService(providers=selected)


def _require_detail(service: SessionService, session_id: str) -> SessionDetail:
    detail = service.find_session_detail(session_id)
    if detail is None:
        raise click.ClickException(f"Session not found: {session_id}")
    return detail


def _select_session(service: SessionService, project: str | None) -> SessionSummary | None:
    summaries = service.list_sessions(project)
    if not summaries:
        return None
    choices = [questionary.Choice(title=_format_session_choice(summary), value=summary) for summary in summaries[:50]]
    return questionary.select("Select a session:", choices=choices).ask()


def _format_session_choice(summary: SessionSummary) -> str:
    title = summary.title.replace("\n", " ")
    title = title[:60] + ("..." if len(title) > 60 else "")
    count = "?" if summary.message_count is None else summary.message_count
    age = _format_age(summary.sort_key)
    return f'{summary.provider.display_name:<11} {summary.session_id[:8]}  {age}  "{title}"  {count} msgs'


def _format_age(moment: datetime | None) -> str:
    if moment is None:
        return "unknown"
    delta = max((datetime.now(tz=timezone.utc) - moment).total_seconds(), 0)
    if delta < 3600:
        return f"{int(delta // 60)}m ago"
    if delta < 86400:
        return f"{int(delta // 3600)}h ago"
    return f"{int(delta // 86400)}d ago"


def _no_sessions_hint() -> str:
    return "No sessions found. Set AGENT_SESSIONS_<PROVIDER>_DIR if your sessions live elsewhere."
