# ABOUTME: Storage root resolution and tunables for the session engine.
# ABOUTME: Each provider root can be overridden by argument or environment variable.

from __future__ import annotations

import os
from pathlib import Path

from .models import Provider

LIST_WORKERS = 4
TITLE_LIMIT = 100
CODEX_LOOKBACK_DAYS = 30
ENV_PROVIDERS = "AGENT_SESSIONS_PROVIDERS"

_DEFAULT_ROOTS: dict[Provider, tuple[str, ...]] = {
    Provider.CLAUDE: (".claude", "projects"),
    Provider.CODEX: (".codex", "sessions"),
    Provider.OPENCODE: (".local", "share", "opencode", "storage"),
    Provider.AMP: (".local", "share", "amp", "threads"),
    Provider.JUNIE: (".junie", "sessions"),
    Provider.KILO: (".kilocode", "cli"),
    Provider.DROID: (".factory", "sessions"),
    Provider.GEMINI: (".gemini", "tmp"),
}


def env_var_for(provider: Provider) -> str:
    return f"AGENT_SESSIONS_{provider.name}_DIR"


def default_root(provider: Provider) -> Path:
    return Path.home().joinpath(*_DEFAULT_ROOTS[provider])


def resolve_root(provider: Provider, root_dir: Path | None = None) -> Path:
    if root_dir is not None:
        return root_dir
    env_value = os.environ.get(env_var_for(provider))
    if env_value:
        return Path(env_value).expanduser()
    return default_root(provider)


def enabled_providers() -> list[Provider]:
    """Providers selected by AGENT_SESSIONS_PROVIDERS, or all of them."""
    env_value = os.environ.get(ENV_PROVIDERS)
    if not env_value:
        return list(Provider)
    wanted = {name.strip().lower() for name in env_value.split(",") if name.strip()}
    return [provider for provider in Provider if provider.value in wanted]
