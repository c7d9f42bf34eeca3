from __future__ import annotations

from ..models import Provider
from . import amp, claude, codex, droid, gemini, junie, kilo, opencode
from .base import ProviderBackend

__all__ = ["BACKENDS", "ProviderBackend", "get_backend"]

BACKENDS: dict[Provider, ProviderBackend] = {
    module_provider: ProviderBackend(
        provider=module_provider,
        list_sessions=module.list_sessions,
        find_session=module.find_session,
        parse_session=module.parse_session,
    )
    for module_provider, module in (
        (Provider.CLAUDE, claude),
        (Provider.CODEX, codex),
        (Provider.OPENCODE, opencode),
        (Provider.AMP, amp),
        (Provider.JUNIE, junie),
        (Provider.KILO, kilo),
        (Provider.DROID, droid),
        (Provider.GEMINI, gemini),
    )
}


def get_backend(provider: Provider | str) -> ProviderBackend:
    """Look up a backend by enum member or value, raising ValueError for unknown names."""
    return BACKENDS[Provider(provider)]
