# ABOUTME: Shared plumbing for provider finders and parsers.
# ABOUTME: Safe JSON access, file readers, the listing worker pool and model usage counting.

from __future__ import annotations

import json
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, TypeVar

from ..config import LIST_WORKERS, TITLE_LIMIT
from ..models import InfoMessage, InfoStyle, JsonContent, Provider, SessionDetail, SessionSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Raised by unexpected record shapes; recovered at the boundary of one unit.
UNIT_ERRORS = (ValueError, TypeError, KeyError, AttributeError, IndexError)

ListSessions = Callable[..., "list[SessionSummary]"]
FindSession = Callable[..., "Path | None"]
ParseSession = Callable[[Path], "SessionDetail | None"]


@dataclass(frozen=True)
class ProviderBackend:
    """Finder and parser entry points of one provider."""

    provider: Provider
    list_sessions: ListSessions
    find_session: FindSession
    parse_session: ParseSession


def get_str(data: Any, key: str) -> str | None:
    if not isinstance(data, dict):
        return None
    value = data.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def get_dict(data: Any, key: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def get_list(data: Any, key: str) -> list[Any]:
    if not isinstance(data, dict):
        return []
    value = data.get(key)
    return value if isinstance(value, list) else []


def get_number(data: Any, key: str) -> float | None:
    if not isinstance(data, dict):
        return None
    value = data.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def dig(data: Any, *keys: str) -> Any:
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def loads_object(text: str) -> dict[str, Any] | None:
    """Decode one JSON object; anything else (or invalid JSON) gives None."""
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        return None


def read_json(path: Path) -> Any | None:
    text = read_text(path)
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return None


def read_first_line(path: Path) -> str | None:
    try:
        with path.open(encoding="utf-8") as handle:
            for line in handle:
                if line.strip():
                    return line.strip()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
    return None


def iter_jsonl(text: str) -> Iterator[tuple[str, dict[str, Any] | None]]:
    """Yield every non-blank line with its decoded object, or None when it is not one."""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        yield line, loads_object(line)


def list_dirs(path: Path) -> list[Path]:
    try:
        return sorted(child for child in path.iterdir() if child.is_dir())
    except OSError:
        return []


def list_files(path: Path, pattern: str = "*") -> list[Path]:
    try:
        return sorted(child for child in path.glob(pattern) if child.is_file())
    except OSError:
        return []


def cap_title(text: str, limit: int = TITLE_LIMIT) -> str:
    text = text.strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def malformed_unit(
    raw: str,
    timestamp: datetime | None = None,
    subtitle: str = "parse",
) -> InfoMessage:
    return InfoMessage(
        timestamp=timestamp,
        title="error",
        subtitle=subtitle,
        content=JsonContent(raw),
        style=InfoStyle.ERROR,
    )


class ModelCounter:
    """Counts model usage during one parse."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def add(self, model: str | None) -> None:
        if model:
            self._counts[model] += 1

    def usage(self) -> list[tuple[str, int]]:
        # most_common keeps first-seen order between equal counts
        return self._counts.most_common()


def summarize_all(candidates: Iterable[T], summarize: Callable[[T], R | None]) -> list[R]:
    """Run ``summarize`` over every candidate on the listing pool, dropping failures."""
    items = list(candidates)
    if not items:
        return []

    def run(item: T) -> R | None:
        try:
            return summarize(item)
        except Exception:
            logger.warning("Failed to summarize %s", item, exc_info=True)
            return None

    with ThreadPoolExecutor(max_workers=LIST_WORKERS) as pool:
        results = list(pool.map(run, items))
    return [result for result in results if result is not None]
