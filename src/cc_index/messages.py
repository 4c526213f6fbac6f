"""On-demand message access with a two-tier cache.

The list tier holds, per session, the ordered message summaries and the
(file, byte offset) of every message. The body tier holds parsed message
objects fetched one line at a time from those offsets. Rebuilding a
session's list drops that session's bodies so both tiers always agree on
message numbering.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cc_index.history import HistoryCache
from cc_index.indexer import is_session_file
from cc_index.jsonl import iter_lines, parse_line, read_line_at
from cc_index.lru import LRUCache
from cc_index.models import HistoryPrompt, MessageSummary, parse_timestamp

logger = logging.getLogger(__name__)

# Cache TTLs (seconds)
LIST_CACHE_TTL = 60.0
MESSAGE_CACHE_TTL = 30 * 60.0

MAX_CACHED_SESSIONS = 50
MAX_CACHED_MESSAGES = 1000

SessionKey = tuple[str, str]
MessageKey = tuple[str, str, int]


@dataclass
class SessionList:
    """Ordered summaries plus a parallel table of (file, byte offset)."""

    messages: list[MessageSummary]
    locations: list[tuple[Path, int]]
    file_path: Path
    mtime_ns: int | None
    built_at: float


@dataclass
class MessageList:
    messages: list[MessageSummary]
    total: int
    cached_at: float
    last_user_prompt: HistoryPrompt | None = None


def _file_mtime_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


def _sort_key(data: dict[str, Any]) -> float:
    ts = parse_timestamp(data.get("timestamp"))
    return ts.timestamp() if ts else 0.0


class MessageCache:
    """Serves session message lists and single messages without loading whole sessions."""

    def __init__(
        self,
        projects_dir: Path,
        history: HistoryCache | None = None,
        list_ttl: float = LIST_CACHE_TTL,
        max_sessions: int = MAX_CACHED_SESSIONS,
        message_ttl: float = MESSAGE_CACHE_TTL,
        max_messages: int = MAX_CACHED_MESSAGES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.projects_dir = projects_dir
        self.history = history
        self._lists: LRUCache[SessionKey, SessionList] = LRUCache(
            max_sessions, ttl=list_ttl, touch_on_get=False, clock=clock
        )
        self._bodies: LRUCache[MessageKey, dict[str, Any]] = LRUCache(
            max_messages, ttl=message_ttl, clock=clock
        )

    def session_file_path(self, project_name: str, session_id: str) -> Path:
        return self.projects_dir / project_name / f"{session_id}.jsonl"

    # -- list tier ---------------------------------------------------------

    def _scan_session(self, project_name: str, session_id: str) -> tuple[list, list]:
        """Collect every line of the session from the project's transcript files."""
        project_dir = self.projects_dir / project_name
        # Only metadata is kept per line; bodies are re-read on demand
        found: list[tuple[float, str | None, str | None, str | None, Path, int]] = []

        try:
            files = sorted(p for p in project_dir.iterdir() if p.is_file() and is_session_file(p))
        except OSError as e:
            logger.error("Cannot list %s for session %s: %s", project_dir, session_id, e)
            return [], []

        for path in files:
            try:
                for offset, raw, _ in iter_lines(path):
                    data = parse_line(raw)
                    if data is not None and data.get("sessionId") == session_id:
                        found.append(
                            (
                                _sort_key(data),
                                data.get("uuid") or data.get("id"),
                                data.get("timestamp"),
                                data.get("type"),
                                path,
                                offset,
                            )
                        )
            except OSError as e:
                logger.error("Error loading messages for session %s from %s: %s", session_id, path, e)

        found.sort(key=lambda item: item[0])

        summaries = []
        locations = []
        for number, (_, message_id, timestamp, type_, path, offset) in enumerate(found, 1):
            summaries.append(
                MessageSummary(
                    number=number,
                    id=message_id or f"msg_{number}",
                    timestamp=timestamp,
                    type=type_,
                )
            )
            locations.append((path, offset))
        return summaries, locations

    def _get_session_list(
        self, project_name: str, session_id: str, force_refresh: bool = False
    ) -> SessionList:
        key = (project_name, session_id)
        file_path = self.session_file_path(project_name, session_id)
        current_mtime = _file_mtime_ns(file_path)

        cached = self._lists.get(key)
        needs_refresh = (
            force_refresh
            or cached is None
            or (current_mtime is not None and cached.mtime_ns != current_mtime)
        )
        if not needs_refresh:
            return cached

        summaries, locations = self._scan_session(project_name, session_id)
        session_list = SessionList(
            messages=summaries,
            locations=locations,
            file_path=file_path,
            mtime_ns=current_mtime,
            built_at=time.time(),
        )
        for evicted in self._lists.put(key, session_list):
            self._drop_bodies(evicted)
        dropped = self._drop_bodies(key)
        logger.debug(
            "Rebuilt message list for %s/%s: %d messages, %d cached bodies dropped",
            project_name,
            session_id,
            len(summaries),
            dropped,
        )
        return session_list

    def _drop_bodies(self, key: SessionKey) -> int:
        return self._bodies.discard_where(lambda k: k[0] == key[0] and k[1] == key[1])

    def get_message_list(
        self, project_name: str, session_id: str, force_refresh: bool = False
    ) -> MessageList:
        """Message summaries for a session plus the last prompt from history, if any."""
        session_list = self._get_session_list(project_name, session_id, force_refresh)

        last_user_prompt = None
        if self.history is not None:
            try:
                prompts = self.history.get_session_prompts(session_id)
            except Exception as e:
                logger.debug("Failed to get history prompts for %s: %s", session_id, e)
                prompts = []
            if prompts:
                last_user_prompt = prompts[-1]

        return MessageList(
            messages=session_list.messages,
            total=len(session_list.messages),
            cached_at=session_list.built_at,
            last_user_prompt=last_user_prompt,
        )

    # -- body tier ---------------------------------------------------------

    def _read_message(
        self, session_list: SessionList, session_id: str, number: int
    ) -> dict[str, Any] | None:
        path, offset = session_list.locations[number - 1]
        line = read_line_at(path, offset)
        if line is None:
            logger.warning("No line at offset %d in %s (message %d)", offset, path, number)
            return None
        data = parse_line(line)
        if data is None or data.get("sessionId") != session_id:
            logger.warning("Stale offset %d in %s (message %d)", offset, path, number)
            return None
        return data

    def get_message_by_number(
        self, project_name: str, session_id: str, number: int
    ) -> dict[str, Any] | None:
        """Full message object for a 1-indexed message number, or None if not found."""
        session_list = self._get_session_list(project_name, session_id)
        if number < 1 or number > len(session_list.locations):
            return None

        key = (project_name, session_id, number)
        cached = self._bodies.get(key)
        if cached is not None:
            return dict(cached)

        data = self._read_message(session_list, session_id, number)
        if data is None:
            return None
        self._bodies.put(key, data)
        return dict(data)

    def get_messages_by_range(
        self, project_name: str, session_id: str, start: int, end: int
    ) -> list[dict[str, Any]]:
        """Messages numbered start..end inclusive, each with its "number" added."""
        session_list = self._get_session_list(project_name, session_id)
        first = max(start, 1)
        last = min(end, len(session_list.locations))

        results: list[tuple[int, dict[str, Any]]] = []
        misses: list[int] = []
        for number in range(first, last + 1):
            cached = self._bodies.get((project_name, session_id, number))
            if cached is not None:
                results.append((number, cached))
            else:
                misses.append(number)

        for number in misses:
            data = self._read_message(session_list, session_id, number)
            if data is not None:
                self._bodies.put((project_name, session_id, number), data)
                results.append((number, data))

        results.sort(key=lambda item: item[0])
        return [{"number": number, **data} for number, data in results]

    def message_exists(self, project_name: str, session_id: str, number: int) -> bool:
        session_list = self._get_session_list(project_name, session_id)
        return 1 <= number <= len(session_list.locations)

    def get_message_count(self, project_name: str, session_id: str) -> int:
        return len(self._get_session_list(project_name, session_id).messages)

    # -- maintenance -------------------------------------------------------

    def invalidate_cache(self, project_name: str, session_id: str) -> None:
        """Forget the list and every cached body of a session."""
        key = (project_name, session_id)
        self._lists.pop(key)
        self._drop_bodies(key)

    def clear_all(self) -> None:
        self._lists.clear()
        self._bodies.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        sessions = []
        total_messages = 0
        for key in self._lists.keys():
            session_list = self._lists.get(key)
            if session_list is None:
                continue
            total_messages += len(session_list.messages)
            sessions.append(
                {
                    "key": f"{key[0]}:{key[1]}",
                    "message_count": len(session_list.messages),
                    "age": self._lists.age(key),
                }
            )
        return {
            "session_count": len(sessions),
            "total_messages": total_messages,
            "cached_bodies": len(self._bodies),
            "body_evictions": self._bodies.evictions,
            "sessions": sessions,
        }
