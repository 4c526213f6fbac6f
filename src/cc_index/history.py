"""Lazy, per-session cache over the shared prompt log (~/.claude/history.jsonl).

A miss streams the whole log and keeps only the requested session's
lines. Any change to the log's mtime clears every cached session, since
new lines may belong to any of them.
"""

import logging
import re
import sqlite3
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from cc_index.jsonl import iter_lines, parse_line
from cc_index.lru import LRUCache
from cc_index.models import HistoryPrompt, parse_timestamp, to_ms
from cc_index.storage import clear_history_prompts, insert_history_prompts

logger = logging.getLogger(__name__)

MAX_CACHED_SESSIONS = 20
HISTORY_CACHE_TTL = 60.0

# A slash command only yields a title when followed by more than this many characters
MIN_COMMAND_ARGS = 10
MAX_COMMAND_LENGTH = 20


def parse_history_entry(data: dict[str, Any] | None) -> HistoryPrompt | None:
    """Build a prompt from a decoded log line; entries missing required fields give None."""
    if not data:
        return None
    prompt = data.get("display")
    session_id = data.get("sessionId")
    raw_ts = data.get("timestamp")
    if not prompt or not isinstance(prompt, str) or not session_id or not raw_ts:
        return None

    if isinstance(raw_ts, (int, float)) and not isinstance(raw_ts, bool):
        timestamp = int(raw_ts)
    else:
        timestamp = to_ms(parse_timestamp(raw_ts))
        if timestamp is None:
            return None

    attachments = data.get("pastedContents")
    return HistoryPrompt(
        session_id=str(session_id),
        prompt=prompt,
        timestamp=timestamp,
        project=data.get("project") or None,
        attachments=attachments if isinstance(attachments, dict) else {},
    )


def title_from_prompt(prompt: str, max_length: int = 100) -> str | None:
    """Turn a prompt into a one-line session title; bare slash commands give None."""
    title = prompt.strip()

    if title.startswith("/"):
        space_index = title.find(" ")
        if not 0 < space_index < MAX_COMMAND_LENGTH:
            return None
        after_command = title[space_index + 1 :].strip()
        if len(after_command) <= MIN_COMMAND_ARGS:
            return None
        title = after_command

    if len(title) > max_length:
        title = title[: max_length - 3] + "..."

    title = re.sub(r"\s+", " ", title).strip()
    return title or None


class HistoryCache:
    """LRU of prompts per session, backed by a single append-only log."""

    def __init__(
        self,
        history_file: Path,
        max_sessions: int = MAX_CACHED_SESSIONS,
        ttl: float = HISTORY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.history_file = history_file
        self._sessions: LRUCache[str, list[HistoryPrompt]] = LRUCache(
            max_sessions, ttl=ttl, clock=clock
        )
        self._last_mtime_ns: int | None = None
        self.scans = 0

    def _file_mtime_ns(self) -> int | None:
        try:
            return self.history_file.stat().st_mtime_ns
        except OSError:
            return None

    def _check_file_changed(self) -> bool:
        current = self._file_mtime_ns()
        if current != self._last_mtime_ns:
            self._sessions.clear()
            self._last_mtime_ns = current
            logger.debug("History file changed (mtime %s), cache cleared", current)
            return True
        return False

    def _iter_entries(self) -> Iterator[HistoryPrompt]:
        if not self.history_file.exists():
            return
        self.scans += 1
        for _, raw, _ in iter_lines(self.history_file):
            entry = parse_history_entry(parse_line(raw))
            if entry is not None:
                yield entry

    def _collect(self, predicate: Callable[[HistoryPrompt], bool], what: str) -> list[HistoryPrompt]:
        try:
            entries = [e for e in self._iter_entries() if predicate(e)]
        except OSError as e:
            logger.error("Failed to stream history for %s: %s", what, e)
            return []
        entries.sort(key=lambda e: e.timestamp)
        return entries

    def get_session_prompts(self, session_id: str) -> list[HistoryPrompt]:
        """Prompts logged for a session, oldest first."""
        self._check_file_changed()

        cached = self._sessions.get(session_id)
        if cached is not None:
            logger.debug("Using cached prompts for session %s", session_id)
            return list(cached)

        entries = self._collect(lambda e: e.session_id == session_id, session_id)
        logger.debug("Streamed %d prompts for session %s", len(entries), session_id)
        for evicted in self._sessions.put(session_id, entries):
            logger.debug("Evicted session %s from history cache", evicted)
        return list(entries)

    def get_last_session_prompt(self, session_id: str) -> HistoryPrompt | None:
        prompts = self.get_session_prompts(session_id)
        return prompts[-1] if prompts else None

    def get_session_title(self, session_id: str, max_length: int = 100) -> str | None:
        """Title derived from the session's last prompt."""
        last = self.get_last_session_prompt(session_id)
        if last is None:
            return None
        return title_from_prompt(last.prompt, max_length)

    def get_project_prompts(self, project_path: str) -> list[HistoryPrompt]:
        """Prompts for a project path. Streams the log on every call."""
        return self._collect(lambda e: e.project == project_path, project_path)

    def get_all_session_ids(self) -> list[str]:
        """Session IDs with at least one prompt, in first-seen order. Streams the log."""
        seen: dict[str, None] = {}
        try:
            for entry in self._iter_entries():
                seen.setdefault(entry.session_id, None)
        except OSError as e:
            logger.error("Failed to list history session IDs: %s", e)
            return []
        return list(seen)

    def load_into_store(self, conn: sqlite3.Connection) -> int:
        """Replace the stored history_prompts rows with the log's current contents."""
        entries = self._collect(lambda e: True, "store load")
        with conn:
            clear_history_prompts(conn)
            insert_history_prompts(conn, entries)
        logger.info("Loaded %d history prompts into the index", len(entries))
        return len(entries)

    def invalidate(self) -> None:
        self._sessions.clear()
        self._last_mtime_ns = None
        logger.debug("History cache invalidated")

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "cached_sessions": len(self._sessions),
            "max_cached_sessions": self._sessions.max_size,
            "last_file_mtime_ns": self._last_mtime_ns,
            "scans": self.scans,
        }
