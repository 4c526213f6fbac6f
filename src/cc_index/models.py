"""Data models for cc-index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_SUMMARY = "New Session"
DEFAULT_PROVIDER = "claude"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch-milliseconds value into a UTC datetime."""
    if isinstance(value, str) and value:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OSError, ValueError, OverflowError):
            return None
    return None


def to_ms(ts: datetime | None) -> int | None:
    if ts is None:
        return None
    return int(ts.timestamp() * 1000)


def from_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------


@dataclass
class FileCheckpoint:
    """How far into a transcript file the indexer has processed."""

    file_path: str
    offset: int
    mtime_ns: int
    size: int
    message_count: int = 0
    processed_at: int | None = None


@dataclass
class Project:
    """One source directory under the projects root."""

    name: str
    display_name: str
    full_path: str
    session_count: int = 0
    last_activity: datetime | None = None
    has_claude_sessions: bool = False
    has_cursor_sessions: bool = False
    has_codex_sessions: bool = False
    has_taskmaster: bool = False
    updated_at: int | None = None


@dataclass
class Session:
    """A logical conversation (one transcript file for Claude sessions)."""

    id: str
    project_name: str
    summary: str = DEFAULT_SUMMARY
    message_count: int = 0
    last_activity: datetime | None = None
    cwd: str | None = None
    provider: str = DEFAULT_PROVIDER
    is_grouped: bool = False
    group_id: str | None = None
    file_path: str | None = None
    updated_at: int | None = None
    project_display_name: str | None = None
    project_full_path: str | None = None


@dataclass
class MessageIndexEntry:
    """Byte offset of one message line inside a transcript file."""

    session_id: str
    message_number: int
    uuid: str | None
    type: str | None
    timestamp: datetime | None
    byte_offset: int
    file_path: str


@dataclass
class IdentityEdge:
    """uuid -> owning session and parent uuid."""

    uuid: str
    session_id: str
    parent_uuid: str | None
    type: str | None


@dataclass
class HistoryPrompt:
    """A user prompt logged to history.jsonl."""

    session_id: str
    prompt: str
    timestamp: int
    project: str | None = None
    attachments: dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageSummary:
    """Lightweight list entry for a message (no body)."""

    number: int
    id: str
    timestamp: str | None
    type: str | None


# ---------------------------------------------------------------------------
# Indexing results
# ---------------------------------------------------------------------------


@dataclass
class SkippedFile:
    """A transcript file that was not (re)indexed."""

    reason: str
    error: str | None = None
    skipped: bool = True


@dataclass
class IndexedFile:
    """Outcome of one successful indexing pass over a transcript file."""

    session_id: str
    messages_indexed: int
    total_messages: int
    is_incremental: bool
    cwd: str | None = None
    last_activity: datetime | None = None
    skipped: bool = False


FileIndexResult = SkippedFile | IndexedFile


@dataclass
class ProjectScan:
    """Outcome of scanning one project directory."""

    project_name: str
    files_processed: int = 0
    results: list[FileIndexResult] = field(default_factory=list)
    error: str | None = None


@dataclass
class ScanReport:
    """Outcome of scanning the whole projects directory."""

    success: bool
    projects_indexed: int = 0
    duration_ms: int = 0
    stats: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


# ---------------------------------------------------------------------------
# Transcript records
# ---------------------------------------------------------------------------


@dataclass
class _Record:
    raw: dict[str, Any]
    type: str | None
    session_id: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    timestamp: str | None = None
    cwd: str | None = None


@dataclass
class UserRecord(_Record):
    message: dict[str, Any] = field(default_factory=dict)


@dataclass
class AssistantRecord(_Record):
    message: dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemRecord(_Record):
    content: str | None = None


@dataclass
class SummaryRecord(_Record):
    summary: str | None = None
    leaf_uuid: str | None = None


@dataclass
class UnknownRecord(_Record):
    pass


TranscriptRecord = UserRecord | AssistantRecord | SystemRecord | SummaryRecord | UnknownRecord


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_record(data: Any) -> TranscriptRecord | None:
    """Build a typed record from a decoded JSON line, or None if it is not an object."""
    if not isinstance(data, dict):
        return None

    record_type = _str_or_none(data.get("type"))
    common = {
        "raw": data,
        "type": record_type,
        "session_id": _str_or_none(data.get("sessionId")),
        "uuid": _str_or_none(data.get("uuid")),
        "parent_uuid": _str_or_none(data.get("parentUuid")),
        "timestamp": _str_or_none(data.get("timestamp")),
        "cwd": _str_or_none(data.get("cwd")),
    }
    message = data.get("message")
    if not isinstance(message, dict):
        message = {}

    if record_type == "user":
        return UserRecord(**common, message=message)
    if record_type == "assistant":
        return AssistantRecord(**common, message=message)
    if record_type == "system":
        return SystemRecord(**common, content=_str_or_none(data.get("content")))
    if record_type == "summary":
        return SummaryRecord(
            **common,
            summary=_str_or_none(data.get("summary")),
            leaf_uuid=_str_or_none(data.get("leafUuid")),
        )
    return UnknownRecord(**common)


# ---------------------------------------------------------------------------
# External activity
# ---------------------------------------------------------------------------


@dataclass
class ExternalProcess:
    pid: int
    command: str
    cwd: str | None = None


@dataclass
class TmuxSession:
    session_name: str
    windows: int
    attached: bool


@dataclass
class LockFileStatus:
    exists: bool = False
    lock_file: Path | None = None
    content: dict[str, Any] | None = None


@dataclass
class ProcessSnapshot:
    """Result of one process/tmux scan."""

    processes: list[ExternalProcess] = field(default_factory=list)
    tmux_sessions: list[TmuxSession] = field(default_factory=list)
    detection_available: bool = True
    detection_error: str | None = None
    last_updated: float | None = None


@dataclass
class ExternalActivity:
    """Whether a Claude CLI session is running outside this process."""

    has_external_session: bool
    processes: list[ExternalProcess]
    tmux_sessions: list[TmuxSession]
    lock_file: LockFileStatus
    detection_available: bool
    detection_error: str | None
    cache_age: float | None
