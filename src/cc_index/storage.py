"""SQLite storage for the cc-index database.

Mutating helpers never commit on their own; callers group them in a
transaction (``with conn:``) or call ``conn.commit()``.
"""

import logging
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from cc_index.config import INDEX_PATH
from cc_index.errors import StoreError
from cc_index.models import (
    DEFAULT_PROVIDER,
    DEFAULT_SUMMARY,
    FileCheckpoint,
    HistoryPrompt,
    IdentityEdge,
    MessageIndexEntry,
    MessageSummary,
    Project,
    Session,
    from_ms,
    to_ms,
)

logger = logging.getLogger(__name__)

VERSION_KEYS = ("sessions", "projects", "messages")


def _now_ms() -> int:
    return int(time.time() * 1000)


def get_connection(db_path: Path = INDEX_PATH) -> sqlite3.Connection:
    """Get a connection to the index database."""
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA temp_store = MEMORY")
    except (OSError, sqlite3.Error) as e:
        raise StoreError(f"Cannot open index database {db_path}: {e}") from e
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Initialize the database schema."""
    conn.executescript("""
        -- Per-file processing checkpoints for incremental indexing
        CREATE TABLE IF NOT EXISTS file_checkpoints (
            file_path TEXT PRIMARY KEY,
            byte_offset INTEGER NOT NULL DEFAULT 0,
            mtime_ns INTEGER NOT NULL,
            file_size INTEGER NOT NULL DEFAULT 0,
            message_count INTEGER NOT NULL DEFAULT 0,
            processed_at INTEGER
        );

        CREATE TABLE IF NOT EXISTS projects (
            name TEXT PRIMARY KEY,
            display_name TEXT,
            full_path TEXT,
            session_count INTEGER DEFAULT 0,
            last_activity INTEGER,
            has_claude_sessions INTEGER DEFAULT 0,
            has_cursor_sessions INTEGER DEFAULT 0,
            has_codex_sessions INTEGER DEFAULT 0,
            has_taskmaster INTEGER DEFAULT 0,
            updated_at INTEGER
        );

        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            project_name TEXT NOT NULL,
            summary TEXT DEFAULT 'New Session',
            message_count INTEGER DEFAULT 0,
            last_activity INTEGER,
            cwd TEXT,
            provider TEXT DEFAULT 'claude',
            is_grouped INTEGER DEFAULT 0,
            group_id TEXT,
            file_path TEXT,
            updated_at INTEGER
        );

        -- Byte offsets for on-demand message loading
        CREATE TABLE IF NOT EXISTS message_index (
            session_id TEXT NOT NULL,
            message_number INTEGER NOT NULL,
            uuid TEXT,
            type TEXT,
            timestamp INTEGER,
            byte_offset INTEGER NOT NULL,
            file_path TEXT NOT NULL,
            PRIMARY KEY (session_id, message_number)
        );

        -- uuid -> session / parent, for timeline roots
        CREATE TABLE IF NOT EXISTS identity_edges (
            uuid TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            parent_uuid TEXT,
            type TEXT
        );

        CREATE TABLE IF NOT EXISTS history_prompts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            prompt TEXT,
            timestamp INTEGER,
            project_path TEXT
        );

        -- Write counters, bumped on every mutation of a kind
        CREATE TABLE IF NOT EXISTS cache_version (
            key TEXT PRIMARY KEY,
            version INTEGER DEFAULT 0,
            updated_at INTEGER
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_name);
        CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity DESC);
        CREATE INDEX IF NOT EXISTS idx_sessions_provider ON sessions(provider);
        CREATE INDEX IF NOT EXISTS idx_messages_session ON message_index(session_id);
        CREATE INDEX IF NOT EXISTS idx_edges_session ON identity_edges(session_id);
        CREATE INDEX IF NOT EXISTS idx_edges_parent ON identity_edges(parent_uuid);
        CREATE INDEX IF NOT EXISTS idx_history_session ON history_prompts(session_id);
        CREATE INDEX IF NOT EXISTS idx_projects_activity ON projects(last_activity DESC);
    """)

    now = _now_ms()
    conn.executemany(
        "INSERT OR IGNORE INTO cache_version (key, version, updated_at) VALUES (?, 0, ?)",
        [(key, now) for key in VERSION_KEYS],
    )
    conn.commit()


def ensure_index_exists(db_path: Path = INDEX_PATH) -> sqlite3.Connection:
    """Ensure the index database exists and is initialized."""
    conn = get_connection(db_path)
    try:
        init_schema(conn)
    except sqlite3.Error as e:
        conn.close()
        raise StoreError(f"Cannot initialize index database {db_path}: {e}") from e
    logger.debug("Index database ready at %s", db_path)
    return conn


def index_exists(db_path: Path = INDEX_PATH) -> bool:
    """Check if the index database exists."""
    return db_path.exists()


# ---------------------------------------------------------------------------
# Version counters
# ---------------------------------------------------------------------------


def increment_version(conn: sqlite3.Connection, key: str) -> None:
    conn.execute(
        "UPDATE cache_version SET version = version + 1, updated_at = ? WHERE key = ?",
        (_now_ms(), key),
    )


def get_version(conn: sqlite3.Connection, key: str) -> dict[str, int]:
    row = conn.execute(
        "SELECT version, updated_at FROM cache_version WHERE key = ?", (key,)
    ).fetchone()
    if row is None:
        return {"version": 0, "updated_at": 0}
    return {"version": row["version"], "updated_at": row["updated_at"]}


# ---------------------------------------------------------------------------
# File checkpoints
# ---------------------------------------------------------------------------


def get_file_checkpoint(conn: sqlite3.Connection, file_path: str) -> FileCheckpoint | None:
    """Get the processing checkpoint for a file."""
    row = conn.execute(
        "SELECT * FROM file_checkpoints WHERE file_path = ?", (file_path,)
    ).fetchone()
    if row is None:
        return None
    return FileCheckpoint(
        file_path=row["file_path"],
        offset=row["byte_offset"],
        mtime_ns=row["mtime_ns"],
        size=row["file_size"],
        message_count=row["message_count"],
        processed_at=row["processed_at"],
    )


def set_file_checkpoint(
    conn: sqlite3.Connection,
    file_path: str,
    offset: int,
    mtime_ns: int,
    size: int,
    message_count: int = 0,
) -> None:
    """Record how far a file has been processed."""
    conn.execute(
        """
        INSERT OR REPLACE INTO file_checkpoints
            (file_path, byte_offset, mtime_ns, file_size, message_count, processed_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (file_path, offset, mtime_ns, size, message_count, _now_ms()),
    )


def reset_file_checkpoint(conn: sqlite3.Connection, file_path: str | None = None) -> None:
    """Forget a file's checkpoint (or all of them) so it is fully reindexed."""
    if file_path is None:
        conn.execute("DELETE FROM file_checkpoints")
    else:
        conn.execute("DELETE FROM file_checkpoints WHERE file_path = ?", (file_path,))


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def upsert_project(conn: sqlite3.Connection, project: Project) -> None:
    """Insert or update a project.

    last_activity only moves forward and the capability flags are OR-ed
    with the stored ones.
    """
    conn.execute(
        """
        INSERT INTO projects (name, display_name, full_path, session_count, last_activity,
                              has_claude_sessions, has_cursor_sessions, has_codex_sessions,
                              has_taskmaster, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            display_name = excluded.display_name,
            full_path = excluded.full_path,
            session_count = excluded.session_count,
            last_activity = CASE
                WHEN last_activity IS NULL OR excluded.last_activity > last_activity
                THEN excluded.last_activity ELSE last_activity END,
            has_claude_sessions = excluded.has_claude_sessions OR has_claude_sessions,
            has_cursor_sessions = excluded.has_cursor_sessions OR has_cursor_sessions,
            has_codex_sessions = excluded.has_codex_sessions OR has_codex_sessions,
            has_taskmaster = excluded.has_taskmaster OR has_taskmaster,
            updated_at = excluded.updated_at
        """,
        (
            project.name,
            project.display_name or project.name,
            project.full_path or "",
            project.session_count,
            to_ms(project.last_activity),
            int(project.has_claude_sessions),
            int(project.has_cursor_sessions),
            int(project.has_codex_sessions),
            int(project.has_taskmaster),
            _now_ms(),
        ),
    )
    increment_version(conn, "projects")


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        name=row["name"],
        display_name=row["display_name"],
        full_path=row["full_path"],
        session_count=row["session_count"],
        last_activity=from_ms(row["last_activity"]),
        has_claude_sessions=bool(row["has_claude_sessions"]),
        has_cursor_sessions=bool(row["has_cursor_sessions"]),
        has_codex_sessions=bool(row["has_codex_sessions"]),
        has_taskmaster=bool(row["has_taskmaster"]),
        updated_at=row["updated_at"],
    )


def get_project(conn: sqlite3.Connection, name: str) -> Project | None:
    row = conn.execute("SELECT * FROM projects WHERE name = ?", (name,)).fetchone()
    return _row_to_project(row) if row else None


def get_projects(conn: sqlite3.Connection, since_ms: int | None = None) -> list[Project]:
    """Get all projects, most recently active first."""
    sql = "SELECT * FROM projects"
    params: list[Any] = []
    if since_ms is not None:
        sql += " WHERE last_activity >= ?"
        params.append(since_ms)
    sql += " ORDER BY last_activity DESC, name"
    return [_row_to_project(row) for row in conn.execute(sql, params).fetchall()]


def count_project_sessions(conn: sqlite3.Connection, project_name: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM sessions WHERE project_name = ?", (project_name,)
    ).fetchone()
    return row[0]


def update_project_session_count(conn: sqlite3.Connection, project_name: str) -> None:
    """Recompute a project's session count from the sessions table."""
    conn.execute(
        "UPDATE projects SET session_count = ?, updated_at = ? WHERE name = ?",
        (count_project_sessions(conn, project_name), _now_ms(), project_name),
    )
    increment_version(conn, "projects")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def upsert_session(conn: sqlite3.Connection, session: Session) -> None:
    """Insert or update a session.

    message_count and last_activity never decrease, the summary is only
    replaced by a non-placeholder value, and cwd/file_path keep the first
    value written.
    """
    conn.execute(
        """
        INSERT INTO sessions (id, project_name, summary, message_count, last_activity,
                              cwd, provider, is_grouped, group_id, file_path, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            summary = CASE WHEN excluded.summary != ? THEN excluded.summary ELSE summary END,
            message_count = MAX(excluded.message_count, message_count),
            last_activity = CASE
                WHEN last_activity IS NULL OR excluded.last_activity > last_activity
                THEN excluded.last_activity ELSE last_activity END,
            cwd = COALESCE(cwd, excluded.cwd),
            file_path = COALESCE(file_path, excluded.file_path),
            updated_at = excluded.updated_at
        """,
        (
            session.id,
            session.project_name,
            session.summary or DEFAULT_SUMMARY,
            session.message_count,
            to_ms(session.last_activity),
            session.cwd,
            session.provider or DEFAULT_PROVIDER,
            int(session.is_grouped),
            session.group_id,
            session.file_path,
            _now_ms(),
            DEFAULT_SUMMARY,
        ),
    )
    increment_version(conn, "sessions")


def _row_to_session(row: sqlite3.Row) -> Session:
    keys = row.keys()
    return Session(
        id=row["id"],
        project_name=row["project_name"],
        summary=row["summary"],
        message_count=row["message_count"],
        last_activity=from_ms(row["last_activity"]),
        cwd=row["cwd"],
        provider=row["provider"],
        is_grouped=bool(row["is_grouped"]),
        group_id=row["group_id"],
        file_path=row["file_path"],
        updated_at=row["updated_at"],
        project_display_name=row["project_display_name"] if "project_display_name" in keys else None,
        project_full_path=row["project_full_path"] if "project_full_path" in keys else None,
    )


def get_session(conn: sqlite3.Connection, session_id: str) -> Session | None:
    """Get a session by ID."""
    row = conn.execute(
        """
        SELECT s.*, p.display_name AS project_display_name, p.full_path AS project_full_path
        FROM sessions s
        LEFT JOIN projects p ON s.project_name = p.name
        WHERE s.id = ?
        """,
        (session_id,),
    ).fetchone()
    return _row_to_session(row) if row else None


def _session_filters(
    alias: str,
    project_name: str | None,
    since_ms: int | None,
    provider: str | None,
) -> tuple[str, list[Any]]:
    sql = ""
    params: list[Any] = []
    if project_name:
        sql += f" AND {alias}project_name = ?"
        params.append(project_name)
    if since_ms is not None:
        sql += f" AND {alias}last_activity >= ?"
        params.append(since_ms)
    if provider:
        sql += f" AND {alias}provider = ?"
        params.append(provider)
    return sql, params


def get_sessions_filtered(
    conn: sqlite3.Connection,
    project_name: str | None = None,
    since_ms: int | None = None,
    provider: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Session]:
    """Get sessions, most recently active first.

    since_ms is an absolute cutoff in epoch milliseconds.
    """
    where, params = _session_filters("s.", project_name, since_ms, provider)
    sql = f"""
        SELECT s.*, p.display_name AS project_display_name, p.full_path AS project_full_path
        FROM sessions s
        LEFT JOIN projects p ON s.project_name = p.name
        WHERE 1=1 {where}
        ORDER BY s.last_activity DESC, s.id
        LIMIT ? OFFSET ?
    """
    rows = conn.execute(sql, [*params, limit, offset]).fetchall()
    return [_row_to_session(row) for row in rows]


def get_session_count(
    conn: sqlite3.Connection,
    project_name: str | None = None,
    since_ms: int | None = None,
    provider: str | None = None,
) -> int:
    where, params = _session_filters("", project_name, since_ms, provider)
    return conn.execute(f"SELECT COUNT(*) FROM sessions WHERE 1=1 {where}", params).fetchone()[0]


def update_session_summary(conn: sqlite3.Connection, session_id: str, summary: str) -> None:
    conn.execute(
        "UPDATE sessions SET summary = ?, updated_at = ? WHERE id = ?",
        (summary, _now_ms(), session_id),
    )
    increment_version(conn, "sessions")


# ---------------------------------------------------------------------------
# Message index
# ---------------------------------------------------------------------------


def insert_message_index_batch(
    conn: sqlite3.Connection, entries: Iterable[MessageIndexEntry]
) -> None:
    """Insert message index rows, replacing any with the same (session, number)."""
    conn.executemany(
        """
        INSERT OR REPLACE INTO message_index
            (session_id, message_number, uuid, type, timestamp, byte_offset, file_path)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                e.session_id,
                e.message_number,
                e.uuid,
                e.type,
                to_ms(e.timestamp),
                e.byte_offset,
                e.file_path,
            )
            for e in entries
        ],
    )
    increment_version(conn, "messages")


def delete_session_message_index(conn: sqlite3.Connection, session_id: str) -> None:
    """Delete all message index rows for a session (before a full reindex)."""
    conn.execute("DELETE FROM message_index WHERE session_id = ?", (session_id,))


def get_message_index(
    conn: sqlite3.Connection, session_id: str, message_number: int
) -> MessageIndexEntry | None:
    row = conn.execute(
        "SELECT * FROM message_index WHERE session_id = ? AND message_number = ?",
        (session_id, message_number),
    ).fetchone()
    if row is None:
        return None
    return MessageIndexEntry(
        session_id=row["session_id"],
        message_number=row["message_number"],
        uuid=row["uuid"],
        type=row["type"],
        timestamp=from_ms(row["timestamp"]),
        byte_offset=row["byte_offset"],
        file_path=row["file_path"],
    )


def list_messages_by_session(conn: sqlite3.Connection, session_id: str) -> list[MessageSummary]:
    """Get the ordered message list for a session."""
    rows = conn.execute(
        """
        SELECT message_number, uuid, type, timestamp
        FROM message_index
        WHERE session_id = ?
        ORDER BY message_number ASC
        """,
        (session_id,),
    ).fetchall()
    result = []
    for row in rows:
        ts = from_ms(row["timestamp"])
        result.append(
            MessageSummary(
                number=row["message_number"],
                id=row["uuid"] or f"msg_{row['message_number']}",
                timestamp=ts.isoformat() if ts else None,
                type=row["type"],
            )
        )
    return result


def get_message_count(conn: sqlite3.Connection, session_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM message_index WHERE session_id = ?", (session_id,)
    ).fetchone()
    return row[0]


# ---------------------------------------------------------------------------
# Identity edges
# ---------------------------------------------------------------------------


def insert_identity_edge_batch(conn: sqlite3.Connection, edges: Iterable[IdentityEdge]) -> None:
    conn.executemany(
        """
        INSERT OR REPLACE INTO identity_edges (uuid, session_id, parent_uuid, type)
        VALUES (?, ?, ?, ?)
        """,
        [(e.uuid, e.session_id, e.parent_uuid, e.type) for e in edges],
    )


def get_session_id_for_uuid(conn: sqlite3.Connection, uuid: str) -> str | None:
    row = conn.execute(
        "SELECT session_id FROM identity_edges WHERE uuid = ?", (uuid,)
    ).fetchone()
    return row["session_id"] if row else None


def get_first_user_messages(
    conn: sqlite3.Connection, project_name: str | None = None
) -> list[dict[str, str]]:
    """Get timeline roots: user messages without a parent."""
    sql = """
        SELECT e.uuid, e.session_id
        FROM identity_edges e
        WHERE e.parent_uuid IS NULL AND e.type = 'user'
    """
    params: list[Any] = []
    if project_name:
        sql += """
            AND EXISTS (
                SELECT 1 FROM sessions s WHERE s.id = e.session_id AND s.project_name = ?
            )
        """
        params.append(project_name)
    sql += " ORDER BY e.session_id, e.uuid"
    return [
        {"uuid": row["uuid"], "session_id": row["session_id"]}
        for row in conn.execute(sql, params).fetchall()
    ]


# ---------------------------------------------------------------------------
# History prompts
# ---------------------------------------------------------------------------


def insert_history_prompts(conn: sqlite3.Connection, prompts: Iterable[HistoryPrompt]) -> None:
    conn.executemany(
        """
        INSERT INTO history_prompts (session_id, prompt, timestamp, project_path)
        VALUES (?, ?, ?, ?)
        """,
        [(p.session_id, p.prompt, p.timestamp, p.project) for p in prompts],
    )


def get_session_prompts_from_db(conn: sqlite3.Connection, session_id: str) -> list[HistoryPrompt]:
    rows = conn.execute(
        """
        SELECT session_id, prompt, timestamp, project_path
        FROM history_prompts
        WHERE session_id = ?
        ORDER BY timestamp ASC, id ASC
        """,
        (session_id,),
    ).fetchall()
    return [
        HistoryPrompt(
            session_id=row["session_id"],
            prompt=row["prompt"],
            timestamp=row["timestamp"],
            project=row["project_path"],
        )
        for row in rows
    ]


def clear_history_prompts(conn: sqlite3.Connection) -> None:
    conn.execute("DELETE FROM history_prompts")


# ---------------------------------------------------------------------------
# Stats / maintenance
# ---------------------------------------------------------------------------


def get_stats(conn: sqlite3.Connection) -> dict[str, Any]:
    """Get row counts and write versions."""

    def count(table: str) -> int:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    return {
        "projects": count("projects"),
        "sessions": count("sessions"),
        "message_index": count("message_index"),
        "identity_edges": count("identity_edges"),
        "history_prompts": count("history_prompts"),
        "file_checkpoints": count("file_checkpoints"),
        "versions": {key: get_version(conn, key) for key in VERSION_KEYS},
    }


def get_index_stats(db_path: Path = INDEX_PATH) -> dict[str, Any]:
    """Get index statistics without creating the database."""
    if not index_exists(db_path):
        return {
            "session_count": 0,
            "message_count": 0,
            "project_count": 0,
            "index_path": str(db_path),
            "index_size_human": _format_size(0),
        }

    conn = get_connection(db_path)
    try:
        init_schema(conn)
        stats = get_stats(conn)
    finally:
        conn.close()

    return {
        "session_count": stats["sessions"],
        "message_count": stats["message_index"],
        "project_count": stats["projects"],
        "index_path": str(db_path),
        "index_size_human": _format_size(db_path.stat().st_size),
    }


def _format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def clear_all_data(conn: sqlite3.Connection) -> None:
    """Delete every indexed row (checkpoints included)."""
    with conn:
        for table in (
            "message_index",
            "identity_edges",
            "history_prompts",
            "sessions",
            "projects",
            "file_checkpoints",
        ):
            conn.execute(f"DELETE FROM {table}")
        conn.execute("UPDATE cache_version SET version = 0, updated_at = ?", (_now_ms(),))
    logger.info("All index data cleared")
