"""Incremental JSONL transcript indexer.

Each transcript file has a checkpoint (byte offset, mtime, size). A pass
either skips the file, appends only the bytes written since the
checkpoint, or purges the session's message index and starts over.
"""

import logging
import sqlite3
import time
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from cc_index.jsonl import iter_lines, parse_line
from cc_index.models import (
    DEFAULT_PROVIDER,
    DEFAULT_SUMMARY,
    FileIndexResult,
    IdentityEdge,
    IndexedFile,
    MessageIndexEntry,
    Project,
    ProjectScan,
    ScanReport,
    Session,
    SkippedFile,
    SummaryRecord,
    parse_record,
    parse_timestamp,
)
from cc_index.names import decode_project_name, get_project_display_name
from cc_index.storage import (
    count_project_sessions,
    delete_session_message_index,
    get_file_checkpoint,
    get_sessions_filtered,
    get_stats,
    insert_identity_edge_batch,
    insert_message_index_batch,
    reset_file_checkpoint,
    set_file_checkpoint,
    upsert_project,
    upsert_session,
)

logger = logging.getLogger(__name__)
console = Console()


def is_session_file(path: Path) -> bool:
    """Claude session transcripts; sub-agent and hidden files are excluded."""
    name = path.name
    return name.endswith(".jsonl") and not name.startswith(("agent-", "."))


def discover_session_files(project_dir: Path) -> list[Path]:
    return sorted(p for p in project_dir.iterdir() if p.is_file() and is_session_file(p))


def process_session_file(
    conn: sqlite3.Connection, file_path: Path, project_name: str
) -> FileIndexResult:
    """Index the bytes of one transcript file that have not been seen yet."""
    try:
        stats = file_path.stat()
        checkpoint = get_file_checkpoint(conn, str(file_path))

        if checkpoint is not None and checkpoint.mtime_ns == stats.st_mtime_ns:
            return SkippedFile("unchanged")

        # Only a grown file with a newer mtime continues from the checkpoint
        is_incremental = (
            checkpoint is not None
            and checkpoint.size < stats.st_size
            and checkpoint.mtime_ns < stats.st_mtime_ns
        )
        start_offset = checkpoint.offset if is_incremental else 0
        message_number = checkpoint.message_count if is_incremental else 0

        session_id = file_path.stem

        entries: list[MessageIndexEntry] = []
        edges: list[IdentityEdge] = []
        summary = DEFAULT_SUMMARY
        last_activity: datetime | None = None
        cwd: str | None = None
        byte_offset = start_offset

        for line_offset, raw, complete in iter_lines(file_path, start_offset, stats.st_size):
            data = parse_line(raw)
            if data is None and not complete:
                # Partial trailing write; re-read it whole on the next pass
                break
            byte_offset = line_offset + len(raw)

            record = parse_record(data)
            if record is None:
                continue

            if isinstance(record, SummaryRecord) and record.summary:
                summary = record.summary

            if record.session_id != session_id:
                continue

            message_number += 1
            ts = parse_timestamp(record.timestamp)
            entries.append(
                MessageIndexEntry(
                    session_id=session_id,
                    message_number=message_number,
                    uuid=record.uuid,
                    type=record.type,
                    timestamp=ts,
                    byte_offset=line_offset,
                    file_path=str(file_path),
                )
            )
            if record.uuid:
                edges.append(
                    IdentityEdge(
                        uuid=record.uuid,
                        session_id=session_id,
                        parent_uuid=record.parent_uuid,
                        type=record.type,
                    )
                )
            if ts is not None and (last_activity is None or ts > last_activity):
                last_activity = ts
            if cwd is None and record.cwd:
                cwd = record.cwd

        with conn:
            if not is_incremental:
                delete_session_message_index(conn, session_id)
            if entries:
                insert_message_index_batch(conn, entries)
            if edges:
                insert_identity_edge_batch(conn, edges)
            upsert_session(
                conn,
                Session(
                    id=session_id,
                    project_name=project_name,
                    summary=summary,
                    message_count=message_number,
                    last_activity=last_activity,
                    cwd=cwd,
                    provider=DEFAULT_PROVIDER,
                    file_path=str(file_path),
                ),
            )
            set_file_checkpoint(
                conn,
                str(file_path),
                byte_offset,
                stats.st_mtime_ns,
                stats.st_size,
                message_number,
            )

        logger.debug(
            "Indexed %s: %d new messages (%s)",
            file_path.name,
            len(entries),
            "incremental" if is_incremental else "full",
        )
        return IndexedFile(
            session_id=session_id,
            messages_indexed=len(entries),
            total_messages=message_number,
            is_incremental=is_incremental,
            cwd=cwd,
            last_activity=last_activity,
        )
    except Exception as e:
        logger.error("Error processing %s: %s", file_path, e)
        return SkippedFile("error", str(e))


def index_file(conn: sqlite3.Connection, file_path: Path, projects_dir: Path) -> FileIndexResult:
    """Re-evaluate a single file, e.g. after a change notification."""
    # Compare real paths so relative or symlinked roots still match
    file_path = file_path.resolve()
    if not file_path.is_relative_to(projects_dir.resolve()):
        return SkippedFile("not in projects directory")
    if not is_session_file(file_path):
        return SkippedFile("not a session file")
    return process_session_file(conn, file_path, file_path.parent.name)


def _stored_project_cwd(conn: sqlite3.Connection, project_name: str) -> str | None:
    for session in get_sessions_filtered(conn, project_name=project_name, limit=50):
        if session.cwd:
            return session.cwd
    return None


def index_project(conn: sqlite3.Connection, project_dir: Path) -> ProjectScan:
    """Index every session file of a project directory and refresh its project row."""
    project_name = project_dir.name
    scan = ProjectScan(project_name=project_name)

    try:
        last_activity: datetime | None = None
        project_cwd: str | None = None

        for file_path in discover_session_files(project_dir):
            result = process_session_file(conn, file_path, project_name)
            scan.results.append(result)
            if isinstance(result, IndexedFile):
                if result.last_activity and (
                    last_activity is None or result.last_activity > last_activity
                ):
                    last_activity = result.last_activity
                if project_cwd is None and result.cwd:
                    project_cwd = result.cwd
        scan.files_processed = len(scan.results)

        if project_cwd is None:
            project_cwd = _stored_project_cwd(conn, project_name)

        with conn:
            session_count = count_project_sessions(conn, project_name)
            upsert_project(
                conn,
                Project(
                    name=project_name,
                    display_name=get_project_display_name(project_cwd)
                    or decode_project_name(project_name),
                    full_path=project_cwd or str(project_dir),
                    session_count=session_count,
                    last_activity=last_activity,
                    has_claude_sessions=session_count > 0,
                ),
            )
    except Exception as e:
        logger.error("Error indexing project %s: %s", project_dir, e)
        scan.error = str(e)

    return scan


def discover_project_dirs(projects_dir: Path) -> list[Path]:
    return sorted(p for p in projects_dir.iterdir() if p.is_dir())


def index_all_projects(conn: sqlite3.Connection, projects_dir: Path) -> ScanReport:
    """Index every project directory under the projects root."""
    start = time.monotonic()

    if not projects_dir.exists():
        logger.warning("Projects path does not exist: %s", projects_dir)
        return ScanReport(success=False, error="Projects path not found")

    try:
        scans = [index_project(conn, d) for d in discover_project_dirs(projects_dir)]
        duration_ms = int((time.monotonic() - start) * 1000)
        stats = get_stats(conn)
    except (OSError, sqlite3.Error) as e:
        logger.error("Error during full indexing: %s", e)
        return ScanReport(success=False, error=str(e))

    logger.info("Full indexing complete: %d projects in %d ms", len(scans), duration_ms)
    return ScanReport(
        success=True,
        projects_indexed=len(scans),
        duration_ms=duration_ms,
        stats=stats,
    )


def build_index(
    conn: sqlite3.Connection,
    projects_dir: Path,
    force: bool = False,
    project: str | None = None,
) -> None:
    """Build or refresh the index with console progress.

    Args:
        force: Forget checkpoints first so every file is fully reindexed.
        project: Only index this project directory name.
    """
    if not projects_dir.exists():
        console.print(f"[yellow]No projects directory at {projects_dir}[/yellow]")
        return

    project_dirs = discover_project_dirs(projects_dir)
    if project:
        project_dirs = [d for d in project_dirs if d.name == project]
        if not project_dirs:
            console.print(f"[red]Unknown project: {project}[/red]")
            return

    if force:
        with conn:
            if project:
                for file_path in discover_session_files(project_dirs[0]):
                    reset_file_checkpoint(conn, str(file_path))
            else:
                reset_file_checkpoint(conn)

    indexed = skipped = failed = messages = 0
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Indexing projects...", total=len(project_dirs))
        for project_dir in project_dirs:
            progress.update(task, description=f"Indexing {project_dir.name}")
            scan = index_project(conn, project_dir)
            for result in scan.results:
                if isinstance(result, IndexedFile):
                    indexed += 1
                    messages += result.messages_indexed
                elif result.reason == "error":
                    failed += 1
                else:
                    skipped += 1
            progress.advance(task)

    console.print(
        f"[green]Indexed {indexed} sessions ({messages} new messages)[/green], "
        f"{skipped} unchanged"
    )
    if failed:
        console.print(f"[red]{failed} files failed, see log for details[/red]")
