"""CLI for cc-index."""

import re
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from cc_index import __version__
from cc_index.config import Settings
from cc_index.errors import CCIndexError
from cc_index.logs import setup_logging

app = typer.Typer(
    name="cc-index",
    help="Incrementally index Claude Code transcripts and read messages on demand.",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"cc-index {__version__}")
        raise typer.Exit()


def get_settings() -> Settings:
    try:
        return Settings.from_env()
    except CCIndexError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None


def open_index(settings: Settings):
    from cc_index.storage import ensure_index_exists

    try:
        return ensure_index_exists(settings.db_path)
    except CCIndexError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None


def history_cache(settings: Settings):
    from cc_index.history import HistoryCache

    return HistoryCache(
        settings.get_history_file(),
        max_sessions=settings.history_cache_max_sessions,
        ttl=settings.history_cache_ttl,
    )


def message_cache(settings: Settings):
    from cc_index.messages import MessageCache

    return MessageCache(
        settings.get_projects_dir(),
        history=history_cache(settings),
        list_ttl=settings.list_cache_ttl,
        max_sessions=settings.list_cache_max_sessions,
        message_ttl=settings.message_cache_ttl,
        max_messages=settings.message_cache_max_entries,
    )


def parse_since(since: str) -> datetime:
    """Parse "2h", "7d", "1w", "1m", "1y" or an ISO date into a UTC datetime."""
    since = since.strip()

    match = re.match(r"^(\d+)([hdwmy])$", since.lower())
    if match:
        amount = int(match.group(1))
        days_per_unit = {"d": 1, "w": 7, "m": 30, "y": 365}
        unit = match.group(2)
        if unit == "h":
            delta = timedelta(hours=amount)
        else:
            delta = timedelta(days=amount * days_per_unit[unit])
        return datetime.now(tz=timezone.utc) - delta

    try:
        dt = datetime.fromisoformat(since if "T" in since else since + "T00:00:00")
    except ValueError:
        raise typer.BadParameter(f"Invalid date format: {since}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _fmt_time(ts: datetime | None) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M") if ts else "-"


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Override CC_INDEX_LOG_LEVEL")
    ] = None,
) -> None:
    """Index Claude Code session transcripts."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)


@app.command()
def index(
    force: Annotated[bool, typer.Option("--force", "-f", help="Reindex every file from scratch")] = False,
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Only index this project directory")
    ] = None,
    history: Annotated[
        bool, typer.Option("--history/--no-history", help="Also load history.jsonl prompts")
    ] = True,
) -> None:
    """Build or refresh the index."""
    from cc_index.indexer import build_index

    settings = get_settings()
    conn = open_index(settings)
    try:
        build_index(conn, settings.get_projects_dir(), force=force, project=project)
        if history:
            count = history_cache(settings).load_into_store(conn)
            console.print(f"Loaded {count} history prompts")
    finally:
        conn.close()


@app.command()
def status(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show row counts and write versions")
    ] = False,
) -> None:
    """Show index statistics."""
    from cc_index.storage import get_index_stats, get_stats

    settings = get_settings()
    stats = get_index_stats(settings.db_path)
    console.print(f"Projects indexed: {stats['project_count']}")
    console.print(f"Sessions indexed: {stats['session_count']}")
    console.print(f"Messages indexed: {stats['message_count']}")
    console.print(f"Index path: {stats['index_path']}")
    console.print(f"Index size: {stats['index_size_human']}")

    if verbose and stats["session_count"] > 0:
        conn = open_index(settings)
        detailed = get_stats(conn)
        conn.close()
        console.print("\n[bold]Rows:[/bold]")
        for key in ("identity_edges", "history_prompts", "file_checkpoints"):
            console.print(f"  {key}: {detailed[key]}")
        console.print("[bold]Versions:[/bold]")
        for key, version in detailed["versions"].items():
            console.print(f"  {key}: {version['version']}")


@app.command()
def projects(
    since: Annotated[str | None, typer.Option("--since", "-s", help="e.g. 1d, 2w, 2024-01-01")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List indexed projects."""
    from cc_index.models import to_ms
    from cc_index.storage import get_projects, index_exists

    settings = get_settings()
    if not index_exists(settings.db_path):
        console.print("[yellow]No index found. Run 'cc-index index' first.[/yellow]")
        raise typer.Exit(1)

    conn = open_index(settings)
    project_list = get_projects(conn, to_ms(parse_since(since)) if since else None)
    conn.close()

    if json_output:
        console.print_json(data={"projects": [asdict(p) for p in project_list]}, default=str)
        return
    if not project_list:
        console.print("[yellow]No projects indexed.[/yellow]")
        return
    for proj in project_list:
        console.print(
            f"[cyan]{proj.display_name}[/cyan] ({proj.session_count} sessions, "
            f"last active {_fmt_time(proj.last_activity)}) [dim]{proj.name}[/dim]"
        )


@app.command()
def sessions(
    project: Annotated[str | None, typer.Option("--project", "-p", help="Project directory name")] = None,
    since: Annotated[str | None, typer.Option("--since", "-s", help="e.g. 1d, 2w, 2024-01-01")] = None,
    provider: Annotated[str | None, typer.Option("--provider", help="Provider tag")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 20,
    offset: Annotated[int, typer.Option("--offset")] = 0,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List sessions, most recent first."""
    from cc_index.models import to_ms
    from cc_index.storage import get_session_count, get_sessions_filtered

    settings = get_settings()
    since_ms = to_ms(parse_since(since)) if since else None
    conn = open_index(settings)
    rows = get_sessions_filtered(conn, project, since_ms, provider, limit, offset)
    total = get_session_count(conn, project, since_ms, provider)
    conn.close()

    if json_output:
        console.print_json(
            data={"sessions": [asdict(s) for s in rows], "total": total}, default=str
        )
        return

    table = Table(title=f"Sessions ({len(rows)} of {total})")
    table.add_column("Session", style="cyan", no_wrap=True)
    table.add_column("Project")
    table.add_column("Messages", justify="right")
    table.add_column("Last activity")
    table.add_column("Summary")
    for s in rows:
        table.add_row(
            s.id,
            s.project_display_name or s.project_name,
            str(s.message_count),
            _fmt_time(s.last_activity),
            s.summary,
        )
    console.print(table)


@app.command()
def messages(
    project: Annotated[str, typer.Argument(help="Project directory name")],
    session: Annotated[str, typer.Argument(help="Session ID")],
    number: Annotated[int | None, typer.Option("--number", "-n", help="Show one message")] = None,
    range_: Annotated[
        str | None, typer.Option("--range", "-r", help="Show messages START:END")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List a session's messages or show message bodies."""
    settings = get_settings()
    cache = message_cache(settings)

    if number is not None:
        message = cache.get_message_by_number(project, session, number)
        if message is None:
            console.print(f"[red]Message {number} not found[/red]")
            raise typer.Exit(1)
        console.print_json(data=message)
        return

    if range_ is not None:
        match = re.match(r"^(\d+):(\d+)$", range_)
        if not match:
            raise typer.BadParameter("Range must look like START:END")
        found = cache.get_messages_by_range(
            project, session, int(match.group(1)), int(match.group(2))
        )
        console.print_json(data={"messages": found})
        return

    result = cache.get_message_list(project, session)
    if json_output:
        console.print_json(data=asdict(result), default=str)
        return

    for m in result.messages:
        console.print(f"{m.number:>5}  {m.timestamp or '-':<26}  {m.type or '-':<10}  [dim]{m.id}[/dim]")
    console.print(f"Total: {result.total}")
    if result.last_user_prompt:
        console.print(f"Last prompt: {result.last_user_prompt.prompt}")


@app.command()
def prompts(
    session: Annotated[str, typer.Argument(help="Session ID")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show prompts logged in history.jsonl for a session."""
    settings = get_settings()
    cache = history_cache(settings)
    found = cache.get_session_prompts(session)

    if json_output:
        console.print_json(data={"prompts": [asdict(p) for p in found]})
        return
    if not found:
        console.print("[yellow]No prompts found.[/yellow]")
        return
    title = cache.get_session_title(session)
    if title:
        console.print(f"[bold]{title}[/bold]")
    for p in found:
        when = datetime.fromtimestamp(p.timestamp / 1000).strftime("%Y-%m-%d %H:%M")
        console.print(f"[dim]{when}[/dim] {p.prompt}")


@app.command()
def watch() -> None:
    """Watch the projects directory and index changes as they happen."""
    from cc_index.indexer import index_all_projects
    from cc_index.watcher import SessionWatcher

    settings = get_settings()
    projects_dir = settings.get_projects_dir()
    if not projects_dir.exists():
        console.print(f"[red]Projects directory not found: {projects_dir}[/red]")
        raise typer.Exit(1)

    conn = open_index(settings)
    try:
        index_all_projects(conn, projects_dir)
        console.print(f"Watching {projects_dir} (Ctrl+C to stop)")
        SessionWatcher(conn, projects_dir).run()
    except KeyboardInterrupt:
        pass
    finally:
        conn.close()


@app.command()
def detect(
    path: Annotated[Path | None, typer.Argument(help="Project directory to check")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Check for Claude CLI sessions running outside this tool."""
    from cc_index.activity import ProcessCache, detect_external_session

    settings = get_settings()
    activity = detect_external_session(
        path.resolve() if path else None,
        ProcessCache(settings.process_refresh_interval),
    )

    if json_output:
        console.print_json(data=asdict(activity), default=str)
        return

    if not activity.detection_available:
        console.print(f"[yellow]Process detection unavailable: {activity.detection_error}[/yellow]")
    if not activity.has_external_session:
        console.print("[green]No external Claude sessions detected[/green]")
        return
    for proc in activity.processes:
        console.print(f"process {proc.pid}: {proc.command} [dim]{proc.cwd or ''}[/dim]")
    for tmux in activity.tmux_sessions:
        attached = " (attached)" if tmux.attached else ""
        console.print(f"tmux {tmux.session_name}: {tmux.windows} windows{attached}")
    if activity.lock_file.exists:
        console.print(f"lock file {activity.lock_file.lock_file}")


if __name__ == "__main__":
    app()
