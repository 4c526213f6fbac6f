"""Detection of Claude CLI sessions running outside this process.

Process and tmux scans are slow, so they are cached in a ProcessCache
snapshot and refreshed at most once per interval. Lock files are cheap
and checked on every call.
"""

import json
import logging
import os
import re
import subprocess
import sys
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from cc_index.models import (
    ExternalActivity,
    ExternalProcess,
    LockFileStatus,
    ProcessSnapshot,
    TmuxSession,
)

logger = logging.getLogger(__name__)

PROCESS_REFRESH_INTERVAL = 60.0
LOCK_FILE = Path(".claude") / "session.lock"
APP_NAME = "cc-index"

# Our own tmux sessions carry this prefix
OWN_TMUX_PREFIX = "cc-index-"
TMUX_NAME_HINTS = ("claude", "ai", "chat", "code")


def _run(args: list[str]) -> subprocess.CompletedProcess | None:
    """Run a probe command; None if the binary is missing."""
    try:
        return subprocess.run(args, capture_output=True, text=True, timeout=10)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None


def is_external_claude_process(command: str) -> bool:
    """Whether a command line looks like a Claude CLI invocation we did not spawn."""
    if command.startswith("node "):
        return False
    if "cc_index" in command or "cc-index" in command:
        return False
    return (
        "claude " in command
        or "claude-code" in command
        or re.search(r"/claude\s", command) is not None
        or command.endswith("/claude")
    )


def _process_cwd(pid: int) -> str | None:
    proc = _run(["lsof", "-a", "-p", str(pid), "-d", "cwd", "-Fn"])
    if proc is None or proc.returncode != 0:
        return None
    match = re.search(r"^n(/.*)$", proc.stdout, re.MULTILINE)
    return match.group(1) if match else None


def scan_claude_processes(own_pid: int) -> tuple[list[ExternalProcess], bool, str | None]:
    """Find Claude CLI processes. Returns (processes, detection_available, error)."""
    if sys.platform == "win32":
        return [], False, "Process detection is not supported on Windows"

    processes: list[ExternalProcess] = []
    pgrep = _run(["pgrep", "-f", "claude"])

    if pgrep is None:
        logger.debug("pgrep not available, using ps aux")
        ps = _run(["ps", "aux"])
        if ps is None or ps.returncode != 0:
            return [], False, "Neither pgrep nor ps aux available"
        for line in ps.stdout.splitlines():
            if "claude" not in line.lower():
                continue
            parts = line.split()
            if len(parts) < 11 or not parts[1].isdigit():
                continue
            pid = int(parts[1])
            command = " ".join(parts[10:])
            if pid != own_pid and is_external_claude_process(command):
                processes.append(ExternalProcess(pid=pid, command=command))
        return processes, True, None

    if pgrep.returncode != 0:
        logger.debug("pgrep found no processes")
        return [], True, None

    for pid_str in pgrep.stdout.split():
        pid = int(pid_str)
        if pid == own_pid:
            continue
        ps = _run(["ps", "-p", str(pid), "-o", "args="])
        if ps is None or ps.returncode != 0:
            continue
        command = ps.stdout.strip()
        if is_external_claude_process(command):
            processes.append(ExternalProcess(pid=pid, command=command, cwd=_process_cwd(pid)))
    return processes, True, None


def _might_be_claude_tmux(session_name: str) -> bool:
    lower = session_name.lower()
    if any(hint in lower for hint in TMUX_NAME_HINTS):
        return True
    proc = _run(["tmux", "display-message", "-t", session_name, "-p", "#{pane_current_command}"])
    return proc is not None and proc.returncode == 0 and "claude" in proc.stdout.lower()


def scan_claude_tmux_sessions() -> list[TmuxSession]:
    proc = _run(
        ["tmux", "list-sessions", "-F", "#{session_name}:#{session_windows}:#{session_attached}"]
    )
    if proc is None or proc.returncode != 0:
        return []

    sessions = []
    for line in proc.stdout.splitlines():
        name, _, rest = line.rpartition(":")
        name, _, windows = name.rpartition(":")
        if not name or name.startswith(OWN_TMUX_PREFIX):
            continue
        if _might_be_claude_tmux(name):
            sessions.append(
                TmuxSession(
                    session_name=name,
                    windows=int(windows) if windows.isdigit() else 0,
                    attached=rest == "1",
                )
            )
    return sessions


ProcessScanner = Callable[[int], tuple[list[ExternalProcess], bool, str | None]]


class ProcessCache:
    """Snapshot of external processes and tmux sessions, refreshed lazily."""

    def __init__(
        self,
        refresh_interval: float = PROCESS_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        process_scanner: ProcessScanner = scan_claude_processes,
        tmux_scanner: Callable[[], list[TmuxSession]] = scan_claude_tmux_sessions,
    ):
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._process_scanner = process_scanner
        self._tmux_scanner = tmux_scanner
        self._snapshot = ProcessSnapshot()
        self._updating = False

    def refresh(self) -> None:
        """Rescan now. A refresh already in progress is not re-entered."""
        if self._updating:
            logger.debug("Process cache update already in progress, skipping")
            return
        self._updating = True
        start = self._clock()
        try:
            processes, available, error = self._process_scanner(os.getpid())
            tmux_sessions = self._tmux_scanner()
            self._snapshot = ProcessSnapshot(
                processes=processes,
                tmux_sessions=tmux_sessions,
                detection_available=available,
                detection_error=error,
                last_updated=self._clock(),
            )
            logger.info(
                "Process cache updated: %d processes, %d tmux sessions in %.0f ms",
                len(processes),
                len(tmux_sessions),
                (self._clock() - start) * 1000,
            )
        except (OSError, ValueError) as e:
            logger.error("Failed to update process cache: %s", e)
            self._snapshot.detection_error = str(e)
            self._snapshot.last_updated = self._clock()
        finally:
            self._updating = False

    def age(self) -> float | None:
        if self._snapshot.last_updated is None:
            return None
        return self._clock() - self._snapshot.last_updated

    def snapshot(self) -> ProcessSnapshot:
        """Current snapshot, rescanning first if it is older than the interval."""
        age = self.age()
        if age is None or age >= self.refresh_interval:
            self.refresh()
        return self._snapshot


def _process_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def check_session_lock_file(project_path: Path) -> LockFileStatus:
    """Look for a live session lock in the project; stale locks are removed."""
    lock_file = project_path / LOCK_FILE
    try:
        content = lock_file.read_text(encoding="utf-8")
    except OSError:
        return LockFileStatus()

    try:
        lock_data = json.loads(content)
    except json.JSONDecodeError:
        return LockFileStatus(exists=True, lock_file=lock_file, content={"raw": content})
    if not isinstance(lock_data, dict):
        return LockFileStatus(exists=True, lock_file=lock_file, content={"raw": content})

    pid = lock_data.get("pid")
    if isinstance(pid, int) and not _process_exists(pid):
        logger.debug("Removing stale lock %s (pid %d)", lock_file, pid)
        try:
            lock_file.unlink()
        except OSError as e:
            logger.warning("Cannot remove stale lock %s: %s", lock_file, e)
        return LockFileStatus()

    return LockFileStatus(exists=True, lock_file=lock_file, content=lock_data)


def detect_external_session(project_path: Path | None, cache: ProcessCache) -> ExternalActivity:
    """Report Claude sessions running outside this process, optionally for one project."""
    snapshot = cache.snapshot()
    processes = list(snapshot.processes)
    lock = LockFileStatus()

    if project_path is not None:
        prefix = str(project_path)
        processes = [p for p in processes if not p.cwd or p.cwd.startswith(prefix)]
        lock = check_session_lock_file(project_path)

    tmux_sessions = list(snapshot.tmux_sessions)
    return ExternalActivity(
        has_external_session=bool(processes or tmux_sessions or lock.exists),
        processes=processes,
        tmux_sessions=tmux_sessions,
        lock_file=lock,
        detection_available=snapshot.detection_available,
        detection_error=snapshot.detection_error,
        cache_age=cache.age(),
    )


def create_session_lock(project_path: Path, session_id: str) -> bool:
    lock_file = project_path / LOCK_FILE
    lock_data = {
        "pid": os.getpid(),
        "sessionId": session_id,
        "createdAt": datetime.now(tz=timezone.utc).isoformat(),
        "app": APP_NAME,
    }
    try:
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        lock_file.write_text(json.dumps(lock_data, indent=2), encoding="utf-8")
    except OSError as e:
        logger.error("Failed to create lock file %s: %s", lock_file, e)
        return False
    logger.debug("Created session lock %s for %s", lock_file, session_id)
    return True


def remove_session_lock(project_path: Path) -> bool:
    lock_file = project_path / LOCK_FILE
    try:
        lock_file.unlink(missing_ok=True)
    except OSError:
        return False
    return True
