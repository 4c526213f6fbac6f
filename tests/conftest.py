"""Pytest fixtures for cc-index tests."""

import json
import os
import tempfile
from pathlib import Path

import pytest

from cc_index.storage import ensure_index_exists


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def projects_dir(temp_dir):
    path = temp_dir / "projects"
    path.mkdir()
    return path


@pytest.fixture
def conn(temp_dir):
    """A fresh index database."""
    connection = ensure_index_exists(temp_dir / "index.db")
    yield connection
    connection.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_record():
    """Build a transcript record for a session."""

    def _make(session_id, n, type_="user", parent=None, cwd="/work/org/app", text=None):
        return {
            "type": type_,
            "uuid": f"{session_id}-{n}",
            "parentUuid": parent,
            "sessionId": session_id,
            "timestamp": f"2024-01-15T10:00:{n:02d}Z",
            "cwd": cwd,
            "message": {"role": type_, "content": text or f"message {n}"},
        }

    return _make


@pytest.fixture
def write_jsonl():
    """Write records (dicts are JSON-encoded, strings written verbatim) one per line."""

    def _write(path: Path, lines, mode="w"):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode, encoding="utf-8") as f:
            for line in lines:
                f.write((line if isinstance(line, str) else json.dumps(line)) + "\n")
        return path

    return _write


@pytest.fixture
def bump_mtime():
    """Move a file's mtime by a whole number of seconds (negative moves it back)."""

    def _bump(path: Path, seconds: int = 1) -> int:
        current = path.stat().st_mtime_ns
        new = current + seconds * 1_000_000_000
        os.utime(path, ns=(new, new))
        return new

    return _bump


@pytest.fixture
def set_mtime():
    def _set(path: Path, mtime_ns: int) -> None:
        os.utime(path, ns=(mtime_ns, mtime_ns))

    return _set
