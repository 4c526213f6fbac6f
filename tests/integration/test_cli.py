"""Integration tests for the CLI."""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[2] / "src"


@pytest.fixture
def claude_home(temp_dir, make_record, write_jsonl):
    """A ~/.claude layout with one project, one session and a prompt log."""
    claude_dir = temp_dir / "claude"
    write_jsonl(
        claude_dir / "projects" / "-work-org-app" / "s1.jsonl",
        [
            {"type": "summary", "summary": "Wire up the parser", "leafUuid": "s1-3"},
            make_record("s1", 1),
            make_record("s1", 2, type_="assistant", parent="s1-1"),
            make_record("s1", 3, parent="s1-2"),
        ],
    )
    write_jsonl(
        claude_dir / "history.jsonl",
        [{"display": "Wire up the parser please", "sessionId": "s1", "timestamp": 1705312801000}],
    )
    return claude_dir


@pytest.fixture
def run_cli(temp_dir, claude_home):
    env = {
        **os.environ,
        "CC_INDEX_CLAUDE_DIR": str(claude_home),
        "CC_INDEX_DB_PATH": str(temp_dir / "index.db"),
        "PYTHONPATH": os.pathsep.join(filter(None, [str(SRC_DIR), os.environ.get("PYTHONPATH")])),
    }

    def _run(*args):
        return subprocess.run(
            [sys.executable, "-m", "cc_index.cli", *args],
            capture_output=True,
            text=True,
            env=env,
        )

    return _run


def test_cli_help(run_cli):
    """Test that --help works."""
    result = run_cli("--help")
    assert result.returncode == 0
    for command in ("index", "status", "sessions", "messages", "prompts", "watch", "detect"):
        assert command in result.stdout


def test_cli_version(run_cli):
    """Test that --version works."""
    result = run_cli("--version")
    assert result.returncode == 0
    assert "cc-index" in result.stdout


def test_cli_status_without_index(run_cli):
    result = run_cli("status")
    assert result.returncode == 0
    assert "Sessions indexed: 0" in result.stdout
    assert "Index path:" in result.stdout


def test_index_then_list_sessions(run_cli):
    result = run_cli("index")
    assert result.returncode == 0, result.stderr
    assert "Loaded 1 history prompts" in result.stdout

    result = run_cli("sessions", "--json")
    assert result.returncode == 0, result.stderr
    data = json.loads(result.stdout)
    assert data["total"] == 1
    session = data["sessions"][0]
    assert session["id"] == "s1"
    assert session["summary"] == "Wire up the parser"
    assert session["message_count"] == 3
    assert session["project_display_name"] == "org/app"

    result = run_cli("status")
    assert "Sessions indexed: 1" in result.stdout
    assert "Messages indexed: 3" in result.stdout


def test_projects_json(run_cli):
    run_cli("index", "--no-history")

    result = run_cli("projects", "--json")
    assert result.returncode == 0, result.stderr
    projects = json.loads(result.stdout)["projects"]
    assert [p["name"] for p in projects] == ["-work-org-app"]
    assert projects[0]["session_count"] == 1


def test_messages_commands(run_cli):
    result = run_cli("messages", "--json", "--", "-work-org-app", "s1")
    assert result.returncode == 0, result.stderr
    data = json.loads(result.stdout)
    assert data["total"] == 3
    assert [m["id"] for m in data["messages"]] == ["s1-1", "s1-2", "s1-3"]
    assert data["last_user_prompt"]["prompt"] == "Wire up the parser please"

    result = run_cli("messages", "--number", "2", "--", "-work-org-app", "s1")
    assert result.returncode == 0, result.stderr
    assert json.loads(result.stdout)["uuid"] == "s1-2"

    result = run_cli("messages", "--range", "2:9", "--", "-work-org-app", "s1")
    assert [m["number"] for m in json.loads(result.stdout)["messages"]] == [2, 3]

    result = run_cli("messages", "--number", "7", "--", "-work-org-app", "s1")
    assert result.returncode == 1


def test_prompts_json(run_cli):
    result = run_cli("prompts", "s1", "--json")
    assert result.returncode == 0, result.stderr
    prompts = json.loads(result.stdout)["prompts"]
    assert prompts[0]["prompt"] == "Wire up the parser please"


def test_invalid_config_fails():
    result = subprocess.run(
        [sys.executable, "-m", "cc_index.cli", "status"],
        capture_output=True,
        text=True,
        env={**os.environ, "PYTHONPATH": str(SRC_DIR), "CC_INDEX_MESSAGE_CACHE_TTL": "soon"},
    )
    assert result.returncode == 1
    assert "CC_INDEX_MESSAGE_CACHE_TTL" in result.stdout
