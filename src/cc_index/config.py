"""Runtime configuration loaded from CC_INDEX_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from cc_index.errors import ConfigError

# Index location
INDEX_DIR = Path.home() / ".local" / "share" / "cc-index"
INDEX_PATH = INDEX_DIR / "index.db"

ENV_PREFIX = "CC_INDEX_"


@dataclass
class Settings:
    """Paths and cache tunables."""

    claude_dir: Path = field(default_factory=lambda: Path.home() / ".claude")
    projects_dir: Path | None = None
    history_file: Path | None = None
    db_path: Path = INDEX_PATH
    log_level: str = "INFO"

    # Message access layer
    list_cache_ttl: float = 60.0
    list_cache_max_sessions: int = 50
    message_cache_ttl: float = 30 * 60.0
    message_cache_max_entries: int = 1000

    # History prompt cache
    history_cache_ttl: float = 60.0
    history_cache_max_sessions: int = 20

    # External activity detector
    process_refresh_interval: float = 60.0

    @staticmethod
    def from_env(environ: dict[str, str] | None = None) -> Settings:
        """Load settings from the environment, falling back to defaults."""
        env = os.environ if environ is None else environ
        s = Settings()
        claude_dir = env.get(ENV_PREFIX + "CLAUDE_DIR") or s.claude_dir
        s.claude_dir = Path(claude_dir).expanduser().resolve()
        if v := env.get(ENV_PREFIX + "PROJECTS_DIR"):
            s.projects_dir = Path(v).expanduser().resolve()
        if v := env.get(ENV_PREFIX + "HISTORY_FILE"):
            s.history_file = Path(v).expanduser().resolve()
        if v := env.get(ENV_PREFIX + "DB_PATH"):
            s.db_path = Path(v).expanduser().resolve()
        if v := env.get(ENV_PREFIX + "LOG_LEVEL"):
            s.log_level = v.upper()

        s.list_cache_ttl = _float(env, "LIST_CACHE_TTL", s.list_cache_ttl)
        s.list_cache_max_sessions = _int(env, "LIST_CACHE_MAX_SESSIONS", s.list_cache_max_sessions)
        s.message_cache_ttl = _float(env, "MESSAGE_CACHE_TTL", s.message_cache_ttl)
        s.message_cache_max_entries = _int(
            env, "MESSAGE_CACHE_MAX_ENTRIES", s.message_cache_max_entries
        )
        s.history_cache_ttl = _float(env, "HISTORY_CACHE_TTL", s.history_cache_ttl)
        s.history_cache_max_sessions = _int(
            env, "HISTORY_CACHE_MAX_SESSIONS", s.history_cache_max_sessions
        )
        s.process_refresh_interval = _float(
            env, "PROCESS_REFRESH_INTERVAL", s.process_refresh_interval
        )
        return s

    def get_projects_dir(self) -> Path:
        return self.projects_dir or self.claude_dir / "projects"

    def get_history_file(self) -> Path:
        return self.history_file or self.claude_dir / "history.jsonl"


def _int(env, name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive, got {value}")
    return value


def _float(env, name: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must not be negative, got {value}")
    return value
