"""Keep the index current from filesystem change notifications."""

import logging
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path

from watchfiles import Change, watch

from cc_index.indexer import index_file, index_project, is_session_file
from cc_index.messages import MessageCache
from cc_index.models import FileIndexResult

logger = logging.getLogger(__name__)

DEBOUNCE_MS = 500


class SessionWatcher:
    """Re-evaluates changed transcript files one batch at a time.

    Batches are handled sequentially, which serialises indexing per file.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        projects_dir: Path,
        messages: MessageCache | None = None,
        debounce_ms: int = DEBOUNCE_MS,
    ):
        self.conn = conn
        self.projects_dir = projects_dir.resolve()
        self.messages = messages
        self.debounce_ms = debounce_ms
        self._stop = threading.Event()

    def process_changes(self, changes: Iterable[tuple[Change, str]]) -> list[FileIndexResult]:
        """Handle one batch of (change, path) pairs."""
        results = []
        touched: set[Path] = set()
        for change, path_str in sorted(changes, key=lambda c: c[1]):
            path = Path(path_str).resolve()
            if not is_session_file(path):
                continue

            if self.messages is not None:
                self.messages.invalidate_cache(path.parent.name, path.stem)

            if change == Change.deleted:
                logger.debug("Session file removed: %s", path)
                continue

            result = index_file(self.conn, path, self.projects_dir)
            if result.skipped:
                logger.debug("Skipped %s: %s", path.name, result.reason)
            else:
                logger.info(
                    "Indexed %s: %d new messages", path.name, result.messages_indexed
                )
            results.append(result)
            if path.parent.parent == self.projects_dir:
                touched.add(path.parent)

        # Refresh project rows; files indexed above are skipped as unchanged
        for project_dir in sorted(touched):
            if project_dir.is_dir():
                index_project(self.conn, project_dir)
        return results

    def run(self) -> None:
        """Block, indexing changes until stop() is called."""
        logger.info("Watching %s", self.projects_dir)
        for changes in watch(
            self.projects_dir,
            debounce=self.debounce_ms,
            recursive=True,
            stop_event=self._stop,
        ):
            self.process_changes(changes)

    def stop(self) -> None:
        self._stop.set()
