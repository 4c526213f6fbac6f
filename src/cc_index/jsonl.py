"""Byte-offset aware JSON-Lines reading."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def iter_lines(
    path: Path, start: int = 0, end: int | None = None
) -> Iterator[tuple[int, bytes, bool]]:
    """Yield (offset, raw_line, complete) for each line from ``start``.

    ``raw_line`` keeps its trailing newline, so ``offset + len(raw_line)``
    is always the offset of the next line. ``complete`` is False only for a
    final line with no newline. Reading stops at ``end`` if given.
    """
    offset = start
    remaining = None if end is None else max(end - start, 0)
    with open(path, "rb") as f:
        f.seek(start)
        while remaining is None or remaining > 0:
            raw = f.readline() if remaining is None else f.readline(remaining)
            if not raw:
                break
            complete = raw.endswith(b"\n")
            yield offset, raw, complete
            offset += len(raw)
            if remaining is not None:
                remaining -= len(raw)


def parse_line(raw: bytes | str) -> dict[str, Any] | None:
    """Decode one JSON object line. Blank, malformed or non-object lines give None."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    text = raw.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def read_line_at(path: Path, offset: int) -> str | None:
    """Read the single line starting at ``offset``.

    Returns None when the file cannot be read or the offset is past EOF.
    """
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            raw = f.readline()
    except OSError as e:
        logger.warning("Cannot read %s at offset %d: %s", path, offset, e)
        return None
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")
