from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from calendar_metrics.eventlog.models import CATEGORIES

logger = logging.getLogger("calendar_metrics")

LOG_SUFFIX = ".ndjson"


# -----------------------------
# Line parsing
# -----------------------------
@dataclass
class ReadStats:
    parsed: int = 0
    skipped: int = 0


def encode_json(value: Any) -> bytes:
    """Compact UTF-8 JSON.

    Lone surrogates (valid as JSON escapes, not encodable as UTF-8) force the
    ASCII-escaped form, which json.loads reads back to the same string.
    """
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError:
        return json.dumps(value, ensure_ascii=True, separators=(",", ":")).encode("ascii")


def encode_record(record: Mapping[str, Any]) -> bytes:
    """One compact JSON object terminated by a newline."""
    return encode_json(record) + b"\n"


def iter_records(
    lines: Iterable[str],
    *,
    source: str = "log",
    stats: Optional[ReadStats] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield every line that parses to a JSON object; skip the rest with a warning.

    Blank lines are ignored and are not counted as skipped.
    """
    for lineno, raw in enumerate(lines, 1):
        line = raw.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            record = None
        if not isinstance(record, dict):
            logger.warning("Skipping malformed line %d in %s", lineno, source)
            if stats is not None:
                stats.skipped += 1
            continue
        if stats is not None:
            stats.parsed += 1
        yield record


# -----------------------------
# Store
# -----------------------------
class LogStore:
    """Append-only NDJSON logs, one file per event category."""

    def __init__(self, log_dir: str) -> None:
        self._log_dir = log_dir

    @property
    def log_dir(self) -> str:
        return self._log_dir

    def path_for(self, category: str) -> str:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown event category: {category!r}")
        return os.path.join(self._log_dir, category + LOG_SUFFIX)

    def start(self) -> None:
        os.makedirs(self._log_dir, exist_ok=True)

    async def append(self, category: str, record: Mapping[str, Any]) -> None:
        path = self.path_for(category)
        data = encode_record(record)
        await asyncio.to_thread(self._append_sync, path, data)

    def _append_sync(self, path: str, data: bytes) -> None:
        self.start()
        # Single write() on an O_APPEND fd: lines from concurrent appenders never interleave
        # as long as each stays under the filesystem's atomic write size.
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    async def load_all(self, category: str) -> List[Dict[str, Any]]:
        path = self.path_for(category)
        return await asyncio.to_thread(self._load_sync, path)

    def _load_sync(self, path: str) -> List[Dict[str, Any]]:
        stats = ReadStats()
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                records = list(iter_records(f, source=os.path.basename(path), stats=stats))
        except FileNotFoundError:
            return []

        if stats.skipped:
            logger.warning(
                "Loaded %d records from %s, skipped %d malformed lines",
                stats.parsed,
                os.path.basename(path),
                stats.skipped,
            )
        return records
