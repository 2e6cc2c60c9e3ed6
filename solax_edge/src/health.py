"""
Health file writer for the edge daemon.

Writes a JSON health file at a configurable path with:
- last_poll_ts: ISO timestamp of the most recent poll attempt (any source).
- last_success_ts: ISO timestamp of the most recent successful poll.
- sources: per source, its last poll/success timestamps and the number of
  consecutive failed polls.

The file is overwritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-19: Track per-source poll outcomes (STORY-013)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class HealthWriter:
    """Writes edge health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._last_success_ts: str | None = None
        self._sources: dict[str, dict[str, Any]] = {}

    def record_poll(self, source_id: str, *, success: bool) -> None:
        """Record one poll attempt of *source_id* and write health file."""
        now = datetime.now(tz=UTC).isoformat()
        entry = self._sources.setdefault(
            source_id,
            {"last_poll_ts": None, "last_success_ts": None, "consecutive_failures": 0},
        )
        entry["last_poll_ts"] = now
        self._last_poll_ts = now
        if success:
            entry["last_success_ts"] = now
            entry["consecutive_failures"] = 0
            self._last_success_ts = now
        else:
            entry["consecutive_failures"] += 1
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_poll_ts": self._last_poll_ts,
            "last_success_ts": self._last_success_ts,
            "sources": self._sources,
        }
        self.path.write_text(json.dumps(data))
