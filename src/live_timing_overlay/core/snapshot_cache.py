"""Last-good snapshot blob for cold starts and overlay reloads.

The blob shape is ``{rows, title, finishFlag, sessionLaps, announcements}``
stored under a single key. Reads happen only on an empty bootstrap, writes
only when a snapshot carried rows. Storage faults are logged, never raised.
"""

from __future__ import annotations

import json
import os
import sqlite3
from typing import Any, Optional, Protocol

from live_timing_overlay.logging import get_logger

_LOGGER = get_logger(__name__)


class SnapshotCache(Protocol):
    def load(self) -> Optional[dict]: ...

    def save(self, blob: dict) -> None: ...


class MemorySnapshotCache:
    def __init__(self, blob: Optional[dict] = None):
        self._blob = blob

    def load(self) -> Optional[dict]:
        return dict(self._blob) if self._blob else None

    def save(self, blob: dict) -> None:
        self._blob = dict(blob)


class SqliteSnapshotCache:
    def __init__(self, path: str, key: str = "livetiming:last"):
        self.path = path
        self.key = key
        self._conn: Optional[sqlite3.Connection] = None

    def _ensure_db(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._conn = sqlite3.connect(self.path)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS overlay_cache( key TEXT PRIMARY KEY, data TEXT, updated_at REAL )"
        )
        self._conn.commit()
        return self._conn

    def load(self) -> Optional[dict]:
        try:
            conn = self._ensure_db()
            row = conn.execute("SELECT data FROM overlay_cache WHERE key=?", (self.key,)).fetchone()
        except sqlite3.Error as e:
            _LOGGER.warning("[cache] read failed %s: %s", self.path, e)
            return None
        if not row:
            return None
        try:
            data: Any = json.loads(row[0])
        except ValueError:
            _LOGGER.warning("[cache] discarding malformed blob under %s", self.key)
            return None
        return data if isinstance(data, dict) else None

    def save(self, blob: dict) -> None:
        try:
            conn = self._ensure_db()
            conn.execute(
                "INSERT OR REPLACE INTO overlay_cache(key, data, updated_at) VALUES(?, ?, strftime('%s','now'))",
                (self.key, json.dumps(blob)),
            )
            conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            _LOGGER.warning("[cache] write failed %s: %s", self.path, e)

    def close(self):
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None
