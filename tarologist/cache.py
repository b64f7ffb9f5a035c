"""Installation-scoped key-value cache backed by SQLite.

Holds JSON-encoded copies of the last successfully loaded categories,
questions and spreads, plus the `isLoggedIn` convenience flag.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import List, Optional, Type

from pydantic import TypeAdapter, ValidationError

from .models import M

log = logging.getLogger("tarologist.cache")

CATEGORIES_KEY = "cachedQuestionCategories"
QUESTIONS_KEY = "cachedQuestions"
SPREADS_KEY = "cachedSpreads"
LOGGED_IN_KEY = "isLoggedIn"


class LocalCache:
    def __init__(self, path: str = ":memory:") -> None:
        self.path = path
        if path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return bytes(row[0]) if row else None

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, int(time.time())),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -- typed helpers -------------------------------------------------

    def save_list(self, key: str, model: Type[M], items: List[M]) -> None:
        raw = TypeAdapter(List[model]).dump_json(items, by_alias=True)
        self.set(key, raw)

    def load_list(self, key: str, model: Type[M]) -> Optional[List[M]]:
        """Cached list for `key`, or None when absent or unreadable."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return TypeAdapter(List[model]).validate_json(raw)
        except ValidationError as e:
            log.warning("discarding unreadable cache entry %s: %s", key, e)
            return None

    def get_flag(self, key: str, default: bool = False) -> bool:
        raw = self.get(key)
        if raw is None:
            return default
        return bool(json.loads(raw))

    def set_flag(self, key: str, value: bool) -> None:
        self.set(key, json.dumps(bool(value)).encode("utf-8"))
