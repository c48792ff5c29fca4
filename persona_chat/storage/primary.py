"""Primary storage tier: a single-table SQLite key/value file.

The connection is an explicitly owned resource. `PrimaryHandle` opens it
lazily through an injected opener and drops it when it sees either signal
that the connection is stale:

  version changed  PRAGMA user_version on disk no longer matches the
                   version the handle opened against
  closed           the connection was closed underneath us
                   (sqlite3.ProgrammingError)

The failing operation raises PrimaryUnavailable; the next call reopens.
Calls are blocking and meant to be run through asyncio.to_thread, one at a
time. Each call is its own transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

Opener = Callable[[Path], sqlite3.Connection]


class PrimaryUnavailable(RuntimeError):
    """Raised when the primary tier cannot serve a request."""


def open_sqlite(path: Path) -> sqlite3.Connection:
    """Open (and migrate if needed) the key/value database at `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    try:
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise PrimaryUnavailable(
                f"Database schema v{version} is newer than supported v{SCHEMA_VERSION}"
            )
        if version < SCHEMA_VERSION:
            with conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS keyval (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                )
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    except Exception:
        conn.close()
        raise
    return conn


class PrimaryHandle:
    def __init__(self, path: Path, opener: Opener = open_sqlite) -> None:
        self._path = path
        self._opener = opener
        self._conn: sqlite3.Connection | None = None
        self._version: int | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = self._opener(self._path)
                self._version = conn.execute("PRAGMA user_version").fetchone()[0]
            except PrimaryUnavailable:
                raise
            except Exception as e:
                raise PrimaryUnavailable(f"Cannot open primary store at {self._path}: {e}") from e
            self._conn = conn
            logger.debug("primary store opened path=%s version=%s", self._path, self._version)
        return self._conn

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()
            logger.debug("primary store closed path=%s", self._path)

    def _invalidate(self, reason: str) -> None:
        logger.warning("primary store handle invalidated (%s), will reopen on next use", reason)
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.debug("closing stale primary connection failed: %s", e)

    def _run(self, op: Callable[[sqlite3.Connection], Any]) -> Any:
        conn = self.open()
        try:
            on_disk = conn.execute("PRAGMA user_version").fetchone()[0]
            if on_disk != self._version:
                self._invalidate(f"version changed {self._version} -> {on_disk}")
                raise PrimaryUnavailable("Primary store version changed")
            return op(conn)
        except sqlite3.ProgrammingError as e:
            self._invalidate("closed")
            raise PrimaryUnavailable(f"Primary store connection closed: {e}") from e
        except sqlite3.Error as e:
            raise PrimaryUnavailable(f"Primary store error: {e}") from e

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        def op(conn: sqlite3.Connection) -> Any | None:
            row = conn.execute("SELECT value FROM keyval WHERE key = ?", (key,)).fetchone()
            return None if row is None else json.loads(row[0])

        return self._run(op)

    def put(self, key: str, value: Any) -> None:
        text = json.dumps(value)

        def op(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO keyval (key, value) VALUES (?, ?)", (key, text)
                )

        self._run(op)

    def delete(self, key: str) -> None:
        def op(conn: sqlite3.Connection) -> None:
            with conn:
                conn.execute("DELETE FROM keyval WHERE key = ?", (key,))

        self._run(op)
