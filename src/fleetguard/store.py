"""SQLite-backed key-value store for rules, alerts and webhooks.

This is the local persistence contract: ``load(key, default)`` and
``save(key, value)``. Values are JSON documents. Reads and writes never raise;
failures are logged and the caller carries on with in-memory state.

Schema
------
kv table:
    key         TEXT PRIMARY KEY  -- alert_rules / alerts / slack_webhooks
    updated_at  TEXT              -- ISO-8601 UTC
    value       TEXT              -- JSON document

A multi-user deployment would swap this class for a real datastore behind the
same two methods.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, TypeVar

logger = logging.getLogger("fleetguard.store")

_DEFAULT_DB_PATH = Path.home() / ".fleetguard" / "state.db"

ALERT_RULES_KEY = "alert_rules"
ALERTS_KEY = "alerts"
SLACK_WEBHOOKS_KEY = "slack_webhooks"

T = TypeVar("T")


class KeyValueStore:
    """Thread-safe JSON key-value store on SQLite.

    Args:
        db_path: Path to the SQLite file, created on first use. Pass ":memory:"
            for a throwaway in-process store. Defaults to ~/.fleetguard/state.db.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._lock = threading.Lock()
        if db_path == ":memory:":
            # :memory: gives a new empty database per connect(), so keep one open.
            self._db_path_str = ":memory:"
            self._memory_conn: sqlite3.Connection | None = sqlite3.connect(
                ":memory:", check_same_thread=False
            )
        else:
            path = Path(db_path).expanduser() if db_path else _DEFAULT_DB_PATH
            self._db_path_str = str(path)
            self._memory_conn = None
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Cannot create store directory %s: %s", path.parent, e)
        try:
            self._init_schema()
        except sqlite3.Error as e:
            logger.error("Store at %s is unusable, running in memory only: %s", self._db_path_str, e)
        logger.debug("KeyValueStore opened at %s", self._db_path_str)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def load(self, key: str, default: T) -> T | Any:
        """Return the decoded value stored under *key*, or *default*.

        Missing keys, undecodable JSON and SQLite errors all yield *default*.
        """
        try:
            with self._conn() as conn:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to load %s: %s", key, e)
            return default

        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError) as e:
            logger.warning("Stored value for %s is corrupt, using default: %s", key, e)
            return default

    def save(self, key: str, value: Any) -> None:
        """Store *value* (JSON-serializable) under *key*, replacing any previous value."""
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error("Failed to encode %s: %s", key, e)
            return

        try:
            with self._conn() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, updated_at, value) VALUES (?, ?, ?)",
                    (key, datetime.now(timezone.utc).isoformat(), payload),
                )
        except sqlite3.Error as e:
            logger.error("Failed to save %s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            with self._conn() as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            logger.error("Failed to delete %s: %s", key, e)

    def keys(self) -> list[str]:
        try:
            with self._conn() as conn:
                return [row[0] for row in conn.execute("SELECT key FROM kv ORDER BY key")]
        except sqlite3.Error as e:
            logger.error("Failed to list keys: %s", e)
            return []

    # -------------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------------

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key         TEXT PRIMARY KEY,
                    updated_at  TEXT NOT NULL,
                    value       TEXT NOT NULL
                )
                """
            )

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Yield an auto-committing connection, serialized by the store lock."""
        with self._lock:
            if self._memory_conn is not None:
                conn = self._memory_conn
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
            else:
                conn = sqlite3.connect(self._db_path_str, check_same_thread=False)
                conn.execute("PRAGMA journal_mode=WAL")
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
                finally:
                    conn.close()
