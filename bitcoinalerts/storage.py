"""Durable namespaced key-value storage shared by all components."""

import json
import os
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional

from .errors import StoreError
from .logging import get_logger

logger = get_logger(__name__)

NETWORK_NAMESPACE = "network"
NOTIFICATION_NAMESPACE = "notification"

NAMESPACES = (NETWORK_NAMESPACE, NOTIFICATION_NAMESPACE)


class Storage:
    """Namespaced key-value store backed by SQLite or a JSON file.

    A single instance is shared between the block processor and every
    dispatcher thread; each operation runs under one re-entrant lock.
    """

    def __init__(self, backend: str = "sqlite", db_path: str = None, json_path: str = None):
        """
        Initialize storage.

        Args:
            backend: "sqlite" or "json"
            db_path: Path to SQLite database (for sqlite backend)
            json_path: Path to JSON file (for json backend)
        """
        self.backend = backend
        self.db_path = db_path or "state/bitcoin-alerts.db"
        self.json_path = json_path or "state/bitcoin-alerts.json"
        self._lock = threading.RLock()

        if backend == "sqlite":
            self._init_sqlite()
        elif backend == "json":
            self._init_json()
        else:
            raise ValueError(f"Unknown backend: {backend}")

    def _init_sqlite(self):
        """Initialize SQLite database."""
        db_path = Path(self.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)
        self.conn.commit()
        logger.info(f"Initialized SQLite store: {self.db_path}")

    def _init_json(self):
        """Initialize JSON state file."""
        json_path = Path(self.json_path)
        json_path.parent.mkdir(parents=True, exist_ok=True)

        if json_path.exists():
            with open(json_path, 'r') as f:
                self.state = json.load(f)
            for namespace in NAMESPACES:
                self.state.setdefault(namespace, {})
        else:
            self.state = {namespace: {} for namespace in NAMESPACES}
            self._save_json()

        logger.info(f"Initialized JSON store: {self.json_path}")

    def _save_json(self, state: Dict[str, Dict[str, str]] = None):
        """Write the JSON state atomically, then make it the in-memory state."""
        state = self.state if state is None else state
        json_path = Path(self.json_path)
        tmp_path = json_path.with_suffix(json_path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(state, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, json_path)
        self.state = state

    def _updated_state(self, namespace: str) -> Dict[str, Dict[str, str]]:
        """Copy of the state whose ``namespace`` dict may be modified freely."""
        state = dict(self.state)
        state[namespace] = dict(state.get(namespace, {}))
        return state

    def get(self, namespace: str, key: str) -> Optional[str]:
        """
        Get a value.

        Returns:
            Stored value, or None if the key does not exist

        Raises:
            StoreError: If the backend fails
        """
        with self._lock:
            try:
                if self.backend == "sqlite":
                    row = self.conn.execute(
                        "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                        (namespace, key)
                    ).fetchone()
                    return row["value"] if row else None
                return self.state.get(namespace, {}).get(key)
            except sqlite3.Error as e:
                raise StoreError(f"get {namespace}/{key}: {e}") from e

    def put(self, namespace: str, key: str, value: str) -> None:
        """Insert or overwrite a value."""
        with self._lock:
            try:
                if self.backend == "sqlite":
                    self.conn.execute("""
                        INSERT OR REPLACE INTO kv (namespace, key, value)
                        VALUES (?, ?, ?)
                    """, (namespace, key, value))
                    self.conn.commit()
                else:
                    state = self._updated_state(namespace)
                    state[namespace][key] = value
                    self._save_json(state)
            except (sqlite3.Error, OSError) as e:
                raise StoreError(f"put {namespace}/{key}: {e}") from e

    def delete(self, namespace: str, key: str) -> None:
        """Delete a key; deleting a missing key is a no-op."""
        with self._lock:
            try:
                if self.backend == "sqlite":
                    self.conn.execute(
                        "DELETE FROM kv WHERE namespace = ? AND key = ?",
                        (namespace, key)
                    )
                    self.conn.commit()
                elif key in self.state.get(namespace, {}):
                    state = self._updated_state(namespace)
                    del state[namespace][key]
                    self._save_json(state)
            except (sqlite3.Error, OSError) as e:
                raise StoreError(f"delete {namespace}/{key}: {e}") from e

    def items(self, namespace: str) -> Dict[str, str]:
        """Return a snapshot of every key/value pair in a namespace."""
        with self._lock:
            try:
                if self.backend == "sqlite":
                    rows = self.conn.execute(
                        "SELECT key, value FROM kv WHERE namespace = ?",
                        (namespace,)
                    ).fetchall()
                    return {row["key"]: row["value"] for row in rows}
                return dict(self.state.get(namespace, {}))
            except sqlite3.Error as e:
                raise StoreError(f"items {namespace}: {e}") from e

    def close(self):
        """Close connections and cleanup."""
        with self._lock:
            if self.backend == "sqlite" and hasattr(self, 'conn'):
                self.conn.close()
                logger.debug("Closed SQLite connection")
