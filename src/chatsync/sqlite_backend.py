from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from . import store as tree_ops


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _flatten(prefix: str, value: Any) -> Iterable[Tuple[str, str]]:
    if isinstance(value, dict):
        for key, child in value.items():
            yield from _flatten(f"{prefix}/{key}" if prefix else key, child)
    elif value is not None:
        yield prefix, json.dumps(value)


class SQLiteBackend:
    """Owns a shared SQLite connection holding the store tree as leaf rows."""

    def __init__(self, db_path: str) -> None:
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._configure()
        self._apply_migrations()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def load(self) -> Dict[str, Any]:
        """Rebuild the tree from the persisted leaves."""

        with self._lock:
            rows = self._conn.execute("SELECT path, value_json FROM nodes").fetchall()
        tree: Dict[str, Any] = {}
        for path, value_json in rows:
            tree = tree_ops.write(tree, path.split("/"), json.loads(value_json))
        return tree

    def replace(self, writes: List[Tuple[List[str], Any]]) -> None:
        """Persist a batch of subtree replacements in one transaction."""

        with self._lock:
            cursor = self._conn.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                for segments, value in writes:
                    self._replace_one(cursor, segments, value)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cursor.close()

    def _replace_one(self, cursor: sqlite3.Cursor, segments: List[str], value: Any) -> None:
        path = "/".join(segments)
        if not segments:
            cursor.execute("DELETE FROM nodes")
        else:
            # a scalar stored at an ancestor is overwritten by a nested write
            ancestors = ["/".join(segments[:i]) for i in range(1, len(segments))]
            for ancestor in ancestors:
                cursor.execute("DELETE FROM nodes WHERE path=?", (ancestor,))
            cursor.execute(
                "DELETE FROM nodes WHERE path=? OR path LIKE ? ESCAPE '\\'",
                (path, _escape_like(path) + "/%"),
            )
        rows = list(_flatten(path, value))
        if rows:
            cursor.executemany("INSERT INTO nodes (path, value_json) VALUES (?, ?)", rows)

    def _configure(self) -> None:
        cursor = self._conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    def _apply_migrations(self) -> None:
        user_version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if user_version == 0:
            self._create_v1_schema()
            self._conn.execute("PRAGMA user_version = 1")
        elif user_version != 1:
            raise ValueError(f"Unsupported schema version: {user_version}")

    def _create_v1_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nodes (
                path TEXT PRIMARY KEY,
                value_json TEXT NOT NULL
            )
            """
        )
