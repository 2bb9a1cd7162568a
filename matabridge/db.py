"""SQLite file that backs the persistent extension storage area."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .config import DEFAULT_DB_PATH

SCHEMA_VERSION = 1
MEMORY = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS extension_storage (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS schema_meta (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def connect(db_path: Path | str = DEFAULT_DB_PATH, check_same_thread: bool = False) -> sqlite3.Connection:
    if str(db_path) == MEMORY:
        conn = sqlite3.connect(MEMORY, check_same_thread=check_same_thread)
    else:
        target = Path(db_path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(target, check_same_thread=check_same_thread)
        # WAL is unavailable on some network filesystems; rollback journal still works.
        mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
        if str(mode).lower() != "wal":
            conn.execute("PRAGMA journal_mode = DELETE")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    with conn:
        conn.executescript(_SCHEMA)
        conn.execute(
            "INSERT OR IGNORE INTO schema_meta(name, value) VALUES ('version', ?)",
            (str(SCHEMA_VERSION),),
        )
