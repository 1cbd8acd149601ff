"""PRAGMA settings of the repository connections.

Querier connections are tuned for reads and locked with ``query_only``;
job and repository connections run in WAL mode with foreign keys enforced.
"""

from __future__ import annotations

import sqlite3


CACHE_SIZE_KB = -65536
READ_MMAP_BYTES = 128 * 1024 * 1024

_READ_PRAGMAS = (
    ("cache_size", CACHE_SIZE_KB),
    ("mmap_size", READ_MMAP_BYTES),
    ("temp_store", "MEMORY"),
)

_WRITE_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("foreign_keys", "ON"),
    ("cache_size", CACHE_SIZE_KB),
    ("temp_store", "MEMORY"),
)


def _apply(conn: sqlite3.Connection, pragmas: tuple[tuple[str, object], ...], busy_timeout_ms: int | None) -> None:
    if busy_timeout_ms is not None:
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    for name, value in pragmas:
        conn.execute(f"PRAGMA {name} = {value}")


def apply_read_pragmas(conn: sqlite3.Connection, *, busy_timeout_ms: int | None = 30000) -> None:
    """Tune a querier connection and forbid it from writing."""
    _apply(conn, _READ_PRAGMAS, busy_timeout_ms)
    conn.execute("PRAGMA query_only = 1")


def apply_write_pragmas(conn: sqlite3.Connection, *, busy_timeout_ms: int | None = 30000) -> None:
    """Tune a connection used by jobs and repository writes."""
    _apply(conn, _WRITE_PRAGMAS, busy_timeout_ms)
