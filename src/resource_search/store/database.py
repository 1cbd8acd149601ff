"""SQLite database of the repository: schema, connection pool and transactions.

The schema is the generic relational model the search engine runs against:
resources with typed values linked to vocabulary properties, item set and
site memberships, plus the tables owned by the search module (engines,
suggesters, suggestions) and the job and setting registries.

Read connections are pooled per thread and opened with ``query_only`` so a
query can never mutate state. Writes go through :meth:`Database.transaction`,
which opens a dedicated connection, runs the block inside ``BEGIN IMMEDIATE``
and commits or rolls back as a unit.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading

from resource_search.store.sqlite_pragmas import apply_read_pragmas, apply_write_pragmas
from resource_search.text import first_digits_bucket, leading_integer


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS vocabulary (
    id INTEGER PRIMARY KEY,
    prefix TEXT NOT NULL UNIQUE,
    namespace_uri TEXT NOT NULL DEFAULT '',
    label TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS property (
    id INTEGER PRIMARY KEY,
    vocabulary_id INTEGER NOT NULL REFERENCES vocabulary(id) ON DELETE CASCADE,
    local_name TEXT NOT NULL,
    label TEXT NOT NULL DEFAULT '',
    UNIQUE (vocabulary_id, local_name)
);

CREATE TABLE IF NOT EXISTS resource_class (
    id INTEGER PRIMARY KEY,
    vocabulary_id INTEGER NOT NULL REFERENCES vocabulary(id) ON DELETE CASCADE,
    local_name TEXT NOT NULL,
    label TEXT NOT NULL DEFAULT '',
    UNIQUE (vocabulary_id, local_name)
);

CREATE TABLE IF NOT EXISTS resource_template (
    id INTEGER PRIMARY KEY,
    label TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS resource (
    id INTEGER PRIMARY KEY,
    resource_type TEXT NOT NULL CHECK (resource_type IN ('items', 'item_sets', 'media')),
    title TEXT,
    is_public INTEGER NOT NULL DEFAULT 1,
    resource_class_id INTEGER REFERENCES resource_class(id) ON DELETE SET NULL,
    resource_template_id INTEGER REFERENCES resource_template(id) ON DELETE SET NULL,
    item_id INTEGER REFERENCES resource(id) ON DELETE CASCADE,
    created TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
    modified TEXT
);

CREATE INDEX IF NOT EXISTS idx_resource_type ON resource(resource_type, id);
CREATE INDEX IF NOT EXISTS idx_resource_item ON resource(item_id);

CREATE TABLE IF NOT EXISTS value (
    id INTEGER PRIMARY KEY,
    resource_id INTEGER NOT NULL REFERENCES resource(id) ON DELETE CASCADE,
    property_id INTEGER NOT NULL REFERENCES property(id) ON DELETE CASCADE,
    type TEXT NOT NULL DEFAULT 'literal',
    value TEXT,
    uri TEXT,
    value_resource_id INTEGER REFERENCES resource(id) ON DELETE SET NULL,
    lang TEXT,
    is_public INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_value_resource ON value(resource_id, property_id);
CREATE INDEX IF NOT EXISTS idx_value_property ON value(property_id, value);
CREATE INDEX IF NOT EXISTS idx_value_linked ON value(value_resource_id);

CREATE TABLE IF NOT EXISTS item_item_set (
    item_id INTEGER NOT NULL REFERENCES resource(id) ON DELETE CASCADE,
    item_set_id INTEGER NOT NULL REFERENCES resource(id) ON DELETE CASCADE,
    PRIMARY KEY (item_id, item_set_id)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_item_item_set_set ON item_item_set(item_set_id);

CREATE TABLE IF NOT EXISTS site (
    id INTEGER PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS resource_site (
    resource_id INTEGER NOT NULL REFERENCES resource(id) ON DELETE CASCADE,
    site_id INTEGER NOT NULL REFERENCES site(id) ON DELETE CASCADE,
    PRIMARY KEY (resource_id, site_id)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS search_engine (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    adapter TEXT NOT NULL DEFAULT 'internal',
    settings TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS search_suggester (
    id INTEGER PRIMARY KEY,
    engine_id INTEGER NOT NULL REFERENCES search_engine(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    settings TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS search_suggestion (
    id INTEGER PRIMARY KEY,
    suggester_id INTEGER NOT NULL REFERENCES search_suggester(id) ON DELETE CASCADE,
    text TEXT NOT NULL,
    total_all INTEGER NOT NULL DEFAULT 0,
    total_public INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_search_suggestion_text ON search_suggestion(suggester_id, text COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS search_suggestion_site (
    suggestion_id INTEGER NOT NULL REFERENCES search_suggestion(id) ON DELETE CASCADE,
    site_id INTEGER NOT NULL,
    total_all INTEGER NOT NULL DEFAULT 0,
    total_public INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (suggestion_id, site_id)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_search_suggestion_site_scope ON search_suggestion_site(site_id);

CREATE TABLE IF NOT EXISTS job (
    id INTEGER PRIMARY KEY,
    class TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'starting',
    args TEXT NOT NULL DEFAULT '{}',
    started TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
    ended TEXT
);

CREATE INDEX IF NOT EXISTS idx_job_class_status ON job(class, status);

CREATE TABLE IF NOT EXISTS setting (
    id TEXT PRIMARY KEY,
    value TEXT NOT NULL
) WITHOUT ROWID;
"""


def _facet_bucket(value: object, first_digits: int) -> int | None:
    """SQL function ``facet_bucket(value, digits)``; 0 digits keeps the whole integer."""
    return first_digits_bucket(value, first_digits or True)


def _numeric_value(value: object) -> float | int | None:
    """SQL function ``numeric_value(value)``: the number a value holds, or its leading integer."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).strip())
    except ValueError:
        return leading_integer(value)


def register_functions(conn: sqlite3.Connection) -> None:
    """Register the custom SQL functions used by facets and ordering filters."""
    conn.create_function("facet_bucket", 2, _facet_bucket, deterministic=True)
    conn.create_function("numeric_value", 1, _numeric_value, deterministic=True)


class SQLiteConnectionPool:
    """Thread-safe pool of read-only, thread-local connections."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 30000):
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a thread-local connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._create_connection()

        yield self._local.connection

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        apply_read_pragmas(conn, busy_timeout_ms=self.busy_timeout_ms)
        register_functions(conn)
        with self._lock:
            self._connections.append(conn)
        return conn

    def close_all(self) -> None:
        """Close every connection handed out by the pool."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as close_error:
                logger.warning("Failed to close SQLite connection for %s: %s", self.db_path, close_error)
        self._local = threading.local()


class Database:
    """Entry point to the repository database."""

    def __init__(self, path: str | Path, *, busy_timeout_ms: int = 30000) -> None:
        self.path = Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._pool = SQLiteConnectionPool(self.path, busy_timeout_ms=busy_timeout_ms)

    def initialize(self) -> None:
        """Create the schema when missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = self.connect()
            try:
                conn.executescript(SCHEMA)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RuntimeError(f"Failed to create schema in {self.path}: {e}") from e

    def connect(self) -> sqlite3.Connection:
        """Open a new writable connection in autocommit mode; the caller closes it."""
        conn = sqlite3.connect(self.path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        apply_write_pragmas(conn, busy_timeout_ms=self.busy_timeout_ms)
        register_functions(conn)
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Yield a read-only connection holding one snapshot for the whole block."""
        with self._pool.get_connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in a write transaction; any exception rolls everything back."""
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def close(self) -> None:
        self._pool.close_all()
