"""Repositories over the SQLite store.

``ResourceRepository`` reads and writes resources and their values,
``ConfigRepository`` persists search engine and suggester configuration,
``SettingsStore`` is the key/value settings table and ``JobStore`` the job
registry used by the batch jobs' concurrency guard.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
import logging
import sqlite3
from typing import Any

import orjson

from resource_search.engine_config import (
    ConfigurationError,
    SearchEngineConfig,
    SuggesterConfig,
    engine_from_row,
    suggester_from_row,
)
from resource_search.store.database import Database


logger = logging.getLogger(__name__)


def split_term(term: str) -> tuple[str, str]:
    """Split ``prefix:local_name``; raises ValueError for anything else."""
    prefix, sep, local_name = term.partition(":")
    if not sep or not prefix or not local_name:
        raise ValueError(f"Invalid vocabulary term: {term!r}")
    return prefix, local_name


@dataclass(frozen=True, slots=True)
class ValueRow:
    """One value read by the suggestion indexer."""

    id: int
    resource_id: int
    value: str
    is_public: bool
    resource_is_public: bool
    owner_id: int


class ResourceRepository:
    """Resources, values and memberships of the repository."""

    def __init__(self, database: Database) -> None:
        self._database = database

    # Writes

    def add_vocabulary(self, prefix: str, namespace_uri: str = "", label: str = "") -> int:
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO vocabulary (prefix, namespace_uri, label) VALUES (?, ?, ?)",
                (prefix, namespace_uri, label or prefix),
            )
            return int(cursor.lastrowid)

    def add_property(self, term: str, label: str = "") -> int:
        """Register a property under an existing vocabulary prefix."""
        prefix, local_name = split_term(term)
        with self._database.transaction() as conn:
            vocabulary_id = self._vocabulary_id(conn, prefix)
            cursor = conn.execute(
                "INSERT INTO property (vocabulary_id, local_name, label) VALUES (?, ?, ?)",
                (vocabulary_id, local_name, label or local_name),
            )
            return int(cursor.lastrowid)

    def add_resource_class(self, term: str, label: str = "") -> int:
        prefix, local_name = split_term(term)
        with self._database.transaction() as conn:
            vocabulary_id = self._vocabulary_id(conn, prefix)
            cursor = conn.execute(
                "INSERT INTO resource_class (vocabulary_id, local_name, label) VALUES (?, ?, ?)",
                (vocabulary_id, local_name, label or local_name),
            )
            return int(cursor.lastrowid)

    def add_resource_template(self, label: str) -> int:
        with self._database.transaction() as conn:
            cursor = conn.execute("INSERT INTO resource_template (label) VALUES (?)", (label,))
            return int(cursor.lastrowid)

    def add_resource(
        self,
        resource_type: str,
        *,
        title: str | None = None,
        is_public: bool = True,
        resource_class_id: int | None = None,
        resource_template_id: int | None = None,
        item_id: int | None = None,
        created: str | None = None,
        modified: str | None = None,
        values: Sequence[tuple[str, Any]] | None = None,
    ) -> int:
        """Insert a resource and, optionally, literal values given as ``(term, value)`` pairs."""
        with self._database.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO resource (
                    resource_type, title, is_public, resource_class_id, resource_template_id,
                    item_id, created, modified
                ) VALUES (?, ?, ?, ?, ?, ?, COALESCE(?, strftime('%Y-%m-%dT%H:%M:%S', 'now')), ?)
                """,
                (
                    resource_type,
                    title,
                    int(is_public),
                    resource_class_id,
                    resource_template_id,
                    item_id,
                    created,
                    modified,
                ),
            )
            resource_id = int(cursor.lastrowid)
            for term, value in values or ():
                self._insert_value(conn, resource_id, term, value=str(value))
            return resource_id

    def add_value(
        self,
        resource_id: int,
        term: str,
        value: str | None = None,
        *,
        uri: str | None = None,
        value_resource_id: int | None = None,
        lang: str | None = None,
        is_public: bool = True,
    ) -> int:
        with self._database.transaction() as conn:
            return self._insert_value(
                conn,
                resource_id,
                term,
                value=value,
                uri=uri,
                value_resource_id=value_resource_id,
                lang=lang,
                is_public=is_public,
            )

    def add_site(self, slug: str, title: str = "") -> int:
        with self._database.transaction() as conn:
            cursor = conn.execute("INSERT INTO site (slug, title) VALUES (?, ?)", (slug, title or slug))
            return int(cursor.lastrowid)

    def attach_to_site(self, resource_id: int, site_id: int) -> None:
        with self._database.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO resource_site (resource_id, site_id) VALUES (?, ?)",
                (resource_id, site_id),
            )

    def add_to_item_set(self, item_id: int, item_set_id: int) -> None:
        with self._database.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO item_item_set (item_id, item_set_id) VALUES (?, ?)",
                (item_id, item_set_id),
            )

    def _vocabulary_id(self, conn: sqlite3.Connection, prefix: str) -> int:
        row = conn.execute("SELECT id FROM vocabulary WHERE prefix = ?", (prefix,)).fetchone()
        if row is None:
            raise ValueError(f"Unknown vocabulary prefix: {prefix!r}")
        return int(row["id"])

    def _insert_value(
        self,
        conn: sqlite3.Connection,
        resource_id: int,
        term: str,
        *,
        value: str | None = None,
        uri: str | None = None,
        value_resource_id: int | None = None,
        lang: str | None = None,
        is_public: bool = True,
    ) -> int:
        property_id = property_ids(conn, [term]).get(term)
        if property_id is None:
            raise ValueError(f"Unknown property term: {term!r}")
        if value_resource_id is not None:
            value_type = "resource"
        elif uri is not None:
            value_type = "uri"
        else:
            value_type = "literal"
        cursor = conn.execute(
            """
            INSERT INTO value (resource_id, property_id, type, value, uri, value_resource_id, lang, is_public)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (resource_id, property_id, value_type, value, uri, value_resource_id, lang, int(is_public)),
        )
        return int(cursor.lastrowid)

    # Reads

    def resource_ids_after(
        self,
        resource_type: str,
        after_id: int,
        limit: int,
        *,
        visibility: str | None = None,
        resource_ids: Sequence[int] | None = None,
    ) -> list[int]:
        """Ids of the next batch of resources of a type, in id order after a checkpoint."""
        sql = "SELECT id FROM resource WHERE resource_type = ? AND id > ?"
        params: list[Any] = [resource_type, after_id]
        if visibility == "public":
            sql += " AND is_public = 1"
        elif visibility == "private":
            sql += " AND is_public = 0"
        if resource_ids:
            sql += f" AND id IN ({', '.join('?' for _ in resource_ids)})"
            params.extend(int(resource_id) for resource_id in resource_ids)
        sql += " ORDER BY id LIMIT ?"
        params.append(limit)
        with self._database.read() as conn:
            return [int(row["id"]) for row in conn.execute(sql, params)]

    def get_resources(self, ids: Sequence[int]) -> list[dict[str, Any]]:
        """Resources with their values, in the order of ``ids``."""
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._database.read() as conn:
            resources = {
                int(row["id"]): {**dict(row), "values": []}
                for row in conn.execute(f"SELECT * FROM resource WHERE id IN ({placeholders})", list(ids))
            }
            for row in conn.execute(
                f"""
                SELECT v.resource_id, voc.prefix || ':' || p.local_name AS term, v.type, v.value, v.uri,
                       v.value_resource_id, v.lang, v.is_public
                FROM value v
                JOIN property p ON p.id = v.property_id
                JOIN vocabulary voc ON voc.id = p.vocabulary_id
                WHERE v.resource_id IN ({placeholders})
                ORDER BY v.id
                """,
                list(ids),
            ):
                entry = dict(row)
                resources[int(entry.pop("resource_id"))]["values"].append(entry)
        return [resources[resource_id] for resource_id in ids if resource_id in resources]


def property_ids(conn: sqlite3.Connection, terms: Iterable[str]) -> dict[str, int]:
    """Map property terms to ids, silently skipping unknown terms."""
    wanted = [term for term in dict.fromkeys(terms) if term]
    if not wanted:
        return {}
    placeholders = ", ".join("?" for _ in wanted)
    rows = conn.execute(
        f"""
        SELECT voc.prefix || ':' || p.local_name AS term, p.id
        FROM property p
        JOIN vocabulary voc ON voc.id = p.vocabulary_id
        WHERE voc.prefix || ':' || p.local_name IN ({placeholders})
        """,
        wanted,
    )
    return {row["term"]: int(row["id"]) for row in rows}


def iter_value_batches(
    conn: sqlite3.Connection,
    *,
    resource_types: Sequence[str],
    include_property_ids: Sequence[int] | None,
    excluded_property_ids: Sequence[int] = (),
    batch_size: int = 1000,
) -> Iterator[list[ValueRow]]:
    """Yield literal values of the given resource types in keyset batches ordered by value id.

    ``include_property_ids`` of ``None`` means every property. The owner of a media
    value is its parent item, which carries the site memberships.
    """
    if not resource_types:
        return
    conditions = [
        f"r.resource_type IN ({', '.join('?' for _ in resource_types)})",
        "v.value IS NOT NULL",
        "v.value != ''",
    ]
    base_params: list[Any] = list(resource_types)
    if include_property_ids is not None:
        if not include_property_ids:
            return
        conditions.append(f"v.property_id IN ({', '.join('?' for _ in include_property_ids)})")
        base_params.extend(include_property_ids)
    if excluded_property_ids:
        conditions.append(f"v.property_id NOT IN ({', '.join('?' for _ in excluded_property_ids)})")
        base_params.extend(excluded_property_ids)

    sql = f"""
        SELECT v.id, v.resource_id, v.value, v.is_public, r.is_public AS resource_is_public,
               COALESCE(r.item_id, r.id) AS owner_id
        FROM value v
        JOIN resource r ON r.id = v.resource_id
        WHERE v.id > ? AND {" AND ".join(conditions)}
        ORDER BY v.id
        LIMIT ?
    """
    last_id = 0
    while True:
        rows = conn.execute(sql, [last_id, *base_params, batch_size]).fetchall()
        if not rows:
            return
        yield [
            ValueRow(
                id=int(row["id"]),
                resource_id=int(row["resource_id"]),
                value=row["value"],
                is_public=bool(row["is_public"]),
                resource_is_public=bool(row["resource_is_public"]),
                owner_id=int(row["owner_id"]),
            )
            for row in rows
        ]
        last_id = int(rows[-1]["id"])
        if len(rows) < batch_size:
            return


def site_memberships(conn: sqlite3.Connection, resource_ids: Iterable[int]) -> dict[int, tuple[int, ...]]:
    """Sites each resource is attached to."""
    ids = list(dict.fromkeys(resource_ids))
    if not ids:
        return {}
    memberships: dict[int, list[int]] = {}
    rows = conn.execute(
        f"SELECT resource_id, site_id FROM resource_site WHERE resource_id IN ({', '.join('?' for _ in ids)})",
        ids,
    )
    for row in rows:
        memberships.setdefault(int(row["resource_id"]), []).append(int(row["site_id"]))
    return {resource_id: tuple(sorted(sites)) for resource_id, sites in memberships.items()}


class ConfigRepository:
    """Search engine and suggester configuration rows."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def add_engine(self, name: str, *, adapter: str = "internal", **settings: Any) -> SearchEngineConfig:
        # Validate before writing so a broken configuration never lands in the store.
        SearchEngineConfig(id=0, name=name, adapter=adapter, **settings)
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO search_engine (name, adapter, settings) VALUES (?, ?, ?)",
                (name, adapter, orjson.dumps(settings).decode("utf-8")),
            )
            engine_id = int(cursor.lastrowid)
        return SearchEngineConfig(id=engine_id, name=name, adapter=adapter, **settings)

    def add_suggester(self, engine_id: int, name: str, **settings: Any) -> SuggesterConfig:
        SuggesterConfig(id=0, name=name, engine_id=engine_id, **settings)
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO search_suggester (engine_id, name, settings) VALUES (?, ?, ?)",
                (engine_id, name, orjson.dumps(settings).decode("utf-8")),
            )
            suggester_id = int(cursor.lastrowid)
        return SuggesterConfig(id=suggester_id, name=name, engine_id=engine_id, **settings)

    def get_engine(self, engine_id: int) -> SearchEngineConfig | None:
        with self._database.read() as conn:
            row = conn.execute("SELECT * FROM search_engine WHERE id = ?", (engine_id,)).fetchone()
        if row is None:
            return None
        return engine_from_row(_decode_settings(row))

    def get_suggester(self, suggester_id: int) -> SuggesterConfig | None:
        with self._database.read() as conn:
            row = conn.execute("SELECT * FROM search_suggester WHERE id = ?", (suggester_id,)).fetchone()
        if row is None:
            return None
        return suggester_from_row(_decode_settings(row))

    def list_engines(self) -> list[SearchEngineConfig]:
        with self._database.read() as conn:
            rows = conn.execute("SELECT * FROM search_engine ORDER BY id").fetchall()
        return [engine_from_row(_decode_settings(row)) for row in rows]


def _decode_settings(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    raw_settings = data.get("settings") or "{}"
    try:
        data["settings"] = orjson.loads(raw_settings)
    except orjson.JSONDecodeError as e:
        raise ConfigurationError(f"Corrupted settings for configuration row {data.get('id')}: {e}") from e
    return data


class SettingsStore:
    """Key/value settings with JSON-encoded values."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def get(self, key: str, default: Any = None) -> Any:
        with self._database.read() as conn:
            row = conn.execute("SELECT value FROM setting WHERE id = ?", (key,)).fetchone()
        if row is None:
            return default
        return orjson.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        with self._database.transaction() as conn:
            conn.execute(
                "INSERT INTO setting (id, value) VALUES (?, ?) ON CONFLICT(id) DO UPDATE SET value = excluded.value",
                (key, orjson.dumps(value).decode("utf-8")),
            )


class JobStore:
    """Registry of batch jobs and their status."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def create(self, job_class: str, args: dict[str, Any] | None = None, *, status: str = "starting") -> int:
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO job (class, status, args) VALUES (?, ?, ?)",
                (job_class, status, orjson.dumps(args or {}).decode("utf-8")),
            )
            return int(cursor.lastrowid)

    def set_status(self, job_id: int, status: str, *, ended: bool = False) -> None:
        with self._database.transaction() as conn:
            if ended:
                conn.execute(
                    "UPDATE job SET status = ?, ended = strftime('%Y-%m-%dT%H:%M:%S', 'now') WHERE id = ?",
                    (status, job_id),
                )
            else:
                conn.execute("UPDATE job SET status = ? WHERE id = ?", (status, job_id))

    def get(self, job_id: int) -> dict[str, Any] | None:
        with self._database.read() as conn:
            row = conn.execute("SELECT * FROM job WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["args"] = orjson.loads(data["args"] or "{}")
        return data

    def count_running(self, job_class: str, *, exclude_job_id: int | None = None) -> int:
        """Count jobs of a class that are starting or in progress, other than ``exclude_job_id``."""
        sql = "SELECT COUNT(*) FROM job WHERE class = ? AND status IN ('starting', 'in_progress')"
        params: list[Any] = [job_class]
        if exclude_job_id is not None:
            sql += " AND id != ?"
            params.append(exclude_job_id)
        with self._database.read() as conn:
            return int(conn.execute(sql, params).fetchone()[0])
