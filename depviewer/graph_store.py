"""
Durable component/dependency storage.

GraphStore is the only writer of the two tables. Every write method runs as
one transaction: the whole batch commits or, on any failure, none of it does
and StoreWriteError is raised.

Write semantics:
  upsert_nodes   insert-if-absent; name/type of an existing row are kept
  update_stats   size/coverage coalesce (a None never clears a stored value)
  upsert_edges   insert-if-absent per ordered (source_id, target_id) pair

Usage:
    with GraphStore.open("sqlite:///dependencies.db") as store:
        store.upsert_nodes(records)
        store.search_nodes("Account")
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterable, Iterator

from .db_utils import Dialect, get_db_connection
from .errors import StoreWriteError
from .records import Component, ComponentRecord, DependencyEdgeRecord, EdgeView, StatsRecord

DEFAULT_SEARCH_LIMIT = 50
_IN_CHUNK = 500

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS components (
        id TEXT PRIMARY KEY,
        name TEXT,
        type TEXT,
        size INTEGER,
        coverage INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dependencies (
        source_id TEXT NOT NULL,
        target_id TEXT NOT NULL,
        PRIMARY KEY (source_id, target_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_deps_source ON dependencies(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_deps_target ON dependencies(target_id)",
)

_COMPONENT_COLUMNS = ("id", "name", "type", "size", "coverage")

_EDGE_SELECT = """
    SELECT
        d.source_id, s.name, s.type, s.size, s.coverage,
        d.target_id, t.name, t.type, t.size, t.coverage
    FROM dependencies d
    LEFT JOIN components s ON d.source_id = s.id
    LEFT JOIN components t ON d.target_id = t.id
"""


def _like_pattern(term: str) -> str:
    """Case-folded substring pattern with LIKE wildcards in the term escaped."""
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _edge_view(row: tuple) -> EdgeView:
    source_id, s_name, s_type, s_size, s_cov, target_id, t_name, t_type, t_size, t_cov = row
    return EdgeView(
        id=EdgeView.edge_id(source_id, target_id),
        source_id=source_id,
        source_name=s_name,
        source_type=s_type,
        source_size=s_size,
        source_coverage=s_cov,
        target_id=target_id,
        target_name=t_name,
        target_type=t_type,
        target_size=t_size,
        target_coverage=t_cov,
    )


class GraphStore:
    """Node/edge store over a SQLite or PostgreSQL connection."""

    def __init__(self, conn: Any, dialect: Dialect):
        self.conn = conn
        self.dialect = dialect
        self._lock = threading.RLock()
        self._closed = False

    @classmethod
    def open(cls, url: str, init: bool = True) -> GraphStore:
        """Open the store at `url` and, by default, make sure the schema exists."""
        conn, dialect = get_db_connection(url)
        store = cls(conn, dialect)
        if init:
            store.init_schema()
        return store

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self.conn.close()
                self._closed = True

    def __enter__(self) -> GraphStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self.conn.commit()
            except Exception as e:
                self.conn.rollback()
                raise StoreWriteError(f"Store write failed, rolled back: {e}") from e
            finally:
                cursor.close()

    def _fetch(self, sql: str, params: Iterable[Any] = ()) -> list[tuple]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute(self.dialect.sql(sql), tuple(params))
                rows = cursor.fetchall()
            finally:
                cursor.close()
            # Ends the implicit read transaction psycopg opens.
            self.conn.commit()
            return rows

    def init_schema(self) -> None:
        with self._transaction() as cur:
            for statement in SCHEMA:
                cur.execute(statement)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_nodes(self, records: Iterable[ComponentRecord]) -> int:
        """
        Insert components that are not stored yet.

        Records without an id are skipped. Existing rows keep their name/type.

        Returns:
            Number of records submitted (not all of them necessarily new)
        """
        rows = [(r.id, r.name, r.type) for r in records if r.id]
        if not rows:
            return 0
        with self._transaction() as cur:
            cur.executemany(
                self.dialect.sql(
                    "INSERT INTO components (id, name, type) VALUES (%s, %s, %s) "
                    "ON CONFLICT (id) DO NOTHING"
                ),
                rows,
            )
        return len(rows)

    def update_stats(self, records: Iterable[StatsRecord]) -> int:
        """Coalesce size/coverage into existing rows. Unknown ids are ignored."""
        rows = [(r.size, r.coverage, r.id) for r in records if r.id]
        if not rows:
            return 0
        with self._transaction() as cur:
            cur.executemany(
                self.dialect.sql(
                    "UPDATE components "
                    "SET size = COALESCE(CAST(%s AS INTEGER), size), "
                    "coverage = COALESCE(CAST(%s AS INTEGER), coverage) "
                    "WHERE id = %s"
                ),
                rows,
            )
        return len(rows)

    def upsert_edges(self, records: Iterable[DependencyEdgeRecord]) -> int:
        """Insert edges whose endpoints both carry an id; known pairs are left alone."""
        rows = [(r.source_id, r.target_id) for r in records if r.source_id and r.target_id]
        if not rows:
            return 0
        with self._transaction() as cur:
            cur.executemany(
                self.dialect.sql(
                    "INSERT INTO dependencies (source_id, target_id) VALUES (%s, %s) "
                    "ON CONFLICT (source_id, target_id) DO NOTHING"
                ),
                rows,
            )
        return len(rows)

    def clear(self) -> None:
        """Delete every component and dependency."""
        with self._transaction() as cur:
            cur.execute("DELETE FROM dependencies")
            cur.execute("DELETE FROM components")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_nodes(self) -> list[Component]:
        rows = self._fetch("SELECT id, name, type, size, coverage FROM components")
        return [Component(**dict(zip(_COMPONENT_COLUMNS, row))) for row in rows]

    def search_nodes(self, term: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Component]:
        """Case-insensitive substring match on name or id, at most `limit` rows."""
        pattern = _like_pattern(term)
        rows = self._fetch(
            "SELECT id, name, type, size, coverage FROM components "
            "WHERE LOWER(name) LIKE %s ESCAPE '\\' OR LOWER(id) LIKE %s ESCAPE '\\' "
            "LIMIT %s",
            (pattern, pattern, limit),
        )
        return [Component(**dict(zip(_COMPONENT_COLUMNS, row))) for row in rows]

    def get_nodes(self, ids: Iterable[str]) -> dict[str, Component]:
        """Stored components for the given ids, keyed by id. Missing ids are absent."""
        wanted = sorted({i for i in ids if i})
        found: dict[str, Component] = {}
        for start in range(0, len(wanted), _IN_CHUNK):
            chunk = wanted[start:start + _IN_CHUNK]
            placeholders = ", ".join(["%s"] * len(chunk))
            rows = self._fetch(
                f"SELECT id, name, type, size, coverage FROM components WHERE id IN ({placeholders})",
                chunk,
            )
            for row in rows:
                component = Component(**dict(zip(_COMPONENT_COLUMNS, row)))
                found[component.id] = component
        return found

    def list_edges(self, include_self_loops: bool = True) -> list[EdgeView]:
        """Every stored edge joined with its endpoints."""
        edges = [_edge_view(row) for row in self._fetch(_EDGE_SELECT)]
        if include_self_loops:
            return edges
        return [e for e in edges if not e.is_self_loop]

    def edges_touching(self, component_id: str) -> list[EdgeView]:
        """Edges where the id is source or target; dangling endpoints read as None."""
        rows = self._fetch(
            _EDGE_SELECT + " WHERE d.source_id = %s OR d.target_id = %s",
            (component_id, component_id),
        )
        return [_edge_view(row) for row in rows]

    def dangling_ids(self) -> set[str]:
        """Edge endpoints with no component row."""
        rows = self._fetch(
            """
            SELECT d.source_id FROM dependencies d
            LEFT JOIN components c ON c.id = d.source_id
            WHERE c.id IS NULL
            UNION
            SELECT d.target_id FROM dependencies d
            LEFT JOIN components c ON c.id = d.target_id
            WHERE c.id IS NULL
            """
        )
        return {row[0] for row in rows}

    def counts(self) -> dict[str, int]:
        components = self._fetch("SELECT COUNT(*) FROM components")[0][0]
        dependencies = self._fetch("SELECT COUNT(*) FROM dependencies")[0][0]
        return {"components": components, "dependencies": dependencies}
