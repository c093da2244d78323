"""
Shared database utilities for the graph store.

Provides a single get_db_connection() that turns a store URL into an open
DB-API connection:

  sqlite:///relative/path.db   embedded SQLite file (default)
  sqlite:///:memory:           throwaway in-memory store
  postgresql://user:pw@host:port/db   PostgreSQL through psycopg 3

Both drivers accept the same SQL for everything the store does; only the
parameter marker differs, which is what Dialect carries.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

import psycopg

SQLITE_PREFIX = "sqlite:///"
POSTGRES_PREFIXES = ("postgresql://", "postgres://")


@dataclass(frozen=True)
class Dialect:
    """SQL flavour of an open connection."""

    name: str
    placeholder: str

    def sql(self, text: str) -> str:
        """Rewrite %s parameter markers for this driver."""
        if self.placeholder == "%s":
            return text
        return text.replace("%s", self.placeholder)


SQLITE = Dialect(name="sqlite", placeholder="?")
POSTGRES = Dialect(name="postgresql", placeholder="%s")


def dialect_for(url: str) -> Dialect:
    """Return the dialect for a store URL, or raise ValueError if unsupported."""
    if url.startswith(SQLITE_PREFIX):
        return SQLITE
    if url.startswith(POSTGRES_PREFIXES):
        return POSTGRES
    raise ValueError(f"Unsupported store URL '{url}'. Use sqlite:///path or postgresql://...")


def get_db_connection(url: str) -> tuple[Any, Dialect]:
    """
    Open a connection for the given store URL.

    Args:
        url: Store URL (see module docstring).

    Returns:
        (connection, dialect). Connections are opened in manual-commit mode;
        the caller owns transactions and closing.
    """
    dialect = dialect_for(url)

    if dialect is SQLITE:
        path = url[len(SQLITE_PREFIX):] or ":memory:"
        # API handlers run in a worker thread pool; GraphStore serializes access.
        conn = sqlite3.connect(path, check_same_thread=False)
        if path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
        return conn, dialect

    conn = psycopg.connect(url)
    conn.autocommit = False
    return conn, dialect
