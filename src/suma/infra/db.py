"""Database access layer using psycopg2.

Provides:
- Database: explicitly constructed connection factory (DSN + optional password)
- Database.txn(): context manager for short, safe transactions
- fetchone: query helper
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


class Database:
    """Connection factory for the ledger database.

    One instance is built at process start and handed to every repository.
    Connections are short-lived: each txn() opens and closes its own unless
    an existing connection is passed in.
    """

    def __init__(self, dsn: str, password: str | None = None) -> None:
        if not dsn:
            raise RuntimeError("DATABASE_URL not configured")
        self._dsn = dsn
        self._password = password

    def connect(self) -> PgConnection:
        """Open a new connection.

        DB_PASSWORD is only applied when the DSN does not carry its own.

        Raises:
            psycopg2.Error: On connection failure.
        """
        if self._password and not _dsn_has_password(self._dsn):
            return psycopg2.connect(self._dsn, password=self._password)
        return psycopg2.connect(self._dsn)

    @contextmanager
    def txn(self, conn: PgConnection | None = None) -> Iterator[PgCursor]:
        """Context manager for a short, safe transaction.

        Commits on successful exit, rolls back on exception. Connections
        opened here are closed on exit.

        Example:
            with db.txn() as cur:
                cur.execute("INSERT INTO t (x) VALUES (%s)", (1,))
        """
        owns_conn = conn is None
        if owns_conn:
            conn = self.connect()

        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if owns_conn:
                conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row (None if no results)."""
    cur.execute(query, params)
    return cur.fetchone()

