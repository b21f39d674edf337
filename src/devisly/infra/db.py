"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
- fetchone/fetchall: Query helpers
- fetchone_dict/fetchall_dict: Same, keyed by column name
- as_json(): Wrap a Python value for a jsonb parameter
"""

import json
import os
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor
from psycopg2.extras import Json

from devisly.infra.settings import ConfigurationError


def get_conn(dsn: str | None = None) -> PgConnection:
    """Get a new database connection.

    Args:
        dsn: Explicit DSN. Defaults to DATABASE_URL.

    Returns:
        psycopg2 connection object.

    Raises:
        ConfigurationError: If no DSN is given and DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = dsn or os.environ.get("DATABASE_URL")
    if not dsn:
        raise ConfigurationError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Example:
        with txn() as cur:
            cur.execute("UPDATE users SET last_activity_at = now() WHERE id = %s", (1,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

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
    params: Sequence[Any] | Mapping[str, Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row (None if no results)."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | Mapping[str, Any] | None = None,
) -> list[tuple[Any, ...]]:
    """Execute query and fetch all rows."""
    cur.execute(query, params)
    return cur.fetchall()


def _columns(cur: PgCursor) -> list[str]:
    return [col[0] for col in (cur.description or ())]


def fetchone_dict(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Execute query and fetch one row as a column-name dict.

    Args:
        cur: Database cursor.
        query: SQL query with %s placeholders.
        params: Query parameters.

    Returns:
        Dict keyed by column name, or None if no results.
    """
    cur.execute(query, params)
    row = cur.fetchone()
    if row is None:
        return None
    return dict(zip(_columns(cur), row))


def fetchall_dict(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | Mapping[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Execute query and fetch all rows as column-name dicts."""
    cur.execute(query, params)
    rows = cur.fetchall()
    columns = _columns(cur)
    return [dict(zip(columns, row)) for row in rows]


def as_json(value: Any) -> Json:
    """Adapt a Python value for a jsonb column (non-JSON types become str)."""
    return Json(value, dumps=_dumps)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)
