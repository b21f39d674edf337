"""Clients repository - the artisan's customers.

Uses raw SQL with psycopg2 (no ORM). Every query is scoped by user_id.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from devisly.infra.db import fetchall_dict, fetchone_dict

_CLIENT_COLUMNS = "id, name, address, siret, contact_phone, contact_email, created_at"


def search_by_name(
    cur: PgCursor,
    *,
    user_id: int,
    query: str,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Case-insensitive substring search on client names.

    LIKE wildcards in the query are expected to be stripped by the caller.
    """
    return fetchall_dict(
        cur,
        f"""
        SELECT {_CLIENT_COLUMNS},
               (SELECT COUNT(*) FROM quotes q WHERE q.client_id = clients.id) AS total_quotes,
               (SELECT COUNT(*) FROM invoices i WHERE i.client_id = clients.id) AS total_invoices
        FROM clients
        WHERE user_id = %s AND LOWER(name) LIKE %s
        ORDER BY name
        LIMIT %s
        """,
        (user_id, f"%{query.lower()}%", limit),
    )


def find_by_name(cur: PgCursor, *, user_id: int, name: str) -> dict[str, Any] | None:
    """Exact, case-insensitive name lookup (duplicate guard)."""
    return fetchone_dict(
        cur,
        f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE user_id = %s AND LOWER(name) = %s",
        (user_id, name.lower()),
    )


def get_client(cur: PgCursor, *, user_id: int, client_id: int) -> dict[str, Any] | None:
    return fetchone_dict(
        cur,
        f"SELECT {_CLIENT_COLUMNS} FROM clients WHERE user_id = %s AND id = %s",
        (user_id, client_id),
    )


def insert_client(
    cur: PgCursor,
    *,
    user_id: int,
    name: str,
    address: str | None = None,
    siret: str | None = None,
    contact_phone: str | None = None,
    contact_email: str | None = None,
) -> dict[str, Any]:
    """Create a client (created_via = whatsapp) and return the stored row."""
    row = fetchone_dict(
        cur,
        f"""
        INSERT INTO clients (user_id, name, address, siret, contact_phone,
                             contact_email, created_via)
        VALUES (%s, %s, %s, %s, %s, %s, 'whatsapp')
        RETURNING {_CLIENT_COLUMNS}
        """,
        (user_id, name, address, siret, contact_phone, contact_email),
    )
    if row is None:
        raise RuntimeError("client insert returned no row")
    return row
