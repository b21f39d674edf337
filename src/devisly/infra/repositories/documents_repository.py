"""Quotes and invoices repository.

Quotes and invoices share one table layout (header + ordered line items), so
every query is parametrized by a DocumentKind describing the table names.
Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from devisly.domain.documents import LineItem, Totals, document_number
from devisly.infra.db import fetchall_dict, fetchone, fetchone_dict


@dataclass(frozen=True)
class DocumentKind:
    table: str
    items_table: str
    fk_column: str
    number_column: str
    number_prefix: str
    term_column: str
    statuses: tuple[str, ...]


QUOTE = DocumentKind(
    table="quotes",
    items_table="quote_items",
    fk_column="quote_id",
    number_column="quote_number",
    number_prefix="DEVIS",
    term_column="validity_date",
    statuses=("draft", "sent", "accepted", "rejected"),
)

INVOICE = DocumentKind(
    table="invoices",
    items_table="invoice_items",
    fk_column="invoice_id",
    number_column="invoice_number",
    number_prefix="FACT",
    term_column="due_date",
    statuses=("draft", "sent", "paid", "overdue", "canceled"),
)


def _header_columns(kind: DocumentKind) -> str:
    extra = ", d.quote_id, d.paid_at" if kind is INVOICE else ""
    return f"""
        d.id, d.client_id, c.name AS client_name, d.{kind.number_column} AS number,
        d.issue_date, d.{kind.term_column} AS term_date, d.status, d.vat_rate,
        d.subtotal_amount, d.vat_amount, d.total_amount, d.notes,
        d.sent_via_whatsapp_at, d.created_at{extra}
    """


def next_number(cur: PgCursor, kind: DocumentKind, *, user_id: int, year: int) -> str:
    """Next sequential number for this user and year (PREFIX-YYYY-NNNN)."""
    row = fetchone(
        cur,
        f"""
        SELECT COALESCE(MAX(CAST(RIGHT({kind.number_column}, 4) AS INTEGER)), 0)
        FROM {kind.table}
        WHERE user_id = %s AND {kind.number_column} LIKE %s
        """,
        (user_id, f"{kind.number_prefix}-{year}-%"),
    )
    last = int(row[0]) if row and row[0] is not None else 0
    return document_number(kind.number_prefix, year, last + 1)


def insert_document(
    cur: PgCursor,
    kind: DocumentKind,
    *,
    user_id: int,
    client_id: int,
    number: str,
    issue_date: date,
    term_date: date,
    status: str,
    totals: Totals,
    items: list[LineItem],
    notes: str | None = None,
    quote_id: int | None = None,
) -> int:
    """Insert a document header and its line items.

    Returns:
        The new document id.
    """
    columns = [
        "user_id", "client_id", kind.number_column, "issue_date", kind.term_column,
        "status", "vat_rate", "subtotal_amount", "vat_amount", "total_amount", "notes",
    ]
    values: list[Any] = [
        user_id, client_id, number, issue_date, term_date, status,
        totals.vat_rate, totals.subtotal, totals.vat_amount, totals.total, notes,
    ]
    if kind is INVOICE:
        columns.append("quote_id")
        values.append(quote_id)

    placeholders = ", ".join(["%s"] * len(columns))
    row = fetchone(
        cur,
        f"INSERT INTO {kind.table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
        values,
    )
    if row is None:
        raise RuntimeError(f"{kind.table} insert returned no id")
    document_id = row[0]

    for item in items:
        cur.execute(
            f"""
            INSERT INTO {kind.items_table} (
                {kind.fk_column}, description, quantity, unit, unit_price,
                total_price, position
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                document_id,
                item.description,
                item.quantity,
                item.unit,
                item.unit_price,
                item.total_price,
                item.position,
            ),
        )
    return document_id


def get_document(
    cur: PgCursor,
    kind: DocumentKind,
    *,
    user_id: int,
    document_id: int,
) -> dict[str, Any] | None:
    """Load a document with client name and ordered items."""
    header = fetchone_dict(
        cur,
        f"""
        SELECT {_header_columns(kind)}
        FROM {kind.table} d
        JOIN clients c ON c.id = d.client_id
        WHERE d.user_id = %s AND d.id = %s
        """,
        (user_id, document_id),
    )
    if header is None:
        return None
    header["items"] = fetchall_dict(
        cur,
        f"""
        SELECT description, quantity, unit, unit_price, total_price, position
        FROM {kind.items_table}
        WHERE {kind.fk_column} = %s
        ORDER BY position
        """,
        (document_id,),
    )
    return header


def list_recent(
    cur: PgCursor,
    kind: DocumentKind,
    *,
    user_id: int,
    limit: int,
    status: str | None = None,
) -> list[dict[str, Any]]:
    """Newest documents first, with client name and item count."""
    status_clause = "AND d.status = %s" if status else ""
    params: list[Any] = [user_id]
    if status:
        params.append(status)
    params.append(limit)
    return fetchall_dict(
        cur,
        f"""
        SELECT {_header_columns(kind)},
               (SELECT COUNT(*) FROM {kind.items_table} i
                 WHERE i.{kind.fk_column} = d.id) AS items_count
        FROM {kind.table} d
        JOIN clients c ON c.id = d.client_id
        WHERE d.user_id = %s {status_clause}
        ORDER BY d.created_at DESC, d.id DESC
        LIMIT %s
        """,
        params,
    )


def count_documents(cur: PgCursor, kind: DocumentKind, *, user_id: int) -> int:
    row = fetchone(cur, f"SELECT COUNT(*) FROM {kind.table} WHERE user_id = %s", (user_id,))
    return int(row[0]) if row else 0


def update_status(
    cur: PgCursor,
    kind: DocumentKind,
    *,
    document_id: int,
    status: str,
) -> None:
    """Move a document to a new status (paid also stamps paid_at)."""
    if status not in kind.statuses:
        raise ValueError(f"invalid {kind.table} status: {status}")
    paid_clause = ", paid_at = now()" if kind is INVOICE and status == "paid" else ""
    cur.execute(
        f"UPDATE {kind.table} SET status = %s{paid_clause}, updated_at = now() WHERE id = %s",
        (status, document_id),
    )


def mark_sent_via_whatsapp(cur: PgCursor, kind: DocumentKind, *, document_id: int) -> None:
    cur.execute(
        f"UPDATE {kind.table} SET sent_via_whatsapp_at = now(), updated_at = now() WHERE id = %s",
        (document_id,),
    )


def unpaid_invoices_summary(cur: PgCursor, *, user_id: int) -> tuple[int, Decimal]:
    """Count and total of invoices awaiting payment (sent or overdue)."""
    row = fetchone(
        cur,
        """
        SELECT COUNT(*), COALESCE(SUM(total_amount), 0)
        FROM invoices
        WHERE user_id = %s AND status IN ('sent', 'overdue')
        """,
        (user_id,),
    )
    if row is None:
        return 0, Decimal("0")
    return int(row[0]), Decimal(str(row[1]))
