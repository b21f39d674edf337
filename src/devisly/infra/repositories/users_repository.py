"""Users repository - identities keyed by phone number.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from devisly.domain.models import User
from devisly.infra.db import fetchone_dict

_USER_COLUMNS = """
    id, phone_number, preferred_language, subscription_status,
    company_name, siret, address, vat_number, bypass_subscription,
    onboarding_completed, unipile_chat_id, unipile_attendee_id,
    created_at, last_activity_at
"""

# Columns update_profile() is allowed to write
PROFILE_FIELDS = ("company_name", "siret", "address", "vat_number", "preferred_language")


def _to_user(row: dict[str, Any]) -> User:
    return User(
        id=row["id"],
        phone_number=row["phone_number"],
        preferred_language=row.get("preferred_language") or "fr",
        subscription_status=row.get("subscription_status") or "pending",
        company_name=row.get("company_name"),
        siret=row.get("siret"),
        address=row.get("address"),
        vat_number=row.get("vat_number"),
        bypass_subscription=bool(row.get("bypass_subscription")),
        onboarding_completed=bool(row.get("onboarding_completed")),
        unipile_chat_id=row.get("unipile_chat_id"),
        unipile_attendee_id=row.get("unipile_attendee_id"),
        created_at=row.get("created_at"),
        last_activity_at=row.get("last_activity_at"),
    )


def get_user(cur: PgCursor, user_id: int) -> User | None:
    """Load a user by primary key."""
    row = fetchone_dict(cur, f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
    return _to_user(row) if row else None


def get_or_create_by_phone(
    cur: PgCursor,
    *,
    phone_number: str,
    now: datetime,
) -> tuple[User, bool]:
    """Resolve the user owning a phone number, creating it on first contact.

    New users start as pending subscribers speaking French.

    Args:
        cur: Database cursor (within transaction).
        phone_number: Normalized phone number (E.164 with leading +).
        now: Timestamp recorded as first_message_at.

    Returns:
        Tuple of (user, created).
    """
    row = fetchone_dict(
        cur,
        f"""
        INSERT INTO users (phone_number, preferred_language, subscription_status,
                           first_message_at, last_activity_at)
        VALUES (%s, 'fr', 'pending', %s, %s)
        ON CONFLICT (phone_number) DO NOTHING
        RETURNING {_USER_COLUMNS}
        """,
        (phone_number, now, now),
    )
    if row is not None:
        return _to_user(row), True

    row = fetchone_dict(
        cur,
        f"SELECT {_USER_COLUMNS} FROM users WHERE phone_number = %s",
        (phone_number,),
    )
    if row is None:
        raise RuntimeError("user row vanished during get_or_create_by_phone")
    return _to_user(row), False


def touch_activity(
    cur: PgCursor,
    *,
    user_id: int,
    now: datetime,
    chat_id: str | None = None,
    attendee_id: str | None = None,
) -> None:
    """Record activity and remember the latest chat/attendee ids for replies."""
    cur.execute(
        """
        UPDATE users
        SET last_activity_at = %s,
            unipile_chat_id = COALESCE(%s, unipile_chat_id),
            unipile_attendee_id = COALESCE(%s, unipile_attendee_id),
            updated_at = now()
        WHERE id = %s
        """,
        (now, chat_id, attendee_id, user_id),
    )


def update_preferred_language(cur: PgCursor, *, user_id: int, language: str) -> None:
    cur.execute(
        "UPDATE users SET preferred_language = %s, updated_at = now() WHERE id = %s",
        (language, user_id),
    )


def update_profile(cur: PgCursor, *, user_id: int, fields: dict[str, Any]) -> User:
    """Update whitelisted profile columns and return the fresh user.

    Raises:
        ValueError: If fields is empty or names a column outside PROFILE_FIELDS.
    """
    unknown = set(fields) - set(PROFILE_FIELDS)
    if unknown or not fields:
        raise ValueError(f"invalid profile fields: {sorted(unknown) or 'none'}")

    columns = [name for name in PROFILE_FIELDS if name in fields]
    assignments = ", ".join(f"{name} = %s" for name in columns)
    params = [fields[name] for name in columns] + [user_id]

    row = fetchone_dict(
        cur,
        f"UPDATE users SET {assignments}, updated_at = now() WHERE id = %s RETURNING {_USER_COLUMNS}",
        params,
    )
    if row is None:
        raise LookupError(f"user {user_id} not found")
    return _to_user(row)


def mark_onboarding_completed(cur: PgCursor, *, user_id: int) -> None:
    cur.execute(
        "UPDATE users SET onboarding_completed = true, updated_at = now() WHERE id = %s",
        (user_id,),
    )


def get_stats(cur: PgCursor, *, user_id: int) -> dict[str, int]:
    """Document and client counters shown by get_user_info."""
    row = fetchone_dict(
        cur,
        """
        SELECT
            (SELECT COUNT(*) FROM clients WHERE user_id = %(uid)s) AS total_clients,
            (SELECT COUNT(*) FROM quotes WHERE user_id = %(uid)s) AS total_quotes,
            (SELECT COUNT(*) FROM invoices WHERE user_id = %(uid)s) AS total_invoices,
            (SELECT COUNT(*) FROM quotes
              WHERE user_id = %(uid)s AND status IN ('draft', 'sent')) AS pending_quotes,
            (SELECT COUNT(*) FROM invoices
              WHERE user_id = %(uid)s AND status IN ('sent', 'overdue')) AS unpaid_invoices
        """,
        {"uid": user_id},
    )
    return {key: int(value or 0) for key, value in (row or {}).items()}
