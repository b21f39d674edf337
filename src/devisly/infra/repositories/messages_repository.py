"""WhatsApp messages repository - inbound and outbound message records.

Uses raw SQL with psycopg2 (no ORM). unipile_message_id is UNIQUE: it is the
idempotency key for webhook deliveries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from devisly.domain.models import MessageRecord
from devisly.infra.db import as_json, fetchall_dict, fetchone, fetchone_dict

_MESSAGE_COLUMNS = """
    id, user_id, unipile_message_id, unipile_chat_id, direction, message_type,
    content, audio_transcription, detected_language, processed, error_message,
    raw_payload, created_at
"""


def _to_record(row: dict[str, Any]) -> MessageRecord:
    raw_payload = row.get("raw_payload")
    return MessageRecord(
        id=row["id"],
        user_id=row["user_id"],
        unipile_message_id=row["unipile_message_id"],
        unipile_chat_id=row.get("unipile_chat_id"),
        direction=row["direction"],
        message_type=row["message_type"],
        content=row.get("content"),
        audio_transcription=row.get("audio_transcription"),
        detected_language=row.get("detected_language"),
        processed=bool(row.get("processed")),
        error_message=row.get("error_message"),
        raw_payload=raw_payload if isinstance(raw_payload, dict) else {},
        created_at=row.get("created_at"),
    )


def get_message(cur: PgCursor, record_id: int) -> MessageRecord | None:
    row = fetchone_dict(
        cur,
        f"SELECT {_MESSAGE_COLUMNS} FROM whatsapp_messages WHERE id = %s",
        (record_id,),
    )
    return _to_record(row) if row else None


def find_by_provider_id(cur: PgCursor, unipile_message_id: str) -> tuple[int, bool] | None:
    """Return (record id, processed) for a stored provider message id, or None."""
    row = fetchone(
        cur,
        "SELECT id, processed FROM whatsapp_messages WHERE unipile_message_id = %s",
        (unipile_message_id,),
    )
    if row is None:
        return None
    return row[0], bool(row[1])


def insert_inbound(
    cur: PgCursor,
    *,
    user_id: int,
    unipile_message_id: str,
    chat_id: str | None,
    message_type: str,
    content: str | None,
    raw_payload: dict[str, Any],
    sent_at: datetime,
) -> int | None:
    """Insert an unprocessed inbound record.

    Returns:
        The new record id, or None if the provider id was already stored
        (concurrent duplicate delivery).
    """
    row = fetchone(
        cur,
        """
        INSERT INTO whatsapp_messages (
            user_id, unipile_message_id, unipile_chat_id, direction,
            message_type, content, raw_payload, processed, sent_at
        )
        VALUES (%s, %s, %s, 'inbound', %s, %s, %s, false, %s)
        ON CONFLICT (unipile_message_id) DO NOTHING
        RETURNING id
        """,
        (user_id, unipile_message_id, chat_id, message_type, content, as_json(raw_payload), sent_at),
    )
    return row[0] if row else None


def insert_outbound(
    cur: PgCursor,
    *,
    user_id: int,
    unipile_message_id: str,
    chat_id: str,
    content: str,
    sent_at: datetime,
) -> int | None:
    """Record a message we sent. Outbound records are born processed."""
    row = fetchone(
        cur,
        """
        INSERT INTO whatsapp_messages (
            user_id, unipile_message_id, unipile_chat_id, direction,
            message_type, content, processed, sent_at
        )
        VALUES (%s, %s, %s, 'outbound', 'text', %s, true, %s)
        ON CONFLICT (unipile_message_id) DO NOTHING
        RETURNING id
        """,
        (user_id, unipile_message_id, chat_id, content, sent_at),
    )
    return row[0] if row else None


def store_transcription(
    cur: PgCursor,
    *,
    record_id: int,
    transcription: str,
    language: str | None,
) -> None:
    """Persist a transcript and clear any previous error."""
    cur.execute(
        """
        UPDATE whatsapp_messages
        SET audio_transcription = %s, detected_language = %s,
            error_message = NULL, updated_at = now()
        WHERE id = %s
        """,
        (transcription, language, record_id),
    )


def set_error(cur: PgCursor, *, record_id: int, error: str) -> None:
    cur.execute(
        "UPDATE whatsapp_messages SET error_message = %s, updated_at = now() WHERE id = %s",
        (error, record_id),
    )


def set_content(cur: PgCursor, *, record_id: int, content: str) -> None:
    cur.execute(
        "UPDATE whatsapp_messages SET content = %s, updated_at = now() WHERE id = %s",
        (content, record_id),
    )


def mark_processed(cur: PgCursor, *, record_id: int) -> None:
    cur.execute(
        "UPDATE whatsapp_messages SET processed = true, updated_at = now() WHERE id = %s",
        (record_id,),
    )


def recent_for_user(
    cur: PgCursor,
    *,
    user_id: int,
    since: datetime,
    limit: int,
    exclude_id: int | None = None,
) -> list[MessageRecord]:
    """Most recent messages of a user after `since`, returned oldest-first.

    Args:
        cur: Database cursor.
        user_id: Owner of the conversation.
        since: Only messages created strictly after this instant.
        limit: Maximum number of messages (the newest ones are kept).
        exclude_id: Record to leave out (the message being answered).
    """
    rows = fetchall_dict(
        cur,
        f"""
        SELECT {_MESSAGE_COLUMNS}
        FROM whatsapp_messages
        WHERE user_id = %s
          AND created_at > %s
          AND id <> %s
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (user_id, since, exclude_id if exclude_id is not None else -1, limit),
    )
    return [_to_record(row) for row in reversed(rows)]
