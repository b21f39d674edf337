"""System logs repository - business audit trail (system_logs table).

These rows complement the JSON logs on stdout: they are what back-office
staff read. A failed audit write must never fail the operation that caused it,
so record_event() swallows database errors after logging them.
"""

from __future__ import annotations

from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from devisly.infra.db import as_json, txn
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)

LogType = Literal["info", "warning", "error"]


def insert_log(
    cur: PgCursor,
    *,
    log_type: LogType,
    event: str,
    description: str,
    user_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Insert one audit row within the caller's transaction."""
    cur.execute(
        """
        INSERT INTO system_logs (log_type, event, description, user_id, metadata)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (log_type, event, description, user_id, as_json(metadata or {})),
    )


def record_event(
    *,
    log_type: LogType,
    event: str,
    description: str,
    user_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Write an audit row in its own short transaction (best effort)."""
    try:
        with txn() as cur:
            insert_log(
                cur,
                log_type=log_type,
                event=event,
                description=description,
                user_id=user_id,
                metadata=metadata,
            )
    except Exception as exc:
        logger.warning(
            "system log write failed",
            extra={
                "extra_fields": safe_log_context(
                    event=event,
                    error_type=type(exc).__name__,
                )
            },
        )
