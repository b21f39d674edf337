"""LLM conversation log repository - one row per completion call.

Rows are write-only from the pipeline's point of view; they exist for
debugging and cost tracking.
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from devisly.infra.db import as_json


def insert_turn(
    cur: PgCursor,
    *,
    user_id: int,
    messages_payload: list[dict[str, Any]],
    response_payload: dict[str, Any] | None,
    tool_name: str | None,
    tool_arguments: Any,
    tool_result: dict[str, Any] | None,
    prompt_tokens: int | None,
    completion_tokens: int | None,
    total_tokens: int | None,
    model: str | None,
    duration_ms: int,
    error_message: str | None = None,
) -> int:
    """Insert a conversation turn log.

    Returns:
        The generated row id.
    """
    cur.execute(
        """
        INSERT INTO llm_conversations (
            user_id, messages_payload, response_payload, tool_name,
            tool_arguments, tool_result, prompt_tokens, completion_tokens,
            total_tokens, model, duration_ms, error_message
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            user_id,
            as_json(messages_payload),
            as_json(response_payload) if response_payload is not None else None,
            tool_name,
            as_json(tool_arguments) if tool_arguments is not None else None,
            as_json(tool_result) if tool_result is not None else None,
            prompt_tokens,
            completion_tokens,
            total_tokens,
            model,
            duration_ms,
            error_message,
        ),
    )
    return cur.fetchone()[0]
