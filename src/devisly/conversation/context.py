"""Conversation context window.

The model sees the newest N messages of the last H hours, oldest first.
Messages without usable text (e.g. a voice note whose transcription failed)
are left out.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from devisly.domain.models import MessageRecord

DEFAULT_CONTEXT_MESSAGES = 15
DEFAULT_CONTEXT_HOURS = 2


def window_start(now: datetime, hours: int) -> datetime:
    return now - timedelta(hours=hours)


def select_window(
    messages: Iterable[MessageRecord],
    *,
    now: datetime,
    limit: int = DEFAULT_CONTEXT_MESSAGES,
    hours: int = DEFAULT_CONTEXT_HOURS,
    exclude_id: int | None = None,
) -> list[MessageRecord]:
    """Keep the newest `limit` messages created within `hours` of `now`.

    Returns:
        Selected records, oldest first. Records without created_at are dropped.
    """
    since = window_start(now, hours)
    recent = [
        message
        for message in messages
        if message.created_at is not None
        and message.created_at > since
        and message.id != exclude_id
    ]
    recent.sort(key=lambda message: (message.created_at, message.id))
    return recent[-limit:] if limit > 0 else []


def to_history(messages: Iterable[MessageRecord]) -> list[dict[str, str]]:
    """Map records to chat roles, skipping empty effective content."""
    history = []
    for message in messages:
        content = message.effective_content
        if not content:
            continue
        history.append(
            {
                "role": "user" if message.is_inbound else "assistant",
                "content": content,
            }
        )
    return history
