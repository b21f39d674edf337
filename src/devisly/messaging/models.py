"""Messaging models - normalized webhook messages and attachment payloads."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from devisly.domain.models import MessageKind


@dataclass(frozen=True)
class InboundMessage:
    """Unipile webhook payload reduced to what ingestion needs.

    Attributes:
        message_id: Provider message id (idempotency key).
        chat_id: Provider chat id replies are sent to.
        account_id: Connected Unipile account the event belongs to.
        event: Webhook event name (None for legacy payloads).
        sender_phone: Normalized sender phone (+digits), None if not derivable.
        sender_provider_id: Raw sender.attendee_provider_id (self-loop check).
        attendee_id: Provider attendee id of the sender.
        kind: Content kind classified from attachments.
        text: Message body (may be empty for media).
        received_at: Provider timestamp, or ingestion time if unparseable.
        raw: Full provider payload, stored for debugging and reprocessing.
    """

    message_id: str
    chat_id: str | None
    account_id: str | None
    event: str | None
    sender_phone: str | None
    sender_provider_id: str | None
    attendee_id: str | None
    kind: MessageKind
    text: str
    received_at: datetime
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class Attachment:
    """Downloaded attachment bytes."""

    data: bytes = field(repr=False)
    content_type: str
    filename: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)
