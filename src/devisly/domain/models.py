"""Domain records shared by ingestion, the worker and the conversation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

MessageKind = Literal["text", "audio", "image", "document", "video"]
Direction = Literal["inbound", "outbound"]

SUPPORTED_LANGUAGES = ("fr", "tr")
DOCUMENT_CAPABLE_STATUSES = ("active", "past_due")


@dataclass(frozen=True)
class User:
    """Business owner of a conversation, keyed by phone number."""

    id: int
    phone_number: str
    preferred_language: str = "fr"
    subscription_status: str = "pending"
    company_name: str | None = None
    siret: str | None = None
    address: str | None = None
    vat_number: str | None = None
    bypass_subscription: bool = False
    onboarding_completed: bool = False
    unipile_chat_id: str | None = None
    unipile_attendee_id: str | None = None
    created_at: datetime | None = None
    last_activity_at: datetime | None = None

    @property
    def can_create_documents(self) -> bool:
        """Capability flag consulted by document-creating tools."""
        return self.bypass_subscription or self.subscription_status in DOCUMENT_CAPABLE_STATUSES

    @property
    def language(self) -> str:
        """Preferred language, coerced to a supported one."""
        return self.preferred_language if self.preferred_language in SUPPORTED_LANGUAGES else "fr"

    @property
    def is_turkish(self) -> bool:
        return self.language == "tr"


@dataclass(frozen=True)
class MessageRecord:
    """A received or sent chat message (whatsapp_messages row)."""

    id: int
    user_id: int
    unipile_message_id: str
    direction: Direction
    message_type: MessageKind
    unipile_chat_id: str | None = None
    content: str | None = None
    audio_transcription: str | None = None
    detected_language: str | None = None
    processed: bool = False
    error_message: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def effective_content(self) -> str:
        """Text the model should see: the transcript for audio, else the body."""
        if self.message_type == "audio" and self.audio_transcription:
            return self.audio_transcription.strip()
        return (self.content or "").strip()

    @property
    def is_inbound(self) -> bool:
        return self.direction == "inbound"
