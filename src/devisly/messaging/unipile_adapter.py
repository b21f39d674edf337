"""Unipile webhook adapter - validate and normalize message payloads."""

import re
from typing import Any

from devisly.domain.models import MessageKind
from devisly.infra.time import parse_iso_timestamp

from .models import InboundMessage

MESSAGE_RECEIVED_EVENT = "message_received"

_AUDIO_TYPES = frozenset({"audio", "voice", "voice_note", "ptt", "opus"})
_IMAGE_TYPES = frozenset({"image", "img", "photo", "sticker"})
_VIDEO_TYPES = frozenset({"video"})
_DOCUMENT_TYPES = frozenset({"document", "file"})

_PHONE_RUN = re.compile(r"\d{10,15}")


class InvalidPayloadError(Exception):
    """Raised when the Unipile payload has an invalid shape."""

    pass


class UnprocessableInput(Exception):
    """Raised when a required value (sender phone) cannot be derived.

    Terminal: the webhook answers 422 and the delivery is never retried.
    """

    pass


def normalize_phone(value: Any) -> str | None:
    """Normalize a WhatsApp address to +digits.

    "33612345678@s.whatsapp.net" -> "+33612345678". Returns None when no
    digits remain.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    local = value.split("@", 1)[0]
    digits = re.sub(r"\D", "", local)
    return f"+{digits}" if digits else None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def first_attachment(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first attachment (attachments may be a list or one object)."""
    attachments = payload.get("attachments")
    if isinstance(attachments, list):
        return attachments[0] if attachments and isinstance(attachments[0], dict) else None
    if isinstance(attachments, dict):
        return attachments
    return None


def classify_kind(payload: dict[str, Any]) -> MessageKind:
    """Content kind from the first attachment's metadata."""
    attachment = first_attachment(payload)
    if attachment is None:
        return "text"

    raw_type = attachment.get("type") or attachment.get("attachment_type") or ""
    attachment_type = str(raw_type).strip().lower()
    if attachment_type in _AUDIO_TYPES:
        return "audio"
    if attachment_type in _IMAGE_TYPES:
        return "image"
    if attachment_type in _VIDEO_TYPES:
        return "video"
    if attachment_type in _DOCUMENT_TYPES:
        return "document"
    if attachment.get("voice_note") is True:
        return "audio"
    return "text"


def extract_sender_phone(payload: dict[str, Any]) -> str | None:
    """Derive the sender phone, trying each known field in order.

    1. attendee.identifier
    2. attendee.attendee_provider_id
    3. sender.attendee_provider_id
    4. first 10-15 digit run inside sender.attendee_id
    """
    sender = _as_dict(payload.get("sender"))
    attendees = payload.get("attendees")
    attendee = _as_dict(attendees[0]) if isinstance(attendees, list) and attendees else {}

    for candidate in (
        attendee.get("identifier"),
        attendee.get("attendee_provider_id"),
        sender.get("attendee_provider_id"),
    ):
        phone = normalize_phone(candidate)
        if phone:
            return phone

    attendee_id = sender.get("attendee_id")
    if isinstance(attendee_id, str):
        match = _PHONE_RUN.search(attendee_id)
        if match:
            return f"+{match.group(0)}"
    return None


def is_accepted_event(payload: dict[str, Any]) -> bool:
    """Only new messages are processed. A missing event is a legacy payload."""
    event = payload.get("event")
    return event is None or event == MESSAGE_RECEIVED_EVENT


def account_matches(payload: dict[str, Any], expected_account_id: str) -> bool:
    """True when no account is configured or the payload belongs to it."""
    if not expected_account_id:
        return True
    return payload.get("account_id") == expected_account_id


def is_self_message(payload: dict[str, Any], business_number: str) -> bool:
    """True when the sender is our own connected WhatsApp number.

    Unipile relays the messages we send back to the webhook. Without this
    check every reply would be processed as a new inbound turn.
    """
    own = normalize_phone(business_number)
    if not own:
        return False
    sender = _as_dict(payload.get("sender"))
    return normalize_phone(sender.get("attendee_provider_id")) == own


def business_number_from_account(info: Any) -> str | None:
    """Our own WhatsApp number from a Unipile account description.

    Prefers connection_params.im.phone_number and falls back to the account
    name, which Unipile sets to the number for WhatsApp accounts.
    """
    account = _as_dict(info)
    im = _as_dict(_as_dict(account.get("connection_params")).get("im"))
    return normalize_phone(im.get("phone_number")) or normalize_phone(account.get("name"))


def normalize(payload: dict[str, Any]) -> InboundMessage:
    """Normalize a Unipile message payload.

    Args:
        payload: Raw webhook payload.

    Returns:
        InboundMessage. sender_phone is None when no field yields one; the
        caller decides when to reject with require_sender_phone().

    Raises:
        InvalidPayloadError: If message_id is missing or not a string.
    """
    message_id = payload.get("message_id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    sender = _as_dict(payload.get("sender"))
    text = payload.get("message")

    return InboundMessage(
        message_id=message_id,
        chat_id=payload.get("chat_id") if isinstance(payload.get("chat_id"), str) else None,
        account_id=payload.get("account_id"),
        event=payload.get("event"),
        sender_phone=extract_sender_phone(payload),
        sender_provider_id=sender.get("attendee_provider_id"),
        attendee_id=sender.get("attendee_id"),
        kind=classify_kind(payload),
        text=text if isinstance(text, str) else "",
        received_at=parse_iso_timestamp(payload.get("timestamp")),
        raw=payload,
    )


def require_sender_phone(message: InboundMessage) -> str:
    """Return the sender phone or raise UnprocessableInput."""
    if not message.sender_phone:
        raise UnprocessableInput("unable to derive sender phone number")
    return message.sender_phone
