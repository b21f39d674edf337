"""Voice-note transcription: download from Unipile, transcribe with Whisper.

Every failure (missing attachment, download, provider error) surfaces as
TranscriptionError so the worker can answer with an apology instead of
retrying the task.
"""

from __future__ import annotations

import re
import tempfile
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

from devisly.domain.models import MessageRecord, User
from devisly.llm.openai_client import OpenAIClient, OpenAIError
from devisly.messaging.models import Attachment
from devisly.messaging.unipile_client import UnipileClient, UnipileError
from devisly.observability.logging import get_logger
from devisly.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

DEFAULT_EXTENSION = ".ogg"

_CONTENT_TYPE_EXTENSIONS = (
    (re.compile(r"ogg|opus"), ".ogg"),
    (re.compile(r"mpeg|mp3"), ".mp3"),
    (re.compile(r"mp4|m4a"), ".m4a"),
    (re.compile(r"wav"), ".wav"),
    (re.compile(r"webm"), ".webm"),
)


class TranscriptionError(Exception):
    """Audio could not be turned into text."""

    pass


@dataclass(frozen=True)
class Transcription:
    transcript: str
    language: str
    duration_ms: int


def determine_extension(filename: str | None, content_type: str | None) -> str:
    """Pick the file suffix Whisper uses to detect the container format."""
    if filename:
        suffix = PurePosixPath(filename).suffix
        if suffix:
            return suffix
    for pattern, extension in _CONTENT_TYPE_EXTENSIONS:
        if content_type and pattern.search(content_type.lower()):
            return extension
    return DEFAULT_EXTENSION


def extract_attachment_id(raw_payload: dict[str, Any]) -> str | None:
    """Attachment id from a stored webhook payload."""
    if not raw_payload:
        return None
    attachments = raw_payload.get("attachments")
    if isinstance(attachments, list):
        attachment = attachments[0] if attachments and isinstance(attachments[0], dict) else {}
    elif isinstance(attachments, dict):
        attachment = attachments
    else:
        attachment = {}
    value = raw_payload.get("attachment_id") or attachment.get("attachment_id") or attachment.get("id")
    return str(value) if value else None


class AudioTranscriber:
    def __init__(self, messaging: UnipileClient, openai_client: OpenAIClient) -> None:
        self._messaging = messaging
        self._openai = openai_client

    def transcribe(self, record: MessageRecord, user: User) -> Transcription:
        """Transcribe an audio message record.

        The user's preferred language is passed to Whisper as a hint.

        Raises:
            TranscriptionError: On any failure.
        """
        if record.message_type != "audio":
            raise TranscriptionError("Message is not an audio type")

        attachment_id = extract_attachment_id(record.raw_payload)
        if not attachment_id:
            raise TranscriptionError("No attachment ID found in message")

        audio = self._download(record, attachment_id)
        return self.transcribe_bytes(
            audio.data,
            filename_hint=audio.filename,
            content_type=audio.content_type,
            language_hint=user.language,
        )

    def _download(self, record: MessageRecord, attachment_id: str) -> Attachment:
        log_ctx = safe_log_context(record_id=record.id, attachment_prefix=id_prefix(attachment_id))
        logger.info("downloading voice note", extra={"extra_fields": log_ctx})
        try:
            return self._messaging.download_attachment(attachment_id)
        except UnipileError as exc:
            first_error = exc

        # Some voice notes are only served by the message-scoped endpoint
        logger.info(
            "voice note download fallback",
            extra={"extra_fields": {**log_ctx, "error_type": type(first_error).__name__}},
        )
        try:
            return self._messaging.download_message_attachment(record.unipile_message_id, attachment_id)
        except UnipileError as exc:
            raise TranscriptionError(f"Failed to download audio: {exc}") from exc

    def transcribe_bytes(
        self,
        data: bytes,
        filename_hint: str | None = None,
        content_type: str | None = None,
        language_hint: str | None = None,
    ) -> Transcription:
        """Transcribe raw audio bytes through a scoped temporary file.

        Raises:
            TranscriptionError: If the data is empty or Whisper fails.
        """
        if not data:
            raise TranscriptionError("Audio data is empty")

        extension = determine_extension(filename_hint, content_type)
        with tempfile.NamedTemporaryFile(prefix="whatsapp_audio", suffix=extension) as temp_file:
            temp_file.write(data)
            temp_file.flush()
            logger.info(
                "transcribing voice note",
                extra={"extra_fields": safe_log_context(size=len(data), extension=extension)},
            )
            try:
                result = self._openai.transcribe_audio(temp_file.name, language=language_hint)
            except OpenAIError as exc:
                raise TranscriptionError(str(exc)) from exc

        transcript = (result.text or "").strip()
        if not transcript:
            raise TranscriptionError("Empty transcription")
        return Transcription(transcript=transcript, language=result.language, duration_ms=result.duration_ms)
