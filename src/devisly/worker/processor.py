"""Message processing worker - one inbound record per task.

process(record_id) loads the record, dispatches on its kind (audio, text,
media), hands text to the conversation engine, sends the reply and marks the
record processed. Expected outcomes come back as a ProcessOutcome value; the
task route maps them to HTTP statuses for the queue.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Protocol

from devisly.conversation.engine import ConversationEngine
from devisly.domain.models import MessageRecord, User
from devisly.infra.db import txn
from devisly.infra.repositories import messages_repository, system_logs_repository, users_repository
from devisly.infra.settings import ConfigurationError
from devisly.infra.time import utc_now
from devisly.llm import openai_client
from devisly.messaging import unipile_client
from devisly.messaging.unipile_client import UnipileClient
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context
from devisly.speech.transcriber import AudioTranscriber, TranscriptionError
from devisly.tasks.retry import ErrorKind

logger = get_logger(__name__)

OutcomeStatus = Literal["ok", "skipped", "discarded", "failed"]

OK: OutcomeStatus = "ok"
SKIPPED: OutcomeStatus = "skipped"
DISCARDED: OutcomeStatus = "discarded"
FAILED: OutcomeStatus = "failed"

MEDIA_KINDS = ("image", "document", "video")

MEDIA_PLACEHOLDERS = {
    "image": "[Image reçu]",
    "document": "[Document reçu]",
    "video": "[Video reçu]",
}

_AUDIO_APOLOGY = {
    "fr": "Désolé, je n'ai pas pu comprendre votre message vocal. "
    "Veuillez réessayer ou envoyer un message texte.",
    "tr": "Üzgünüm, sesli mesajınızı anlayamadım. Lütfen tekrar deneyin veya yazılı mesaj gönderin.",
}

_MEDIA_NAMES = {
    "fr": {"image": "image", "document": "document", "video": "vidéo"},
    "tr": {"image": "Görsel", "document": "Belge", "video": "Video"},
}

@dataclass(frozen=True)
class ProcessOutcome:
    status: OutcomeStatus
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls) -> ProcessOutcome:
        return cls(OK)

    @classmethod
    def skipped(cls) -> ProcessOutcome:
        return cls(SKIPPED)

    @classmethod
    def discarded(cls, error_kind: ErrorKind, error: str | None = None) -> ProcessOutcome:
        return cls(DISCARDED, error_kind, error)

    @classmethod
    def failed(cls, error_kind: ErrorKind, error: str) -> ProcessOutcome:
        return cls(FAILED, error_kind, error)


def audio_apology(user: User) -> str:
    return _AUDIO_APOLOGY[user.language]


def media_acknowledgement(kind: str, user: User) -> str:
    name = _MEDIA_NAMES[user.language].get(kind, kind)
    if user.is_turkish:
        return (
            f"{name} aldım. Şu anda yalnızca metin ve sesli mesajları işleyebiliyorum. "
            "Bir teklif veya fatura oluşturmak için lütfen bana yazın veya sesli mesaj gönderin."
        )
    return (
        f"J'ai bien reçu votre {name}. Pour le moment, je ne peux traiter que les messages texte et vocaux. "
        "Pour créer un devis ou une facture, envoyez-moi un message texte ou vocal."
    )


def classify_failure(exc: Exception) -> ErrorKind:
    """Map an unhandled exception to a retry decision bucket."""
    if isinstance(
        exc,
        (
            ConfigurationError,
            openai_client.ConfigurationError,
            unipile_client.ConfigurationError,
            unipile_client.AuthenticationError,
        ),
    ):
        return "configuration"
    return "transient"


def _sanitize_error(exc: Exception) -> str:
    """PII-free description for log lines."""
    status = getattr(exc, "status", None)
    if status is not None:
        return f"{type(exc).__name__} {status}"
    return type(exc).__name__


class MessageStore(Protocol):
    """Persistence the worker needs. PgMessageStore is the real one."""

    def get_message(self, record_id: int) -> MessageRecord | None: ...

    def get_user(self, user_id: int) -> User | None: ...

    def store_transcription(self, record_id: int, transcript: str, language: str | None) -> None: ...

    def set_error(self, record_id: int, error: str) -> None: ...

    def set_content(self, record_id: int, content: str) -> None: ...

    def complete(
        self,
        record: MessageRecord,
        reply: str | None,
        chat_id: str | None,
        outbound_message_id: str | None,
        sent_at: datetime,
    ) -> None: ...

    def log_event(
        self,
        log_type: str,
        event: str,
        description: str,
        user_id: int | None,
        metadata: dict[str, Any],
    ) -> None: ...


class PgMessageStore:
    def get_message(self, record_id: int) -> MessageRecord | None:
        with txn() as cur:
            return messages_repository.get_message(cur, record_id)

    def get_user(self, user_id: int) -> User | None:
        with txn() as cur:
            return users_repository.get_user(cur, user_id)

    def store_transcription(self, record_id: int, transcript: str, language: str | None) -> None:
        with txn() as cur:
            messages_repository.store_transcription(
                cur, record_id=record_id, transcription=transcript, language=language
            )

    def set_error(self, record_id: int, error: str) -> None:
        with txn() as cur:
            messages_repository.set_error(cur, record_id=record_id, error=error)

    def set_content(self, record_id: int, content: str) -> None:
        with txn() as cur:
            messages_repository.set_content(cur, record_id=record_id, content=content)

    def complete(
        self,
        record: MessageRecord,
        reply: str | None,
        chat_id: str | None,
        outbound_message_id: str | None,
        sent_at: datetime,
    ) -> None:
        """Record the reply (if one was sent) and mark the inbound record processed."""
        with txn() as cur:
            if reply and chat_id and outbound_message_id:
                messages_repository.insert_outbound(
                    cur,
                    user_id=record.user_id,
                    unipile_message_id=outbound_message_id,
                    chat_id=chat_id,
                    content=reply,
                    sent_at=sent_at,
                )
            messages_repository.mark_processed(cur, record_id=record.id)

    def log_event(
        self,
        log_type: str,
        event: str,
        description: str,
        user_id: int | None,
        metadata: dict[str, Any],
    ) -> None:
        system_logs_repository.record_event(
            log_type=log_type,
            event=event,
            description=description,
            user_id=user_id,
            metadata=metadata,
        )


class MessageProcessor:
    """Processes one stored inbound message.

    Args:
        messaging: Unipile adapter used for replies.
        transcriber: Voice-note transcription.
        engine: Conversation engine producing replies.
        store: Record/user persistence and audit events.
        clock: Current time.
    """

    def __init__(
        self,
        messaging: UnipileClient,
        transcriber: AudioTranscriber,
        engine: ConversationEngine,
        store: MessageStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._messaging = messaging
        self._transcriber = transcriber
        self._engine = engine
        self._store = store or PgMessageStore()
        self._clock = clock

    def process(self, record_id: int) -> ProcessOutcome:
        record = self._store.get_message(record_id)
        if record is None:
            logger.warning(
                "message record not found",
                extra={"extra_fields": safe_log_context(record_id=record_id)},
            )
            return ProcessOutcome.discarded("not_found", "Message record not found")

        if record.processed:
            logger.info(
                "message already processed",
                extra={"extra_fields": safe_log_context(record_id=record_id)},
            )
            return ProcessOutcome.skipped()

        try:
            user = self._store.get_user(record.user_id)
            if user is None:
                logger.warning(
                    "message owner not found",
                    extra={"extra_fields": safe_log_context(record_id=record_id, user_id=record.user_id)},
                )
                return ProcessOutcome.discarded("not_found", "User not found")
            return self._process(record, user)
        except Exception as exc:
            return self._fail(record, exc)

    def _process(self, record: MessageRecord, user: User) -> ProcessOutcome:
        kind = record.message_type
        logger.info(
            "processing message",
            extra={"extra_fields": safe_log_context(record_id=record.id, user_id=user.id, kind=kind)},
        )

        if kind == "audio":
            reply = self._handle_audio(record, user)
        elif kind in MEDIA_KINDS:
            reply = self._handle_media(record, user)
        else:
            reply = self._handle_text(record, user)

        self._finish(record, user, reply)
        return ProcessOutcome.ok()

    def _handle_audio(self, record: MessageRecord, user: User) -> str:
        try:
            transcription = self._transcriber.transcribe(record, user)
        except TranscriptionError as exc:
            logger.warning(
                "voice note transcription failed",
                extra={"extra_fields": safe_log_context(record_id=record.id, error_type=type(exc).__name__)},
            )
            self._store.set_error(record.id, f"Transcription failed: {exc}")
            return audio_apology(user)

        self._store.store_transcription(record.id, transcription.transcript, transcription.language)
        logger.info(
            "voice note transcribed",
            extra={
                "extra_fields": safe_log_context(
                    record_id=record.id,
                    language=transcription.language,
                    duration_ms=transcription.duration_ms,
                )
            },
        )
        return self._engine.respond(
            user,
            transcription.transcript,
            detected_language=transcription.language,
            exclude_record_id=record.id,
        )

    def _handle_text(self, record: MessageRecord, user: User) -> str | None:
        text = (record.content or "").strip()
        if not text:
            logger.info(
                "empty text message, no reply",
                extra={"extra_fields": safe_log_context(record_id=record.id)},
            )
            return None
        return self._engine.respond(user, text, exclude_record_id=record.id)

    def _handle_media(self, record: MessageRecord, user: User) -> str:
        if not (record.content or "").strip():
            self._store.set_content(record.id, MEDIA_PLACEHOLDERS[record.message_type])
        return media_acknowledgement(record.message_type, user)

    def _finish(self, record: MessageRecord, user: User, reply: str | None) -> None:
        chat_id = user.unipile_chat_id or record.unipile_chat_id
        reply = reply.strip() if reply else None
        outbound_id = None

        if reply and not chat_id:
            logger.error(
                "no chat id for reply",
                extra={"extra_fields": safe_log_context(record_id=record.id, user_id=user.id)},
            )
            reply = None

        if reply:
            provider_id = self._messaging.send_text(chat_id, reply)
            outbound_id = provider_id or f"out_{uuid.uuid4()}"

        self._store.complete(record, reply, chat_id, outbound_id, self._clock())
        self._store.log_event(
            "info",
            "whatsapp_message_processed",
            "WhatsApp message processed",
            user.id,
            {"record_id": record.id, "message_type": record.message_type, "replied": bool(reply)},
        )
        logger.info(
            "message processed",
            extra={"extra_fields": safe_log_context(record_id=record.id, replied=bool(reply))},
        )

    def _fail(self, record: MessageRecord, exc: Exception) -> ProcessOutcome:
        error = f"{type(exc).__name__}: {exc}"
        error_kind = classify_failure(exc)
        logger.error(
            "whatsapp_message_processing_failed",
            extra={
                "extra_fields": safe_log_context(
                    record_id=record.id,
                    error_kind=error_kind,
                    error=_sanitize_error(exc),
                )
            },
        )
        try:
            self._store.set_error(record.id, error)
        except Exception as store_exc:
            logger.warning(
                "failed to store processing error",
                extra={"extra_fields": safe_log_context(record_id=record.id, error=_sanitize_error(store_exc))},
            )
        self._store.log_event(
            "error",
            "whatsapp_message_processing_failed",
            "WhatsApp message processing failed",
            record.user_id,
            {"record_id": record.id, "error_kind": error_kind, "error_type": type(exc).__name__},
        )
        return ProcessOutcome.failed(error_kind, error)
