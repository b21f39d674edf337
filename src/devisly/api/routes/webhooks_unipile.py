"""Unipile webhook route - inbound WhatsApp messages.

Ingestion only stores and enqueues; all slow work (transcription, LLM,
replies) happens in the worker. The record is committed before the task is
enqueued, so the worker always finds it. When the enqueue fails the route
answers 500 and the stored record stays unprocessed; Unipile's redelivery
then finds it and enqueues it again.

Security:
- Task payload carries the record id only (no phone, no text)
- Logs carry id prefixes and kinds, never phone numbers or message text
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request, Response

from devisly.infra.db import txn
from devisly.infra.repositories import messages_repository, system_logs_repository, users_repository
from devisly.infra.settings import Settings, get_settings
from devisly.infra.time import utc_now
from devisly.messaging.unipile_adapter import (
    InvalidPayloadError,
    UnprocessableInput,
    account_matches,
    business_number_from_account,
    is_accepted_event,
    is_self_message,
    normalize,
    require_sender_phone,
)
from devisly.messaging.unipile_client import UnipileClient, UnipileError
from devisly.observability.correlation import get_correlation_id
from devisly.observability.logging import get_logger
from devisly.observability.redaction import id_prefix, safe_log_context
from devisly.tasks.client import TasksClient
from devisly.tasks.contracts import ProcessMessageTask

router = APIRouter(prefix="/webhooks/unipile", tags=["webhooks"])

logger = get_logger(__name__)

_tasks_client = TasksClient()

# Business numbers looked up from Unipile, by account id
_business_numbers: dict[str, str] = {}


def _get_tasks_client() -> TasksClient:
    """Get tasks client instance (allows test injection)."""
    return _tasks_client


def _resolve_business_number(settings: Settings) -> str:
    """Our own WhatsApp number, used to drop the echoes of our replies.

    WHATSAPP_BUSINESS_NUMBER wins when set. Otherwise the connected account is
    asked once and a found number is kept for the life of the process; a
    failed lookup only disables the echo check for this delivery.
    """
    if settings.whatsapp_business_number:
        return settings.whatsapp_business_number

    account_id = settings.unipile_account_id
    if account_id in _business_numbers:
        return _business_numbers[account_id]

    try:
        info = UnipileClient(settings).get_account_info()
    except (UnipileError, ValueError) as e:
        logger.warning(
            "business number lookup failed",
            extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
        )
        return ""

    number = business_number_from_account(info)
    if not number:
        logger.warning(
            "connected account has no phone number",
            extra={"extra_fields": safe_log_context(account_id_prefix=id_prefix(account_id))},
        )
        return ""
    _business_numbers[account_id] = number
    return number


@router.post("/messages")
async def unipile_messages_webhook(request: Request) -> Response:
    """Receive a Unipile message webhook.

    Returns:
        200 "ok" when stored and enqueued.
        200 "duplicate" when the provider message id was already stored
            (an unprocessed record not yet enqueued here is enqueued again).
        200 "ignored" for other accounts, other events and our own messages.
        400 on invalid JSON.
        401 on account mismatch when WEBHOOK_STRICT_ACCOUNT is on.
        422 when message_id or the sender phone is missing.
        500 when storing fails (transaction rolled back) or when the task
            cannot be enqueued (record kept for redelivery).
    """
    correlation_id = get_correlation_id()
    settings = get_settings()

    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    if not isinstance(payload, dict):
        logger.warning(
            "webhook body is not an object",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    if not account_matches(payload, settings.unipile_account_id):
        logger.warning(
            "webhook_config_mismatch",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    strict=settings.webhook_strict_account,
                )
            },
        )
        if settings.webhook_strict_account:
            return Response(status_code=401, content="unauthorized")
        return Response(status_code=200, content="ignored")

    if not is_accepted_event(payload):
        logger.info(
            "webhook event ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, webhook_event=payload.get("event"))},
        )
        return Response(status_code=200, content="ignored")

    if is_self_message(payload, _resolve_business_number(settings)):
        logger.info(
            "own message echo ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=200, content="ignored")

    try:
        message = normalize(payload)
    except InvalidPayloadError:
        logger.warning(
            "webhook_unprocessable",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, reason="missing_message_id")},
        )
        return Response(status_code=422, content="missing message_id")

    log_ctx = safe_log_context(
        correlationId=correlation_id,
        message_id_prefix=id_prefix(message.message_id),
        kind=message.kind,
    )

    try:
        with txn() as cur:
            existing = messages_repository.find_by_provider_id(cur, message.message_id)
            if existing is None:
                phone = require_sender_phone(message)
                now = utc_now()
                user, created = users_repository.get_or_create_by_phone(cur, phone_number=phone, now=now)
                users_repository.touch_activity(
                    cur,
                    user_id=user.id,
                    now=now,
                    chat_id=message.chat_id,
                    attendee_id=message.attendee_id,
                )

                record_id = messages_repository.insert_inbound(
                    cur,
                    user_id=user.id,
                    unipile_message_id=message.message_id,
                    chat_id=message.chat_id,
                    message_type=message.kind,
                    content=message.text or None,
                    raw_payload=message.raw,
                    sent_at=message.received_at,
                )
                if record_id is None:
                    # Concurrent delivery won the insert
                    logger.info("duplicate message ignored (race)", extra={"extra_fields": log_ctx})
                    return Response(status_code=200, content="duplicate")

    except UnprocessableInput:
        logger.warning(
            "webhook_unprocessable",
            extra={"extra_fields": {**log_ctx, "reason": "missing_sender_phone"}},
        )
        return Response(status_code=422, content="unable to derive sender phone number")
    except Exception:
        logger.exception(
            "webhook processing failed",
            extra={"extra_fields": log_ctx},
        )
        return Response(status_code=500, content="processing failed")

    if existing is not None:
        record_id, processed = existing
    task = ProcessMessageTask(message_record_id=record_id)
    tasks_client = _get_tasks_client()
    if existing is not None and (processed or tasks_client.was_executed(task.task_id)):
        logger.info("duplicate message ignored", extra={"extra_fields": log_ctx})
        return Response(status_code=200, content="duplicate")

    # The record is committed from here on
    try:
        enqueued = tasks_client.enqueue_message(task, correlation_id=correlation_id)
    except Exception:
        logger.exception(
            "message task enqueue failed",
            extra={"extra_fields": {**log_ctx, "record_id": str(record_id)}},
        )
        return Response(status_code=500, content="enqueue failed")
    if not enqueued:
        logger.error(
            "message task enqueue refused",
            extra={"extra_fields": {**log_ctx, "record_id": str(record_id)}},
        )
        return Response(status_code=500, content="enqueue failed")

    if existing is not None:
        logger.info(
            "unprocessed message re-enqueued",
            extra={"extra_fields": {**log_ctx, "record_id": str(record_id)}},
        )
        return Response(status_code=200, content="duplicate")

    system_logs_repository.record_event(
        log_type="info",
        event="whatsapp_message_received",
        description="WhatsApp message received",
        user_id=user.id,
        metadata={"record_id": record_id, "message_type": message.kind, "new_user": created},
    )
    logger.info(
        "webhook message stored",
        extra={"extra_fields": {**log_ctx, "record_id": str(record_id), "new_user": str(created).lower()}},
    )
    return Response(status_code=200, content="ok")
