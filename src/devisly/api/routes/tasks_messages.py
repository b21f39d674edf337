"""Worker route processing stored inbound messages.

Cloud Tasks retries any non-2xx answer with backoff, so this route decides
retry semantics through its status code:

- 200 {"ok": true}                       processed or already processed
- 200 {"ok": false, "terminal": true}    discarded (never retried)
- 500                                    transient failure, retry
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request, Response

from devisly.api.task_auth import verify_task_auth
from devisly.infra.settings import get_settings
from devisly.llm import openai_client
from devisly.messaging import unipile_client
from devisly.observability.correlation import get_correlation_id
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context
from devisly.tasks.contracts import ProcessMessageTask
from devisly.tasks.retry import RETRY_COUNT_HEADER, RetryPolicy, retry_count_from_header
from devisly.worker.factory import build_processor
from devisly.worker.processor import DISCARDED, FAILED, MessageProcessor

router = APIRouter(prefix="/tasks/messages", tags=["tasks"])

logger = get_logger(__name__)

_processor: MessageProcessor | None = None


def _get_processor() -> MessageProcessor:
    """Get the processor, building it on first use (allows override in tests).

    Raises:
        ConfigurationError: If adapter credentials are missing.
    """
    global _processor
    if _processor is None:
        _processor = build_processor(get_settings())
    return _processor


def _set_processor(processor: MessageProcessor | None) -> None:
    """Set the processor (for tests)."""
    global _processor
    _processor = processor


def _terminal(error: str) -> dict[str, Any]:
    return {"ok": False, "terminal": True, "error": error}


@router.post("/process")
async def process_message(
    request: Request,
    retry_count_header: str | None = Header(None, alias=RETRY_COUNT_HEADER),
) -> Any:
    """Process one stored inbound message (payload: {"message_record_id": int})."""
    correlation_id = get_correlation_id()
    settings = get_settings()

    if not verify_task_auth(request, settings):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        task = ProcessMessageTask.from_payload(payload)
    except ValueError as exc:
        logger.warning(
            "invalid task payload",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(exc))},
        )
        return _terminal("invalid_payload")

    retry_count = retry_count_from_header(retry_count_header)
    policy = RetryPolicy(max_attempts=settings.task_max_attempts)
    log_ctx = safe_log_context(
        correlationId=correlation_id,
        record_id=task.message_record_id,
        retry_count=retry_count,
    )
    logger.info("process-message task received", extra={"extra_fields": log_ctx})

    try:
        processor = _get_processor()
    except (openai_client.ConfigurationError, unipile_client.ConfigurationError) as exc:
        logger.error(
            "process-message adapters not configured",
            extra={"extra_fields": {**log_ctx, "error_type": type(exc).__name__}},
        )
        return _terminal("configuration")

    outcome = processor.process(task.message_record_id)

    if outcome.status == DISCARDED:
        logger.info(
            "process-message discarded",
            extra={"extra_fields": {**log_ctx, "error_kind": str(outcome.error_kind)}},
        )
        return _terminal(outcome.error_kind or "discarded")

    if outcome.status == FAILED:
        attempt = retry_count + 1
        error_kind = outcome.error_kind or "transient"
        if not policy.should_retry(error_kind, attempt):
            logger.warning(
                "process-message failed permanently",
                extra={"extra_fields": {**log_ctx, "error_kind": error_kind}},
            )
            return _terminal("retries_exhausted" if error_kind == "transient" else error_kind)

        logger.warning(
            "process-message transient failure",
            extra={
                "extra_fields": {
                    **log_ctx,
                    "error_kind": str(outcome.error_kind),
                    "next_backoff_seconds": str(policy.backoff(attempt)),
                }
            },
        )
        return Response(
            status_code=500,
            content=json.dumps({"ok": False, "error": "transient_failure"}),
            media_type="application/json",
        )

    logger.info(
        "process-message done",
        extra={"extra_fields": {**log_ctx, "status": outcome.status}},
    )
    return {"ok": True}
