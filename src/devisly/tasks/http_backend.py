"""HTTP backend for tasks - sends tasks to the worker via HTTP POST.

Used in local/staging environments where api and worker run as separate
containers on the same network.
"""

from __future__ import annotations

import google.auth.exceptions
import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from devisly.infra.settings import Settings
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Must match task_auth.LOCAL_DEV_AUDIENCE
_LOCAL_DEV_AUDIENCE = "devisly-tasks-local"


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a GCP ID token for the given audience.

    Relies on the GCP metadata server (Cloud Run, GCE) or application
    default credentials.

    Returns:
        Signed ID token string, or None if fetching fails.
    """
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except (google.auth.exceptions.GoogleAuthError, ValueError) as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(audience=audience, error_type=type(e).__name__)},
        )
        return None


def enqueue_http(
    settings: Settings,
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
) -> bool:
    """Enqueue task via HTTP POST to worker.

    Args:
        settings: Worker URL, auth mode and timeout.
        task_id: Unique task identifier (for logging/tracing).
        url_path: Worker endpoint path (e.g., "/tasks/messages/process").
        payload: Task payload (must be PII-free).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        True if request succeeded (2xx), False otherwise.
    """
    log_ctx = safe_log_context(task_id=task_id, url_path=url_path, correlationId=correlation_id)

    url = f"{settings.worker_base_url}{url_path}"
    headers = {
        "Content-Type": "application/json",
        "X-Correlation-Id": correlation_id or "",
        "X-Task-Id": task_id,
    }

    # Shared secret for local dev, real OIDC token elsewhere
    if settings.tasks_oidc_audience == _LOCAL_DEV_AUDIENCE:
        if settings.internal_task_secret:
            headers["X-Internal-Task-Secret"] = settings.internal_task_secret
    else:
        token = _fetch_oidc_token(settings.worker_base_url)
        if not token:
            logger.error("HTTP task enqueue aborted: OIDC token unavailable", extra={"extra_fields": log_ctx})
            return False
        headers["Authorization"] = f"Bearer {token}"

    try:
        response = requests.post(
            url,
            json=payload,
            headers=headers,
            timeout=settings.tasks_http_timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "HTTP task enqueue failed",
            extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
        )
        return False

    logger.info("HTTP task enqueued successfully", extra={"extra_fields": log_ctx})
    return True
