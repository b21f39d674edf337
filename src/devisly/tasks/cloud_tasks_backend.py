"""Cloud Tasks backend for GCP deployment."""

from __future__ import annotations

import json

from google.api_core import exceptions as gcp_exceptions
from google.cloud import tasks_v2

from devisly.infra.settings import ConfigurationError, Settings
from devisly.observability.logging import get_logger
from devisly.observability.redaction import safe_log_context

logger = get_logger(__name__)


def _require_config(settings: Settings) -> None:
    if not settings.gcp_project:
        raise ConfigurationError("Missing Cloud Tasks config: GOOGLE_CLOUD_PROJECT")
    if not settings.worker_base_url:
        raise ConfigurationError("Missing Cloud Tasks config: WORKER_BASE_URL")
    if not settings.tasks_oidc_service_account:
        raise ConfigurationError("Missing Cloud Tasks config: TASKS_OIDC_SERVICE_ACCOUNT")


def task_name_for(parent: str, task_id: str) -> str:
    """Cloud Tasks names allow letters, digits, hyphens and underscores only."""
    safe_task_id = task_id.replace(":", "-").replace("/", "-")
    return f"{parent}/tasks/{safe_task_id}"


def enqueue_cloud_task(
    settings: Settings,
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    client: tasks_v2.CloudTasksClient | None = None,
) -> bool:
    """Enqueue task via Google Cloud Tasks.

    The task is named after task_id, so a second enqueue of the same id is
    rejected by the queue (ALREADY_EXISTS) and counted as success.

    Returns:
        True if task was enqueued (or already existed).

    Raises:
        ConfigurationError: If required settings are missing.
        google.api_core.exceptions.GoogleAPICallError: On any other API failure.
    """
    _require_config(settings)

    client = client or tasks_v2.CloudTasksClient()
    parent = client.queue_path(settings.gcp_project, settings.gcp_location, settings.gcp_tasks_queue)
    audience = settings.tasks_oidc_audience or settings.worker_base_url

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-Id"] = correlation_id

    task = {
        "name": task_name_for(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{settings.worker_base_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": settings.tasks_oidc_service_account,
                "audience": audience,
            },
        },
    }

    log_ctx = safe_log_context(task_id=task_id, url_path=url_path, correlationId=correlation_id)
    try:
        client.create_task(parent=parent, task=task)
    except gcp_exceptions.AlreadyExists:
        logger.info("cloud task already exists (dedupe)", extra={"extra_fields": log_ctx})
        return True
    except gcp_exceptions.GoogleAPICallError as e:
        logger.error(
            "failed to enqueue cloud task",
            extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
        )
        raise

    logger.info("cloud task enqueued", extra={"extra_fields": log_ctx})
    return True
