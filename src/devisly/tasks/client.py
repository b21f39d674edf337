"""Tasks client with idempotent enqueue.

Backend selected by TASKS_BACKEND:
- inline (default): registers the task without executing it (dev/tests)
- http: POSTs the task to the worker directly
- cloud_tasks: creates a Google Cloud Tasks task targeting the worker
"""

from __future__ import annotations

from devisly.infra.settings import Settings, get_settings

from .contracts import ProcessMessageTask


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Tracks task_ids so the same task is never enqueued twice by one process;
    Cloud Tasks also dedupes by task name across processes.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._executed_ids: set[str] = set()
        self._scheduled_tasks: list[dict] = []

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
    ) -> bool:
        """Enqueue a task for HTTP execution on the worker.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/messages/process").
            payload: Task data (must not contain PII).
            correlation_id: Optional correlation ID for tracing.

        Returns:
            True if the task was enqueued, False if task_id was already seen
            or the backend refused it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._executed_ids:
            return False

        backend = self.settings.tasks_backend
        if backend == "inline":
            self._executed_ids.add(task_id)
            self._scheduled_tasks.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
            })
            return True

        if backend == "http":
            from devisly.tasks.http_backend import enqueue_http

            enqueued = enqueue_http(self.settings, task_id, url_path, payload, correlation_id)
        elif backend == "cloud_tasks":
            from devisly.tasks.cloud_tasks_backend import enqueue_cloud_task

            enqueued = enqueue_cloud_task(self.settings, task_id, url_path, payload, correlation_id)
        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {backend}")

        if enqueued:
            self._executed_ids.add(task_id)
        return enqueued

    def enqueue_message(self, task: ProcessMessageTask, correlation_id: str | None = None) -> bool:
        """Enqueue processing of one stored inbound message."""
        return self.enqueue_http(
            task_id=task.task_id,
            url_path=task.url_path,
            payload=task.to_payload(),
            correlation_id=correlation_id,
        )

    def was_executed(self, task_id: str) -> bool:
        return task_id in self._executed_ids

    def get_scheduled_tasks(self) -> list[dict]:
        """Tasks registered by the inline backend (useful for testing)."""
        return list(self._scheduled_tasks)

    def clear(self) -> None:
        """Forget seen task_ids and registered tasks (useful for testing)."""
        self._executed_ids.clear()
        self._scheduled_tasks.clear()
