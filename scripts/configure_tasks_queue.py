#!/usr/bin/env python3
"""Push the message-task retry policy to the Cloud Tasks queue.

Usage:
    GOOGLE_CLOUD_PROJECT=... GCP_LOCATION=... GCP_TASKS_QUEUE=... \
        python scripts/configure_tasks_queue.py [--dry-run]

TASK_MAX_ATTEMPTS controls the number of deliveries (default 3).
"""

from __future__ import annotations

import argparse
import sys

from google.cloud import tasks_v2
from google.protobuf import field_mask_pb2

from devisly.infra.settings import Settings
from devisly.tasks.retry import RetryPolicy

RETRY_FIELDS = (
    "retry_config.max_attempts",
    "retry_config.min_backoff",
    "retry_config.max_backoff",
    "retry_config.max_doublings",
)


def build_queue(settings: Settings, client: tasks_v2.CloudTasksClient) -> tasks_v2.Queue:
    policy = RetryPolicy(max_attempts=settings.task_max_attempts)
    name = client.queue_path(settings.gcp_project, settings.gcp_location, settings.gcp_tasks_queue)
    return tasks_v2.Queue(name=name, retry_config=tasks_v2.RetryConfig(**policy.to_queue_retry_config()))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="show the retry config without updating")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if not settings.gcp_project:
        sys.stderr.write("ERROR: GOOGLE_CLOUD_PROJECT not set\n")
        return 1

    client = tasks_v2.CloudTasksClient()
    queue = build_queue(settings, client)
    sys.stdout.write(f"queue: {queue.name}\nretry_config: {queue.retry_config}\n")
    if args.dry_run:
        return 0

    client.update_queue(queue=queue, update_mask=field_mask_pb2.FieldMask(paths=list(RETRY_FIELDS)))
    sys.stdout.write("queue retry config updated\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
