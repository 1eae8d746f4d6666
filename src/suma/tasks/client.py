"""Tasks client with idempotent enqueue.

Backends, selected by TASKS_BACKEND:
- qstash (default): publishes to the broker, which delivers to the worker
- inline: records tasks in memory without executing them (dev/tests)
"""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from typing import Any

import requests

from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context

from .qstash_backend import QStashPublisher

logger = get_logger(__name__)

DEFAULT_MAX_TRACKED_IDS = 10_000


class TaskEnqueueError(Exception):
    """Raised when a task could not be handed to the broker."""


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Remembers the most recent task_ids (at most max_tracked_ids) so a quick
    provider retry is not published twice from one ingress instance. Older ids
    are forgotten; those duplicates, like cross-instance ones, are handled by
    the broker's deduplication id and, ultimately, the worker's claim.
    """

    def __init__(
        self,
        backend: str = "inline",
        worker_base_url: str = "",
        publisher: QStashPublisher | None = None,
        max_tracked_ids: int = DEFAULT_MAX_TRACKED_IDS,
    ) -> None:
        if backend not in ("inline", "qstash"):
            raise ValueError(f"Unknown TASKS_BACKEND: {backend}")
        if backend == "qstash" and publisher is None:
            raise ValueError("qstash backend requires a publisher")
        if max_tracked_ids < 1:
            raise ValueError("max_tracked_ids must be positive")

        self._backend = backend
        self._worker_base_url = worker_base_url.rstrip("/")
        self._publisher = publisher
        self._lock = threading.Lock()
        self._max_tracked_ids = max_tracked_ids
        self._enqueued_ids: OrderedDict[str, None] = OrderedDict()
        self._scheduled_tasks: deque[dict[str, Any]] = deque(maxlen=max_tracked_ids)

    @property
    def backend(self) -> str:
        return self._backend

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> bool:
        """Enqueue a task for delivery to a worker endpoint.

        Args:
            task_id: Unique identifier for idempotency (provider message id).
            url_path: Worker endpoint path (e.g., "/tasks/whatsapp/process-message").
            payload: Task data.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            True if the task was enqueued, False if task_id was seen recently.

        Raises:
            TaskEnqueueError: If the broker rejected or could not be reached.
        """
        with self._lock:
            if task_id in self._enqueued_ids:
                self._enqueued_ids.move_to_end(task_id)
                return False
            self._enqueued_ids[task_id] = None
            if len(self._enqueued_ids) > self._max_tracked_ids:
                self._enqueued_ids.popitem(last=False)

        if self._backend == "inline":
            with self._lock:
                self._scheduled_tasks.append(
                    {
                        "task_id": task_id,
                        "url_path": url_path,
                        "payload": payload,
                        "correlation_id": correlation_id,
                    }
                )
            return True

        destination = f"{self._worker_base_url}{url_path}"
        try:
            self._publisher.publish(task_id, destination, payload, correlation_id)
        except requests.RequestException as e:
            # Forget the id so a provider retry can enqueue it again
            with self._lock:
                self._enqueued_ids.pop(task_id, None)
            logger.error(
                "broker publish failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        task_id_prefix=id_prefix(task_id),
                        error_type=type(e).__name__,
                    )
                },
            )
            raise TaskEnqueueError(f"broker publish failed: {type(e).__name__}") from e

        return True

    def was_enqueued(self, task_id: str) -> bool:
        """Check if task_id is among the ids this client still remembers."""
        return task_id in self._enqueued_ids

    def get_scheduled_tasks(self) -> list[dict[str, Any]]:
        """Most recent tasks recorded by the inline backend (useful for testing)."""
        return list(self._scheduled_tasks)

    def clear(self) -> None:
        """Clear enqueued task_ids and recorded tasks (useful for testing)."""
        with self._lock:
            self._enqueued_ids.clear()
            self._scheduled_tasks.clear()
