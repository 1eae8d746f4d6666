"""QStash backend for tasks - publishes queued units to the broker over HTTP.

The broker delivers each published body to the destination URL with its own
retry schedule and signs every delivery (see api.task_auth).
"""

from __future__ import annotations

import json
from typing import Any

import requests

from suma.observability.correlation import FORWARDED_CORRELATION_ID_HEADER
from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

# Publish must fit inside the ingress latency budget
HTTP_TIMEOUT = 0.7


class QStashPublisher:
    """Publish JSON payloads to a destination URL through QStash."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://qstash.upstash.io",
        retries: int = 3,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        if not token:
            raise RuntimeError("QSTASH_TOKEN not configured")
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._retries = retries
        self._session = session or requests.Session()
        self._timeout = timeout

    def publish(
        self,
        task_id: str,
        destination: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> str | None:
        """Publish one payload.

        Args:
            task_id: Broker deduplication id (the provider message id).
            destination: Absolute worker URL.
            payload: JSON-serializable body. Contains PII, NEVER logged.
            correlation_id: Forwarded to the worker as X-Correlation-ID.

        Returns:
            Broker message id, if the broker returned one.

        Raises:
            requests.RequestException: On network failure or non-2xx response.
        """
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Upstash-Retries": str(self._retries),
            "Upstash-Deduplication-Id": task_id,
        }
        if correlation_id:
            headers[FORWARDED_CORRELATION_ID_HEADER] = correlation_id

        response = self._session.post(
            f"{self._base_url}/v2/publish/{destination}",
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers=headers,
            timeout=self._timeout,
        )
        response.raise_for_status()

        try:
            broker_message_id = response.json().get("messageId")
        except ValueError:
            broker_message_id = None

        logger.info(
            "task published to broker",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    task_id_prefix=id_prefix(task_id),
                    broker_message_id=broker_message_id,
                )
            },
        )
        return broker_message_id
