"""Outbound WhatsApp messaging via Meta Cloud API.

Security: NEVER log to_phone or text. Only log hashes and lengths.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import requests

from suma.infra.retry import RetryExhaustedError, call_with_retry, is_transient_http_error
from suma.observability.correlation import get_correlation_id
from suma.observability.logging import get_logger
from suma.observability.redaction import hash_identifier, safe_log_context

from .media import DEFAULT_GRAPH_API_VERSION, GRAPH_API_BASE

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 5

# One retry after a short pause
RETRY_DELAYS = (0.2,)


class OutboundSendError(Exception):
    """Raised when a reply could not be delivered to the provider."""


class MetaNotifier:
    """Send text replies through the Graph API messages endpoint."""

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_version: str = DEFAULT_GRAPH_API_VERSION,
        sleep: Callable[[float], None] = time.sleep,
        session: requests.Session | None = None,
    ) -> None:
        if not phone_number_id or not access_token:
            raise RuntimeError(
                "Missing Meta config: WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_API_TOKEN required"
            )
        self._url = f"{GRAPH_API_BASE}/{api_version}/{phone_number_id}/messages"
        self._access_token = access_token
        self._sleep = sleep
        self._session = session or requests.Session()

    def _post(self, payload: dict[str, Any]) -> None:
        response = self._session.post(
            self._url,
            json=payload,
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()

    def send(self, to: str, text: str) -> None:
        """Send a text message.

        Args:
            to: Recipient phone number. NEVER logged.
            text: Message text. NEVER logged.

        Raises:
            OutboundSendError: On a non-transient HTTP error or exhausted retry.
        """
        # Meta Cloud API payload format
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }

        log_context = safe_log_context(
            correlationId=get_correlation_id(),
            to_hash=hash_identifier(to),
            text_len=len(text),
        )

        try:
            call_with_retry(
                lambda: self._post(payload),
                is_transient=is_transient_http_error,
                delays=RETRY_DELAYS,
                sleep=self._sleep,
                operation="whatsapp_send",
            )
        except (RetryExhaustedError, requests.RequestException) as e:
            logger.error(
                "whatsapp send failed",
                extra={"extra_fields": {**log_context, "error_type": type(e).__name__}},
            )
            raise OutboundSendError(f"whatsapp send failed: {type(e).__name__}") from e

        logger.info("whatsapp message sent", extra={"extra_fields": log_context})
