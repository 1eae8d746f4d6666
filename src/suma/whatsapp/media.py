"""Media download via Meta Graph API.

Two phases, each retried independently on transient failures:
  1. GET /{version}/{media_id} -> {"url": ..., "mime_type": ...}
  2. GET {url} -> raw bytes

Both requests carry the bearer token; the download URL is short-lived and
also requires it. Bytes stay in memory only.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import requests

from suma.infra.retry import (
    RetryExhaustedError,
    backoff_delays,
    call_with_retry,
    is_transient_http_error,
)
from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context

from .models import MediaContent

logger = get_logger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"
DEFAULT_GRAPH_API_VERSION = "v21.0"

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10

DEFAULT_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 0.8

DEFAULT_MIME_TYPE = "application/octet-stream"


class MediaFetchError(Exception):
    """Terminal media download failure.

    Attributes:
        last_error: Last failure observed (HTTP error or network exception).
        attempts: Attempts made in the phase that failed.
    """

    def __init__(self, message: str, last_error: BaseException | None, attempts: int) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class MetaMediaFetcher:
    """Download WhatsApp attachments with bounded exponential-backoff retry."""

    def __init__(
        self,
        access_token: str,
        api_version: str = DEFAULT_GRAPH_API_VERSION,
        attempts: int = DEFAULT_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        session: requests.Session | None = None,
    ) -> None:
        self._access_token = access_token
        self._api_version = api_version
        self._delays = backoff_delays(base_delay, attempts)
        self._sleep = sleep
        self._session = session or requests.Session()

    def _get(self, url: str) -> requests.Response:
        response = self._session.get(
            url,
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        return response

    def _resolve(self, media_id: str) -> dict[str, Any]:
        response = self._get(f"{GRAPH_API_BASE}/{self._api_version}/{media_id}")
        meta = response.json()
        if not isinstance(meta, dict) or not meta.get("url"):
            raise ValueError("media metadata without download url")
        return meta

    def _run_phase(self, phase: str, fn: Callable[[], Any]) -> Any:
        try:
            return call_with_retry(
                fn,
                is_transient=is_transient_http_error,
                delays=self._delays,
                sleep=self._sleep,
                operation=f"media_{phase}",
            )
        except RetryExhaustedError as e:
            raise MediaFetchError(
                f"media {phase} failed after {e.attempts} attempts",
                last_error=e.last_error,
                attempts=e.attempts,
            ) from e
        except (requests.RequestException, ValueError) as e:
            raise MediaFetchError(
                f"media {phase} failed: {type(e).__name__}",
                last_error=e,
                attempts=1,
            ) from e

    def fetch(self, media_id: str) -> MediaContent:
        """Download an attachment by media ID.

        Args:
            media_id: Provider media identifier.

        Returns:
            MediaContent with the raw bytes and MIME type.

        Raises:
            MediaFetchError: On exhausted retries or a non-transient failure.
        """
        meta = self._run_phase("resolve", lambda: self._resolve(media_id))
        response = self._run_phase("download", lambda: self._get(meta["url"]))

        content = MediaContent(
            data=response.content,
            mime_type=meta.get("mime_type") or DEFAULT_MIME_TYPE,
        )

        logger.info(
            "media downloaded",
            extra={
                "extra_fields": safe_log_context(
                    mime_type=content.mime_type,
                    size_bytes=len(content.data),
                )
            },
        )
        return content
