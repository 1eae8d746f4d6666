"""Bounded retry with backoff for outbound HTTP calls.

Used by both media download phases and by the outbound sender. The policy
is two pieces: a predicate deciding whether an exception is transient, and
the list of delays slept between attempts (len(delays) + 1 attempts total).
"""

from __future__ import annotations

import time
from typing import Callable, Sequence, TypeVar

import requests

from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429})


class RetryExhaustedError(Exception):
    """All attempts failed with transient errors."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error!r}")
        self.last_error = last_error
        self.attempts = attempts


def backoff_delays(base_delay: float, attempts: int) -> list[float]:
    """Exponential schedule: base, 2*base, 4*base ... (attempts - 1 entries).

    backoff_delays(0.8, 4) == [0.8, 1.6, 3.2]
    """
    return [base_delay * (2**i) for i in range(max(attempts - 1, 0))]


def is_transient_status(status_code: int) -> bool:
    """429 and every 5xx are worth another attempt; other statuses are final."""
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


def is_transient_http_error(exc: BaseException) -> bool:
    """Classify a requests failure as transient (retry) or permanent."""
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        if response is None:
            return True
        return is_transient_status(response.status_code)
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def call_with_retry(
    fn: Callable[[], T],
    *,
    is_transient: Callable[[BaseException], bool],
    delays: Sequence[float],
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "call",
) -> T:
    """Run fn, retrying transient failures with the given delays.

    Args:
        fn: Zero-argument callable to run.
        is_transient: Predicate applied to each raised exception.
        delays: Seconds to sleep before attempt 2, 3, ...
        sleep: Sleep function (injectable for tests).
        operation: Label used in log lines.

    Returns:
        Whatever fn returns on the first successful attempt.

    Raises:
        RetryExhaustedError: Every attempt failed with a transient error.
        Exception: The first non-transient exception, re-raised untouched.
    """
    attempts = len(delays) + 1

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if not is_transient(e):
                raise

            if attempt == attempts:
                logger.error(
                    "retries exhausted",
                    extra={
                        "extra_fields": safe_log_context(
                            operation=operation,
                            attempts=attempts,
                            error_type=type(e).__name__,
                        )
                    },
                )
                raise RetryExhaustedError(e, attempts) from e

            delay = delays[attempt - 1]
            logger.warning(
                "transient failure, retrying",
                extra={
                    "extra_fields": safe_log_context(
                        operation=operation,
                        attempt=attempt,
                        delay_s=delay,
                        error_type=type(e).__name__,
                    )
                },
            )
            sleep(delay)

    raise AssertionError("unreachable")
