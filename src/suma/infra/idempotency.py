"""Idempotency ledger - durable claim of provider message IDs.

One processed_messages row per provider message ID. The claim is a single
atomic statement, so concurrent deliveries of the same message yield exactly
one winner.

A record can be claimed again only while it is not completed and either
carries an error from a failed attempt or its claim lease has expired (the
previous worker died without recording anything). A refused claim is a
duplicate only once the record is completed; an in-flight claim with a fresh
lease must be delivered again later.
"""

from __future__ import annotations

from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context

from .db import Database, fetchone

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 500
DEFAULT_LEASE_SECONDS = 120

_CLAIM_SQL = """
    INSERT INTO processed_messages
        (message_id, sender, first_seen_at, claimed_at, attempts)
    VALUES (%s, %s, now(), now(), 1)
    ON CONFLICT (message_id) DO UPDATE
    SET claimed_at = now(),
        attempts = processed_messages.attempts + 1,
        error = NULL
    WHERE processed_messages.completed = false
      AND (
        processed_messages.error IS NOT NULL
        OR processed_messages.claimed_at < now() - make_interval(secs => %s)
      )
    RETURNING message_id
"""


class IdempotencyLedger:
    """Atomic claim-or-reject over the processed_messages table."""

    def __init__(self, db: Database, lease_seconds: int = DEFAULT_LEASE_SECONDS) -> None:
        self._db = db
        self._lease_seconds = lease_seconds

    def claim(self, message_id: str, sender: str) -> bool:
        """Claim a message ID for processing.

        Args:
            message_id: Provider message ID.
            sender: Normalized sender phone (stored, never logged).

        Returns:
            True if this call created the record or re-claimed a retryable one.
            False if the message is completed or currently in flight.

        Raises:
            psycopg2.Error: On storage failure. Never read as a duplicate.
        """
        with self._db.txn() as cur:
            cur.execute(_CLAIM_SQL, (message_id, sender, self._lease_seconds))
            row = cur.fetchone()

        claimed = row is not None
        logger.info(
            "message claimed" if claimed else "message already claimed",
            extra={
                "extra_fields": safe_log_context(
                    message_id_prefix=id_prefix(message_id),
                    claimed=claimed,
                )
            },
        )
        return claimed

    def is_completed(self, message_id: str) -> bool:
        """Whether the message finished processing.

        Raises:
            psycopg2.Error: On storage failure.
        """
        with self._db.txn() as cur:
            row = fetchone(
                cur,
                "SELECT completed FROM processed_messages WHERE message_id = %s",
                (message_id,),
            )
        return bool(row and row[0])

    def mark_completed(self, message_id: str) -> None:
        """Record pipeline success. Failures are logged, not raised."""
        try:
            with self._db.txn() as cur:
                cur.execute(
                    """
                    UPDATE processed_messages
                    SET completed = true, completed_at = now(), error = NULL
                    WHERE message_id = %s
                    """,
                    (message_id,),
                )
        except Exception:
            logger.exception(
                "failed to mark message completed",
                extra={"extra_fields": safe_log_context(message_id_prefix=id_prefix(message_id))},
            )

    def mark_failed(self, message_id: str, error: str) -> None:
        """Record a failed attempt. Failures are logged, not raised."""
        try:
            with self._db.txn() as cur:
                cur.execute(
                    """
                    UPDATE processed_messages
                    SET error = %s
                    WHERE message_id = %s AND completed = false
                    """,
                    ((error or "unknown error")[:MAX_ERROR_LENGTH], message_id),
                )
        except Exception:
            logger.exception(
                "failed to record message error",
                extra={"extra_fields": safe_log_context(message_id_prefix=id_prefix(message_id))},
            )
