"""Delivery pipeline - processes one queued unit per broker delivery.

Order per message is strictly sequential:
    normalize sender -> claim -> (fetch media) -> extract -> persist -> notify -> complete

Outcomes:
- claim refused, record completed: duplicate, no side effects
- claim refused, record still in flight: in_flight, no side effects; the
  route answers 503 so the broker delivers again after the claim lease
- "ayuda" command or unrecognized input: help reply, completed (never retried)
- any failure after the claim: ledger annotated, PipelineError raised so the
  route answers 500 and the broker retries; the annotated record is claimable
  again on the next delivery
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from suma.domain.expenses import ParsedExpense
from suma.domain.parsing import is_help_command
from suma.observability.correlation import get_correlation_id
from suma.observability.logging import get_logger
from suma.observability.redaction import hash_identifier, id_prefix, safe_log_context
from suma.tasks.contracts import QueuedUnit
from suma.whatsapp.meta_adapter import normalize_sender
from suma.whatsapp.models import InboundMessage, MediaContent
from suma.whatsapp.templates import format_help_message, format_success_message, format_usage_message

logger = get_logger(__name__)

PipelineStatus = Literal["processed", "duplicate", "in_flight"]
Outcome = Literal["saved", "help", "skipped", "duplicate", "in_flight"]

AUDIO_RAW_MESSAGE = "[audio]"
IMAGE_RAW_MESSAGE = "[imagen]"


class Ledger(Protocol):
    def claim(self, message_id: str, sender: str) -> bool: ...

    def is_completed(self, message_id: str) -> bool: ...

    def mark_completed(self, message_id: str) -> None: ...

    def mark_failed(self, message_id: str, error: str) -> None: ...


class Extractor(Protocol):
    def extract(self, text: str, media: MediaContent | None = None) -> ParsedExpense | None: ...


class Writer(Protocol):
    def upsert_user(self, phone: str) -> str: ...

    def save_expense(
        self,
        user_id: str,
        parsed: ParsedExpense,
        raw_message: str | None,
        source_message_id: str,
    ) -> str: ...


class Notifier(Protocol):
    def send(self, to: str, text: str) -> None: ...


class MediaFetcher(Protocol):
    def fetch(self, media_id: str) -> MediaContent: ...


class PipelineError(Exception):
    """A processing attempt failed; the broker should retry the unit."""

    def __init__(self, message_id: str, cause: BaseException) -> None:
        super().__init__(f"processing failed: {type(cause).__name__}")
        self.message_id = message_id
        self.cause = cause


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineStatus
    message_id: str
    outcome: Outcome


def error_summary(exc: BaseException) -> str:
    """One-line description stored in processed_messages.error."""
    text = str(exc).strip().splitlines()[0] if str(exc).strip() else ""
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class MessagePipeline:
    """Run claim, extraction, persistence and notification for one message."""

    def __init__(
        self,
        ledger: Ledger,
        extractor: Extractor,
        writer: Writer,
        notifier: Notifier,
        media_fetcher: MediaFetcher,
    ) -> None:
        self._ledger = ledger
        self._extractor = extractor
        self._writer = writer
        self._notifier = notifier
        self._media_fetcher = media_fetcher

    def process(self, unit: QueuedUnit) -> PipelineResult:
        """Process one delivery attempt.

        Raises:
            PipelineError: On any failure; the ledger is annotated when this
                attempt owns the claim.
        """
        message = unit.message
        if message is None:
            raise ValueError("queued unit without message")

        message_id = message.message_id
        sender = normalize_sender(message.sender)
        log_context = safe_log_context(
            correlationId=get_correlation_id(),
            message_id_prefix=id_prefix(message_id),
            sender_hash=hash_identifier(sender),
            kind=message.kind,
        )

        try:
            claimed = self._ledger.claim(message_id, sender)
        except Exception as e:
            # No record owned by this attempt; nothing to annotate
            logger.exception("idempotency claim failed", extra={"extra_fields": log_context})
            raise PipelineError(message_id, e) from e

        if not claimed:
            return self._refused(message_id, log_context)

        try:
            outcome = self._run(message, sender)
        except Exception as e:
            logger.exception(
                "message processing failed",
                extra={"extra_fields": {**log_context, "error_type": type(e).__name__}},
            )
            self._ledger.mark_failed(message_id, error_summary(e))
            raise PipelineError(message_id, e) from e

        self._ledger.mark_completed(message_id)
        logger.info(
            "message processed",
            extra={"extra_fields": {**log_context, "outcome": outcome}},
        )
        return PipelineResult(status="processed", message_id=message_id, outcome=outcome)

    def _refused(self, message_id: str, log_context: dict) -> PipelineResult:
        try:
            completed = self._ledger.is_completed(message_id)
        except Exception as e:
            logger.exception("idempotency lookup failed", extra={"extra_fields": log_context})
            raise PipelineError(message_id, e) from e

        if completed:
            logger.info("duplicate delivery skipped", extra={"extra_fields": log_context})
            return PipelineResult(status="duplicate", message_id=message_id, outcome="duplicate")

        logger.warning("message still in flight", extra={"extra_fields": log_context})
        return PipelineResult(status="in_flight", message_id=message_id, outcome="in_flight")

    def _run(self, message: InboundMessage, sender: str) -> Outcome:
        if message.kind == "text":
            text = message.text or ""
            if not text.strip():
                return "skipped"
            if is_help_command(text):
                self._notifier.send(sender, format_usage_message())
                return "help"
            parsed = self._extractor.extract(text)
            raw_message = text
        elif message.has_media:
            media = self._media_fetcher.fetch(message.media.media_id)
            caption = message.text or ""
            parsed = self._extractor.extract(caption, media)
            if message.kind == "audio":
                raw_message = AUDIO_RAW_MESSAGE
            else:
                raw_message = f"{IMAGE_RAW_MESSAGE} {caption}" if caption else IMAGE_RAW_MESSAGE
        else:
            return "skipped"

        if parsed is None:
            self._notifier.send(sender, format_help_message(message.kind))
            return "help"

        user_id = self._writer.upsert_user(sender)
        self._writer.save_expense(user_id, parsed, raw_message, message.message_id)
        self._notifier.send(
            sender,
            format_success_message(parsed.amount, parsed.description, parsed.category),
        )
        return "saved"
