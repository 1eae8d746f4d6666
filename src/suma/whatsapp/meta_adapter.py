"""Meta Cloud API adapter - verify and normalize webhook payloads.

Handles Meta WhatsApp Business API webhook payloads, including
signature verification, fan-out of every embedded message, and the
sender normalization the worker applies before touching storage.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context

from .models import MEDIA_KINDS, InboundMessage, MediaRef

logger = get_logger(__name__)

EXPECTED_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"

_SIGNATURE_PREFIX = "sha256="

# Argentine mobile numbers arrive as 549XXXXXXXXXX but the send API wants 54XXXXXXXXXX
_AR_MOBILE_PREFIX = "549"
_AR_COUNTRY_PREFIX = "54"


class InvalidPayloadError(Exception):
    """Raised when a Meta message has an invalid shape."""


class SignatureVerificationError(Exception):
    """Raised when HMAC signature verification fails."""


@dataclass(frozen=True)
class ExtractedMessage:
    """A message found in a webhook payload with the metadata of its change."""

    message: InboundMessage
    phone_number_id: str | None
    display_phone_number: str | None


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256).

    Meta signs webhooks with sha256=<hex_signature> over the raw body.

    Args:
        payload_bytes: Raw request body bytes, before any JSON decoding.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret for HMAC verification.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not app_secret:
        raise SignatureVerificationError("app secret not configured")

    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith(_SIGNATURE_PREFIX):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[len(_SIGNATURE_PREFIX):].strip().lower()

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


def is_valid_signature(payload_bytes: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Boolean form of verify_signature."""
    try:
        verify_signature(payload_bytes, signature_header or "", app_secret)
    except SignatureVerificationError:
        return False
    return True


def parse_message(message: dict[str, Any]) -> InboundMessage:
    """Normalize one entry of value.messages into an InboundMessage.

    Raises:
        InvalidPayloadError: If id or sender is missing.
    """
    if not isinstance(message, dict):
        raise InvalidPayloadError("message is not an object")

    message_id = message.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message_id")

    sender = message.get("from")
    if not sender or not isinstance(sender, str):
        raise InvalidPayloadError("missing sender phone number")

    kind = str(message.get("type") or "unknown")

    text = None
    media = None
    if kind == "text":
        text_obj = message.get("text")
        text = text_obj.get("body") if isinstance(text_obj, dict) else None
    elif kind in MEDIA_KINDS:
        media_obj = message.get(kind)
        if isinstance(media_obj, dict) and media_obj.get("id"):
            media = MediaRef(
                media_id=str(media_obj["id"]),
                mime_type=media_obj.get("mime_type"),
            )
            caption = media_obj.get("caption")
            text = caption if isinstance(caption, str) else None

    timestamp = message.get("timestamp")

    return InboundMessage(
        message_id=message_id,
        sender=sender,
        kind=kind,
        text=text,
        media=media,
        timestamp=str(timestamp) if timestamp is not None else None,
    )


def extract_messages(payload: dict[str, Any]) -> list[ExtractedMessage]:
    """Extract every message across all entries and changes.

    Meta payload structure:
    {
      "object": "whatsapp_business_account",
      "entry": [{
        "changes": [{
          "value": {
            "metadata": {"phone_number_id": "...", "display_phone_number": "..."},
            "messages": [{"from": "PHONE", "id": "MSG_ID", "type": "text", ...}]
          },
          "field": "messages"
        }]
      }]
    }

    Changes whose field is not "messages" are skipped. Status callbacks
    (value.statuses without value.messages) yield nothing. Malformed
    messages are logged and skipped so the rest of the batch still flows.

    Args:
        payload: Parsed webhook payload.

    Returns:
        Messages in payload order.
    """
    extracted: list[ExtractedMessage] = []

    entries = payload.get("entry")
    if not isinstance(entries, list):
        return extracted

    for entry in entries:
        if not isinstance(entry, dict):
            continue
        changes = entry.get("changes")
        if not isinstance(changes, list):
            continue

        for change in changes:
            if not isinstance(change, dict) or change.get("field") != MESSAGES_FIELD:
                continue
            value = change.get("value")
            if not isinstance(value, dict):
                continue

            metadata = value.get("metadata") if isinstance(value.get("metadata"), dict) else {}
            messages = value.get("messages")
            if not isinstance(messages, list):
                continue

            for raw in messages:
                try:
                    message = parse_message(raw)
                except InvalidPayloadError as e:
                    logger.warning(
                        "skipping malformed meta message",
                        extra={"extra_fields": safe_log_context(error=str(e))},
                    )
                    continue

                extracted.append(
                    ExtractedMessage(
                        message=message,
                        phone_number_id=metadata.get("phone_number_id"),
                        display_phone_number=metadata.get("display_phone_number"),
                    )
                )

    return extracted


def normalize_sender(phone: str) -> str:
    """Apply the Argentine mobile prefix correction (549... -> 54...)."""
    if phone.startswith(_AR_MOBILE_PREFIX):
        return _AR_COUNTRY_PREFIX + phone[len(_AR_MOBILE_PREFIX):]
    return phone
