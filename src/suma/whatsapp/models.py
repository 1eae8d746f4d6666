"""WhatsApp message models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

MEDIA_KINDS = ("audio", "image")


@dataclass(frozen=True)
class MediaRef:
    """Reference to an attachment hosted by the provider."""

    media_id: str
    mime_type: str | None = None


@dataclass(frozen=True)
class InboundMessage:
    """One message as delivered by the provider.

    ATTENTION PII: `sender` and `text` are personal data. They travel inside
    the queued unit because the worker needs them, but are NEVER logged.
    """

    message_id: str
    sender: str
    kind: str  # "text", "audio", "image", or anything else the provider sends
    text: str | None = None  # text body, or image caption
    media: MediaRef | None = None
    timestamp: str | None = None  # provider epoch seconds, as sent

    @property
    def has_media(self) -> bool:
        return self.kind in MEDIA_KINDS and self.media is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "id": self.message_id,
            "sender": self.sender,
            "kind": self.kind,
            "text": self.text,
            "media": (
                {"id": self.media.media_id, "mime_type": self.media.mime_type}
                if self.media
                else None
            ),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InboundMessage:
        """Create from dict. Raises ValueError on missing id/sender/kind."""
        message_id = data.get("id")
        sender = data.get("sender")
        kind = data.get("kind")
        if not message_id or not isinstance(message_id, str):
            raise ValueError("missing or invalid message id")
        if not sender or not isinstance(sender, str):
            raise ValueError("missing or invalid sender")
        if not kind or not isinstance(kind, str):
            raise ValueError("missing or invalid kind")

        media_data = data.get("media")
        media = None
        if isinstance(media_data, dict) and media_data.get("id"):
            media = MediaRef(
                media_id=str(media_data["id"]),
                mime_type=media_data.get("mime_type"),
            )

        return cls(
            message_id=message_id,
            sender=sender,
            kind=kind,
            text=data.get("text"),
            media=media,
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True)
class MediaContent:
    """Downloaded attachment bytes, held in memory only."""

    data: bytes
    mime_type: str
