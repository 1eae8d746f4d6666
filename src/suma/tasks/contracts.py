"""Task contracts v1 - payload exchanged between ingress and worker via the broker.

All queued units use this contract to ensure:
- Version compatibility between the ingress and worker deployments
- One message per unit (a failing message never blocks its siblings)
- Consistent structure across backends
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from suma.whatsapp.models import InboundMessage


@dataclass(frozen=True)
class QueuedUnit:
    """One InboundMessage plus delivery metadata.

    Attributes:
        version: Contract version (always "v1").
        message: The provider message to process.
        phone_number_id: Business phone number the message was sent to.
        display_phone_number: Human-readable form of the same number.
        received_at: ISO-8601 UTC timestamp taken by the ingress.
    """

    version: Literal["v1"] = field(default="v1", init=False)
    message: InboundMessage | None = None
    phone_number_id: str | None = None
    display_phone_number: str | None = None
    received_at: str = ""

    @property
    def message_id(self) -> str:
        return self.message.message_id if self.message else ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "version": self.version,
            "message": self.message.to_dict() if self.message else None,
            "phone_number_id": self.phone_number_id,
            "display_phone_number": self.display_phone_number,
            "received_at": self.received_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedUnit:
        """Create from dict.

        Raises:
            ValueError: On unsupported version or an invalid message.
        """
        if not isinstance(data, dict):
            raise ValueError("queued unit must be a JSON object")
        if data.get("version") != "v1":
            raise ValueError(f"Unsupported version: {data.get('version')}")

        message_data = data.get("message")
        if not isinstance(message_data, dict):
            raise ValueError("missing message")

        return cls(
            message=InboundMessage.from_dict(message_data),
            phone_number_id=data.get("phone_number_id"),
            display_phone_number=data.get("display_phone_number"),
            received_at=data.get("received_at") or "",
        )
