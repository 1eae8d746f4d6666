"""Correlation ID management for request tracing.

The ingress generates (or accepts) a correlation ID per webhook call and
forwards it to the broker, which hands it back to the worker on delivery.
"""

import uuid
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Broker-side header that gets forwarded to the worker as CORRELATION_ID_HEADER
FORWARDED_CORRELATION_ID_HEADER = f"Upstash-Forward-{CORRELATION_ID_HEADER}"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)
