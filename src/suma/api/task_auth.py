"""Broker signature verification for worker task handlers.

The broker (QStash) signs every delivery with an HS256 JWT carried in the
Upstash-Signature header. The JWT binds the delivery to the destination URL
(sub) and to the exact raw body (body = base64url(sha256(raw body))).

Two signing keys are accepted at the same time (current and next) so a key
rotation on the broker side never rejects in-flight deliveries.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import jwt
from fastapi import Request

from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context

logger = get_logger(__name__)

SIGNATURE_HEADER = "Upstash-Signature"
EXPECTED_ISSUER = "Upstash"

# Seconds of clock skew tolerated on exp/nbf
DEFAULT_CLOCK_TOLERANCE = 5


def _body_hash(raw_body: bytes) -> str:
    """base64url(sha256(raw_body)) without padding."""
    digest = hashlib.sha256(raw_body).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def extract_signature(request: Request) -> str | None:
    """Extract the broker signature header.

    Args:
        request: FastAPI request object.

    Returns:
        Signature JWT if present, None otherwise.
    """
    return request.headers.get(SIGNATURE_HEADER) or None


class BrokerSignatureVerifier:
    """Verify broker JWT signatures against the current and next signing keys."""

    def __init__(
        self,
        current_signing_key: str,
        next_signing_key: str,
        url: str | None = None,
        clock_tolerance: int = DEFAULT_CLOCK_TOLERANCE,
    ) -> None:
        self._keys = [k for k in (current_signing_key, next_signing_key) if k]
        self._url = url
        self._clock_tolerance = clock_tolerance

    def _verify_with_key(self, key: str, raw_body: bytes, signature: str) -> None:
        """Raise jwt.InvalidTokenError (or ValueError) if the JWT is not valid for key."""
        claims = jwt.decode(
            signature,
            key,
            algorithms=["HS256"],
            issuer=EXPECTED_ISSUER,
            leeway=self._clock_tolerance,
            options={"require": ["iss", "exp", "nbf", "body"]},
        )

        if self._url is not None and claims.get("sub") != self._url:
            raise ValueError("subject mismatch")

        claimed = str(claims.get("body", "")).rstrip("=")
        if not hmac.compare_digest(claimed, _body_hash(raw_body)):
            raise ValueError("body hash mismatch")

    def verify(self, raw_body: bytes, signature: str | None) -> bool:
        """Verify a delivery signature.

        Args:
            raw_body: Exact bytes received, before any JSON decoding.
            signature: Upstash-Signature header value.

        Returns:
            True if either signing key validates the JWT, False otherwise.

        Note:
            Fail-closed: returns False when no signing key is configured.
        """
        if not signature:
            logger.warning(
                "broker signature missing",
                extra={"extra_fields": safe_log_context(reason="missing_signature")},
            )
            return False

        if not self._keys:
            logger.error(
                "broker signing keys not configured - fail closed",
                extra={"extra_fields": safe_log_context(reason="missing_signing_keys")},
            )
            return False

        errors: list[str] = []
        for key in self._keys:
            try:
                self._verify_with_key(key, raw_body, signature)
                return True
            except (jwt.InvalidTokenError, ValueError) as e:
                errors.append(f"{type(e).__name__}: {e}")

        logger.warning(
            "broker signature verification failed",
            extra={"extra_fields": safe_log_context(keys_tried=len(errors), error="; ".join(errors))},
        )
        return False
