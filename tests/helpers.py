"""Shared test helpers: fakes, signers and payload builders.

These are NOT fixtures - they are regular functions and classes that
conftest.py and individual test files import.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import jwt
import requests

from suma.domain.expenses import ParsedExpense
from suma.infra.settings import Settings
from suma.tasks.contracts import QueuedUnit
from suma.whatsapp.meta_adapter import parse_message
from suma.whatsapp.models import MediaContent

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "test-verify-token"
CURRENT_SIGNING_KEY = "sig_current_0123456789abcdef0123456789abcdef"
NEXT_SIGNING_KEY = "sig_next_fedcba9876543210fedcba9876543210"
WORKER_BASE_URL = "https://worker.example.com"
WORKER_URL = f"{WORKER_BASE_URL}/tasks/whatsapp/process-message"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "whatsapp_verify_token": VERIFY_TOKEN,
        "whatsapp_api_token": "test-api-token",
        "whatsapp_phone_number_id": "123456789",
        "whatsapp_app_secret": APP_SECRET,
        "database_url": "postgresql://suma@localhost:5432/suma",
        "qstash_token": "test-qstash-token",
        "qstash_current_signing_key": CURRENT_SIGNING_KEY,
        "qstash_next_signing_key": NEXT_SIGNING_KEY,
        "worker_base_url": WORKER_BASE_URL,
        "tasks_backend": "inline",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def meta_signature(body: bytes, secret: str = APP_SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def body_hash(body: bytes, padded: bool = False) -> str:
    encoded = base64.urlsafe_b64encode(hashlib.sha256(body).digest()).decode("ascii")
    return encoded if padded else encoded.rstrip("=")


def broker_signature(
    body: bytes,
    key: str = CURRENT_SIGNING_KEY,
    url: str = WORKER_URL,
    iss: str = "Upstash",
    exp_offset: int = 300,
    nbf_offset: int = 0,
    body_claim: str | None = None,
) -> str:
    now = int(time.time())
    claims = {
        "iss": iss,
        "sub": url,
        "exp": now + exp_offset,
        "nbf": now + nbf_offset,
        "iat": now,
        "jti": f"jwt_{now}",
        "body": body_claim if body_claim is not None else body_hash(body),
    }
    return jwt.encode(claims, key, algorithm="HS256")


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def text_message(message_id: str, body: str, sender: str = "5491122334455") -> dict[str, Any]:
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1760000000",
        "type": "text",
        "text": {"body": body},
    }


def image_message(
    message_id: str,
    media_id: str = "media-img-1",
    caption: str | None = None,
    sender: str = "5491122334455",
) -> dict[str, Any]:
    image: dict[str, Any] = {"id": media_id, "mime_type": "image/jpeg"}
    if caption is not None:
        image["caption"] = caption
    return {"from": sender, "id": message_id, "timestamp": "1760000000", "type": "image", "image": image}


def audio_message(message_id: str, media_id: str = "media-aud-1", sender: str = "5491122334455") -> dict[str, Any]:
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1760000000",
        "type": "audio",
        "audio": {"id": media_id, "mime_type": "audio/ogg; codecs=opus"},
    }


def meta_payload(*messages: dict[str, Any], field: str = "messages") -> dict[str, Any]:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {
                                "display_phone_number": "5491100000000",
                                "phone_number_id": "123456789",
                            },
                            "messages": list(messages),
                        },
                        "field": field,
                    }
                ],
            }
        ],
    }


def encode(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLedger:
    """In-memory idempotency ledger with the same re-claim rules as Postgres.

    Leases never expire on their own; expire_lease() stands in for the clock.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def claim(self, message_id: str, sender: str) -> bool:
        with self._lock:
            record = self.records.get(message_id)
            if record is None:
                self.records[message_id] = {
                    "sender": sender,
                    "completed": False,
                    "error": None,
                    "attempts": 1,
                    "lease_expired": False,
                }
                return True
            if not record["completed"] and (record["error"] is not None or record["lease_expired"]):
                record["error"] = None
                record["lease_expired"] = False
                record["attempts"] += 1
                return True
            return False

    def is_completed(self, message_id: str) -> bool:
        record = self.records.get(message_id)
        return bool(record and record["completed"])

    def expire_lease(self, message_id: str) -> None:
        self.records[message_id]["lease_expired"] = True

    def mark_completed(self, message_id: str) -> None:
        self.records[message_id]["completed"] = True
        self.records[message_id]["error"] = None

    def mark_failed(self, message_id: str, error: str) -> None:
        self.records[message_id]["error"] = error[:500]


class FakeWriter:
    """Ledger writer keyed by source_message_id, like the real table."""

    def __init__(self, fail_on_save: int = 0) -> None:
        self.users: dict[str, str] = {}
        self.transactions: dict[str, dict[str, Any]] = {}
        self._fail_on_save = fail_on_save

    def upsert_user(self, phone: str) -> str:
        return self.users.setdefault(phone, f"user-{len(self.users) + 1}")

    def save_expense(
        self,
        user_id: str,
        parsed: ParsedExpense,
        raw_message: str | None,
        source_message_id: str,
    ) -> str:
        if self._fail_on_save:
            self._fail_on_save -= 1
            raise RuntimeError("connection to ledger lost")
        existing = self.transactions.get(source_message_id)
        if existing:
            return existing["id"]
        self.transactions[source_message_id] = {
            "id": f"txn-{len(self.transactions) + 1}",
            "user_id": user_id,
            "amount": parsed.amount,
            "description": parsed.description,
            "category": parsed.category,
            "raw_message": raw_message,
        }
        return self.transactions[source_message_id]["id"]


class FakeNotifier:
    def __init__(self, fail_times: int = 0) -> None:
        self.sent: list[tuple[str, str]] = []
        self._fail_times = fail_times

    def send(self, to: str, text: str) -> None:
        if self._fail_times:
            self._fail_times -= 1
            raise RuntimeError("send failed")
        self.sent.append((to, text))


class FakeMediaFetcher:
    def __init__(self, content: MediaContent | None = None, error: Exception | None = None) -> None:
        self.content = content or MediaContent(data=b"\xff\xd8fake-jpeg", mime_type="image/jpeg")
        self.error = error
        self.fetched: list[str] = []

    def fetch(self, media_id: str) -> MediaContent:
        self.fetched.append(media_id)
        if self.error is not None:
            raise self.error
        return self.content


class FakeModel:
    """Language-model stand-in returning a fixed answer."""

    def __init__(self, answer: ParsedExpense | None = None) -> None:
        self.answer = answer
        self.calls: list[tuple[str, MediaContent | None]] = []

    def extract(self, text: str, media: MediaContent | None = None) -> ParsedExpense | None:
        self.calls.append((text, media))
        return self.answer


def expense(amount: str, description: str, category: str) -> ParsedExpense:
    return ParsedExpense(amount=Decimal(amount), description=description, category=category)


class FakeResponse:
    """Minimal requests.Response stand-in for session mocks."""

    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._json = json_data
        self.content = content

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def _next(self, method: str, url: str, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next("POST", url, **kwargs)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def unit_body(raw_message: dict[str, Any]) -> bytes:
    """Serialized QueuedUnit for one raw provider message, as the broker delivers it."""
    unit = QueuedUnit(
        message=parse_message(raw_message),
        phone_number_id="123456789",
        display_phone_number="5491100000000",
        received_at="2026-10-19T12:00:00+00:00",
    )
    return json.dumps(unit.to_dict()).encode("utf-8")


class MockDb:
    """Database stand-in: every txn() yields the same MagicMock cursor."""

    def __init__(self, fetchone: Any = None, fail: Exception | None = None) -> None:
        self.cursor = MagicMock()
        self.cursor.fetchone.return_value = fetchone
        self.fail = fail
        self.txn_count = 0

    @contextmanager
    def txn(self):
        self.txn_count += 1
        if self.fail is not None:
            raise self.fail
        yield self.cursor
