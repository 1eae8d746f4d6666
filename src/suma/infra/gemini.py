"""Gemini client for expense extraction (REST generateContent).

Used as the fallback when the regex grammar fails, and for every audio or
image message. The model answers with a small JSON object that is validated
with pydantic before it becomes a ParsedExpense.

Security: NEVER log prompt text, media bytes or model output.
"""

from __future__ import annotations

import base64
import time
from decimal import Decimal
from typing import Any, Callable

import requests
from pydantic import BaseModel, ValidationError, field_validator

from suma.domain.expenses import DEFAULT_CATEGORY, ParsedExpense, is_storable_amount
from suma.infra.retry import RetryExhaustedError, call_with_retry, is_transient_http_error
from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context
from suma.whatsapp.models import MediaContent

logger = get_logger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"

HTTP_TIMEOUT = 20
RETRY_DELAYS = (0.5, 1.0)

MEDIA_ONLY_PROMPT = "Extraé el gasto de este contenido."

SYSTEM_PROMPT = """Sos un asistente que extrae datos de gastos de mensajes en español argentino.
El usuario puede enviar:
- Un mensaje de texto describiendo un gasto
- Una nota de voz (audio) dictando un gasto
- Una foto de un ticket o recibo de compra

Respondé SOLO con un JSON válido (sin markdown) con esta estructura:
{ "amount": number, "description": "string", "category": "string" }

Categorías válidas: comida, transporte, supermercado, entretenimiento, salud, educacion, servicios, ropa, otros.

Si hay varios ítems en un ticket, sumá el total.
Si no podés extraer un gasto, respondé: { "amount": 0, "description": "", "category": "" }"""


class ExtractionError(Exception):
    """The language model could not be reached (after retry)."""


class LLMExpense(BaseModel):
    """Shape of the model's JSON answer."""

    amount: Decimal = Decimal(0)
    description: str = ""
    category: str = ""

    @field_validator("category")
    @classmethod
    def normalize_category(cls, v: str) -> str:
        return v.strip().lower()


def _strip_code_fence(text: str) -> str:
    """Models sometimes wrap JSON in ```json fences despite the prompt."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _response_text(body: Any) -> str:
    """Concatenated text parts of the first candidate; "" for any other shape."""
    if not isinstance(body, dict):
        return ""
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
    )


class GeminiExpenseModel:
    """Expense extraction through the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        sleep: Callable[[float], None] = time.sleep,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise RuntimeError("GEMINI_API_KEY not configured")
        self._api_key = api_key
        self._url = f"{GEMINI_API_BASE}/models/{model}:generateContent"
        self._sleep = sleep
        self._session = session or requests.Session()

    def _build_request(self, text: str, media: MediaContent | None) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if media is not None:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": media.mime_type,
                        "data": base64.b64encode(media.data).decode("ascii"),
                    }
                }
            )
        parts.append({"text": text or MEDIA_ONLY_PROMPT})

        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 0,
                "maxOutputTokens": 150,
                "responseMimeType": "application/json",
            },
        }

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        response = self._session.post(
            self._url,
            json=body,
            headers={"x-goog-api-key": self._api_key},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()

    def extract(self, text: str, media: MediaContent | None = None) -> ParsedExpense | None:
        """Ask the model for an expense.

        Args:
            text: Message text or image caption (may be empty for media).
            media: Optional attachment sent inline.

        Returns:
            ParsedExpense, or None when the model finds no usable expense.

        Raises:
            ExtractionError: When the API cannot be reached or keeps failing.
        """
        request_body = self._build_request(text, media)

        try:
            body = call_with_retry(
                lambda: self._post(request_body),
                is_transient=is_transient_http_error,
                delays=RETRY_DELAYS,
                sleep=self._sleep,
                operation="gemini_generate",
            )
        except (RetryExhaustedError, requests.RequestException, ValueError) as e:
            raise ExtractionError(f"gemini request failed: {type(e).__name__}") from e

        try:
            answer = LLMExpense.model_validate_json(_strip_code_fence(_response_text(body)))
        except ValidationError as e:
            logger.warning(
                "gemini answer not usable",
                extra={"extra_fields": safe_log_context(error_count=e.error_count())},
            )
            return None

        if not is_storable_amount(answer.amount):
            return None

        return ParsedExpense(
            amount=answer.amount,
            description=answer.description.strip(),
            category=answer.category or DEFAULT_CATEGORY,
        )
