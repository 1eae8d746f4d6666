"""Expense extraction strategy: regex first, language model as fallback.

Media (audio, image) skips the regex grammar and always goes to the model.
Without a configured model, media yields None and text relies on regex only.
"""

from __future__ import annotations

from typing import Protocol

from suma.domain.expenses import ParsedExpense
from suma.domain.parsing import parse_expense_text
from suma.observability.logging import get_logger
from suma.observability.redaction import safe_log_context
from suma.whatsapp.models import MediaContent

logger = get_logger(__name__)


class ExpenseModel(Protocol):
    """Language-model extraction backend."""

    def extract(self, text: str, media: MediaContent | None = None) -> ParsedExpense | None:
        ...


class ExpenseExtractor:
    """Turn text or media into a ParsedExpense, or None when unrecognized."""

    def __init__(self, llm: ExpenseModel | None = None) -> None:
        self._llm = llm

    def extract(self, text: str, media: MediaContent | None = None) -> ParsedExpense | None:
        if media is not None:
            if self._llm is None:
                logger.error(
                    "cannot process media without a language model",
                    extra={"extra_fields": safe_log_context(mime_type=media.mime_type)},
                )
                return None
            return self._llm.extract(text, media)

        parsed = parse_expense_text(text)
        if parsed is not None:
            logger.debug(
                "expense parsed by regex",
                extra={"extra_fields": safe_log_context(category=parsed.category)},
            )
            return parsed

        if self._llm is not None:
            return self._llm.extract(text)

        return None
