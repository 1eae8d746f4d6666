"""Expense data structures."""

from dataclasses import dataclass
from decimal import Decimal

DEFAULT_CATEGORY = "otros"

# transactions.amount is NUMERIC(14, 2)
MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("999999999999.99")

# Categories the extractor may produce; the ledger seeds these
KNOWN_CATEGORIES = (
    "comida",
    "transporte",
    "supermercado",
    "entretenimiento",
    "salud",
    "educacion",
    "servicios",
    "ropa",
    DEFAULT_CATEGORY,
)


def is_storable_amount(amount: Decimal) -> bool:
    """Whether the ledger column can hold the amount."""
    return amount.is_finite() and MIN_AMOUNT <= amount <= MAX_AMOUNT


@dataclass(frozen=True)
class ParsedExpense:
    """Structured expense extracted from a user message.

    Attributes:
        amount: Amount in ARS, between MIN_AMOUNT and MAX_AMOUNT.
        description: Free text, lower-cased by the regex parser.
        category: Category tag (see KNOWN_CATEGORIES; the model may invent others).
    """

    amount: Decimal
    description: str
    category: str = DEFAULT_CATEGORY

    def __post_init__(self) -> None:
        if not is_storable_amount(self.amount):
            raise ValueError("amount out of range")
