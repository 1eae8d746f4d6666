"""Deterministic expense parsing from user messages.

NO LLM. Uses regex and keyword heuristics tuned for Argentine Spanish.
Security: NEVER log raw text (PII).
"""

import re
import unicodedata
from decimal import Decimal, InvalidOperation

from suma.domain.expenses import DEFAULT_CATEGORY, ParsedExpense, is_storable_amount

# Category -> trigger substrings, in priority order (first match wins).
# Triggers are compared after accent folding, so "café" and "cafe" both match.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "comida",
        (
            "pizza", "hamburguesa", "almuerzo", "cena", "desayuno", "comida",
            "restaurante", "sushi", "empanadas", "milanesa", "asado", "helado",
            "café", "merienda", "birra", "cerveza", "bar", "delivery", "rappi",
            "pedidosya", "mcdonalds", "burger", "pancho", "medialunas",
        ),
    ),
    (
        "transporte",
        (
            "uber", "cabify", "taxi", "subte", "colectivo", "bondi", "tren",
            "nafta", "combustible", "estacionamiento", "peaje", "sube",
        ),
    ),
    (
        "supermercado",
        (
            "super", "supermercado", "mercado", "carrefour", "dia", "coto",
            "chino", "verdulería", "almacén", "fiambrería",
        ),
    ),
    (
        "entretenimiento",
        (
            "cine", "netflix", "spotify", "juego", "steam", "playstation",
            "xbox", "teatro", "recital", "concierto", "salida", "boliche",
        ),
    ),
    (
        "salud",
        (
            "farmacia", "médico", "doctor", "dentista", "psicólogo", "terapia",
            "remedio", "medicamento", "obra social", "prepaga",
        ),
    ),
    (
        "educacion",
        (
            "libro", "curso", "udemy", "apunte", "fotocopia", "cuaderno",
            "universidad", "facultad", "matrícula",
        ),
    ),
    (
        "servicios",
        (
            "luz", "gas", "agua", "internet", "telefono", "celular", "alquiler",
            "expensas", "wifi", "cable",
        ),
    ),
    (
        "ropa",
        (
            "ropa", "zapatillas", "remera", "pantalón", "campera", "jean",
            "vestido", "calzado",
        ),
    ),
)

# Whole-message commands answered with the usage reply instead of parsed
HELP_COMMANDS = frozenset({"ayuda", "help"})

_VERB = r"(?:gast[eé]|pagu[eé]|compr[eé]|puse)"
_PREP = r"(?:en|de|por)"
_AMOUNT = r"\$?([\d.,]+)"

# (pattern, amount group, description group)
_EXPENSE_PATTERNS: tuple[tuple[re.Pattern[str], int, int], ...] = (
    # "gasté $5.000,50 en pizza"
    (re.compile(rf"{_VERB}\s+{_AMOUNT}\s+{_PREP}\s+(.+)", re.IGNORECASE), 1, 2),
    # "gasté en pizza $5000"
    (re.compile(rf"{_VERB}\s+{_PREP}\s+(.+?)\s+{_AMOUNT}", re.IGNORECASE), 2, 1),
    # "$5000 en pizza"
    (re.compile(rf"{_AMOUNT}\s+{_PREP}\s+(.+)", re.IGNORECASE), 1, 2),
    # "pizza $5000"
    (re.compile(rf"^([a-záéíóúñ\s]+?)\s+{_AMOUNT}$", re.IGNORECASE), 2, 1),
    # "5000 pizza"
    (re.compile(rf"^{_AMOUNT}\s+([a-záéíóúñ\s]+)$", re.IGNORECASE), 1, 2),
)

# Leading numeric prefix after separators are normalized
_NUMBER_PREFIX = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def fold(text: str) -> str:
    """Lower-case and strip diacritics (NFD, drop combining marks)."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_FOLDED_KEYWORDS = tuple(
    (category, tuple(fold(kw) for kw in keywords))
    for category, keywords in CATEGORY_KEYWORDS
)


def infer_category(text: str) -> str:
    """Infer a category from free text. Returns "otros" if nothing matches."""
    folded = fold(text)
    for category, keywords in _FOLDED_KEYWORDS:
        if any(kw in folded for kw in keywords):
            return category
    return DEFAULT_CATEGORY


def is_help_command(text: str) -> bool:
    """True when the whole message asks for help ("Ayuda", "¿ayuda?", "help!")."""
    return fold(text).strip(" \t\n!.¡¿?") in HELP_COMMANDS


def parse_amount(raw: str) -> Decimal:
    """Parse an Argentine-formatted number: "5.000,50" -> Decimal("5000.50").

    Dots are thousands separators, the comma is the decimal mark. Returns
    Decimal(0) when nothing numeric can be read.
    """
    cleaned = raw.replace(".", "").replace(",", ".", 1)
    match = _NUMBER_PREFIX.match(cleaned)
    if not match:
        return Decimal(0)
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return Decimal(0)


def parse_expense_text(message: str) -> ParsedExpense | None:
    """Parse an expense from a text message using the regex grammar.

    Patterns are tried in order; a match whose amount is not positive or too
    large to store falls through to the next pattern.

    Args:
        message: Raw user text. NEVER logged.

    Returns:
        ParsedExpense, or None if no pattern yields a storable amount.
    """
    trimmed = message.strip()

    for pattern, amount_group, description_group in _EXPENSE_PATTERNS:
        match = pattern.search(trimmed)
        if not match:
            continue

        amount = parse_amount(match.group(amount_group))
        if not is_storable_amount(amount):
            continue

        description = match.group(description_group).strip()
        return ParsedExpense(
            amount=amount,
            description=description.lower(),
            category=infer_category(description),
        )

    return None
