"""WhatsApp reply templates.

Templates contain static text with placeholders for the expense fields only.
Text is rendered in-memory at send time, never persisted.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

TEMPLATES: dict[str, dict[str, Any]] = {
    "expense_saved": {
        "text": (
            "✅ *Gasto registrado*\n"
            "\n"
            "💰 *Monto:* {amount}\n"
            "📝 *Descripción:* {description}\n"
            "🏷️ *Categoría:* {category}"
        ),
        "allowed_params": ["amount", "description", "category"],
    },
    "help_text": {
        "text": (
            "🤔 No pude entender ese gasto.\n"
            "\n"
            "Probá con alguno de estos formatos:\n"
            '• _"Gasté 5000 en pizza"_\n'
            '• _"Uber $3200"_\n'
            '• _"$1500 café"_\n'
            "\n"
            '_Escribí "ayuda" para ver todo lo que podés mandar._'
        ),
        "allowed_params": [],
    },
    "usage": {
        "text": (
            "📒 *Cómo registrar un gasto*\n"
            "\n"
            "Mandá el monto y en qué lo gastaste:\n"
            '• _"Gasté 5000 en pizza"_\n'
            '• _"Uber $3200"_\n'
            '• _"$1500 café"_\n'
            "\n"
            "También podés mandar un audio dictando el gasto o una foto del ticket."
        ),
        "allowed_params": [],
    },
    "help_audio": {
        "text": (
            "🤔 No pude extraer un gasto del audio. Probá dictándolo más claro, "
            'por ejemplo: _"Gasté 5000 en pizza"_'
        ),
        "allowed_params": [],
    },
    "help_image": {
        "text": (
            "🤔 No pude extraer un gasto de la imagen. "
            "Asegurate de que sea un ticket legible."
        ),
        "allowed_params": [],
    },
}

# Help template per message kind; anything else gets the generic text help
HELP_TEMPLATE_BY_KIND = {
    "audio": "help_audio",
    "image": "help_image",
}


def render(template_key: str, params: dict[str, Any]) -> str:
    """Render template with params. Validates allowed_params.

    Args:
        template_key: Template identifier.
        params: Parameters to interpolate (must be in allowed_params).

    Returns:
        Rendered text string.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    template = TEMPLATES[template_key]
    allowed = set(template["allowed_params"])
    provided = set(params.keys())

    extras = provided - allowed
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)


def format_amount_ars(amount: Decimal) -> str:
    """Format an amount the es-AR way: "$ 5.000" or "$ 1.500,50"."""
    quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    integral = quantized == quantized.to_integral_value()

    # Build with en-US separators, then swap them
    text = f"{quantized:,.0f}" if integral else f"{quantized:,.2f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"$ {text}"


def format_success_message(amount: Decimal, description: str, category: str) -> str:
    """Confirmation reply after an expense is saved."""
    return render(
        "expense_saved",
        {
            "amount": format_amount_ars(amount),
            "description": description,
            "category": category,
        },
    )


def format_help_message(kind: str = "text") -> str:
    """Guidance reply for input that could not be parsed."""
    return render(HELP_TEMPLATE_BY_KIND.get(kind, "help_text"), {})


def format_usage_message() -> str:
    """Reply to an explicit "ayuda" command."""
    return render("usage", {})
