"""
Helpers montants: Decimal en mémoire, chaîne '36000.00' en base (comme price_paid).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENTS = Decimal("0.01")

def to_decimal(value: Any) -> Decimal:
    """
    Convertit str|int|float|Decimal en Decimal exact (via str pour les float).
    - Retourne Decimal("0") si la valeur est vide ou illisible.
    """
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value if value is not None else "0").strip() or "0")
    except (InvalidOperation, ValueError):
        return Decimal("0")

def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

def format_amount(amount: Any) -> str:
    """Sérialise un montant pour le store: 2 décimales, toujours une chaîne."""
    return f"{quantize(to_decimal(amount)):.2f}"
