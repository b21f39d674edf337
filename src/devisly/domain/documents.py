"""Quote and invoice arithmetic, validation and French formatting.

Amounts are Decimal euros rounded to the cent. Line totals are
quantity x unit_price; VAT is applied on the subtotal.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_VAT_RATE = Decimal("20")
DEFAULT_TERM_DAYS = 30
DEFAULT_UNIT = "unité"

_CENT = Decimal("0.01")


class DocumentValidationError(ValueError):
    """Invalid quote/invoice input. Carries the offending field."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    position: int

    @property
    def total_price(self) -> Decimal:
        return (self.quantity * self.unit_price).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total: Decimal


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).replace(",", ".").strip())
    except (InvalidOperation, ValueError):
        return None


def parse_line_items(items: Any) -> list[LineItem]:
    """Validate raw line items coming from a tool call.

    Raises:
        DocumentValidationError: On a missing description, a missing or
            negative unit price, or a negative quantity.
    """
    if not isinstance(items, list) or not items:
        raise DocumentValidationError("Au moins une ligne est obligatoire", field="items")

    parsed: list[LineItem] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise DocumentValidationError(
                f"Ligne {index + 1} invalide", field=f"items[{index}]"
            )
        description = str(item.get("description") or "").strip()
        if not description:
            raise DocumentValidationError(
                f"Description manquante pour la ligne {index + 1}",
                field=f"items[{index}].description",
            )

        unit_price = _to_decimal(item.get("unit_price"))
        if unit_price is None or unit_price < 0:
            raise DocumentValidationError(
                f"Prix unitaire invalide pour la ligne {index + 1}",
                field=f"items[{index}].unit_price",
            )

        raw_quantity = item.get("quantity")
        quantity = Decimal("1") if raw_quantity in (None, "") else _to_decimal(raw_quantity)
        if quantity is None or quantity < 0:
            raise DocumentValidationError(
                f"Quantité invalide pour la ligne {index + 1}",
                field=f"items[{index}].quantity",
            )

        parsed.append(
            LineItem(
                description=description,
                quantity=quantity,
                unit=str(item.get("unit") or DEFAULT_UNIT).strip() or DEFAULT_UNIT,
                unit_price=unit_price,
                position=index,
            )
        )
    return parsed


def parse_vat_rate(value: Any) -> Decimal:
    """VAT percentage between 0 and 100 (default 20)."""
    if value is None or value == "":
        return DEFAULT_VAT_RATE
    rate = _to_decimal(value)
    if rate is None or rate < 0 or rate > 100:
        raise DocumentValidationError("Le taux de TVA doit être entre 0 et 100", field="vat_rate")
    return rate


def compute_totals(items: list[LineItem], vat_rate: Decimal) -> Totals:
    subtotal = sum((item.total_price for item in items), Decimal("0"))
    vat_amount = (subtotal * vat_rate / 100).quantize(_CENT, rounding=ROUND_HALF_UP)
    return Totals(
        subtotal=subtotal,
        vat_rate=vat_rate,
        vat_amount=vat_amount,
        total=subtotal + vat_amount,
    )


def format_currency(amount: Decimal | float | int | None) -> str:
    """French formatting: 1234.5 -> "1 234,50 €"."""
    if amount is None:
        return "0,00 €"
    value = Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    integer_part, decimal_part = f"{abs(value):.2f}".split(".")
    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)
    return f"{sign}{' '.join(groups)},{decimal_part} €"


def format_rate(rate: Decimal | float | int) -> str:
    """20 -> "20%", 5.5 -> "5.5%"."""
    value = Decimal(str(rate)).normalize()
    text = format(value, "f")
    return f"{text}%"


def document_number(prefix: str, year: int, sequence: int) -> str:
    """DEVIS-2026-0007 style numbering."""
    return f"{prefix}-{year}-{sequence:04d}"
