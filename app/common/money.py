"""
Helpers de aritmética monetaria en punto fijo (2 decimales).

Nunca se usa float: todo valor entra por ``to_money`` o ``to_rate``.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Union

TWO_PLACES = Decimal('0.01')
RATE_PLACES = Decimal('0.0001')

Number = Union[Decimal, int, str]


def to_money(value: Number) -> Decimal:
    """Convierte a Decimal redondeado a 2 decimales (redondeo comercial)."""
    if isinstance(value, float):
        raise TypeError("No se admiten valores float para importes")
    try:
        return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Importe inválido: {value!r}") from e


def to_rate(value: Number) -> Decimal:
    """Tasa de IVA como fracción 0-1 con hasta 4 decimales."""
    if isinstance(value, float):
        raise TypeError("No se admiten valores float para tasas")
    rate = Decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
    if rate < 0 or rate > 1:
        raise ValueError("La tasa de IVA debe estar entre 0 y 1")
    return rate


def calculate_vat(subtotal: Decimal, vat_rate: Decimal) -> Decimal:
    return to_money(Decimal(subtotal) * Decimal(vat_rate))


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal


def calculate_totals(line_totals: Iterable[Number], vat_rate: Decimal) -> DocumentTotals:
    """subtotal = Σ líneas, iva = round(subtotal × tasa, 2), total = subtotal + iva"""
    subtotal = to_money(sum((to_money(v) for v in line_totals), Decimal('0.00')))
    vat_amount = calculate_vat(subtotal, vat_rate)
    return DocumentTotals(subtotal=subtotal, vat_amount=vat_amount, total=subtotal + vat_amount)
