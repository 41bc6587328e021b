"""
Aritmética monetaria del POS.

Todos los montos se manejan como Decimal con 2 decimales y redondeo
half-up; nunca como float binario.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
QUANTITY_STEP = Decimal("0.001")  # Cantidades fraccionarias (productos por peso)
UNIT_PRICE_STEP = Decimal("0.0001")

# Límites de las columnas Numeric(14, 2), Numeric(14, 3) y Numeric(14, 4)
MAX_MONEY = Decimal("999999999999.99")
MAX_QUANTITY = Decimal("99999999999.999")
MAX_UNIT_PRICE = Decimal("9999999999.9999")


def to_decimal(value: Any) -> Decimal:
    """
    Convertir un valor de entrada a Decimal.

    Acepta coma como separador decimal ("1,5"). Lanza ValueError si el
    valor no es numérico o no es finito.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Valor numérico inválido: {value!r}")
    else:
        raw = str(value).strip().replace(" ", "").replace(",", ".")
        try:
            result = Decimal(raw)
        except InvalidOperation:
            raise ValueError(f"Valor numérico inválido: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Valor numérico inválido: {value!r}")
    return result


def quantize(value: Decimal, step: Decimal = CENT) -> Decimal:
    """Redondeo half-up al paso dado. ValueError si el valor excede la precisión decimal."""
    try:
        return value.quantize(step, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Valor numérico fuera de rango: {value}")


def round_money(value: Any) -> Decimal:
    """Redondear a centavos (half-up)."""
    return quantize(to_decimal(value), CENT)


def clamp_non_negative(value: Decimal, context: str = "") -> Decimal:
    """Nunca dejar un monto negativo; el recorte se registra como anomalía."""
    if value < 0:
        logger.warning(f"Negative monetary value clamped to zero ({context}): {value}")
        return ZERO
    return value


def sum_money(values: Iterable[Decimal]) -> Decimal:
    return round_money(sum(values, ZERO))


def format_money(value: Decimal, symbol: str = "$") -> str:
    """Formato para impresión: $ 1,234.56"""
    amount = round_money(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol} {abs(amount):,.2f}"


def format_quantity(value: Decimal) -> str:
    """1.000 -> 1, 0.250 -> 0.25"""
    normalized = quantize(value, QUANTITY_STEP).normalize()
    text = f"{normalized:f}"
    return text
