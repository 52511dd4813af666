# rentdesk/utils/formatting.py
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

TWO_PLACES = Decimal('0.01')


def to_decimal(value, default=None):
    """Convierte a Decimal sin pasar por la representación binaria del float."""
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def quantize_money(value) -> Decimal:
    return to_decimal(value, Decimal('0')).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def decimal_or_none(value):
    """Para serializar columnas Numeric en JSON."""
    return float(value) if value is not None else None
