"""Number parsing utilities for margins, quantities and prices."""
import re
from decimal import Decimal, InvalidOperation

from app.exceptions import ValidationError

ES_NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+)(?:,\d+)?$")


def parse_es_number(value: str) -> Decimal:
    """
    Parse a number string in Spanish format (e.g., 1.234,56 or 12,5) to Decimal.

    Plain numbers with a dot as decimal separator ("12.5") are accepted as a
    fallback.

    Raises:
        ValueError: if the value is invalid or empty.
    """
    if value is None:
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')

    cleaned = value.strip()
    if not cleaned:
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')

    if ES_NUMBER_PATTERN.match(cleaned):
        normalized = cleaned.replace('.', '').replace(',', '.')
    else:
        normalized = cleaned.replace(',', '.')

    try:
        return Decimal(normalized)
    except (InvalidOperation, ValueError):
        raise ValueError('Formato inválido. Usá 1.234,56 o 1.234')


def to_decimal(value, field='valor') -> Decimal:
    """
    Convert a JSON/form value to a finite Decimal.

    Booleans are rejected even though they are ints in Python.

    Raises:
        ValidationError: if the value is not numeric.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} debe ser numérico')

    try:
        if isinstance(value, str):
            result = parse_es_number(value)
        else:
            result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} debe ser numérico')

    if not result.is_finite():
        raise ValidationError(f'{field} debe ser numérico')
    return result


def parse_margen(value) -> Decimal:
    """
    Validate a margin percentage coming from the API.

    Raises:
        ValidationError: if the value is non-numeric or negative.
    """
    margen = to_decimal(value, 'Margen')
    if margen < 0:
        raise ValidationError('Margen debe ser un número >= 0')
    return margen


def parse_non_negative(value, field) -> Decimal:
    """Validate quantities and prices (>= 0)."""
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f'{field} no puede ser negativo')
    return result
