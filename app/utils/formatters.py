"""
Utilidades de formateo para el documento de oferta.
Formatos de números, importes y fechas en estilo español (es-ES).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional


def _group_thousands(integer_part: str) -> str:
    """Insert a dot every three digits, right to left."""
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]


def num_es(value: Union[int, float, Decimal, str, None], decimals: Optional[int] = None) -> str:
    """
    Formatea un número en estilo español:
    - Separador de miles: punto (.)
    - Separador decimal: coma (,)
    - Sin decimales fijos, se omiten los ceros finales

    Examples:
        num_es(1500) -> "1.500"
        num_es(2.5) -> "2,5"
        num_es(Decimal('3.000')) -> "3"
        num_es(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    if decimals is not None:
        num = num.quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_UP)

    num_str = f"{num:f}"
    if '.' in num_str:
        integer_part, decimal_part = num_str.split('.')
        if decimals is None:
            decimal_part = decimal_part.rstrip('0')
    else:
        integer_part, decimal_part = num_str, ""

    sign_str = ''
    if integer_part.startswith('-'):
        sign_str = '-'
        integer_part = integer_part[1:]

    integer_formatted = _group_thousands(integer_part)
    if decimal_part:
        return f"{sign_str}{integer_formatted},{decimal_part}"
    return f"{sign_str}{integer_formatted}"


def money_es(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un importe en euros con exactamente 2 decimales.

    Examples:
        money_es(1234.5) -> "1.234,50 €"
        money_es(None) -> "0,00 €"
    """
    if value is None or value == "":
        value = 0

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    integer_part, decimal_part = f"{abs(num):.2f}".split(".")
    return f"{sign}{_group_thousands(integer_part)},{decimal_part} €"


def date_es(value: Union[date, datetime, str, None]) -> str:
    """
    Formatea una fecha como DD/MM/YYYY. Acepta fechas ISO en texto.

    Examples:
        date_es(date(2026, 1, 12)) -> "12/01/2026"
        date_es("2026-01-12T10:00:00+00:00") -> "12/01/2026"
    """
    if value is None or value == "":
        return "-"

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return "-"

    if isinstance(value, datetime):
        value = value.date()

    if not isinstance(value, date):
        return "-"

    return value.strftime("%d/%m/%Y")
