from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
_STRIP = ['$', '€', '£', '₹', ',', 'USD', 'EUR', 'GBP', 'INR']


def safe_decimal(x: Any) -> Decimal:
    """Lenient money parser. Never raises; garbage becomes 0."""
    if x is None:
        return Decimal("0")
    if isinstance(x, bool):
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    if isinstance(x, int):
        return Decimal(x)
    if isinstance(x, float):
        return Decimal(str(x))
    s = str(x).strip()
    if s == '':
        return Decimal("0")
    for r in _STRIP:
        s = s.replace(r, '')
    s = s.strip()
    if s.startswith('(') and s.endswith(')'):
        s = '-' + s[1:-1]
    try:
        return Decimal(s)
    except InvalidOperation:
        digits = ''.join(ch for ch in s if (ch.isdigit() or ch in '.-'))
        try:
            return Decimal(digits) if digits else Decimal("0")
        except InvalidOperation:
            return Decimal("0")


def to_cents(x: Decimal) -> Decimal:
    return Decimal(x).quantize(CENT, rounding=ROUND_HALF_UP)
