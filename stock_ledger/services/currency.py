from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from stock_ledger.errors import ValidationFailure

CENT = Decimal('0.01')

_GROUPED = re.compile(r'^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$')
_DECIMAL_COMMA = re.compile(r'^[+-]?\d*,\d+$')

# The desktop UI labels the lira 'TL'.
_ALIASES = {'TL': 'TRY'}


class Currency(str, Enum):
    TRY = 'TRY'
    USD = 'USD'
    EUR = 'EUR'


BASE_CURRENCY = Currency.TRY


def parse_currency(value: str | Currency | None) -> Currency:
    if isinstance(value, Currency):
        return value
    raw = (value or '').strip().upper()
    if not raw:
        return BASE_CURRENCY
    raw = _ALIASES.get(raw, raw)
    try:
        return Currency(raw)
    except ValueError as exc:
        raise ValidationFailure(f'Invalid currency {value!r}') from exc


def _normalize_separators(raw: str) -> str:
    """Accept '1,234.50' grouping and a lone decimal comma ('1,5'); reject other commas."""
    if ',' not in raw:
        return raw
    if _GROUPED.match(raw):
        return raw.replace(',', '')
    if _DECIMAL_COMMA.match(raw):
        return raw.replace(',', '.')
    raise InvalidOperation(raw)


def to_money(value: object, *, field: str = 'amount') -> Decimal:
    if value is None or value == '':
        raise ValidationFailure(f'{field} is required')
    if isinstance(value, bool):
        raise ValidationFailure(f'Invalid {field}')
    try:
        amount = Decimal(_normalize_separators(str(value).strip()))
    except InvalidOperation as exc:
        raise ValidationFailure(f'Invalid {field}') from exc
    if not amount.is_finite():
        raise ValidationFailure(f'Invalid {field}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_positive_money(value: object, *, field: str = 'amount') -> Decimal:
    amount = to_money(value, field=field)
    if amount <= 0:
        raise ValidationFailure(f'{field} must be greater than zero')
    return amount


def to_non_negative_money(value: object, *, field: str = 'amount') -> Decimal:
    amount = to_money(value, field=field)
    if amount < 0:
        raise ValidationFailure(f'{field} cannot be negative')
    return amount
