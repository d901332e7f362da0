from __future__ import annotations

from datetime import date, datetime, timezone

from stock_ledger.errors import ValidationFailure

DEFAULT_PAGE_LIMIT = 50


def parse_int(value: object, *, field: str) -> int:
    if value is None or value == '' or isinstance(value, bool):
        raise ValidationFailure(f'{field} is required')
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValidationFailure(f'Invalid {field}') from exc
    return parsed


def parse_optional_int(value: object, *, field: str) -> int | None:
    if value is None or value == '':
        return None
    return parse_int(value, field=field)


def parse_optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value: object, *, field: str) -> str:
    text = parse_optional_text(value)
    if text is None:
        raise ValidationFailure(f'{field} is required')
    return text


def parse_datetime(value: object, *, field: str) -> datetime | None:
    """ISO-8601 date or datetime; naive values are taken as UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        raw = str(value).strip()
        if raw.endswith('Z'):
            raw = raw[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValidationFailure(f'Invalid {field}: expected an ISO-8601 date') from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: object, *, field: str) -> date | None:
    if value is None or value == '':
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_datetime(value, field=field)
    return parsed.date() if parsed else None


def parse_page(page: object, limit: object) -> tuple[int | None, int | None]:
    """Both or neither: a page without a limit uses the default limit."""
    if page is None and limit is None:
        return None, None
    page_number = parse_int(page, field='page') if page is not None else 1
    page_limit = parse_int(limit, field='limit') if limit is not None else DEFAULT_PAGE_LIMIT
    if page_number < 1 or page_limit < 1:
        raise ValidationFailure('page and limit must be positive')
    return page_number, page_limit
