from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from stock_ledger.models import Base


def to_wire(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    return value


def row_to_dict(row: Base, **extra: Any) -> dict[str, Any]:
    data = {column.key: to_wire(getattr(row, column.key)) for column in row.__table__.columns}
    data.update({key: to_wire(value) for key, value in extra.items()})
    return data


def rows_to_dicts(rows) -> list[dict[str, Any]]:
    return [row_to_dict(row) for row in rows]


def movement_to_dict(movement) -> dict[str, Any]:
    return row_to_dict(movement, item_id=movement.item_id, signed_quantity=movement.signed_quantity)


def sale_to_dict(sale, customer_name: str | None = None, items=None) -> dict[str, Any]:
    data = row_to_dict(sale, customer_name=customer_name)
    if items is not None:
        data['items'] = rows_to_dicts(items)
    return data


def purchase_to_dict(purchase, supplier_name: str | None = None, items=None) -> dict[str, Any]:
    data = row_to_dict(purchase, supplier_name=supplier_name)
    if items is not None:
        data['items'] = rows_to_dicts(items)
    return data
