from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import MovementReference, Sale, SaleReturn
from stock_ledger.services import ledger_service, movement_service
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency, to_money, to_non_negative_money
from stock_ledger.services.inventory_service import StockItemRef, adjust_stock
from stock_ledger.services.parsing import parse_datetime, parse_int, parse_optional_int, parse_optional_text

logger = get_logger('services.returns')


@dataclass(frozen=True)
class ReturnInput:
    customer_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    total_amount: Decimal | None = None
    currency: Currency = BASE_CURRENCY
    sale_id: int | None = None
    return_date: datetime | None = None
    notes: str | None = None


def parse_return_input(payload: Mapping) -> ReturnInput:
    total = payload.get('total_amount')
    return ReturnInput(
        customer_id=parse_int(payload.get('customer_id'), field='customer_id'),
        product_id=parse_int(payload.get('product_id'), field='product_id'),
        quantity=parse_int(payload.get('quantity'), field='quantity'),
        unit_price=to_money(payload.get('unit_price', 0), field='unit_price'),
        total_amount=to_money(total, field='total_amount') if total is not None else None,
        currency=parse_currency(payload.get('currency')),
        sale_id=parse_optional_int(payload.get('sale_id'), field='sale_id'),
        return_date=parse_datetime(payload.get('return_date'), field='return_date'),
        notes=parse_optional_text(payload.get('notes')),
    )


def create_return(db: Session, data: ReturnInput, *, actor: str = 'System') -> SaleReturn:
    """Take goods back from a customer.

    The product is restocked with an ``in`` movement and the customer's
    receivable in the return currency drops by the returned value.
    """
    if data.quantity <= 0:
        raise ValidationFailure('Quantity must be greater than zero')
    if data.unit_price < 0:
        raise ValidationFailure('Unit price cannot be negative')
    customer = ledger_service.get_counterparty(db, data.customer_id)
    if data.sale_id is not None and db.get(Sale, data.sale_id) is None:
        raise NotFound('Sale', data.sale_id)
    if data.total_amount is not None:
        total = to_non_negative_money(data.total_amount, field='total_amount')
    else:
        total = to_money(data.unit_price * data.quantity, field='total_amount')

    sale_return = SaleReturn(
        sale_id=data.sale_id,
        customer_id=customer.id,
        product_id=data.product_id,
        quantity=data.quantity,
        unit_price=data.unit_price,
        total_amount=total,
        currency=data.currency.value,
        return_date=data.return_date or datetime.now(tz=timezone.utc),
        notes=data.notes,
    )
    change = adjust_stock(db, StockItemRef.product(data.product_id), data.quantity)
    db.add(sale_return)
    db.flush()
    movement_service.record_change(
        db,
        change,
        reference_type=MovementReference.RETURN,
        reference_id=sale_return.id,
        counterparty_id=customer.id,
        unit_price=data.unit_price,
        total_amount=total,
        currency=data.currency,
        notes='Return' + (f' - {data.notes}' if data.notes else ''),
        actor=actor,
    )
    ledger_service.debit(db, customer.id, data.currency, total)
    db.flush()
    logger.info('return_created', extra={'return_id': sale_return.id, 'customer_id': customer.id, 'total': str(total)})
    return sale_return
