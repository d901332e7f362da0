from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound, StockItemNotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import Counterparty, MovementReference, Product, Sale, SaleItem
from stock_ledger.services import ledger_service, movement_service
from stock_ledger.services.currency import (
    BASE_CURRENCY,
    CENT,
    Currency,
    parse_currency,
    to_money,
    to_non_negative_money,
)
from stock_ledger.services.inventory_service import (
    StockItemKind,
    StockItemRef,
    adjust_stock,
    resolve_sale_stock_item,
)
from stock_ledger.services.parsing import parse_datetime, parse_int, parse_optional_text

logger = get_logger('services.sales')


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity_pieces: int
    quantity_desi: Decimal
    unit_price_per_desi: Decimal
    total_price: Decimal | None = None


@dataclass(frozen=True)
class SaleInput:
    customer_id: int
    items: list[SaleLineInput] = field(default_factory=list)
    currency: Currency = BASE_CURRENCY
    total_amount: Decimal | None = None
    payment_status: str = 'pending'
    sale_date: datetime | None = None
    notes: str | None = None


def parse_sale_input(payload: Mapping) -> SaleInput:
    raw_items = payload.get('items') or []
    items = [
        SaleLineInput(
            product_id=parse_int(raw.get('product_id'), field='product_id'),
            quantity_pieces=parse_int(raw.get('quantity_pieces'), field='quantity_pieces'),
            quantity_desi=to_money(raw.get('quantity_desi', 0), field='quantity_desi'),
            unit_price_per_desi=to_money(raw.get('unit_price_per_desi', 0), field='unit_price_per_desi'),
            total_price=to_money(raw['total_price'], field='total_price') if raw.get('total_price') is not None else None,
        )
        for raw in raw_items
    ]
    total = payload.get('total_amount')
    return SaleInput(
        customer_id=parse_int(payload.get('customer_id'), field='customer_id'),
        items=items,
        currency=parse_currency(payload.get('currency')),
        total_amount=to_money(total, field='total_amount') if total is not None else None,
        payment_status=parse_optional_text(payload.get('payment_status')) or 'pending',
        sale_date=parse_datetime(payload.get('sale_date'), field='sale_date'),
        notes=parse_optional_text(payload.get('notes')),
    )


def _validate_line(line: SaleLineInput) -> Decimal:
    if line.quantity_pieces <= 0:
        raise ValidationFailure('Quantity (pieces) must be greater than zero')
    if line.quantity_desi < 0:
        raise ValidationFailure('Quantity (desi) cannot be negative')
    if line.unit_price_per_desi < 0:
        raise ValidationFailure('Unit price cannot be negative')
    if line.total_price is not None:
        return to_non_negative_money(line.total_price, field='total_price')
    return to_money(line.quantity_desi * line.unit_price_per_desi, field='total_price')


def _sale_total(data: SaleInput, line_totals: list[Decimal]) -> Decimal:
    computed = sum(line_totals, Decimal('0.00'))
    if data.total_amount is None:
        return computed
    if abs(data.total_amount - computed) > CENT:
        raise ValidationFailure(f'Sale total {data.total_amount} does not match line totals {computed}')
    return data.total_amount


def create_sale(
    db: Session,
    data: SaleInput,
    *,
    category_parents: Mapping[str, str],
    strict_stock_mode: bool = False,
    actor: str = 'System',
) -> Sale:
    if not data.items:
        raise ValidationFailure('A sale needs at least one item')
    customer = ledger_service.get_counterparty(db, data.customer_id)
    line_totals = [_validate_line(line) for line in data.items]
    total = _sale_total(data, line_totals)

    sale = Sale(
        customer_id=customer.id,
        total_amount=total,
        currency=data.currency.value,
        payment_status=data.payment_status,
        sale_date=data.sale_date or datetime.now(tz=timezone.utc),
        notes=data.notes,
    )
    db.add(sale)
    db.flush()

    for line, line_total in zip(data.items, line_totals):
        product = db.get(Product, line.product_id)
        if product is None:
            raise StockItemNotFound(line.product_id)
        db.add(
            SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                product_name=f'{product.category} - {product.color}' if product.color else product.name,
                color=product.color,
                quantity_pieces=line.quantity_pieces,
                quantity_desi=line.quantity_desi,
                unit_price_per_desi=line.unit_price_per_desi,
                total_price=line_total,
                unit=product.unit,
            )
        )
        stock_item = resolve_sale_stock_item(db, product, category_parents)
        change = adjust_stock(
            db,
            StockItemRef.product(stock_item.id),
            -line.quantity_pieces,
            strict=strict_stock_mode,
        )
        note = f'Sale - {line.quantity_pieces} pcs ({line.quantity_desi} desi)'
        if stock_item.id != product.id:
            note += f' of {product.category}'
        if data.notes:
            note += f' - {data.notes}'
        movement_service.record_change(
            db,
            change,
            reference_type=MovementReference.SALE,
            reference_id=sale.id,
            counterparty_id=customer.id,
            unit_price=line.unit_price_per_desi,
            total_amount=line_total,
            currency=data.currency,
            notes=note,
            actor=actor,
        )

    ledger_service.credit(db, customer.id, data.currency, total)
    db.flush()
    logger.info(
        'sale_created',
        extra={'sale_id': sale.id, 'customer_id': customer.id, 'total': str(total), 'currency': data.currency.value},
    )
    return sale


def get_sale_or_raise(db: Session, sale_id: int) -> Sale:
    sale = db.execute(select(Sale).where(Sale.id == sale_id)).scalar_one_or_none()
    if sale is None:
        raise NotFound('Sale', sale_id)
    return sale


def list_sale_items(db: Session, sale_id: int) -> list[SaleItem]:
    return db.execute(select(SaleItem).where(SaleItem.sale_id == sale_id).order_by(SaleItem.id.asc())).scalars().all()


def delete_sale(db: Session, sale_id: int) -> Sale:
    sale = get_sale_or_raise(db, sale_id)
    items = list_sale_items(db, sale.id)

    for item in items:
        # NOTE: asymmetric vs. the create path, unconfirmed intent. Stock goes back
        # to the sold product itself, not to the parent a sub-category sale drew from.
        adjust_stock(db, StockItemRef.product(item.product_id), item.quantity_pieces)

    movement_service.delete_for_reference(
        db,
        StockItemKind.PRODUCT,
        reference_type=MovementReference.SALE,
        reference_id=sale.id,
    )
    db.execute(delete(SaleItem).where(SaleItem.sale_id == sale.id))
    db.delete(sale)
    ledger_service.debit(db, sale.customer_id, sale.currency, sale.total_amount)
    db.flush()
    logger.info('sale_deleted', extra={'sale_id': sale.id, 'customer_id': sale.customer_id})
    return sale


def get_sale_detail(db: Session, sale_id: int) -> tuple[Sale, str | None, list[SaleItem]]:
    sale = get_sale_or_raise(db, sale_id)
    customer_name = db.execute(select(Counterparty.name).where(Counterparty.id == sale.customer_id)).scalar_one_or_none()
    return sale, customer_name, list_sale_items(db, sale.id)


def list_sales(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    conditions = []
    if start_date:
        conditions.append(Sale.sale_date >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
    if end_date:
        conditions.append(Sale.sale_date < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc))

    query = (
        select(Sale, Counterparty.name)
        .join(Counterparty, Counterparty.id == Sale.customer_id)
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
    )
    if conditions:
        query = query.where(and_(*conditions))
    rows = db.execute(query).all()

    totals = {currency.value: Decimal('0.00') for currency in Currency}
    days: set[date] = set()
    for sale, _customer_name in rows:
        key = parse_currency(sale.currency).value
        totals[key] += sale.total_amount
        days.add(sale.sale_date.date())

    return {
        'rows': rows,
        'totals': totals,
        'day_count': len(days),
    }
