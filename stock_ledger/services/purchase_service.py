from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import Counterparty, Material, MovementReference, Purchase, PurchaseItem
from stock_ledger.services import ledger_service, movement_service
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency, to_money
from stock_ledger.services.inventory_service import adjust_stock, get_item, resolve_item_ref
from stock_ledger.services.parsing import parse_datetime, parse_int, parse_optional_text

logger = get_logger('services.purchases')


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: int
    unit_price: Decimal
    brand: str | None = None


@dataclass(frozen=True)
class PurchaseInput:
    supplier_id: int
    items: list[PurchaseLineInput] = field(default_factory=list)
    currency: Currency = BASE_CURRENCY
    purchase_date: datetime | None = None
    notes: str | None = None
    brand: str | None = None


def parse_purchase_input(payload: Mapping) -> PurchaseInput:
    items = [
        PurchaseLineInput(
            product_id=parse_int(raw.get('product_id', raw.get('material_id')), field='product_id'),
            quantity=parse_int(raw.get('quantity'), field='quantity'),
            unit_price=to_money(raw.get('unit_price', 0), field='unit_price'),
            brand=parse_optional_text(raw.get('brand')),
        )
        for raw in payload.get('items') or []
    ]
    return PurchaseInput(
        supplier_id=parse_int(payload.get('supplier_id'), field='supplier_id'),
        items=items,
        currency=parse_currency(payload.get('currency')),
        purchase_date=parse_datetime(payload.get('purchase_date'), field='purchase_date'),
        notes=parse_optional_text(payload.get('notes')),
        brand=parse_optional_text(payload.get('brand')),
    )


def _line_total(line: PurchaseLineInput) -> Decimal:
    if line.quantity <= 0:
        raise ValidationFailure('Quantity must be greater than zero')
    if line.unit_price < 0:
        raise ValidationFailure('Unit price cannot be negative')
    return to_money(line.unit_price * line.quantity, field='total_price')


def create_purchase(db: Session, data: PurchaseInput, *, actor: str = 'System') -> Purchase:
    if not data.items:
        raise ValidationFailure('A purchase needs at least one item')
    supplier = ledger_service.get_counterparty(db, data.supplier_id)
    line_totals = [_line_total(line) for line in data.items]
    total = sum(line_totals, Decimal('0.00'))

    purchase = Purchase(
        supplier_id=supplier.id,
        total_amount=total,
        currency=data.currency.value,
        purchase_date=data.purchase_date or datetime.now(tz=timezone.utc),
        notes=data.notes,
    )
    db.add(purchase)
    db.flush()

    for line, line_total in zip(data.items, line_totals):
        ref = resolve_item_ref(db, line.product_id)
        item = get_item(db, ref)
        brand = line.brand or data.brand or item.brand
        db.add(
            PurchaseItem(
                purchase_id=purchase.id,
                product_id=ref.id,
                item_kind=ref.kind.value,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line_total,
                brand=brand,
            )
        )
        change = adjust_stock(db, ref, line.quantity)
        if isinstance(item, Material):
            # Last purchase wins.
            item.supplier_id = supplier.id
            item.supplier_name = supplier.name
        movement_service.record_change(
            db,
            change,
            reference_type=MovementReference.PURCHASE,
            reference_id=purchase.id,
            counterparty_id=supplier.id,
            unit_price=line.unit_price,
            total_amount=line_total,
            currency=data.currency,
            notes=f'Purchase - {supplier.name}' + (f' - {brand}' if brand else ''),
            actor=actor,
        )

    ledger_service.credit(db, supplier.id, data.currency, total)
    db.flush()
    logger.info(
        'purchase_created',
        extra={'purchase_id': purchase.id, 'supplier_id': supplier.id, 'total': str(total), 'currency': data.currency.value},
    )
    return purchase


def get_purchase_or_raise(db: Session, purchase_id: int) -> Purchase:
    purchase = db.execute(select(Purchase).where(Purchase.id == purchase_id)).scalar_one_or_none()
    if purchase is None:
        raise NotFound('Purchase', purchase_id)
    return purchase


def list_purchase_items(db: Session, purchase_id: int) -> list[PurchaseItem]:
    return db.execute(
        select(PurchaseItem).where(PurchaseItem.purchase_id == purchase_id).order_by(PurchaseItem.id.asc())
    ).scalars().all()


def delete_purchase(db: Session, purchase_id: int) -> Purchase:
    purchase = get_purchase_or_raise(db, purchase_id)
    # NOTE: asymmetric vs. sales path, unconfirmed intent. Stock increments and
    # purchase movements are left in place; only the payable is reversed.
    db.delete(purchase)
    ledger_service.debit(db, purchase.supplier_id, purchase.currency, purchase.total_amount)
    db.flush()
    logger.info('purchase_deleted', extra={'purchase_id': purchase.id, 'supplier_id': purchase.supplier_id})
    return purchase


def get_purchase_detail(db: Session, purchase_id: int) -> tuple[Purchase, str | None, list[PurchaseItem]]:
    purchase = get_purchase_or_raise(db, purchase_id)
    supplier_name = db.execute(
        select(Counterparty.name).where(Counterparty.id == purchase.supplier_id)
    ).scalar_one_or_none()
    return purchase, supplier_name, list_purchase_items(db, purchase.id)


def list_purchases(
    db: Session,
    *,
    supplier_id: int | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list, int]:
    count_query = select(func.count()).select_from(Purchase)
    query = (
        select(Purchase, Counterparty.name)
        .join(Counterparty, Counterparty.id == Purchase.supplier_id)
        .order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
    )
    if supplier_id is not None:
        count_query = count_query.where(Purchase.supplier_id == supplier_id)
        query = query.where(Purchase.supplier_id == supplier_id)
    total = db.execute(count_query).scalar_one()
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).all(), total
