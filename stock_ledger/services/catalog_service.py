from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from stock_ledger.errors import ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import (
    CashTransaction,
    Counterparty,
    CounterpartyType,
    CustomerPayment,
    Material,
    MovementReference,
    Product,
    Purchase,
    Sale,
    SaleItem,
    SaleReturn,
    StockMovement,
)
from stock_ledger.services import ledger_service, movement_service
from stock_ledger.services.currency import to_money
from stock_ledger.services.inventory_service import StockItemKind, StockItemRef, get_item, model_for, set_stock
from stock_ledger.services.parsing import parse_int, parse_optional_int, parse_optional_text, require_text

logger = get_logger('services.catalog')


@dataclass(frozen=True)
class CounterpartyInput:
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    type: CounterpartyType = CounterpartyType.CUSTOMER
    opening_balance: Decimal = Decimal('0.00')


@dataclass(frozen=True)
class StockItemInput:
    name: str
    category: str
    color: str | None = None
    stock_quantity: int | None = None
    unit: str | None = None
    description: str | None = None
    brand: str | None = None
    supplier_id: int | None = None


def parse_counterparty_type(value: object) -> CounterpartyType:
    if value is None or value == '':
        return CounterpartyType.CUSTOMER
    try:
        return CounterpartyType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationFailure(f'Invalid counterparty type {value!r}') from exc


def parse_counterparty_input(payload: Mapping) -> CounterpartyInput:
    return CounterpartyInput(
        name=require_text(payload.get('name'), field='name'),
        phone=parse_optional_text(payload.get('phone')),
        email=parse_optional_text(payload.get('email')),
        address=parse_optional_text(payload.get('address')),
        type=parse_counterparty_type(payload.get('type')),
        opening_balance=to_money(payload.get('balance') or 0, field='balance'),
    )


def parse_stock_item_input(payload: Mapping) -> StockItemInput:
    stock = payload.get('stock_quantity')
    return StockItemInput(
        name=require_text(payload.get('name'), field='name'),
        category=require_text(payload.get('category'), field='category'),
        color=parse_optional_text(payload.get('color')),
        stock_quantity=parse_int(stock, field='stock_quantity') if stock not in (None, '') else None,
        unit=parse_optional_text(payload.get('unit')),
        description=parse_optional_text(payload.get('description')),
        brand=parse_optional_text(payload.get('brand')),
        supplier_id=parse_optional_int(payload.get('supplier_id'), field='supplier_id'),
    )


# Counterparties


def create_counterparty(db: Session, data: CounterpartyInput) -> Counterparty:
    counterparty = Counterparty(
        name=data.name,
        phone=data.phone,
        email=data.email,
        address=data.address,
        type=data.type,
        balance=data.opening_balance,
    )
    db.add(counterparty)
    db.flush()
    return counterparty


def update_counterparty(db: Session, counterparty_id: int, data: CounterpartyInput) -> Counterparty:
    # Balances are moved only by sales, purchases, payments and returns.
    counterparty = ledger_service.get_counterparty(db, counterparty_id)
    counterparty.name = data.name
    counterparty.phone = data.phone
    counterparty.email = data.email
    counterparty.address = data.address
    counterparty.type = data.type
    db.flush()
    return counterparty


def delete_counterparty(db: Session, counterparty_id: int) -> None:
    counterparty = ledger_service.get_counterparty(db, counterparty_id)

    # NOTE: asymmetric vs. sales path, unconfirmed intent. Sales and payments
    # are cascaded below, purchases are not and block the delete instead.
    purchase_count = db.execute(
        select(func.count()).select_from(Purchase).where(Purchase.supplier_id == counterparty.id)
    ).scalar_one()
    if purchase_count:
        raise ValidationFailure(
            f'Counterparty {counterparty.id} has {purchase_count} purchase(s); delete them first'
        )

    sale_ids = db.execute(select(Sale.id).where(Sale.customer_id == counterparty.id)).scalars().all()
    if sale_ids:
        db.execute(
            delete(StockMovement).where(
                StockMovement.reference_type == MovementReference.SALE.value,
                StockMovement.reference_id.in_(sale_ids),
            )
        )
        db.execute(delete(SaleItem).where(SaleItem.sale_id.in_(sale_ids)))
    return_ids = db.execute(select(SaleReturn.id).where(SaleReturn.customer_id == counterparty.id)).scalars().all()
    if return_ids:
        db.execute(
            delete(StockMovement).where(
                StockMovement.reference_type == MovementReference.RETURN.value,
                StockMovement.reference_id.in_(return_ids),
            )
        )
        db.execute(delete(SaleReturn).where(SaleReturn.id.in_(return_ids)))
    db.execute(delete(Sale).where(Sale.customer_id == counterparty.id))
    db.execute(delete(CustomerPayment).where(CustomerPayment.customer_id == counterparty.id))
    db.execute(delete(CashTransaction).where(CashTransaction.counterparty_id == counterparty.id))
    db.delete(counterparty)
    db.flush()
    logger.info(
        'counterparty_deleted',
        extra={'counterparty_id': counterparty.id, 'sales_removed': len(sale_ids), 'returns_removed': len(return_ids)},
    )


def list_counterparties(
    db: Session,
    *,
    counterparty_type: CounterpartyType | None = None,
    search: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[Counterparty], int]:
    conditions = []
    if counterparty_type is not None:
        conditions.append(Counterparty.type == counterparty_type)
    if search:
        pattern = f'%{search}%'
        conditions.append(
            or_(Counterparty.name.ilike(pattern), Counterparty.phone.ilike(pattern), Counterparty.email.ilike(pattern))
        )
    total = db.execute(select(func.count()).select_from(Counterparty).where(*conditions)).scalar_one()
    query = select(Counterparty).where(*conditions).order_by(Counterparty.created_at.desc(), Counterparty.id.desc())
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).scalars().all(), total


# Products and materials


def _apply_supplier(db: Session, material: Material, supplier_id: int | None) -> None:
    if supplier_id is None:
        return
    supplier = ledger_service.get_counterparty(db, supplier_id)
    material.supplier_id = supplier.id
    material.supplier_name = supplier.name


def create_item(db: Session, kind: StockItemKind, data: StockItemInput, *, actor: str = 'System') -> Product | Material:
    opening_stock = data.stock_quantity or 0
    if opening_stock < 0:
        raise ValidationFailure('Stock quantity cannot be negative')
    item = model_for(kind)(
        name=data.name,
        category=data.category,
        color=data.color,
        stock_quantity=opening_stock,
        unit=data.unit or 'adet',
        description=data.description,
        brand=data.brand,
    )
    if isinstance(item, Material):
        _apply_supplier(db, item, data.supplier_id)
    db.add(item)
    db.flush()
    if opening_stock:
        movement_service.record(
            db,
            StockItemRef(kind, item.id),
            movement_type='in',
            quantity=opening_stock,
            previous_stock=0,
            new_stock=opening_stock,
            reference_type=MovementReference.INITIAL_STOCK,
            notes='Initial stock',
            actor=actor,
        )
    return item


def update_item(
    db: Session,
    ref: StockItemRef,
    data: StockItemInput,
    *,
    actor: str = 'System',
) -> Product | Material:
    item = get_item(db, ref)
    item.name = data.name
    item.category = data.category
    item.color = data.color
    item.description = data.description
    item.brand = data.brand
    if data.unit:
        item.unit = data.unit
    if isinstance(item, Material):
        _apply_supplier(db, item, data.supplier_id)
    db.flush()
    if data.stock_quantity is not None and data.stock_quantity != item.stock_quantity:
        update_stock(db, ref, data.stock_quantity, actor=actor)
    return item


def update_stock(db: Session, ref: StockItemRef, new_stock: int, *, actor: str = 'System', notes: str | None = None):
    """Overwrite an item's stock and log the difference as a manual adjustment."""
    change = set_stock(db, ref, new_stock)
    if change.delta:
        movement_service.record_change(
            db,
            change,
            reference_type=MovementReference.MANUAL_ADJUSTMENT,
            notes=notes or 'Manual stock update',
            actor=actor,
        )
    return get_item(db, ref)


def delete_item(db: Session, ref: StockItemRef) -> None:
    item = get_item(db, ref)
    if ref.kind == StockItemKind.PRODUCT:
        sold = db.execute(select(func.count()).select_from(SaleItem).where(SaleItem.product_id == item.id)).scalar_one()
        if sold:
            raise ValidationFailure(f'Product {item.id} appears on {sold} sale line(s) and cannot be deleted')
        returned = db.execute(
            select(func.count()).select_from(SaleReturn).where(SaleReturn.product_id == item.id)
        ).scalar_one()
        if returned:
            raise ValidationFailure(f'Product {item.id} appears on {returned} return(s) and cannot be deleted')
    movement_service.delete_for_item(db, ref)
    db.delete(item)
    db.flush()


def list_items(
    db: Session,
    kind: StockItemKind,
    *,
    category: str | None = None,
    search: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[Product | Material], int]:
    model = model_for(kind)
    conditions = []
    if category:
        conditions.append(model.category == category)
    if search:
        pattern = f'%{search}%'
        conditions.append(or_(model.name.ilike(pattern), model.color.ilike(pattern), model.brand.ilike(pattern)))
    total = db.execute(select(func.count()).select_from(model).where(*conditions)).scalar_one()
    query = select(model).where(*conditions).order_by(model.created_at.desc(), model.id.desc())
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).scalars().all(), total
