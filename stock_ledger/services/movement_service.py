from __future__ import annotations

from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from stock_ledger.errors import ValidationFailure
from stock_ledger.models import MaterialMovement, MovementReference, MovementType, StockMovement
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency
from stock_ledger.services.inventory_service import StockChange, StockItemKind, StockItemRef, adjust_stock

_MOVEMENT_MODELS: dict[StockItemKind, type[StockMovement] | type[MaterialMovement]] = {
    StockItemKind.PRODUCT: StockMovement,
    StockItemKind.MATERIAL: MaterialMovement,
}


def movement_model(kind: StockItemKind) -> type[StockMovement] | type[MaterialMovement]:
    return _MOVEMENT_MODELS[kind]


def _item_column(kind: StockItemKind):
    model = movement_model(kind)
    return model.product_id if kind == StockItemKind.PRODUCT else model.material_id


def parse_movement_type(value: str | MovementType) -> MovementType:
    try:
        return MovementType(value)
    except ValueError as exc:
        raise ValidationFailure(f'Invalid movement type {value!r}') from exc


def parse_reference_type(value: str | MovementReference) -> MovementReference:
    try:
        return MovementReference(value)
    except ValueError as exc:
        raise ValidationFailure(f'Invalid movement reference type {value!r}') from exc


def normalize_quantity(movement_type: str | MovementType, quantity: int) -> tuple[MovementType, int]:
    """Stored quantities are always positive; a negative quantity flips the direction."""
    kind = parse_movement_type(movement_type)
    if quantity < 0:
        flipped = MovementType.IN if kind == MovementType.OUT else MovementType.OUT
        return flipped, -quantity
    return kind, quantity


def record(
    db: Session,
    ref: StockItemRef,
    *,
    movement_type: str | MovementType,
    quantity: int,
    previous_stock: int,
    new_stock: int,
    reference_type: str | MovementReference,
    reference_id: int | None = None,
    counterparty_id: int | None = None,
    unit_price: Decimal | None = None,
    total_amount: Decimal | None = None,
    currency: Currency | str = BASE_CURRENCY,
    notes: str | None = None,
    actor: str = 'System',
) -> int:
    kind, quantity = normalize_quantity(movement_type, quantity)
    reference = parse_reference_type(reference_type)
    signed = quantity if kind == MovementType.IN else -quantity
    if new_stock != previous_stock + signed:
        raise ValidationFailure(
            f'Movement does not reconcile: {previous_stock} {signed:+d} != {new_stock}'
        )

    model = movement_model(ref.kind)
    item_field = 'product_id' if ref.kind == StockItemKind.PRODUCT else 'material_id'
    movement = model(
        **{item_field: ref.id},
        movement_type=kind,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference_type=reference.value,
        reference_id=reference_id,
        counterparty_id=counterparty_id,
        unit_price=unit_price,
        total_amount=total_amount,
        currency=parse_currency(currency).value,
        notes=notes,
        actor=actor,
    )
    db.add(movement)
    db.flush()
    return movement.id


def record_change(
    db: Session,
    change: StockChange,
    *,
    reference_type: str | MovementReference,
    **fields,
) -> int:
    movement_type = MovementType.IN if change.delta >= 0 else MovementType.OUT
    return record(
        db,
        change.ref,
        movement_type=movement_type,
        quantity=abs(change.delta),
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        reference_type=reference_type,
        **fields,
    )


def create_manual_movement(
    db: Session,
    ref: StockItemRef,
    *,
    movement_type: str | MovementType,
    quantity: int,
    reference_type: str | MovementReference = MovementReference.MANUAL_ADJUSTMENT,
    strict: bool = False,
    **fields,
) -> StockMovement | MaterialMovement:
    kind, quantity = normalize_quantity(movement_type, quantity)
    if quantity == 0:
        raise ValidationFailure('quantity must not be zero')
    signed = quantity if kind == MovementType.IN else -quantity
    change = adjust_stock(db, ref, signed, strict=strict)
    movement_id = record(
        db,
        ref,
        movement_type=kind,
        quantity=quantity,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        reference_type=reference_type,
        **fields,
    )
    return db.get(movement_model(ref.kind), movement_id)


def list_by_item(db: Session, ref: StockItemRef) -> list[StockMovement | MaterialMovement]:
    model = movement_model(ref.kind)
    return db.execute(
        select(model)
        .where(_item_column(ref.kind) == ref.id)
        .order_by(model.created_at.desc(), model.id.desc())
    ).scalars().all()


def list_all(
    db: Session,
    kind: StockItemKind,
    *,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[StockMovement | MaterialMovement], int]:
    model = movement_model(kind)
    total = db.execute(select(func.count()).select_from(model)).scalar_one()
    query = select(model).order_by(model.created_at.desc(), model.id.desc())
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).scalars().all(), total


def delete_for_reference(
    db: Session,
    kind: StockItemKind,
    *,
    reference_type: MovementReference,
    reference_id: int,
) -> int:
    model = movement_model(kind)
    result = db.execute(
        delete(model).where(model.reference_type == reference_type.value, model.reference_id == reference_id)
    )
    return result.rowcount


def delete_for_item(db: Session, ref: StockItemRef) -> int:
    model = movement_model(ref.kind)
    result = db.execute(delete(model).where(_item_column(ref.kind) == ref.id))
    return result.rowcount
