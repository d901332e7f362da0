from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.errors import InsufficientStock, MissingParentStock, StockItemNotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import Material, Product

logger = get_logger('services.inventory')


class StockItemKind(str, Enum):
    PRODUCT = 'product'
    MATERIAL = 'material'


@dataclass(frozen=True)
class StockItemRef:
    kind: StockItemKind
    id: int

    @classmethod
    def product(cls, item_id: int) -> StockItemRef:
        return cls(StockItemKind.PRODUCT, int(item_id))

    @classmethod
    def material(cls, item_id: int) -> StockItemRef:
        return cls(StockItemKind.MATERIAL, int(item_id))


@dataclass(frozen=True)
class StockChange:
    ref: StockItemRef
    previous_stock: int
    new_stock: int

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock


_MODELS: dict[StockItemKind, type[Product] | type[Material]] = {
    StockItemKind.PRODUCT: Product,
    StockItemKind.MATERIAL: Material,
}


def model_for(kind: StockItemKind) -> type[Product] | type[Material]:
    return _MODELS[kind]


def resolve_item_ref(db: Session, item_id: int) -> StockItemRef:
    """Resolve a bare item id to a Material or Product, Materials first."""
    material_id = db.execute(select(Material.id).where(Material.id == item_id)).scalar_one_or_none()
    product_id = db.execute(select(Product.id).where(Product.id == item_id)).scalar_one_or_none()
    if material_id is not None:
        if product_id is not None:
            logger.warning('ambiguous_stock_item', extra={'item_id': item_id, 'resolved_kind': 'material'})
        return StockItemRef.material(material_id)
    if product_id is not None:
        return StockItemRef.product(product_id)
    raise StockItemNotFound(item_id)


def get_item(db: Session, ref: StockItemRef, *, for_update: bool = False) -> Product | Material:
    model = model_for(ref.kind)
    query = select(model).where(model.id == ref.id)
    if for_update:
        # Locked reads must see the committed row, not the identity-map copy.
        query = query.with_for_update().execution_options(populate_existing=True)
    item = db.execute(query).scalar_one_or_none()
    if item is None:
        raise StockItemNotFound(ref.id)
    return item


def get_stock(db: Session, ref: StockItemRef) -> int:
    model = model_for(ref.kind)
    stock = db.execute(select(model.stock_quantity).where(model.id == ref.id)).scalar_one_or_none()
    if stock is None:
        raise StockItemNotFound(ref.id)
    return stock


def adjust_stock(db: Session, ref: StockItemRef, delta: int, *, strict: bool = False) -> StockChange:
    item = get_item(db, ref, for_update=True)
    previous = item.stock_quantity
    new = previous + delta
    if strict and delta < 0 and new < 0:
        raise InsufficientStock(ref.id, previous, -delta)
    item.stock_quantity = new
    db.flush()
    return StockChange(ref=ref, previous_stock=previous, new_stock=new)


def set_stock(db: Session, ref: StockItemRef, new_stock: int) -> StockChange:
    if new_stock < 0:
        raise ValidationFailure('Stock quantity cannot be negative')
    item = get_item(db, ref, for_update=True)
    previous = item.stock_quantity
    item.stock_quantity = new_stock
    db.flush()
    return StockChange(ref=ref, previous_stock=previous, new_stock=new_stock)


def resolve_sale_stock_item(db: Session, product: Product, category_parents: Mapping[str, str]) -> Product:
    """Return the product whose stock a sale of ``product`` draws from.

    Sub-categories share the physical stock of their parent category, so the
    sale is booked on the parent product with the same color. A color-less
    parent is accepted when no colored one exists.
    """
    parent_category = category_parents.get(product.category)
    if parent_category is None:
        return product

    candidates = db.execute(
        select(Product).where(Product.category == parent_category).order_by(Product.id.asc())
    ).scalars().all()
    for candidate in candidates:
        if candidate.color == product.color:
            return candidate
    for candidate in candidates:
        if not candidate.color:
            return candidate
    raise MissingParentStock(product.category, parent_category, product.color)
