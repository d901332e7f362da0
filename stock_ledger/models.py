from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')
Money = Numeric(14, 2)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _values_enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


class Base(DeclarativeBase):
    pass


class CounterpartyType(str, Enum):
    CUSTOMER = 'customer'
    SUPPLIER = 'supplier'


class MovementType(str, Enum):
    IN = 'in'
    OUT = 'out'


class MovementReference(str, Enum):
    SALE = 'sale'
    PURCHASE = 'purchase'
    INITIAL_STOCK = 'initial_stock'
    ADJUSTMENT = 'adjustment'
    MANUAL_ADJUSTMENT = 'manual_adjustment'
    RETURN = 'return'


class CashTransactionType(str, Enum):
    IN = 'in'
    OUT = 'out'


class CashReference(str, Enum):
    SALE = 'sale'
    PAYMENT = 'payment'
    SUPPLIER_PAYMENT = 'supplier_payment'
    EMPLOYEE_PAYMENT = 'employee_payment'
    PAYMENT_CANCEL = 'payment_cancel'
    PURCHASE = 'purchase'
    EXPENSE = 'expense'
    EXCHANGE = 'exchange'
    OTHER = 'other'


class EmployeeStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class Counterparty(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    balance_usd: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    balance_eur: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    type: Mapped[CounterpartyType] = mapped_column(
        _values_enum(CounterpartyType, 'counterparty_type'),
        nullable=False,
        default=CounterpartyType.CUSTOMER,
        server_default=CounterpartyType.CUSTOMER.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=_utcnow
    )


class StockItemColumns:
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str | None] = mapped_column(Text)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit: Mapped[str] = mapped_column(Text, nullable=False, default='adet', server_default='adet')
    description: Mapped[str | None] = mapped_column(Text)
    brand: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=_utcnow
    )


class Product(StockItemColumns, Base):
    __tablename__ = 'products'


class Material(StockItemColumns, Base):
    __tablename__ = 'materials'

    supplier_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('customers.id', ondelete='SET NULL'))
    supplier_name: Mapped[str | None] = mapped_column(Text)


class MovementColumns:
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    movement_type: Mapped[MovementType] = mapped_column(_values_enum(MovementType, 'movement_type'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    counterparty_id: Mapped[int | None] = mapped_column(BigInteger)
    unit_price: Mapped[Decimal | None] = mapped_column(Money)
    total_amount: Mapped[Decimal | None] = mapped_column(Money)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    notes: Mapped[str | None] = mapped_column(Text)
    actor: Mapped[str] = mapped_column(Text, nullable=False, default='System', server_default='System')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.movement_type == MovementType.IN else -self.quantity


class StockMovement(MovementColumns, Base):
    __tablename__ = 'stock_movements'
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='stock_movements_quantity_ck'),
    )

    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True
    )

    @property
    def item_id(self) -> int:
        return self.product_id


class MaterialMovement(MovementColumns, Base):
    __tablename__ = 'material_movements'
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='material_movements_quantity_ck'),
    )

    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('materials.id', ondelete='CASCADE'), nullable=False, index=True
    )

    @property
    def item_id(self) -> int:
        return self.material_id


class Sale(Base):
    __tablename__ = 'sales'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    payment_status: Mapped[str] = mapped_column(Text, nullable=False, default='pending', server_default='pending')
    sale_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SaleItem(Base):
    __tablename__ = 'sale_items'
    __table_args__ = (
        CheckConstraint('quantity_pieces > 0', name='sale_items_quantity_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sale_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('sales.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    product_name: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(Text)
    quantity_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_desi: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_price_per_desi: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit: Mapped[str | None] = mapped_column(Text)


class Purchase(Base):
    __tablename__ = 'purchases'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    purchase_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text, nullable=False, default='completed', server_default='completed')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseItem(Base):
    __tablename__ = 'purchase_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='purchase_items_quantity_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False, index=True
    )
    # Either a materials.id or a legacy products.id; item_kind says which.
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    item_kind: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    brand: Mapped[str | None] = mapped_column(Text)


class CustomerPayment(Base):
    __tablename__ = 'customer_payments'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    payment_type: Mapped[str] = mapped_column(Text, nullable=False, default='cash', server_default='cash')
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class CashTransaction(Base):
    __tablename__ = 'cash_transactions'
    __table_args__ = (
        CheckConstraint('amount > 0', name='cash_transactions_amount_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    type: Mapped[CashTransactionType] = mapped_column(
        _values_enum(CashTransactionType, 'cash_transaction_type'), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    category: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(Text)
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    counterparty_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('customers.id'))
    actor: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class SaleReturn(Base):
    __tablename__ = 'returns'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sale_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('sales.id', ondelete='SET NULL'))
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    return_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Employee(Base):
    __tablename__ = 'employees'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    position: Mapped[str | None] = mapped_column(Text)
    salary: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    salary_currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    hire_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    status: Mapped[EmployeeStatus] = mapped_column(
        _values_enum(EmployeeStatus, 'employee_status'),
        nullable=False,
        default=EmployeeStatus.ACTIVE,
        server_default=EmployeeStatus.ACTIVE.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=_utcnow
    )


class EmployeePayment(Base):
    __tablename__ = 'employee_payments'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('employees.id', ondelete='CASCADE'), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default='TRY', server_default='TRY')
    payment_type: Mapped[str] = mapped_column(Text, nullable=False, default='salary', server_default='salary')
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
