from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import CashReference, CashTransaction, CashTransactionType
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency, to_positive_money
from stock_ledger.services.parsing import parse_optional_int, parse_optional_text, require_text

logger = get_logger('services.cash')


@dataclass(frozen=True)
class CashInput:
    type: CashTransactionType
    amount: Decimal
    category: str
    description: str
    currency: Currency = BASE_CURRENCY
    reference_type: str | None = None
    reference_id: int | None = None
    counterparty_id: int | None = None
    actor: str | None = None


def parse_cash_type(value: object) -> CashTransactionType:
    try:
        return CashTransactionType(str(value or '').strip().lower())
    except ValueError as exc:
        raise ValidationFailure(f'Invalid cash transaction type {value!r}') from exc


def parse_cash_input(payload: Mapping) -> CashInput:
    counterparty = payload.get('counterparty_id', payload.get('customer_id'))
    return CashInput(
        type=parse_cash_type(payload.get('type')),
        amount=to_positive_money(payload.get('amount'), field='amount'),
        category=require_text(payload.get('category'), field='category'),
        description=require_text(payload.get('description'), field='description'),
        currency=parse_currency(payload.get('currency')),
        reference_type=parse_optional_text(payload.get('reference_type')),
        reference_id=parse_optional_int(payload.get('reference_id'), field='reference_id'),
        counterparty_id=parse_optional_int(counterparty, field='counterparty_id'),
        actor=parse_optional_text(payload.get('actor', payload.get('user'))),
    )


def create_cash_transaction(db: Session, data: CashInput, *, actor: str = 'System') -> CashTransaction:
    row = CashTransaction(
        type=data.type,
        amount=data.amount,
        currency=data.currency.value,
        category=data.category,
        description=data.description,
        reference_type=data.reference_type,
        reference_id=data.reference_id,
        counterparty_id=data.counterparty_id,
        actor=data.actor or actor,
    )
    db.add(row)
    db.flush()
    return row


def get_cash_transaction_or_raise(db: Session, transaction_id: int) -> CashTransaction:
    row = db.execute(select(CashTransaction).where(CashTransaction.id == transaction_id)).scalar_one_or_none()
    if row is None:
        raise NotFound('Cash transaction', transaction_id)
    return row


def update_cash_transaction(db: Session, transaction_id: int, data: CashInput) -> CashTransaction:
    row = get_cash_transaction_or_raise(db, transaction_id)
    row.type = data.type
    row.amount = data.amount
    row.currency = data.currency.value
    row.category = data.category
    row.description = data.description
    row.reference_type = data.reference_type
    row.reference_id = data.reference_id
    row.counterparty_id = data.counterparty_id
    if data.actor:
        row.actor = data.actor
    db.flush()
    return row


def delete_cash_transaction(db: Session, transaction_id: int) -> None:
    row = get_cash_transaction_or_raise(db, transaction_id)
    db.delete(row)
    db.flush()


def delete_by_reference(db: Session, *, reference_type: CashReference, reference_id: int) -> int:
    result = db.execute(
        delete(CashTransaction).where(
            CashTransaction.reference_type == reference_type.value,
            CashTransaction.reference_id == reference_id,
        )
    )
    return result.rowcount


def list_cash_transactions(
    db: Session,
    *,
    currency: Currency | None = None,
    transaction_type: CashTransactionType | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[CashTransaction], int]:
    conditions = []
    if currency is not None:
        conditions.append(CashTransaction.currency == currency.value)
    if transaction_type is not None:
        conditions.append(CashTransaction.type == transaction_type)
    if start_date:
        conditions.append(CashTransaction.created_at >= datetime.combine(start_date, time.min, tzinfo=timezone.utc))
    if end_date:
        conditions.append(
            CashTransaction.created_at < datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )

    total = db.execute(select(func.count()).select_from(CashTransaction).where(*conditions)).scalar_one()
    query = (
        select(CashTransaction)
        .where(*conditions)
        .order_by(CashTransaction.created_at.desc(), CashTransaction.id.desc())
    )
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).scalars().all(), total


def cash_balances(db: Session) -> dict[str, Decimal]:
    """Cash on hand per currency: sum of inflows minus sum of outflows."""
    signed = case(
        (CashTransaction.type == CashTransactionType.IN, CashTransaction.amount),
        else_=-CashTransaction.amount,
    )
    rows = db.execute(
        select(CashTransaction.currency, func.coalesce(func.sum(signed), 0)).group_by(CashTransaction.currency)
    ).all()
    balances = {currency.value: Decimal('0.00') for currency in Currency}
    for currency, amount in rows:
        key = parse_currency(currency).value
        balances[key] += Decimal(str(amount)).quantize(Decimal('0.01'))
    return balances


def exchange(
    db: Session,
    *,
    from_currency: Currency,
    to_currency: Currency,
    from_amount: Decimal,
    to_amount: Decimal,
    description: str | None = None,
    actor: str = 'System',
) -> tuple[CashTransaction, CashTransaction]:
    if from_currency == to_currency:
        raise ValidationFailure('Exchange currencies must differ')
    from_amount = to_positive_money(from_amount, field='from_amount')
    to_amount = to_positive_money(to_amount, field='to_amount')
    label = description or f'Exchange {from_amount} {from_currency.value} -> {to_amount} {to_currency.value}'

    outflow = CashTransaction(
        type=CashTransactionType.OUT,
        amount=from_amount,
        currency=from_currency.value,
        category=CashReference.EXCHANGE.value,
        description=label,
        reference_type=CashReference.EXCHANGE.value,
        actor=actor,
    )
    db.add(outflow)
    db.flush()
    inflow = CashTransaction(
        type=CashTransactionType.IN,
        amount=to_amount,
        currency=to_currency.value,
        category=CashReference.EXCHANGE.value,
        description=label,
        reference_type=CashReference.EXCHANGE.value,
        reference_id=outflow.id,
        actor=actor,
    )
    db.add(inflow)
    db.flush()
    outflow.reference_id = inflow.id
    db.flush()
    logger.info(
        'cash_exchanged',
        extra={'from_currency': from_currency.value, 'to_currency': to_currency.value, 'out_id': outflow.id, 'in_id': inflow.id},
    )
    return outflow, inflow
