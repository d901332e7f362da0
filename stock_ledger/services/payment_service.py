"""Counterparty payments.

A payment reduces the counterparty's balance in its currency bucket. For a
customer that is money received, for a supplier it is money paid out, and
only the latter is mirrored in the cash book. The cash row is a secondary
write: callers commit the payment first and pair or clean up the cash row in
a separate transaction (see ``stock_ledger.ipc.handlers``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound
from stock_ledger.logging_config import get_logger
from stock_ledger.models import CashReference, CashTransaction, CashTransactionType, Counterparty, CounterpartyType, CustomerPayment
from stock_ledger.services import cash_service, ledger_service
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency, to_positive_money
from stock_ledger.services.parsing import parse_datetime, parse_int, parse_optional_text

logger = get_logger('services.payments')


@dataclass(frozen=True)
class PaymentInput:
    customer_id: int
    amount: Decimal
    currency: Currency = BASE_CURRENCY
    payment_type: str = 'cash'
    payment_date: datetime | None = None
    notes: str | None = None


def parse_payment_input(payload: Mapping) -> PaymentInput:
    counterparty = payload.get('customer_id', payload.get('supplier_id'))
    return PaymentInput(
        customer_id=parse_int(counterparty, field='customer_id'),
        amount=to_positive_money(payload.get('amount'), field='amount'),
        currency=parse_currency(payload.get('currency')),
        payment_type=parse_optional_text(payload.get('payment_type')) or 'cash',
        payment_date=parse_datetime(payload.get('payment_date'), field='payment_date'),
        notes=parse_optional_text(payload.get('notes')),
    )


def create_payment(db: Session, data: PaymentInput) -> tuple[CustomerPayment, Counterparty]:
    counterparty = ledger_service.get_counterparty(db, data.customer_id)
    payment = CustomerPayment(
        customer_id=counterparty.id,
        amount=data.amount,
        currency=data.currency.value,
        payment_type=data.payment_type,
        payment_date=data.payment_date or datetime.now(tz=timezone.utc),
        notes=data.notes,
    )
    db.add(payment)
    db.flush()
    ledger_service.debit(db, counterparty.id, data.currency, data.amount)
    db.flush()
    logger.info(
        'payment_created',
        extra={
            'payment_id': payment.id,
            'counterparty_id': counterparty.id,
            'counterparty_type': counterparty.type.value,
            'amount': str(data.amount),
            'currency': data.currency.value,
        },
    )
    return payment, counterparty


def needs_cash_pairing(counterparty: Counterparty) -> bool:
    # NOTE: asymmetric vs. sales path, unconfirmed intent. Customer payments
    # never reach the cash book; supplier payments do.
    return counterparty.type == CounterpartyType.SUPPLIER


def pair_cash_transaction(
    db: Session,
    payment: CustomerPayment,
    counterparty: Counterparty,
    *,
    actor: str = 'System',
) -> CashTransaction:
    description = f'Supplier payment - {counterparty.name}'
    if payment.notes:
        description += f' - {payment.notes}'
    return cash_service.create_cash_transaction(
        db,
        cash_service.CashInput(
            type=CashTransactionType.OUT,
            amount=payment.amount,
            currency=parse_currency(payment.currency),
            category=CashReference.SUPPLIER_PAYMENT.value,
            description=description,
            reference_type=CashReference.SUPPLIER_PAYMENT.value,
            reference_id=payment.id,
            counterparty_id=counterparty.id,
        ),
        actor=actor,
    )


def get_payment_or_raise(db: Session, payment_id: int) -> CustomerPayment:
    payment = db.execute(select(CustomerPayment).where(CustomerPayment.id == payment_id)).scalar_one_or_none()
    if payment is None:
        raise NotFound('Payment', payment_id)
    return payment


def delete_payment(db: Session, payment_id: int) -> CustomerPayment:
    payment = get_payment_or_raise(db, payment_id)
    ledger_service.credit(db, payment.customer_id, payment.currency, payment.amount)
    db.delete(payment)
    db.flush()
    logger.info('payment_deleted', extra={'payment_id': payment.id, 'counterparty_id': payment.customer_id})
    return payment


def delete_paired_cash(db: Session, payment_id: int) -> int:
    return cash_service.delete_by_reference(
        db,
        reference_type=CashReference.SUPPLIER_PAYMENT,
        reference_id=payment_id,
    )


def list_payments(
    db: Session,
    *,
    customer_id: int | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list, int]:
    count_query = select(func.count()).select_from(CustomerPayment)
    query = (
        select(CustomerPayment, Counterparty.name)
        .join(Counterparty, Counterparty.id == CustomerPayment.customer_id)
        .order_by(CustomerPayment.created_at.desc(), CustomerPayment.id.desc())
    )
    if customer_id is not None:
        count_query = count_query.where(CustomerPayment.customer_id == customer_id)
        query = query.where(CustomerPayment.customer_id == customer_id)
    total = db.execute(count_query).scalar_one()
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).all(), total
