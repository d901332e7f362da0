from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_ledger.errors import CounterpartyNotFound, ValidationFailure
from stock_ledger.models import Counterparty
from stock_ledger.services.currency import Currency

_BALANCE_COLUMNS = {
    Currency.USD.value: 'balance_usd',
    Currency.EUR.value: 'balance_eur',
}
BASE_BALANCE_COLUMN = 'balance'


def balance_column(currency: Currency | str | None) -> str:
    # Anything that is not USD or EUR lands in the base column.
    key = currency.value if isinstance(currency, Currency) else str(currency or '').strip().upper()
    return _BALANCE_COLUMNS.get(key, BASE_BALANCE_COLUMN)


def get_counterparty(db: Session, counterparty_id: int) -> Counterparty:
    counterparty = db.execute(select(Counterparty).where(Counterparty.id == counterparty_id)).scalar_one_or_none()
    if counterparty is None:
        raise CounterpartyNotFound(counterparty_id)
    return counterparty


def _check_amount(amount: Decimal) -> None:
    if amount < 0:
        raise ValidationFailure('Ledger amounts cannot be negative')


def _apply(db: Session, counterparty_id: int, currency: Currency | str | None, delta: Decimal) -> Decimal:
    column = getattr(Counterparty, balance_column(currency))
    result = db.execute(
        update(Counterparty)
        .where(Counterparty.id == counterparty_id)
        .values({column: column + delta})
        .execution_options(synchronize_session='fetch')
    )
    if result.rowcount == 0:
        raise CounterpartyNotFound(counterparty_id)
    return db.execute(select(column).where(Counterparty.id == counterparty_id)).scalar_one()


def credit(db: Session, counterparty_id: int, currency: Currency | str | None, amount: Decimal) -> Decimal:
    """Increase the receivable (customer) or payable (supplier) in one currency bucket."""
    _check_amount(amount)
    return _apply(db, counterparty_id, currency, amount)


def debit(db: Session, counterparty_id: int, currency: Currency | str | None, amount: Decimal) -> Decimal:
    """Decrease the receivable (customer) or payable (supplier) in one currency bucket."""
    _check_amount(amount)
    return _apply(db, counterparty_id, currency, -amount)


def get_balances(db: Session, counterparty_id: int) -> dict[str, Decimal]:
    counterparty = get_counterparty(db, counterparty_id)
    return {
        Currency.TRY.value: counterparty.balance,
        Currency.USD.value: counterparty.balance_usd,
        Currency.EUR.value: counterparty.balance_eur,
    }
