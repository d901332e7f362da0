from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from stock_ledger.errors import NotFound, ValidationFailure
from stock_ledger.logging_config import get_logger
from stock_ledger.models import CashReference, CashTransaction, CashTransactionType, Employee, EmployeePayment, EmployeeStatus
from stock_ledger.services import cash_service
from stock_ledger.services.currency import BASE_CURRENCY, Currency, parse_currency, to_money, to_non_negative_money, to_positive_money
from stock_ledger.services.parsing import parse_datetime, parse_int, parse_optional_text, require_text

logger = get_logger('services.employees')


@dataclass(frozen=True)
class EmployeeInput:
    name: str
    email: str | None = None
    phone: str | None = None
    position: str | None = None
    salary: Decimal = Decimal('0.00')
    salary_currency: Currency = BASE_CURRENCY
    balance: Decimal = Decimal('0.00')
    hire_date: datetime | None = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE


@dataclass(frozen=True)
class EmployeePaymentInput:
    employee_id: int
    amount: Decimal
    currency: Currency = BASE_CURRENCY
    payment_type: str = 'salary'
    payment_date: datetime | None = None
    notes: str | None = None


def parse_status(value: object) -> EmployeeStatus:
    if value is None or value == '':
        return EmployeeStatus.ACTIVE
    try:
        return EmployeeStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationFailure(f'Invalid employee status {value!r}') from exc


def parse_employee_input(payload: Mapping) -> EmployeeInput:
    return EmployeeInput(
        name=require_text(payload.get('name'), field='name'),
        email=parse_optional_text(payload.get('email')),
        phone=parse_optional_text(payload.get('phone')),
        position=parse_optional_text(payload.get('position')),
        salary=to_non_negative_money(payload.get('salary') or 0, field='salary'),
        salary_currency=parse_currency(payload.get('salary_currency')),
        balance=to_money(payload.get('balance') or 0, field='balance'),
        hire_date=parse_datetime(payload.get('hire_date'), field='hire_date'),
        status=parse_status(payload.get('status')),
    )


def parse_employee_payment_input(payload: Mapping) -> EmployeePaymentInput:
    return EmployeePaymentInput(
        employee_id=parse_int(payload.get('employee_id'), field='employee_id'),
        amount=to_positive_money(payload.get('amount'), field='amount'),
        currency=parse_currency(payload.get('currency')),
        payment_type=parse_optional_text(payload.get('payment_type')) or 'salary',
        payment_date=parse_datetime(payload.get('payment_date'), field='payment_date'),
        notes=parse_optional_text(payload.get('notes')),
    )


def get_employee_or_raise(db: Session, employee_id: int) -> Employee:
    employee = db.execute(select(Employee).where(Employee.id == employee_id)).scalar_one_or_none()
    if employee is None:
        raise NotFound('Employee', employee_id)
    return employee


def create_employee(db: Session, data: EmployeeInput) -> Employee:
    employee = Employee(
        name=data.name,
        email=data.email,
        phone=data.phone,
        position=data.position,
        salary=data.salary,
        salary_currency=data.salary_currency.value,
        balance=data.balance,
        hire_date=data.hire_date or datetime.now(tz=timezone.utc),
        status=data.status,
    )
    db.add(employee)
    db.flush()
    return employee


def update_employee(db: Session, employee_id: int, data: EmployeeInput) -> Employee:
    # The running balance only moves through payments.
    employee = get_employee_or_raise(db, employee_id)
    employee.name = data.name
    employee.email = data.email
    employee.phone = data.phone
    employee.position = data.position
    employee.salary = data.salary
    employee.salary_currency = data.salary_currency.value
    employee.status = data.status
    if data.hire_date is not None:
        employee.hire_date = data.hire_date
    db.flush()
    return employee


def delete_employee(db: Session, employee_id: int) -> None:
    employee = get_employee_or_raise(db, employee_id)
    db.delete(employee)
    db.flush()


def list_employees(
    db: Session,
    *,
    status: EmployeeStatus | None = None,
    search: str | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> tuple[list[Employee], int, dict[str, Decimal]]:
    conditions = []
    if status is not None:
        conditions.append(Employee.status == status)
    if search:
        pattern = f'%{search}%'
        conditions.append(
            or_(Employee.name.ilike(pattern), Employee.position.ilike(pattern), Employee.email.ilike(pattern))
        )

    total = db.execute(select(func.count()).select_from(Employee).where(*conditions)).scalar_one()
    salary_rows = db.execute(
        select(Employee.salary_currency, func.coalesce(func.sum(Employee.salary), 0))
        .where(*conditions)
        .group_by(Employee.salary_currency)
    ).all()
    total_salary = {currency.value: Decimal('0.00') for currency in Currency}
    for currency, amount in salary_rows:
        total_salary[parse_currency(currency).value] += Decimal(str(amount)).quantize(Decimal('0.01'))

    query = select(Employee).where(*conditions).order_by(Employee.created_at.desc(), Employee.id.desc())
    if page is not None and limit is not None:
        query = query.offset((page - 1) * limit).limit(limit)
    return db.execute(query).scalars().all(), total, total_salary


def _adjust_balance(db: Session, employee_id: int, delta: Decimal) -> None:
    result = db.execute(
        update(Employee)
        .where(Employee.id == employee_id)
        .values(balance=Employee.balance + delta)
        .execution_options(synchronize_session='fetch')
    )
    if result.rowcount == 0:
        raise NotFound('Employee', employee_id)


def create_employee_payment(db: Session, data: EmployeePaymentInput) -> tuple[EmployeePayment, Employee]:
    employee = get_employee_or_raise(db, data.employee_id)
    payment = EmployeePayment(
        employee_id=employee.id,
        amount=data.amount,
        currency=data.currency.value,
        payment_type=data.payment_type,
        payment_date=data.payment_date or datetime.now(tz=timezone.utc),
        notes=data.notes,
    )
    db.add(payment)
    db.flush()
    _adjust_balance(db, employee.id, -data.amount)
    db.flush()
    logger.info('employee_payment_created', extra={'payment_id': payment.id, 'employee_id': employee.id})
    return payment, employee


def get_employee_payment_or_raise(db: Session, payment_id: int) -> EmployeePayment:
    payment = db.execute(select(EmployeePayment).where(EmployeePayment.id == payment_id)).scalar_one_or_none()
    if payment is None:
        raise NotFound('Employee payment', payment_id)
    return payment


def delete_employee_payment(db: Session, payment_id: int) -> tuple[EmployeePayment, Employee]:
    payment = get_employee_payment_or_raise(db, payment_id)
    employee = get_employee_or_raise(db, payment.employee_id)
    _adjust_balance(db, employee.id, payment.amount)
    db.delete(payment)
    db.flush()
    logger.info('employee_payment_deleted', extra={'payment_id': payment.id, 'employee_id': employee.id})
    return payment, employee


def list_employee_payments(db: Session, employee_id: int) -> list[EmployeePayment]:
    return db.execute(
        select(EmployeePayment)
        .where(EmployeePayment.employee_id == employee_id)
        .order_by(EmployeePayment.created_at.desc(), EmployeePayment.id.desc())
    ).scalars().all()


def record_payment_cash(
    db: Session,
    payment: EmployeePayment,
    employee: Employee,
    *,
    cancelled: bool = False,
    actor: str = 'System',
) -> CashTransaction:
    """Mirror a payment (or its cancellation) in the cash book."""
    if cancelled:
        kind, reference = CashTransactionType.IN, CashReference.PAYMENT_CANCEL
        description = f'Employee payment cancelled - {employee.name}'
    else:
        kind, reference = CashTransactionType.OUT, CashReference.EMPLOYEE_PAYMENT
        description = f'Employee payment - {employee.name} ({payment.payment_type})'
    return cash_service.create_cash_transaction(
        db,
        cash_service.CashInput(
            type=kind,
            amount=payment.amount,
            currency=parse_currency(payment.currency),
            category=reference.value,
            description=description,
            reference_type=reference.value,
            reference_id=payment.id,
        ),
        actor=actor,
    )
