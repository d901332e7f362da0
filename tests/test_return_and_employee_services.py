from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select
from support import StoreTestCase

from stock_ledger.errors import NotFound, StockItemNotFound, ValidationFailure
from stock_ledger.ipc.handlers import build_registry
from stock_ledger.models import CashTransaction, CashTransactionType, Employee, EmployeePayment, SaleReturn, StockMovement
from stock_ledger.services import ledger_service, return_service
from stock_ledger.services.currency import Currency
from stock_ledger.services.inventory_service import StockItemRef
from stock_ledger.services.return_service import ReturnInput


class ReturnServiceTests(StoreTestCase):
    def test_return_restocks_and_reduces_receivable(self) -> None:
        customer = self.add_counterparty('Mehmet')
        product = StockItemRef.product(self.add_product('Koyun', stock=5))
        with self.store.transaction() as db:
            ledger_service.credit(db, customer, Currency.USD, Decimal('100'))

        with self.store.transaction() as db:
            sale_return = return_service.create_return(
                db,
                ReturnInput(
                    customer_id=customer,
                    product_id=product.id,
                    quantity=2,
                    unit_price=Decimal('15'),
                    currency=Currency.USD,
                    notes='defolu',
                ),
            )
            return_id = sale_return.id

        self.assertEqual(self.stock_of(product), 7)
        self.assertEqual(self.balances_of(customer)['USD'], Decimal('70'))
        with self.store.session() as db:
            movement = db.execute(
                select(StockMovement).where(StockMovement.reference_type == 'return')
            ).scalar_one()
        self.assertEqual(movement.reference_id, return_id)
        self.assertEqual((movement.previous_stock, movement.new_stock, movement.signed_quantity), (5, 7, 2))
        self.assertIn('defolu', movement.notes)

    def test_explicit_total_wins(self) -> None:
        customer = self.add_counterparty('Mehmet')
        product = self.add_product('Koyun')
        with self.store.transaction() as db:
            sale_return = return_service.create_return(
                db,
                ReturnInput(
                    customer_id=customer,
                    product_id=product,
                    quantity=3,
                    unit_price=Decimal('10'),
                    total_amount=Decimal('25'),
                ),
            )
            self.assertEqual(sale_return.total_amount, Decimal('25'))
        self.assertEqual(self.balances_of(customer)['TRY'], Decimal('-25'))

    def test_invalid_returns_leave_no_trace(self) -> None:
        customer = self.add_counterparty('Mehmet')
        product = StockItemRef.product(self.add_product('Koyun', stock=5))
        cases = [
            (ValidationFailure, ReturnInput(customer_id=customer, product_id=product.id, quantity=0, unit_price=Decimal('1'))),
            (NotFound, ReturnInput(customer_id=customer, product_id=product.id, quantity=1, unit_price=Decimal('1'), sale_id=9)),
            (StockItemNotFound, ReturnInput(customer_id=customer, product_id=99, quantity=1, unit_price=Decimal('1'))),
        ]
        for error, data in cases:
            with self.subTest(error=error.__name__):
                with self.assertRaises(error):
                    with self.store.transaction() as db:
                        return_service.create_return(db, data)
        self.assertEqual(self.stock_of(product), 5)
        self.assertEqual(self.count_rows(SaleReturn), 0)
        self.assertEqual(self.balances_of(customer)['TRY'], Decimal('0'))

    def test_parse_return_input(self) -> None:
        data = return_service.parse_return_input(
            {'customer_id': 1, 'product_id': '2', 'quantity': '3', 'unit_price': '4.5', 'currency': 'eur'}
        )
        self.assertEqual((data.customer_id, data.product_id, data.quantity), (1, 2, 3))
        self.assertEqual(data.unit_price, Decimal('4.50'))
        self.assertIsNone(data.total_amount)
        self.assertEqual(data.currency, Currency.EUR)


class EmployeeChannelTests(StoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.registry = build_registry(self.store, self.settings)

    def _employee(self, name: str = 'Ali', **fields) -> int:
        response = self.registry.dispatch('employees:create', {'name': name, **fields})
        self.assertTrue(response['success'], response)
        return response['data']['id']

    def _cash_rows(self) -> list[CashTransaction]:
        with self.store.session() as db:
            return db.execute(select(CashTransaction).order_by(CashTransaction.id)).scalars().all()

    def _balance(self, employee_id: int) -> Decimal:
        with self.store.session() as db:
            return db.get(Employee, employee_id).balance

    def test_payment_lowers_balance_and_pays_out_cash(self) -> None:
        employee = self._employee(salary='25000', balance='25000')

        response = self.registry.dispatch(
            'employee-payments:create', {'employee_id': employee, 'amount': '10000', 'payment_type': 'advance'}
        )

        self.assertTrue(response['success'])
        self.assertNotIn('warning', response)
        self.assertEqual(self._balance(employee), Decimal('15000'))
        rows = self._cash_rows()
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0].type, rows[0].reference_type), (CashTransactionType.OUT, 'employee_payment'))
        self.assertEqual(rows[0].reference_id, response['data']['id'])
        self.assertIn('advance', rows[0].description)

    def test_deleting_payment_restores_balance_once(self) -> None:
        employee = self._employee(balance='500')
        created = self.registry.dispatch('employee-payments:create', {'employee_id': employee, 'amount': 200})

        response = self.registry.dispatch('employee-payments:delete', created['data']['id'])

        self.assertTrue(response['success'])
        self.assertEqual(self._balance(employee), Decimal('500'))
        self.assertEqual(self.count_rows(EmployeePayment), 0)
        kinds = [(row.type, row.reference_type) for row in self._cash_rows()]
        self.assertEqual(
            kinds,
            [(CashTransactionType.OUT, 'employee_payment'), (CashTransactionType.IN, 'payment_cancel')],
        )

    def test_update_does_not_touch_balance(self) -> None:
        employee = self._employee(balance='300')
        response = self.registry.dispatch(
            'employees:update', employee, {'name': 'Ali Veli', 'balance': '9999', 'status': 'inactive'}
        )
        self.assertEqual(response['data']['name'], 'Ali Veli')
        self.assertEqual(response['data']['status'], 'inactive')
        self.assertEqual(self._balance(employee), Decimal('300'))

    def test_listing_reports_salary_totals_per_currency(self) -> None:
        self._employee('Ali', salary='20000')
        self._employee('Ayşe', salary='15000')
        self._employee('John', salary='1000', salary_currency='USD', status='inactive')

        everyone = self.registry.dispatch('employees:get-all')
        active = self.registry.dispatch('employees:get-all', 1, 10, 'active')

        self.assertEqual(everyone['total'], 3)
        self.assertEqual(everyone['total_salary'], {'TRY': 35000.0, 'USD': 1000.0, 'EUR': 0.0})
        self.assertEqual(active['total'], 2)
        self.assertEqual(active['total_salary']['USD'], 0.0)

    def test_payment_history_pages(self) -> None:
        employee = self._employee()
        for amount in (10, 20, 30):
            self.registry.dispatch('employee-payments:create', {'employee_id': employee, 'amount': amount})

        response = self.registry.dispatch('employee-payments:get-by-employee', employee, 2, 2)

        self.assertEqual((response['total'], response['page'], response['limit']), (3, 2, 2))
        self.assertEqual([row['amount'] for row in response['data']], [10.0])

    def test_unknown_employee(self) -> None:
        response = self.registry.dispatch('employee-payments:create', {'employee_id': 42, 'amount': 1})
        self.assertEqual(response['code'], 'NOT_FOUND')
        self.assertEqual(self._cash_rows(), [])


if __name__ == '__main__':
    unittest.main()
