from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import select
from support import StoreTestCase

from stock_ledger.errors import CounterpartyNotFound, ValidationFailure
from stock_ledger.models import (
    CashTransaction,
    CashTransactionType,
    Counterparty,
    CounterpartyType,
    CustomerPayment,
    Material,
    MaterialMovement,
    Sale,
    SaleItem,
    SaleReturn,
    StockMovement,
)
from stock_ledger.services import (
    cash_service,
    catalog_service,
    payment_service,
    purchase_service,
    return_service,
    sales_service,
)
from stock_ledger.services.catalog_service import CounterpartyInput, StockItemInput
from stock_ledger.services.inventory_service import StockItemKind, StockItemRef
from stock_ledger.services.payment_service import PaymentInput
from stock_ledger.services.purchase_service import PurchaseInput, PurchaseLineInput
from stock_ledger.services.return_service import ReturnInput
from stock_ledger.services.sales_service import SaleInput, SaleLineInput


class CounterpartyTests(StoreTestCase):
    def test_opening_balance_lands_in_base_bucket(self) -> None:
        with self.store.transaction() as db:
            data = catalog_service.parse_counterparty_input({'name': 'Mehmet', 'balance': '250', 'type': 'Customer'})
            customer = catalog_service.create_counterparty(db, data).id
        self.assertEqual(
            self.balances_of(customer),
            {'TRY': Decimal('250'), 'USD': Decimal('0'), 'EUR': Decimal('0')},
        )

    def test_update_keeps_balances(self) -> None:
        with self.store.transaction() as db:
            customer = catalog_service.create_counterparty(
                db, CounterpartyInput(name='Mehmet', opening_balance=Decimal('40'))
            ).id
        with self.store.transaction() as db:
            updated = catalog_service.update_counterparty(
                db, customer, CounterpartyInput(name='Mehmet Bey', type=CounterpartyType.SUPPLIER)
            )
            self.assertEqual(updated.type, CounterpartyType.SUPPLIER)
        self.assertEqual(self.balances_of(customer)['TRY'], Decimal('40'))

    def test_delete_cascades_sales_payments_and_cash(self) -> None:
        customer = self.add_counterparty('Mehmet')
        keeper = self.add_counterparty('Ayşe')
        product = StockItemRef.product(self.add_product('Koyun', stock=10))
        line = SaleLineInput(
            product_id=product.id, quantity_pieces=2, quantity_desi=Decimal('5'), unit_price_per_desi=Decimal('10')
        )
        with self.store.transaction() as db:
            for counterparty in (customer, keeper):
                sales_service.create_sale(db, SaleInput(customer_id=counterparty, items=[line]), category_parents={})
            payment_service.create_payment(db, PaymentInput(customer_id=customer, amount=Decimal('20')))
            cash_service.create_cash_transaction(
                db,
                cash_service.CashInput(
                    type=CashTransactionType.IN,
                    amount=Decimal('20'),
                    category='sale',
                    description='Tahsilat',
                    counterparty_id=customer,
                ),
            )

        with self.store.transaction() as db:
            catalog_service.delete_counterparty(db, customer)

        self.assertEqual(self.count_rows(Counterparty), 1)
        self.assertEqual(self.count_rows(Sale), 1)
        self.assertEqual(self.count_rows(SaleItem), 1)
        self.assertEqual(self.count_rows(StockMovement, StockMovement.reference_type == 'sale'), 1)
        self.assertEqual(self.count_rows(CustomerPayment), 0)
        self.assertEqual(self.count_rows(CashTransaction), 0)

    def test_delete_blocked_by_purchases(self) -> None:
        supplier = self.add_counterparty('Deri A.Ş.', CounterpartyType.SUPPLIER)
        material = self.add_material('Boya')
        with self.store.transaction() as db:
            purchase_service.create_purchase(
                db,
                PurchaseInput(
                    supplier_id=supplier,
                    items=[PurchaseLineInput(product_id=material, quantity=1, unit_price=Decimal('1'))],
                ),
            )
        with self.assertRaises(ValidationFailure):
            with self.store.transaction() as db:
                catalog_service.delete_counterparty(db, supplier)
        self.assertEqual(self.count_rows(Counterparty), 1)

    def test_missing_counterparty(self) -> None:
        with self.store.session() as db:
            with self.assertRaises(CounterpartyNotFound):
                catalog_service.delete_counterparty(db, 5)

    def test_list_filters_type_and_search(self) -> None:
        self.add_counterparty('Mehmet')
        self.add_counterparty('Mehmet Deri', CounterpartyType.SUPPLIER)
        self.add_counterparty('Ayşe')
        with self.store.session() as db:
            suppliers, supplier_total = catalog_service.list_counterparties(db, counterparty_type=CounterpartyType.SUPPLIER)
            found, found_total = catalog_service.list_counterparties(db, search='mehmet', page=1, limit=1)
        self.assertEqual(supplier_total, 1)
        self.assertEqual(suppliers[0].name, 'Mehmet Deri')
        self.assertEqual(found_total, 2)
        self.assertEqual(len(found), 1)


class StockItemTests(StoreTestCase):
    def test_opening_stock_is_logged_as_initial_stock(self) -> None:
        ref = StockItemRef.material(self.add_material('Boya', stock=12))
        with self.store.session() as db:
            movement = db.execute(select(MaterialMovement)).scalar_one()
        self.assertEqual(movement.reference_type, 'initial_stock')
        self.assertEqual((movement.previous_stock, movement.new_stock, movement.quantity), (0, 12, 12))
        self.assertEqual(movement.material_id, ref.id)

    def test_zero_opening_stock_logs_nothing(self) -> None:
        self.add_product('Koyun')
        self.assertEqual(self.count_rows(StockMovement), 0)

    def test_negative_opening_stock_rejected(self) -> None:
        with self.assertRaises(ValidationFailure):
            self.add_product('Koyun', stock=-1)

    def test_update_stock_logs_manual_adjustment(self) -> None:
        ref = StockItemRef.product(self.add_product('Koyun', stock=10))
        with self.store.transaction() as db:
            catalog_service.update_stock(db, ref, 4, notes='sayım')
            catalog_service.update_stock(db, ref, 4)

        rows = self.count_rows(StockMovement, StockMovement.reference_type == 'manual_adjustment')
        self.assertEqual(rows, 1)
        with self.store.session() as db:
            movement = db.execute(
                select(StockMovement).where(StockMovement.reference_type == 'manual_adjustment')
            ).scalar_one()
        self.assertEqual((movement.movement_type.value, movement.quantity, movement.new_stock), ('out', 6, 4))
        self.assertEqual(movement.notes, 'sayım')

    def test_update_item_routes_stock_change_through_movement_log(self) -> None:
        ref = StockItemRef.product(self.add_product('Koyun', stock=3))
        with self.store.transaction() as db:
            item = catalog_service.update_item(
                db, ref, StockItemInput(name='Koyun Nappa', category='Koyun', stock_quantity=8, unit='desi')
            )
            self.assertEqual((item.name, item.unit, item.stock_quantity), ('Koyun Nappa', 'desi', 8))
        self.assertEqual(self.count_rows(StockMovement, StockMovement.reference_type == 'manual_adjustment'), 1)

    def test_material_supplier_is_denormalized(self) -> None:
        supplier = self.add_counterparty('Deri A.Ş.', CounterpartyType.SUPPLIER)
        material = self.add_material('Boya', supplier_id=supplier)
        with self.store.session() as db:
            row = db.get(Material, material)
        self.assertEqual((row.supplier_id, row.supplier_name), (supplier, 'Deri A.Ş.'))

    def test_delete_product_with_sales_is_refused(self) -> None:
        customer = self.add_counterparty('Mehmet')
        product = StockItemRef.product(self.add_product('Koyun', stock=10))
        with self.store.transaction() as db:
            sales_service.create_sale(
                db,
                SaleInput(
                    customer_id=customer,
                    items=[
                        SaleLineInput(
                            product_id=product.id,
                            quantity_pieces=1,
                            quantity_desi=Decimal('1'),
                            unit_price_per_desi=Decimal('1'),
                        )
                    ],
                ),
                category_parents={},
            )
        with self.assertRaises(ValidationFailure):
            with self.store.transaction() as db:
                catalog_service.delete_item(db, product)
        self.assertEqual(self.stock_of(product), 9)

    def test_delete_product_with_returns_is_refused(self) -> None:
        customer = self.add_counterparty('Mehmet')
        product = StockItemRef.product(self.add_product('Koyun', stock=10))
        with self.store.transaction() as db:
            return_service.create_return(
                db, ReturnInput(customer_id=customer, product_id=product.id, quantity=2, unit_price=Decimal('5'))
            )

        with self.assertRaises(ValidationFailure) as ctx:
            with self.store.transaction() as db:
                catalog_service.delete_item(db, product)

        self.assertIn('return', ctx.exception.message)
        self.assertEqual(self.count_rows(SaleReturn), 1)
        self.assertEqual(self.stock_of(product), 12)

    def test_delete_item_removes_its_movements(self) -> None:
        ref = StockItemRef.material(self.add_material('Boya', stock=5))
        with self.store.transaction() as db:
            catalog_service.delete_item(db, ref)
        self.assertEqual(self.count_rows(Material), 0)
        self.assertEqual(self.count_rows(MaterialMovement), 0)

    def test_list_items_by_category(self) -> None:
        self.add_product('Koyun', 'Siyah')
        self.add_product('Koyun', 'Taba')
        self.add_product('Keçi', 'Siyah')
        with self.store.session() as db:
            rows, total = catalog_service.list_items(db, StockItemKind.PRODUCT, category='Koyun')
            black, _ = catalog_service.list_items(db, StockItemKind.PRODUCT, search='siyah')
        self.assertEqual(total, 2)
        self.assertEqual({row.color for row in rows}, {'Siyah', 'Taba'})
        self.assertEqual(len(black), 2)


if __name__ == '__main__':
    unittest.main()
