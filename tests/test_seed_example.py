from __future__ import annotations

import unittest

from sqlalchemy import select
from support import StoreTestCase

from stock_ledger.ipc.handlers import build_registry
from stock_ledger.models import Counterparty, Material, MaterialMovement, Product, StockMovement
from stock_ledger.seed_example import seed


class SeedExampleTests(StoreTestCase):
    def test_seed_is_idempotent(self) -> None:
        seed(self.store)
        seed(self.store)

        self.assertEqual(self.count_rows(Counterparty), 2)
        self.assertEqual(self.count_rows(Product), 5)
        self.assertEqual(self.count_rows(Material), 1)
        self.assertEqual(self.count_rows(StockMovement, StockMovement.reference_type == 'initial_stock'), 3)
        self.assertEqual(self.count_rows(MaterialMovement), 0)

    def test_seeded_sub_category_sells_from_parent(self) -> None:
        seed(self.store)
        with self.store.session() as db:
            customer = db.execute(select(Counterparty.id).where(Counterparty.name == 'Demo Customer')).scalar_one()
            kid = db.execute(
                select(Product.id).where(Product.category == 'Keçi-Oğlak', Product.color == 'Taba')
            ).scalar_one()
            parent = db.execute(
                select(Product).where(Product.category == 'Keçi', Product.color == 'Taba')
            ).scalar_one()

        response = build_registry(self.store, self.settings).dispatch(
            'sales:create',
            {
                'customer_id': customer,
                'items': [{'product_id': kid, 'quantity_pieces': 4, 'quantity_desi': 8, 'unit_price_per_desi': 50}],
            },
        )

        self.assertTrue(response['success'], response)
        with self.store.session() as db:
            self.assertEqual(db.get(Product, parent.id).stock_quantity, 96)
            self.assertEqual(db.get(Product, kid).stock_quantity, 0)


if __name__ == '__main__':
    unittest.main()
