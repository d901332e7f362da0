from __future__ import annotations

import unittest
from decimal import Decimal

from sqlalchemy import func, select

from stock_ledger.config import Settings
from stock_ledger.db import StoreClient
from stock_ledger.models import CounterpartyType
from stock_ledger.services import catalog_service
from stock_ledger.services.inventory_service import StockItemKind, StockItemRef, get_stock
from stock_ledger.services.ledger_service import get_balances


def make_settings(**overrides) -> Settings:
    values = {
        'database_url': 'sqlite+pysqlite:///:memory:',
        'db_connect_backoff_seconds': 0,
        'db_create_tables_on_startup': True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class StoreTestCase(unittest.TestCase):
    """Each test gets its own empty in-memory store."""

    settings_overrides: dict = {}

    def setUp(self) -> None:
        self.settings = make_settings(**self.settings_overrides)
        self.store = StoreClient(self.settings)
        self.store.open()
        self.store.create_tables()
        self.addCleanup(self.store.close)

    def add_counterparty(self, name: str, kind: CounterpartyType = CounterpartyType.CUSTOMER) -> int:
        with self.store.transaction() as db:
            counterparty = catalog_service.create_counterparty(
                db, catalog_service.CounterpartyInput(name=name, type=kind)
            )
            return counterparty.id

    def add_product(self, category: str, color: str | None = None, stock: int = 0, **fields) -> int:
        with self.store.transaction() as db:
            item = catalog_service.create_item(
                db,
                StockItemKind.PRODUCT,
                catalog_service.StockItemInput(
                    name=fields.pop('name', f'{category} - {color}' if color else category),
                    category=category,
                    color=color,
                    stock_quantity=stock,
                    **fields,
                ),
            )
            return item.id

    def add_material(self, category: str, color: str | None = None, stock: int = 0, **fields) -> int:
        with self.store.transaction() as db:
            item = catalog_service.create_item(
                db,
                StockItemKind.MATERIAL,
                catalog_service.StockItemInput(
                    name=fields.pop('name', category),
                    category=category,
                    color=color,
                    stock_quantity=stock,
                    **fields,
                ),
            )
            return item.id

    def stock_of(self, ref: StockItemRef) -> int:
        with self.store.session() as db:
            return get_stock(db, ref)

    def balances_of(self, counterparty_id: int) -> dict[str, Decimal]:
        with self.store.session() as db:
            return get_balances(db, counterparty_id)

    def count_rows(self, model, *conditions) -> int:
        with self.store.session() as db:
            return db.execute(select(func.count()).select_from(model).where(*conditions)).scalar_one()
