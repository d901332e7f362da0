import argparse

from sqlalchemy import select

from stock_ledger.config import Settings, settings
from stock_ledger.db import StoreClient
from stock_ledger.models import Counterparty, CounterpartyType, Material, Product
from stock_ledger.services import catalog_service
from stock_ledger.services.inventory_service import StockItemKind


def _ensure_counterparty(db, name: str, kind: CounterpartyType) -> Counterparty:
    counterparty = db.execute(select(Counterparty).where(Counterparty.name == name)).scalar_one_or_none()
    if not counterparty:
        counterparty = catalog_service.create_counterparty(
            db, catalog_service.CounterpartyInput(name=name, type=kind)
        )
    return counterparty


def _ensure_item(db, kind: StockItemKind, data: catalog_service.StockItemInput, actor: str):
    model = Product if kind == StockItemKind.PRODUCT else Material
    query = select(model).where(model.category == data.category)
    query = query.where(model.color == data.color) if data.color else query.where(model.color.is_(None))
    item = db.execute(query).scalars().first()
    if not item:
        item = catalog_service.create_item(db, kind, data, actor=actor)
    return item


def seed(store: StoreClient, *, actor: str = 'System') -> None:
    store.create_tables()
    with store.transaction() as db:
        _ensure_counterparty(db, 'Demo Customer', CounterpartyType.CUSTOMER)
        supplier = _ensure_counterparty(db, 'Demo Tannery', CounterpartyType.SUPPLIER)

        for color in ('Siyah', 'Taba'):
            _ensure_item(
                db,
                StockItemKind.PRODUCT,
                catalog_service.StockItemInput(name=f'Keçi - {color}', category='Keçi', color=color, stock_quantity=100),
                actor,
            )
            _ensure_item(
                db,
                StockItemKind.PRODUCT,
                catalog_service.StockItemInput(name=f'Keçi-Oğlak - {color}', category='Keçi-Oğlak', color=color),
                actor,
            )
        _ensure_item(
            db,
            StockItemKind.PRODUCT,
            catalog_service.StockItemInput(name='Koyun', category='Koyun', stock_quantity=40),
            actor,
        )
        _ensure_item(
            db,
            StockItemKind.MATERIAL,
            catalog_service.StockItemInput(
                name='Boya - Siyah',
                category='Boya',
                color='Siyah',
                unit='kg',
                supplier_id=supplier.id,
            ),
            actor,
        )


def main() -> None:
    parser = argparse.ArgumentParser(description='Create tables and insert demo customers, suppliers and stock.')
    parser.add_argument('--database-url', help='Override DATABASE_URL for this run.')
    args = parser.parse_args()

    run_settings = Settings(database_url=args.database_url) if args.database_url else settings
    with StoreClient(run_settings) as store:
        seed(store, actor=run_settings.system_actor)
    print('Seed data inserted/verified.')


if __name__ == '__main__':
    main()
