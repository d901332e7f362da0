from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy.orm import Session

from stock_ledger.config import Settings
from stock_ledger.db import StoreClient
from stock_ledger.errors import LedgerError, TransientConnectivity, ValidationFailure
from stock_ledger.ipc.registry import ChannelContext, ChannelRegistry, Page, Reply
from stock_ledger.logging_config import get_logger
from stock_ledger.services import (
    cash_service,
    catalog_service,
    employee_service,
    ledger_service,
    movement_service,
    payment_service,
    purchase_service,
    return_service,
    sales_service,
)
from stock_ledger.services.currency import parse_currency, to_money
from stock_ledger.services.inventory_service import StockItemKind, StockItemRef, get_item
from stock_ledger.services.parsing import parse_date, parse_int, parse_optional_int, parse_optional_text, parse_page
from stock_ledger.services.serializers import (
    movement_to_dict,
    purchase_to_dict,
    row_to_dict,
    rows_to_dicts,
    sale_to_dict,
    to_wire,
)

logger = get_logger('ipc.handlers')


def _payload(value: object) -> Mapping:
    if not isinstance(value, Mapping):
        raise ValidationFailure('Expected an object payload')
    return value


def _actor(ctx: ChannelContext, payload: Mapping | None = None) -> str:
    if payload:
        named = parse_optional_text(payload.get('actor', payload.get('user')))
        if named:
            return named
    return ctx.settings.system_actor


def _secondary_write(ctx: ChannelContext, write_name: str, write: Callable[[Session], Any], **fields: Any) -> str | None:
    """Run a follow-up write in its own transaction after the primary one committed.

    A failure is logged and returned as a warning; the primary commit stands.
    """
    try:
        with ctx.store.transaction() as db:
            write(db)
    except LedgerError as exc:
        logger.warning(
            'secondary_write_failed',
            extra={'write': write_name, 'code': exc.code, 'error': exc.message, **fields},
        )
        return f'{write_name} failed: {exc.message}'
    except Exception as exc:
        logger.error(
            'secondary_write_failed',
            extra={'write': write_name, 'code': 'INTERNAL_ERROR', 'error': str(exc), **fields},
            exc_info=True,
        )
        return f'{write_name} failed: {exc}'
    return None


# db


def check_connection(ctx: ChannelContext) -> dict:
    if not ctx.store.ping():
        raise TransientConnectivity(ctx.settings.db_connect_attempts, 'ping failed')
    return {'connected': True}


def create_tables(ctx: ChannelContext) -> bool:
    ctx.store.create_tables()
    return True


# customers


def create_customer(ctx: ChannelContext, payload: object) -> dict:
    data = catalog_service.parse_counterparty_input(_payload(payload))
    return row_to_dict(catalog_service.create_counterparty(ctx.session, data))


def update_customer(ctx: ChannelContext, customer_id: object, payload: object) -> dict:
    data = catalog_service.parse_counterparty_input(_payload(payload))
    counterparty = catalog_service.update_counterparty(ctx.session, parse_int(customer_id, field='id'), data)
    return row_to_dict(counterparty)


def delete_customer(ctx: ChannelContext, customer_id: object) -> bool:
    catalog_service.delete_counterparty(ctx.session, parse_int(customer_id, field='id'))
    return True


def list_customers(
    ctx: ChannelContext,
    page: object = None,
    limit: object = None,
    counterparty_type: object = None,
    search: object = None,
) -> Page:
    page_number, page_limit = parse_page(page, limit)
    kind = catalog_service.parse_counterparty_type(counterparty_type) if counterparty_type else None
    rows, total = catalog_service.list_counterparties(
        ctx.session,
        counterparty_type=kind,
        search=parse_optional_text(search),
        page=page_number,
        limit=page_limit,
    )
    return Page(rows_to_dicts(rows), total, page_number, page_limit)


def get_customer(ctx: ChannelContext, customer_id: object) -> dict:
    return row_to_dict(ledger_service.get_counterparty(ctx.session, parse_int(customer_id, field='id')))


def get_customer_balances(ctx: ChannelContext, customer_id: object) -> dict:
    return to_wire(ledger_service.get_balances(ctx.session, parse_int(customer_id, field='id')))


# products and materials


def _create_item(kind: StockItemKind) -> Callable[..., dict]:
    def handler(ctx: ChannelContext, payload: object) -> dict:
        payload = _payload(payload)
        data = catalog_service.parse_stock_item_input(payload)
        return row_to_dict(catalog_service.create_item(ctx.session, kind, data, actor=_actor(ctx, payload)))

    return handler


def _update_item(kind: StockItemKind) -> Callable[..., dict]:
    def handler(ctx: ChannelContext, item_id: object, payload: object) -> dict:
        payload = _payload(payload)
        data = catalog_service.parse_stock_item_input(payload)
        ref = StockItemRef(kind, parse_int(item_id, field='id'))
        return row_to_dict(catalog_service.update_item(ctx.session, ref, data, actor=_actor(ctx, payload)))

    return handler


def _delete_item(kind: StockItemKind) -> Callable[..., bool]:
    def handler(ctx: ChannelContext, item_id: object) -> bool:
        catalog_service.delete_item(ctx.session, StockItemRef(kind, parse_int(item_id, field='id')))
        return True

    return handler


def _list_items(kind: StockItemKind) -> Callable[..., Page]:
    def handler(
        ctx: ChannelContext,
        page: object = None,
        limit: object = None,
        category: object = None,
        search: object = None,
    ) -> Page:
        page_number, page_limit = parse_page(page, limit)
        rows, total = catalog_service.list_items(
            ctx.session,
            kind,
            category=parse_optional_text(category),
            search=parse_optional_text(search),
            page=page_number,
            limit=page_limit,
        )
        return Page(rows_to_dicts(rows), total, page_number, page_limit)

    return handler


def get_product(ctx: ChannelContext, product_id: object) -> dict:
    ref = StockItemRef.product(parse_int(product_id, field='id'))
    return row_to_dict(get_item(ctx.session, ref))


def update_product_stock(ctx: ChannelContext, product_id: object, new_stock: object) -> dict:
    ref = StockItemRef.product(parse_int(product_id, field='id'))
    item = catalog_service.update_stock(
        ctx.session,
        ref,
        parse_int(new_stock, field='new_stock'),
        actor=ctx.settings.system_actor,
    )
    return row_to_dict(item)


# sales


def create_sale(ctx: ChannelContext, payload: object) -> dict:
    payload = _payload(payload)
    data = sales_service.parse_sale_input(payload)
    sale = sales_service.create_sale(
        ctx.session,
        data,
        category_parents=ctx.settings.category_parents,
        strict_stock_mode=ctx.settings.strict_stock_mode,
        actor=_actor(ctx, payload),
    )
    return sale_to_dict(*sales_service.get_sale_detail(ctx.session, sale.id))


def delete_sale(ctx: ChannelContext, sale_id: object) -> bool:
    sales_service.delete_sale(ctx.session, parse_int(sale_id, field='id'))
    return True


def list_sales(ctx: ChannelContext, start_date: object = None, end_date: object = None) -> dict:
    result = sales_service.list_sales(
        ctx.session,
        start_date=parse_date(start_date, field='start_date'),
        end_date=parse_date(end_date, field='end_date'),
    )
    return {
        'sales': [sale_to_dict(sale, customer_name) for sale, customer_name in result['rows']],
        'totals': to_wire(result['totals']),
        'day_count': result['day_count'],
    }


def get_sale(ctx: ChannelContext, sale_id: object) -> dict:
    return sale_to_dict(*sales_service.get_sale_detail(ctx.session, parse_int(sale_id, field='id')))


# purchases


def create_purchase(ctx: ChannelContext, payload: object) -> dict:
    payload = _payload(payload)
    data = purchase_service.parse_purchase_input(payload)
    purchase = purchase_service.create_purchase(ctx.session, data, actor=_actor(ctx, payload))
    return purchase_to_dict(*purchase_service.get_purchase_detail(ctx.session, purchase.id))


def delete_purchase(ctx: ChannelContext, purchase_id: object) -> bool:
    purchase_service.delete_purchase(ctx.session, parse_int(purchase_id, field='id'))
    return True


def list_purchases(ctx: ChannelContext, page: object = None, limit: object = None, supplier_id: object = None) -> Page:
    page_number, page_limit = parse_page(page, limit)
    rows, total = purchase_service.list_purchases(
        ctx.session,
        supplier_id=parse_optional_int(supplier_id, field='supplier_id'),
        page=page_number,
        limit=page_limit,
    )
    data = [purchase_to_dict(purchase, supplier_name) for purchase, supplier_name in rows]
    return Page(data, total, page_number, page_limit)


def get_purchase(ctx: ChannelContext, purchase_id: object) -> dict:
    return purchase_to_dict(*purchase_service.get_purchase_detail(ctx.session, parse_int(purchase_id, field='id')))


# customer payments


def create_payment(ctx: ChannelContext, payload: object) -> Reply:
    payload = _payload(payload)
    data = payment_service.parse_payment_input(payload)
    actor = _actor(ctx, payload)
    with ctx.store.transaction() as db:
        payment, counterparty = payment_service.create_payment(db, data)
        result = row_to_dict(payment)
        pair_cash = payment_service.needs_cash_pairing(counterparty)

    warning = None
    if pair_cash:
        warning = _secondary_write(
            ctx,
            'supplier_payment_cash',
            lambda db: payment_service.pair_cash_transaction(db, payment, counterparty, actor=actor),
            payment_id=payment.id,
        )
    return Reply(result, warning)


def delete_payment(ctx: ChannelContext, payment_id: object) -> Reply:
    payment_id = parse_int(payment_id, field='id')
    with ctx.store.transaction() as db:
        payment_service.delete_payment(db, payment_id)

    warning = _secondary_write(
        ctx,
        'supplier_payment_cash_cleanup',
        lambda db: payment_service.delete_paired_cash(db, payment_id),
        payment_id=payment_id,
    )
    return Reply(True, warning)


def list_customer_payments(ctx: ChannelContext, customer_id: object) -> list[dict]:
    rows, _total = payment_service.list_payments(ctx.session, customer_id=parse_int(customer_id, field='customer_id'))
    return [row_to_dict(payment, customer_name=name) for payment, name in rows]


def list_payments(ctx: ChannelContext, page: object = None, limit: object = None) -> Page:
    page_number, page_limit = parse_page(page, limit)
    rows, total = payment_service.list_payments(ctx.session, page=page_number, limit=page_limit)
    return Page([row_to_dict(payment, customer_name=name) for payment, name in rows], total, page_number, page_limit)


# movements


def _create_movement(kind: StockItemKind) -> Callable[..., dict]:
    item_field = 'product_id' if kind == StockItemKind.PRODUCT else 'material_id'

    def handler(ctx: ChannelContext, payload: object) -> dict:
        payload = _payload(payload)
        ref = StockItemRef(kind, parse_int(payload.get(item_field), field=item_field))
        unit_price = payload.get('unit_price')
        total_amount = payload.get('total_amount')
        movement = movement_service.create_manual_movement(
            ctx.session,
            ref,
            movement_type=payload.get('movement_type'),
            quantity=parse_int(payload.get('quantity'), field='quantity'),
            reference_type=payload.get('reference_type') or 'manual_adjustment',
            reference_id=parse_optional_int(payload.get('reference_id'), field='reference_id'),
            counterparty_id=parse_optional_int(
                payload.get('counterparty_id', payload.get('customer_id')), field='counterparty_id'
            ),
            unit_price=to_money(unit_price, field='unit_price') if unit_price not in (None, '') else None,
            total_amount=to_money(total_amount, field='total_amount') if total_amount not in (None, '') else None,
            currency=parse_currency(payload.get('currency')),
            notes=parse_optional_text(payload.get('notes')),
            actor=_actor(ctx, payload),
        )
        return movement_to_dict(movement)

    return handler


def _list_movements(kind: StockItemKind) -> Callable[..., Page]:
    def handler(ctx: ChannelContext, page: object = None, limit: object = None) -> Page:
        page_number, page_limit = parse_page(page, limit)
        rows, total = movement_service.list_all(ctx.session, kind, page=page_number, limit=page_limit)
        return Page([movement_to_dict(row) for row in rows], total, page_number, page_limit)

    return handler


def _movements_for_item(kind: StockItemKind) -> Callable[..., list[dict]]:
    def handler(ctx: ChannelContext, item_id: object) -> list[dict]:
        ref = StockItemRef(kind, parse_int(item_id, field='id'))
        return [movement_to_dict(row) for row in movement_service.list_by_item(ctx.session, ref)]

    return handler


# cash


def create_cash(ctx: ChannelContext, payload: object) -> dict:
    data = cash_service.parse_cash_input(_payload(payload))
    return row_to_dict(cash_service.create_cash_transaction(ctx.session, data, actor=ctx.settings.system_actor))


def update_cash(ctx: ChannelContext, transaction_id: object, payload: object) -> dict:
    data = cash_service.parse_cash_input(_payload(payload))
    row = cash_service.update_cash_transaction(ctx.session, parse_int(transaction_id, field='id'), data)
    return row_to_dict(row)


def delete_cash(ctx: ChannelContext, transaction_id: object) -> bool:
    cash_service.delete_cash_transaction(ctx.session, parse_int(transaction_id, field='id'))
    return True


def list_cash(ctx: ChannelContext, filters: object = None) -> Page:
    filters = _payload(filters) if filters is not None else {}
    page_number, page_limit = parse_page(filters.get('page'), filters.get('limit'))
    currency = filters.get('currency')
    transaction_type = filters.get('type')
    rows, total = cash_service.list_cash_transactions(
        ctx.session,
        currency=parse_currency(currency) if currency else None,
        transaction_type=cash_service.parse_cash_type(transaction_type) if transaction_type else None,
        start_date=parse_date(filters.get('start_date'), field='start_date'),
        end_date=parse_date(filters.get('end_date'), field='end_date'),
        page=page_number,
        limit=page_limit,
    )
    return Page(rows_to_dicts(rows), total, page_number, page_limit)


def exchange_cash(ctx: ChannelContext, payload: object) -> dict:
    payload = _payload(payload)
    outflow, inflow = cash_service.exchange(
        ctx.session,
        from_currency=parse_currency(payload.get('from_currency')),
        to_currency=parse_currency(payload.get('to_currency')),
        from_amount=payload.get('from_amount'),
        to_amount=payload.get('to_amount'),
        description=parse_optional_text(payload.get('description')),
        actor=_actor(ctx, payload),
    )
    return {'out': row_to_dict(outflow), 'in': row_to_dict(inflow)}


def cash_balances(ctx: ChannelContext) -> dict:
    return to_wire(cash_service.cash_balances(ctx.session))


# returns


def create_return(ctx: ChannelContext, payload: object) -> dict:
    payload = _payload(payload)
    data = return_service.parse_return_input(payload)
    return row_to_dict(return_service.create_return(ctx.session, data, actor=_actor(ctx, payload)))


# employees


def create_employee(ctx: ChannelContext, payload: object) -> dict:
    data = employee_service.parse_employee_input(_payload(payload))
    return row_to_dict(employee_service.create_employee(ctx.session, data))


def update_employee(ctx: ChannelContext, employee_id: object, payload: object) -> dict:
    data = employee_service.parse_employee_input(_payload(payload))
    return row_to_dict(employee_service.update_employee(ctx.session, parse_int(employee_id, field='id'), data))


def delete_employee(ctx: ChannelContext, employee_id: object) -> bool:
    employee_service.delete_employee(ctx.session, parse_int(employee_id, field='id'))
    return True


def list_employees(
    ctx: ChannelContext,
    page: object = None,
    limit: object = None,
    status: object = None,
    search: object = None,
) -> Page:
    page_number, page_limit = parse_page(page, limit)
    rows, total, total_salary = employee_service.list_employees(
        ctx.session,
        status=employee_service.parse_status(status) if status else None,
        search=parse_optional_text(search),
        page=page_number,
        limit=page_limit,
    )
    return Page(rows_to_dicts(rows), total, page_number, page_limit, meta={'total_salary': to_wire(total_salary)})


def get_employee(ctx: ChannelContext, employee_id: object) -> dict:
    return row_to_dict(employee_service.get_employee_or_raise(ctx.session, parse_int(employee_id, field='id')))


def create_employee_payment(ctx: ChannelContext, payload: object) -> Reply:
    payload = _payload(payload)
    data = employee_service.parse_employee_payment_input(payload)
    actor = _actor(ctx, payload)
    with ctx.store.transaction() as db:
        payment, employee = employee_service.create_employee_payment(db, data)
        result = row_to_dict(payment)

    warning = _secondary_write(
        ctx,
        'employee_payment_cash',
        lambda db: employee_service.record_payment_cash(db, payment, employee, actor=actor),
        payment_id=payment.id,
    )
    return Reply(result, warning)


def delete_employee_payment(ctx: ChannelContext, payment_id: object) -> Reply:
    payment_id = parse_int(payment_id, field='id')
    with ctx.store.transaction() as db:
        payment, employee = employee_service.delete_employee_payment(db, payment_id)

    warning = _secondary_write(
        ctx,
        'employee_payment_cancel_cash',
        lambda db: employee_service.record_payment_cash(
            db, payment, employee, cancelled=True, actor=ctx.settings.system_actor
        ),
        payment_id=payment_id,
    )
    return Reply(True, warning)


def list_employee_payments(ctx: ChannelContext, employee_id: object, page: object = None, limit: object = None) -> Page:
    page_number, page_limit = parse_page(page, limit)
    rows = employee_service.list_employee_payments(ctx.session, parse_int(employee_id, field='employee_id'))
    total = len(rows)
    if page_number is not None:
        start = (page_number - 1) * page_limit
        rows = rows[start : start + page_limit]
    return Page(rows_to_dicts(rows), total, page_number, page_limit)


def register_handlers(registry: ChannelRegistry) -> ChannelRegistry:
    add = registry.add

    add('db:test-connection', check_connection, transactional=False)
    add('db:create-tables', create_tables, transactional=False)

    add('customers:create', create_customer)
    add('customers:update', update_customer)
    add('customers:delete', delete_customer)
    add('customers:get-all', list_customers)
    add('customers:get-by-id', get_customer)
    add('customers:get-balances', get_customer_balances)

    add('products:create', _create_item(StockItemKind.PRODUCT))
    add('products:update', _update_item(StockItemKind.PRODUCT))
    add('products:delete', _delete_item(StockItemKind.PRODUCT))
    add('products:get-all', _list_items(StockItemKind.PRODUCT))
    add('products:get-by-id', get_product)
    add('products:update-stock', update_product_stock)

    add('materials:create', _create_item(StockItemKind.MATERIAL))
    add('materials:update', _update_item(StockItemKind.MATERIAL))
    add('materials:delete', _delete_item(StockItemKind.MATERIAL))
    add('materials:get-all', _list_items(StockItemKind.MATERIAL))

    add('sales:create', create_sale)
    add('sales:delete', delete_sale)
    add('sales:get-all', list_sales)
    add('sales:getById', get_sale)

    add('purchases:create', create_purchase)
    add('purchases:delete', delete_purchase)
    add('purchases:get-all', list_purchases)
    add('purchases:getById', get_purchase)

    add('customer-payments:create', create_payment, transactional=False)
    add('customer-payments:delete', delete_payment, transactional=False)
    add('customer-payments:get-by-customer', list_customer_payments)
    add('customer-payments:get-all', list_payments)

    add('stock-movements:create', _create_movement(StockItemKind.PRODUCT))
    add('stock-movements:get-all', _list_movements(StockItemKind.PRODUCT))
    add('stock-movements:get-by-product', _movements_for_item(StockItemKind.PRODUCT))
    add('material-movements:create', _create_movement(StockItemKind.MATERIAL))
    add('material-movements:get-all', _list_movements(StockItemKind.MATERIAL))
    add('material-movements:get-by-material', _movements_for_item(StockItemKind.MATERIAL))

    add('cash:create', create_cash)
    add('cash:update', update_cash)
    add('cash:delete', delete_cash)
    add('cash:get-all', list_cash)
    add('cash:exchange', exchange_cash)
    add('cash:balances', cash_balances)

    add('returns:create', create_return)

    add('employees:create', create_employee)
    add('employees:update', update_employee)
    add('employees:delete', delete_employee)
    add('employees:get-all', list_employees)
    add('employees:get-by-id', get_employee)

    add('employee-payments:create', create_employee_payment, transactional=False)
    add('employee-payments:delete', delete_employee_payment, transactional=False)
    add('employee-payments:get-by-employee', list_employee_payments)
    return registry


def build_registry(store: StoreClient, settings: Settings) -> ChannelRegistry:
    return register_handlers(ChannelRegistry(store, settings))
