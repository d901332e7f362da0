from __future__ import annotations

import asyncio
import unittest
from unittest.mock import patch

from support import StoreTestCase

from stock_ledger.errors import ValidationFailure
from stock_ledger.ipc.handlers import build_registry
from stock_ledger.ipc.registry import ChannelRegistry, Page, Reply
from stock_ledger.models import Counterparty, StockMovement
from stock_ledger.services.inventory_service import StockItemRef


class ChannelRegistryTests(StoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.registry = ChannelRegistry(self.store, self.settings)

    def test_plain_result_is_wrapped(self) -> None:
        self.registry.add('echo:value', lambda ctx, value: {'value': value})
        self.assertEqual(self.registry.dispatch('echo:value', 3), {'success': True, 'data': {'value': 3}})

    def test_page_envelope_defaults_to_single_page(self) -> None:
        self.registry.add('rows:all', lambda ctx: Page([1, 2, 3], 3))
        self.registry.add('rows:paged', lambda ctx: Page([1], 9, 2, 1, meta={'extra': 'x'}))

        self.assertEqual(
            self.registry.dispatch('rows:all'),
            {'success': True, 'data': [1, 2, 3], 'total': 3, 'page': 1, 'limit': 3},
        )
        self.assertEqual(
            self.registry.dispatch('rows:paged'),
            {'success': True, 'data': [1], 'total': 9, 'page': 2, 'limit': 1, 'extra': 'x'},
        )

    def test_reply_carries_warning_only_when_present(self) -> None:
        self.registry.add('reply:clean', lambda ctx: Reply(True))
        self.registry.add('reply:warned', lambda ctx: Reply(True, 'cash row missing'))
        self.assertEqual(self.registry.dispatch('reply:clean'), {'success': True, 'data': True})
        self.assertEqual(
            self.registry.dispatch('reply:warned'),
            {'success': True, 'data': True, 'warning': 'cash row missing'},
        )

    def test_unknown_channel(self) -> None:
        response = self.registry.dispatch('nope:nothing')
        self.assertEqual(response['code'], 'UNKNOWN_CHANNEL')
        self.assertFalse(response['success'])

    def test_typed_error_becomes_failure_envelope(self) -> None:
        def handler(ctx):
            raise ValidationFailure('name is required')

        self.registry.add('bad:input', handler)
        with self.assertLogs('stock_ledger.ipc', level='WARNING'):
            response = self.registry.dispatch('bad:input')
        self.assertEqual(response, {'success': False, 'error': 'name is required', 'code': 'VALIDATION_FAILURE'})

    def test_unexpected_error_is_contained(self) -> None:
        def handler(ctx):
            raise KeyError('boom')

        self.registry.add('bad:bug', handler)
        with self.assertLogs('stock_ledger.ipc', level='ERROR'):
            response = self.registry.dispatch('bad:bug')
        self.assertFalse(response['success'])
        self.assertEqual(response['code'], 'INTERNAL_ERROR')

    def test_failed_handler_rolls_back_its_writes(self) -> None:
        def handler(ctx):
            ctx.session.add(Counterparty(name='Ghost'))
            ctx.session.flush()
            raise ValidationFailure('late failure')

        self.registry.add('bad:write', handler)
        self.registry.dispatch('bad:write')
        self.assertEqual(self.count_rows(Counterparty), 0)

    def test_non_transactional_channel_has_no_session(self) -> None:
        self.registry.add('raw:session', lambda ctx: ctx.session, transactional=False)
        response = self.registry.dispatch('raw:session')
        self.assertEqual(response['code'], 'INTERNAL_ERROR')

    def test_duplicate_registration_is_rejected(self) -> None:
        self.registry.add('echo:value', lambda ctx: None)
        with self.assertRaises(ValueError):
            self.registry.add('echo:value', lambda ctx: None)

    def test_invoke_runs_dispatch_off_the_event_loop(self) -> None:
        self.registry.add('echo:value', lambda ctx, value: value * 2)
        self.assertEqual(asyncio.run(self.registry.invoke('echo:value', 21)), {'success': True, 'data': 42})


class RegisteredChannelTests(StoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.registry = build_registry(self.store, self.settings)

    def test_expected_channels_are_registered(self) -> None:
        for name in (
            'db:test-connection',
            'customers:get-balances',
            'products:update-stock',
            'materials:get-all',
            'sales:getById',
            'purchases:create',
            'customer-payments:create',
            'stock-movements:get-by-product',
            'material-movements:get-by-material',
            'cash:exchange',
            'returns:create',
            'employee-payments:delete',
        ):
            with self.subTest(channel=name):
                self.assertIn(name, self.registry)

    def test_connection_check(self) -> None:
        self.assertEqual(self.registry.dispatch('db:test-connection'), {'success': True, 'data': {'connected': True}})
        with patch.object(self.store, 'ping', return_value=False):
            response = self.registry.dispatch('db:test-connection')
        self.assertEqual(response['code'], 'TRANSIENT_CONNECTIVITY')

    def test_customer_round_trip_over_channels(self) -> None:
        created = self.registry.dispatch('customers:create', {'name': 'Mehmet', 'phone': '555'})
        customer_id = created['data']['id']

        self.registry.dispatch('customers:update', customer_id, {'name': 'Mehmet Bey', 'type': 'customer'})
        fetched = self.registry.dispatch('customers:get-by-id', customer_id)
        listed = self.registry.dispatch('customers:get-all')
        balances = self.registry.dispatch('customers:get-balances', customer_id)

        self.assertEqual(fetched['data']['name'], 'Mehmet Bey')
        self.assertEqual(listed['total'], 1)
        self.assertEqual(balances['data'], {'TRY': 0.0, 'USD': 0.0, 'EUR': 0.0})
        self.assertEqual(self.registry.dispatch('customers:delete', customer_id), {'success': True, 'data': True})

    def test_sale_over_channels_substitutes_parent_stock(self) -> None:
        customer = self.add_counterparty('Mehmet')
        parent = self.add_product('Keçi', 'Siyah', stock=50)
        child = self.add_product('Keçi-Oğlak', 'Siyah')

        created = self.registry.dispatch(
            'sales:create',
            {
                'customer_id': customer,
                'currency': 'TL',
                'items': [{'product_id': child, 'quantity_pieces': 10, 'quantity_desi': 20, 'unit_price_per_desi': 5}],
            },
        )
        movements = self.registry.dispatch('stock-movements:get-by-product', parent)

        self.assertTrue(created['success'], created)
        self.assertEqual(created['data']['total_amount'], 100.0)
        self.assertEqual(created['data']['items'][0]['product_id'], child)
        self.assertEqual(movements['data'][0]['signed_quantity'], -10)
        self.assertEqual(movements['data'][0]['new_stock'], 40)

    def test_missing_parent_surfaces_code(self) -> None:
        customer = self.add_counterparty('Mehmet')
        child = self.add_product('Keçi-Palto', 'Bordo')
        response = self.registry.dispatch(
            'sales:create',
            {
                'customer_id': customer,
                'items': [{'product_id': child, 'quantity_pieces': 1, 'quantity_desi': 1, 'unit_price_per_desi': 1}],
            },
        )
        self.assertEqual(response['code'], 'MISSING_PARENT_STOCK')

    def test_manual_material_movement_channel(self) -> None:
        material = self.add_material('Boya', stock=5)
        response = self.registry.dispatch(
            'material-movements:create',
            {'material_id': material, 'movement_type': 'in', 'quantity': -2, 'notes': 'fire'},
        )
        listed = self.registry.dispatch('material-movements:get-all', 1, 10)

        self.assertEqual(response['data']['movement_type'], 'out')
        self.assertEqual(response['data']['new_stock'], 3)
        self.assertEqual(listed['total'], 2)

    def test_zero_quantity_movement_is_rejected(self) -> None:
        product = self.add_product('Koyun', stock=5)
        logged = self.count_rows(StockMovement)
        response = self.registry.dispatch(
            'stock-movements:create', {'product_id': product, 'movement_type': 'in', 'quantity': 0}
        )

        self.assertEqual(response['code'], 'VALIDATION_FAILURE')
        self.assertEqual(self.count_rows(StockMovement), logged)
        self.assertEqual(self.stock_of(StockItemRef.product(product)), 5)

    def test_non_object_payload_is_rejected(self) -> None:
        response = self.registry.dispatch('customers:create', ['Mehmet'])
        self.assertEqual(response['code'], 'VALIDATION_FAILURE')

    def test_cash_channels(self) -> None:
        self.registry.dispatch(
            'cash:create', {'type': 'in', 'amount': 1000, 'category': 'other', 'description': 'Açılış'}
        )
        exchanged = self.registry.dispatch(
            'cash:exchange', {'from_currency': 'TRY', 'to_currency': 'EUR', 'from_amount': 400, 'to_amount': 11}
        )
        balances = self.registry.dispatch('cash:balances')
        listed = self.registry.dispatch('cash:get-all', {'currency': 'TRY'})

        self.assertEqual(exchanged['data']['out']['reference_id'], exchanged['data']['in']['id'])
        self.assertEqual(balances['data'], {'TRY': 600.0, 'USD': 0.0, 'EUR': 11.0})
        self.assertEqual(listed['total'], 2)


if __name__ == '__main__':
    unittest.main()
