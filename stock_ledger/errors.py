"""Typed errors raised by the ledger and inventory services.

Every error carries a machine-readable ``code`` so the channel layer can put
it in the failure envelope without parsing messages.
"""

from __future__ import annotations


class LedgerError(Exception):
    code: str = 'LEDGER_ERROR'

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(LedgerError):
    code = 'NOT_FOUND'

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} {entity_id} not found')


class CounterpartyNotFound(NotFound):
    code = 'COUNTERPARTY_NOT_FOUND'

    def __init__(self, counterparty_id: object):
        super().__init__('Counterparty', counterparty_id)


class StockItemNotFound(NotFound):
    code = 'STOCK_ITEM_NOT_FOUND'

    def __init__(self, item_id: object):
        super().__init__('Stock item', item_id)


class ValidationFailure(LedgerError, ValueError):
    code = 'VALIDATION_FAILURE'


class InsufficientStock(LedgerError):
    code = 'INSUFFICIENT_STOCK'

    def __init__(self, item_id: int, available: int, requested: int):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(f'Insufficient stock for item {item_id}: available {available}, requested {requested}')


class MissingParentStock(LedgerError):
    code = 'MISSING_PARENT_STOCK'

    def __init__(self, category: str, parent_category: str, color: str | None):
        self.category = category
        self.parent_category = parent_category
        self.color = color
        label = f'{parent_category} - {color}' if color else parent_category
        super().__init__(f'No parent stock item "{label}" for sub-category {category}')


class TransactionFailure(LedgerError):
    code = 'TRANSACTION_FAILURE'


class TransientConnectivity(LedgerError):
    code = 'TRANSIENT_CONNECTIVITY'

    def __init__(self, attempts: int, reason: str):
        self.attempts = attempts
        super().__init__(f'Store unreachable after {attempts} attempts: {reason}')


class UnknownChannel(LedgerError):
    code = 'UNKNOWN_CHANNEL'

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f'Unknown channel {channel}')
