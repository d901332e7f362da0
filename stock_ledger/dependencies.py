from fastapi import Request

from stock_ledger.db import StoreClient
from stock_ledger.ipc.registry import ChannelRegistry


def get_store(request: Request) -> StoreClient:
    return request.app.state.store


def get_registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry
