from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from stock_ledger.dependencies import get_registry
from stock_ledger.errors import UnknownChannel
from stock_ledger.ipc.registry import ChannelRegistry, failure

router = APIRouter(prefix='/ipc', tags=['ipc'])


class ChannelCall(BaseModel):
    args: list[Any] = Field(default_factory=list)


@router.get('')
def list_channels(registry: ChannelRegistry = Depends(get_registry)) -> dict:
    return {'channels': registry.names()}


@router.post('/{channel}')
async def call_channel(
    channel: str,
    call: ChannelCall | None = None,
    registry: ChannelRegistry = Depends(get_registry),
):
    if channel not in registry:
        error = UnknownChannel(channel)
        return JSONResponse(failure(error.message, error.code), status_code=404)
    args = call.args if call is not None else []
    return JSONResponse(await registry.invoke(channel, *args))
