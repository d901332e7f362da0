"""Named request/response channels.

Each channel is a ``"noun:action"`` name bound to a handler. ``dispatch``
runs one handler inside its own store transaction and turns the outcome into
an envelope; no exception escapes it. ``invoke`` is the awaitable entry
point used by the HTTP transport and runs ``dispatch`` on a worker thread.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from stock_ledger.config import Settings
from stock_ledger.db import StoreClient
from stock_ledger.errors import LedgerError, UnknownChannel
from stock_ledger.logging_config import get_logger

logger = get_logger('ipc')

INTERNAL_ERROR = 'INTERNAL_ERROR'


@dataclass(frozen=True)
class ChannelContext:
    store: StoreClient
    settings: Settings
    db: Session | None = None

    @property
    def session(self) -> Session:
        if self.db is None:
            raise RuntimeError('Channel runs without a transaction')
        return self.db


@dataclass(frozen=True)
class Page:
    rows: list
    total: int
    page: int | None = None
    limit: int | None = None
    meta: dict[str, Any] | None = None


@dataclass(frozen=True)
class Reply:
    """Handler result that also carries a non-fatal warning."""

    data: Any
    warning: str | None = None


@dataclass(frozen=True)
class Channel:
    name: str
    handler: Callable[..., Any]
    transactional: bool = True


def success(data: Any = None) -> dict[str, Any]:
    return {'success': True, 'data': data}


def failure(message: str, code: str) -> dict[str, Any]:
    return {'success': False, 'error': message, 'code': code}


def _envelope(result: Any) -> dict[str, Any]:
    if isinstance(result, Page):
        return {
            'success': True,
            'data': result.rows,
            'total': result.total,
            'page': result.page or 1,
            'limit': result.limit or result.total,
            **(result.meta or {}),
        }
    if isinstance(result, Reply):
        envelope = success(result.data)
        if result.warning:
            envelope['warning'] = result.warning
        return envelope
    return success(result)


class ChannelRegistry:
    def __init__(self, store: StoreClient, settings: Settings):
        self.store = store
        self.settings = settings
        self._channels: dict[str, Channel] = {}

    def add(self, name: str, handler: Callable[..., Any], *, transactional: bool = True) -> None:
        if name in self._channels:
            raise ValueError(f'Channel {name} is already registered')
        self._channels[name] = Channel(name=name, handler=handler, transactional=transactional)

    def names(self) -> list[str]:
        return sorted(self._channels)

    def __contains__(self, name: str) -> bool:
        return name in self._channels

    def _run(self, channel: Channel, args: tuple) -> Any:
        if not channel.transactional:
            return channel.handler(ChannelContext(self.store, self.settings), *args)
        with self.store.transaction() as db:
            return channel.handler(ChannelContext(self.store, self.settings, db), *args)

    def dispatch(self, name: str, *args: Any) -> dict[str, Any]:
        try:
            channel = self._channels.get(name)
            if channel is None:
                raise UnknownChannel(name)
            return _envelope(self._run(channel, args))
        except LedgerError as exc:
            logger.warning('channel_failed', extra={'channel': name, 'code': exc.code, 'error': exc.message})
            return failure(exc.message, exc.code)
        except Exception as exc:
            # Nothing crosses the channel boundary as an exception.
            logger.exception('channel_failed', extra={'channel': name, 'code': INTERNAL_ERROR})
            return failure(str(exc) or exc.__class__.__name__, INTERNAL_ERROR)

    async def invoke(self, name: str, *args: Any) -> dict[str, Any]:
        return await run_in_threadpool(self.dispatch, name, *args)
