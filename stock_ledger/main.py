from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from stock_ledger.config import Settings, settings
from stock_ledger.db import StoreClient
from stock_ledger.dependencies import get_store
from stock_ledger.ipc.handlers import build_registry
from stock_ledger.logging_config import configure_logging
from stock_ledger.routers import ipc


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(app_settings.log_level, json_lines=app_settings.log_json)
        store = StoreClient(app_settings)
        store.open()
        if app_settings.db_create_tables_on_startup:
            store.create_tables()
        app.state.store = store
        app.state.registry = build_registry(store, app_settings)
        try:
            yield
        finally:
            store.close()

    app = FastAPI(title='Stock Ledger', lifespan=lifespan)
    app.include_router(ipc.router)

    @app.get('/health')
    def health(store: StoreClient = Depends(get_store)) -> dict:
        database_ok = store.ping()
        return {'status': 'ok' if database_ok else 'degraded', 'database': database_ok}

    return app


app = create_app()
