"""Store client: engine, connection pool, sessions and transactional scope.

One ``StoreClient`` is constructed by the process root (``main.py`` or a
script), opened once, and handed to whatever needs database access. There is
no module-level engine.

Connectivity failures while *acquiring* a connection are retried a bounded
number of times. Once a statement has been sent the client never retries:
a write whose outcome is unknown is surfaced to the caller instead.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.config import Settings
from stock_ledger.errors import LedgerError, TransactionFailure, TransientConnectivity
from stock_ledger.logging_config import get_logger
from stock_ledger.models import Base

logger = get_logger('db')

RETRYABLE_ERRORS = (OperationalError, DisconnectionError)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


class StoreClient:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    def __enter__(self) -> StoreClient:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError('Store client is not open')
        return self._engine

    def open(self) -> None:
        if self._engine is not None:
            return
        url = self.settings.database_url_normalized
        if self.settings.is_sqlite:
            kwargs: dict = {'connect_args': {'check_same_thread': False}}
            if ':memory:' in url or url in {'sqlite://', 'sqlite+pysqlite://'}:
                kwargs['poolclass'] = StaticPool
            engine = create_engine(url, echo=self.settings.db_echo, **kwargs)
            event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                url,
                echo=self.settings.db_echo,
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
                pool_timeout=self.settings.db_pool_timeout_seconds,
                pool_recycle=self.settings.db_pool_recycle_seconds,
                pool_pre_ping=True,
            )
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info('store_opened', extra={'dialect': engine.dialect.name})

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info('store_closed')

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.session() as db:
                db.execute(text('SELECT 1'))
        except (LedgerError, SQLAlchemyError):
            logger.warning('store_ping_failed', exc_info=True)
            return False
        return True

    def _acquire(self, db: Session) -> None:
        attempts = max(self.settings.db_connect_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                db.connection()
                return
            except RETRYABLE_ERRORS as exc:
                db.rollback()
                if attempt == attempts:
                    raise TransientConnectivity(attempts, str(getattr(exc, 'orig', None) or exc)) from exc
                logger.warning('connection_retry', extra={'attempt': attempt, 'max_attempts': attempts})
                time.sleep(self.settings.db_connect_backoff_seconds * attempt)

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise RuntimeError('Store client is not open')
        db = self._session_factory()
        try:
            self._acquire(db)
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self.session() as db:
            try:
                yield db
                db.commit()
            except LedgerError:
                db.rollback()
                logger.info('transaction_rolled_back')
                raise
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning('transaction_rolled_back', exc_info=True)
                raise TransactionFailure(str(getattr(exc, 'orig', None) or exc)) from exc
            except BaseException:
                db.rollback()
                raise

