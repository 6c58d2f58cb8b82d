from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from expense_ledger.infrastructure.schema import metadata


class Database:
    def __init__(self, database_url: str, busy_timeout: float = 30.0) -> None:
        is_sqlite = make_url(database_url).get_backend_name() == "sqlite"
        self.engine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            # seconds a writer waits for the database lock before giving up
            connect_args={"timeout": busy_timeout} if is_sqlite else {},
        )
        if is_sqlite:
            _install_sqlite_hooks(self.engine.sync_engine)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()


def _install_sqlite_hooks(sync_engine: Any) -> None:
    # Hand transaction control to SQLAlchemy so each unit of work is one real
    # BEGIN ... COMMIT/ROLLBACK, reads included.
    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # IMMEDIATE takes the write lock up front. A deferred transaction that reads
    # first and writes later cannot wait on the busy timeout when another
    # connection is writing, and fails with "database is locked".
    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")
