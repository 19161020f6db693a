# 📂 backend/cuca/database.py — engine, sessions, transactions
# -----------------------------------------------------------------------------
# This module is responsible for:
#   • Building the async SQLAlchemy engine (PostgreSQL via asyncpg, SQLite via aiosqlite).
#   • Pool settings (pool_size, max_overflow, pre_ping) on PostgreSQL.
#   • The Database handle: session factory + transaction() scope. One handle is
#     created at startup and passed to every service and to the scheduler.
#   • Helpers: create_all / drop_all, health check, dispose.
#
# Locking:
#   • PostgreSQL — services take row locks with SELECT … FOR UPDATE
#     (select(...).with_for_update()) inside transaction().
#   • SQLite has no row locks; with_for_update() renders nothing there. Instead
#     every transaction starts with BEGIN IMMEDIATE, so a writer owns the
#     database write lock from its first statement and concurrent writers queue
#     on the busy timeout. Same serialisation guarantee, coarser grain.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings, normalize_database_url
from .models import Base

log = logging.getLogger("cuca.database")

SQLITE_BUSY_TIMEOUT_SECONDS = 30


class Database:
    """
    Persistence handle: one AsyncEngine + one session factory.
    Usage:
        async with database.transaction() as db:
            ... reads / writes, committed together or rolled back together ...
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 10,
    ) -> None:
        self.url = normalize_database_url(url)
        self.is_sqlite = self.url.startswith("sqlite")

        if self.is_sqlite:
            self.engine: AsyncEngine = create_async_engine(
                self.url,
                echo=echo,
                connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
            )
            _install_sqlite_immediate_transactions(self.engine)
        else:
            self.engine = create_async_engine(
                self.url,
                echo=echo,
                pool_pre_ping=True,   # revives connections after long idle periods
                pool_size=pool_size,
                max_overflow=max_overflow,
            )

        # autoflush=False — explicit flush control; expire_on_commit=False — objects stay readable after commit
        self._session_factory = sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.effective_database_url(),
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        "Session as a transaction": commit on normal exit, rollback on any
        exception (domain errors included), close always.
        """
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Plain session for read-only queries; nothing is committed."""
        async with self._session_factory() as session:
            yield session

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def check_connection(self) -> bool:
        """SELECT 1. True when the database answers."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            log.warning("database health check failed", exc_info=True)
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


def _install_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Takes BEGIN away from the sqlite3 driver and emits BEGIN IMMEDIATE ourselves
    (SQLAlchemy's documented recipe for pysqlite/aiosqlite transaction control).
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def on_startup_init_db(database: Database, settings: Settings) -> None:
    """
    Called from the app lifespan:
      1) creates tables when DB_CREATE_TABLES is on (local/dev);
      2) health check, raising so the platform restarts the instance on failure.
    """
    if settings.DB_CREATE_TABLES:
        await database.create_all()
    ok = await database.check_connection()
    if not ok:
        raise RuntimeError("Database connection failed during startup.")
    log.info("database ready (%s)", database.engine.url.get_backend_name())


async def on_shutdown_dispose(database: Optional[Database]) -> None:
    if database is not None:
        await database.dispose()
