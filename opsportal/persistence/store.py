from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from opsportal.core.config import Settings, get_settings
from opsportal.core.errors import ConflictError, UnavailableError
from opsportal.domain.models import Base


logger = logging.getLogger(__name__)


def _engine_kwargs(database_url: str, settings: Settings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.db_echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": settings.sqlite_busy_timeout_s}
        return kwargs
    # Configure bounded asyncpg pools for predictable latency under load.
    kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    kwargs["pool_timeout"] = 30
    kwargs["pool_recycle"] = 1800
    if settings.db_statement_timeout_ms > 0:
        kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
        }
    return kwargs


def _install_sqlite_write_lock(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN; take the write lock up front so read-then-write
    # transactions serialize the way SELECT ... FOR UPDATE does on Postgres.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class DirectoryStore:
    """Process-wide handle over the directory database.

    Create one per process (or per test), inject it into the governance components,
    and call ``dispose`` on shutdown. ``transaction`` is the only write path: the
    whole block commits or nothing does.
    """

    def __init__(self, database_url: str | None = None, *, settings: Settings | None = None) -> None:
        resolved_settings = settings or get_settings()
        self.database_url = database_url or resolved_settings.database_url
        self.engine = create_async_engine(
            self.database_url, **_engine_kwargs(self.database_url, resolved_settings)
        )
        if self.database_url.startswith("sqlite"):
            _install_sqlite_write_lock(self.engine)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        # Read scope; callers that write must use transaction() instead.
        async with self._sessionmaker() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                logger.warning("store_read_failed error=%s", type(exc).__name__)
                raise UnavailableError("Directory store unavailable") from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    yield session
            except IntegrityError as exc:
                # Constraint violations that slipped past the engine checks are races on
                # unique keys; report them as conflicts rather than outages.
                logger.info("store_integrity_conflict error=%s", exc.orig)
                raise ConflictError("Conflicting concurrent write", code="WRITE_CONFLICT") from exc
            except SQLAlchemyError as exc:
                logger.warning("store_transaction_failed error=%s", type(exc).__name__)
                raise UnavailableError("Directory store unavailable") from exc

    async def create_schema(self) -> None:
        # Used by tests and local bootstrap; production schemas come from Alembic.
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    def pool_stats(self) -> dict[str, int | None]:
        # Expose DB pool counters for ops visibility without querying Postgres internals.
        pool = self.engine.sync_engine.pool
        checked_out_fn = getattr(pool, "checkedout", None)
        checked_in_fn = getattr(pool, "checkedin", None)
        overflow_fn = getattr(pool, "overflow", None)
        size_fn = getattr(pool, "size", None)
        return {
            "size": int(size_fn()) if callable(size_fn) else None,
            "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
            "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
            "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
        }
