"""Database engine and session helpers."""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from papertrail.config import PaperTrailSettings, settings as default_settings
from papertrail.observability.metrics import metrics


class Base(DeclarativeBase):
    """Default declarative base for revision tables."""

    pass


def _statement_started(conn, cursor, statement, parameters, context, executemany):
    if context is not None:
        context.papertrail_started = time.perf_counter()


def _statement_finished(conn, cursor, statement, parameters, context, executemany):
    started_at = getattr(context, "papertrail_started", None)
    metrics.inc_counter("papertrail.db.queries")
    if started_at is not None:
        metrics.observe("papertrail.db.query_ms", (time.perf_counter() - started_at) * 1000.0)


def _attach_query_metrics(target_engine: AsyncEngine) -> None:
    """Count statements and time them per execution context."""
    sync_engine = target_engine.sync_engine
    if event.contains(sync_engine, "before_cursor_execute", _statement_started):
        return
    event.listen(sync_engine, "before_cursor_execute", _statement_started)
    event.listen(sync_engine, "after_cursor_execute", _statement_finished)


def _enable_sqlite_savepoints(target_engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT works."""
    sync_engine = target_engine.sync_engine

    @event.listens_for(sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(
    database_url: Optional[str] = None,
    config: Optional[PaperTrailSettings] = None,
    **kwargs,
) -> AsyncEngine:
    """Create an async engine with query metrics attached."""
    config = config or default_settings
    url = database_url or config.database_url
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_async_engine(url, echo=config.debug, **kwargs)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    _attach_query_metrics(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine, base: type[DeclarativeBase] = Base) -> None:
    """Create tables for every model on ``base``."""
    async with engine.begin() as conn:
        await conn.run_sync(base.metadata.create_all)


@asynccontextmanager
async def get_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
