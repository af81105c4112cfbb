"""
Pytest fixtures for PaperTrail tests.

Tests run against ``PAPERTRAIL_TEST_DATABASE_URL`` when set, otherwise
against a throwaway SQLite file per test.
"""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import pytest
from sqlalchemy import BigInteger, DateTime, Integer, String, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from papertrail import PaperTrail, PaperTrailSettings
from papertrail.db import build_engine, build_session_factory, init_db
from papertrail.observability import metrics
from papertrail.utils.time import utc_now


def _ensure_test_database_url(database_url: str) -> None:
    if "test" not in database_url:
        raise RuntimeError(
            "Refusing to run PaperTrail tests against a non-test database. "
            "Set PAPERTRAIL_TEST_DATABASE_URL to a dedicated test database."
        )


def define_models(base: type) -> tuple[type, type]:
    """Tracked models used across the suite, mapped on ``base``."""

    class Person(base):
        __tablename__ = "people"

        id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
        name: Mapped[str] = mapped_column(String(100), nullable=False)
        age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
        email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
        created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
        updated_at: Mapped[Optional[datetime]] = mapped_column(
            DateTime(timezone=True), nullable=True, onupdate=utc_now
        )
        revision: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, default=0)

    # No revision column: registration adds it
    class Tag(base):
        __tablename__ = "tags"

        id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
        label: Mapped[str] = mapped_column(String(50), nullable=False)

    return Person, Tag


@dataclass
class TrailHarness:
    """A PaperTrail engine wired to a fresh schema."""

    trail: PaperTrail
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    person: type
    tag: type

    @property
    def config(self) -> PaperTrailSettings:
        return self.trail.config

    @property
    def revision_model(self) -> type:
        return self.trail.tables.revision

    @property
    def revision_change_model(self) -> Optional[type]:
        return self.trail.tables.revision_change

    async def revisions(self, model: Optional[str] = None, document_id: Any = None) -> list[Any]:
        """All revision rows, oldest first."""
        revision = self.revision_model
        stmt = select(revision).order_by(revision.id)
        if model is not None:
            stmt = stmt.where(revision.model == model)
        if document_id is not None:
            stmt = stmt.where(revision.document_id == document_id)
        async with self.session_factory() as session:
            return list((await session.execute(stmt)).scalars())

    async def changes(self) -> list[Any]:
        """All revision change rows, oldest first."""
        change = self.revision_change_model
        async with self.session_factory() as session:
            return list((await session.execute(select(change).order_by(change.id))).scalars())


@pytest.fixture
def database_url(tmp_path) -> str:
    url = os.getenv("PAPERTRAIL_TEST_DATABASE_URL")
    if url:
        _ensure_test_database_url(url)
        return url
    return f"sqlite+aiosqlite:///{tmp_path / 'papertrail_test.db'}"


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
async def make_trail(database_url):
    """Factory building a harness for a given set of settings overrides."""
    engines: list[AsyncEngine] = []

    async def factory(**overrides: Any) -> TrailHarness:
        config = PaperTrailSettings(database_url=database_url, **overrides)

        class Base(DeclarativeBase):
            pass

        person, tag = define_models(Base)
        trail = PaperTrail(config=config, base=Base)
        trail.define_models()
        trail.register(person)
        trail.register(tag)

        engine = build_engine(config=config)
        engines.append(engine)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await init_db(engine, Base)

        return TrailHarness(
            trail=trail,
            engine=engine,
            session_factory=build_session_factory(engine),
            person=person,
            tag=tag,
        )

    yield factory

    for engine in engines:
        await engine.dispose()


@pytest.fixture
async def harness(make_trail) -> TrailHarness:
    """Harness with default settings."""
    return await make_trail()
