"""
Shared pytest configuration for box league tests.

Database tests run against a throwaway SQLite file per test by default. Set
TEST_DATABASE_URL to run them against PostgreSQL instead.

SAFETY: This module REFUSES to run against any database whose name does not
contain the substring "test". This prevents accidental drops of the
development or production database when environment variables are
misconfigured.
"""

import os

# Rate limiting is disabled when ENV=test; must be set before the app imports
os.environ.setdefault("ENV", "test")

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from boxleague.database.db import Base  # noqa: E402


def _resolve_test_database_url(tmp_dir) -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if the resolved URL does not point to a database
    whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        url = f"sqlite+aiosqlite:///{tmp_dir}/boxleague_test.db"

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../boxleague_test\n"
            f"{'=' * 70}"
        )

    return url


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with a fresh schema."""
    # NullPool: every session gets its own connection, so two sessions really
    # are two concurrent writers
    engine = create_async_engine(
        _resolve_test_database_url(tmp_path),
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        from boxleague.database import models  # noqa: F401

        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Monkey-patch AsyncSessionLocal so code that opens its own sessions
    # uses the test database
    from boxleague.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker):
    """A session on the fresh test database."""
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def make_league(db_session):
    """
    Factory for a league with a rated roster and a season in setup.

    Players are named p01, p02, ... with descending ratings, so p01 seeds
    into box 1.
    """
    from datetime import date, timedelta
    from boxleague.services import league_service, season_service

    async def _make(player_count=10, total_weeks=3, rules=None, court_labels=None):
        league = await league_service.create_league(db_session, "Tuesday Box League")
        for i in range(player_count):
            await league_service.add_member(
                db_session,
                league["id"],
                f"p{i + 1:02d}",
                f"Player {i + 1}",
                rating=float(100 - i),
            )
        start = date(2025, 3, 4)
        season = await season_service.create_season(
            db_session,
            league["id"],
            "Spring",
            start,
            start + timedelta(weeks=total_weeks),
            total_weeks,
            [start + timedelta(weeks=i) for i in range(total_weeks)],
            rules=rules,
            court_labels=court_labels,
        )
        return league, season

    return _make
