"""
Shared pytest configuration for pickleball_elo tests.

Uses an in-memory SQLite database (aiosqlite) unless TEST_DATABASE_URL is set.

SAFETY: A non-SQLite TEST_DATABASE_URL is REFUSED unless the database name
contains the substring "test". This prevents dropping the development or
production schema when environment variables are misconfigured.
"""

import os

# Must be set before the API routes are imported (disables rate limiting)
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from datetime import datetime, timedelta  # noqa: E402
import pytest_asyncio  # noqa: E402
import pytz  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402
from pickleball_elo.database import db  # noqa: E402
from pickleball_elo.database.db import Base  # noqa: E402
from pickleball_elo.database.models import Game  # noqa: E402
from pickleball_elo.services import data_service  # noqa: E402


def _resolve_test_database_url() -> str:
    """Pick the test database URL with safety checks.

    Raises ``RuntimeError`` if a server database is configured whose name
    does not contain "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")
    if url.startswith("sqlite"):
        return url

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Fix: unset TEST_DATABASE_URL to use in-memory SQLite, or point it\n"
            f"  at a test database, e.g. postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a fresh schema for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (replay queue, init_defaults) must use the test engine
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker
    data_service._season_locks.clear()

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    data_service._season_locks.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Database session bound to the per-test schema."""
    async with db.AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Data builders
# ============================================================================

BASE_TIME = pytz.UTC.localize(datetime(2026, 1, 5, 18, 0, 0))


@pytest_asyncio.fixture
async def season(db_session):
    """An open-ended active season starting in 2026 with default configuration."""
    return await data_service.create_season(
        db_session,
        name="Winter 2026",
        start_date=pytz.UTC.localize(datetime(2026, 1, 1)),
        end_date=pytz.UTC.localize(datetime(2100, 1, 1)),
        is_active=True,
    )


@pytest_asyncio.fixture
async def players(db_session):
    """Six players: ids are returned in creation order."""
    names = ["Ana", "Ben", "Cora", "Dev", "Eli", "Fay"]
    created = []
    for name in names:
        player = await data_service.create_player(db_session, full_name=name)
        created.append(player.id)
    return created


async def add_game(session, season_id, team1, team2, score1, score2, minutes=0, elo_change=0):
    """Insert a game directly, bypassing admission rules."""
    game = Game(
        season_id=season_id,
        team1_player1_id=team1[0],
        team1_player2_id=team1[1],
        team2_player1_id=team2[0],
        team2_player2_id=team2[1],
        team1_score=score1,
        team2_score=score2,
        elo_change=elo_change,
        game_time=BASE_TIME + timedelta(minutes=minutes),
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    session.add(game)
    await session.commit()
    await session.refresh(game)
    return game


@pytest_asyncio.fixture
async def make_game(db_session):
    """Factory fixture: ``await make_game(season_id, team1, team2, s1, s2, minutes=...)``."""
    async def _make(season_id, team1, team2, score1, score2, minutes=0, elo_change=0):
        return await add_game(db_session, season_id, team1, team2, score1, score2, minutes, elo_change)
    return _make
