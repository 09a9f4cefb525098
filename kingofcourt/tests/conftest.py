"""
Shared pytest configuration for engine tests.

Runs against in-memory SQLite (aiosqlite) by default. Set TEST_DATABASE_URL to
run against PostgreSQL instead.

SAFETY: a TEST_DATABASE_URL whose database name does not contain "test" is
refused, so a misconfigured environment can never drop a real database.
"""

import os

os.environ.setdefault("ENV", "test")

import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402
from kingofcourt.database.db import Base  # noqa: E402
from kingofcourt.database.models import (  # noqa: E402
    City,
    Country,
    Player,
    PlayerStats,
    Sport,
    Venue,
)

SQLITE_MEMORY_URL = "sqlite+aiosqlite:///:memory:"


def _resolve_test_database_url() -> str:
    """Pick the test database URL, refusing anything not named like a test DB."""
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return SQLITE_MEMORY_URL

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n"
            f"{'=' * 70}"
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test engine with fresh tables for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (background analysis, cleanup worker)
    # must hit the test database too
    from kingofcourt.database import db

    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Test database session; rolled back after the test."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ---------------------------------------------------------------------------
# Reference data helpers
# ---------------------------------------------------------------------------


async def create_country(session, name="Kenya", code="KE"):
    country = Country(name=name, code=code)
    session.add(country)
    await session.flush()
    return country


async def create_city(session, country_id, name="Nairobi"):
    city = City(name=name, country_id=country_id)
    session.add(city)
    await session.flush()
    return city


async def create_venue(session, name="Central Court", city_id=None, latitude=-1.2921, longitude=36.8219):
    venue = Venue(name=name, city_id=city_id, latitude=latitude, longitude=longitude)
    session.add(venue)
    await session.flush()
    return venue


async def create_sport(session, name="Basketball", slug="basketball"):
    sport = Sport(name=name, slug=slug)
    session.add(sport)
    await session.flush()
    return sport


async def create_player(session, name, city_id=None, age_group=None, gender="male"):
    player = Player(full_name=name, city_id=city_id, age_group=age_group, gender=gender)
    session.add(player)
    await session.flush()
    return player


async def set_stats(session, player_id, sport_id, **values):
    """Create a PlayerStats row with the given counters (others zero)."""
    stats = PlayerStats(
        player_id=player_id,
        sport_id=sport_id,
        total_xp=values.get("total_xp", 0),
        total_rp=values.get("total_rp", 0),
        available_rp=values.get("available_rp", 0),
        matches_played=values.get("matches_played", 0),
        matches_won=values.get("matches_won", 0),
        matches_lost=values.get("matches_lost", 0),
        challenges_completed=values.get("challenges_completed", 0),
        total_points_scored=values.get("total_points_scored", 0),
        three_point_made=values.get("three_point_made", 0),
        three_point_attempted=values.get("three_point_attempted", 0),
        free_throw_made=values.get("free_throw_made", 0),
        free_throw_attempted=values.get("free_throw_attempted", 0),
        shots_made=values.get("shots_made", 0),
        shots_attempted=values.get("shots_attempted", 0),
        users_invited=values.get("users_invited", 0),
    )
    session.add(stats)
    await session.flush()
    return stats


async def build_world(session):
    """A country, a city, a venue with coordinates, a sport and three players."""
    country = await create_country(session)
    city = await create_city(session, country.id)
    venue = await create_venue(session, city_id=city.id)
    sport = await create_sport(session)
    alice = await create_player(session, "Alice Achieng", city_id=city.id, age_group="18-30")
    bob = await create_player(session, "Bob Otieno", city_id=city.id, age_group="18-30")
    carol = await create_player(session, "Carol Wanjiru", city_id=city.id, age_group="18-30")
    return {
        "country": country,
        "city": city,
        "venue": venue,
        "sport": sport,
        "alice": alice.id,
        "bob": bob.id,
        "carol": carol.id,
    }


@pytest_asyncio.fixture
async def world(db_session):
    return await build_world(db_session)


# ---------------------------------------------------------------------------
# Concurrent requests
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Session factory where every session gets its own connection.

    The in-memory engine shares one connection between sessions, so one
    session's rollback would undo another's writes. Tests that race requests
    against each other use this instead: a file-backed SQLite database by
    default, or TEST_DATABASE_URL when it is set.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        url = f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}"
    else:
        url = TEST_DATABASE_URL
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def committed_world(session_factory):
    """The same world as ``world``, committed so every session can see it."""
    async with session_factory() as session:
        data = await build_world(session)
        await session.commit()
    return data
