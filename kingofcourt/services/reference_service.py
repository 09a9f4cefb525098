"""
Read-only lookups against reference data (venues, sports, players, cities,
countries).

Reference data is maintained elsewhere; the engine only asks whether an entity
exists and how a player is placed geographically.
"""

from typing import Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from kingofcourt.database.models import City, Country, Player, Sport, Venue


async def get_venue(session: AsyncSession, venue_id: int) -> Optional[Venue]:
    """Get a venue by ID, or None."""
    result = await session.execute(select(Venue).where(Venue.id == venue_id))
    return result.scalar_one_or_none()


async def venue_exists(session: AsyncSession, venue_id: int) -> bool:
    result = await session.execute(select(Venue.id).where(Venue.id == venue_id))
    return result.scalar_one_or_none() is not None


async def sport_exists(session: AsyncSession, sport_id: int) -> bool:
    result = await session.execute(select(Sport.id).where(Sport.id == sport_id))
    return result.scalar_one_or_none() is not None


async def get_sport_by_slug(session: AsyncSession, slug: str) -> Optional[Sport]:
    """Resolve a sport slug (e.g. "basketball") to its row."""
    result = await session.execute(select(Sport).where(Sport.slug == slug))
    return result.scalar_one_or_none()


async def player_exists(session: AsyncSession, player_id: int) -> bool:
    result = await session.execute(select(Player.id).where(Player.id == player_id))
    return result.scalar_one_or_none() is not None


async def get_player_placement(session: AsyncSession, player_id: int) -> Optional[Dict]:
    """
    Get where a player sits for crown purposes.

    Args:
        session: Database session
        player_id: Player ID

    Returns:
        Dict with age_group, city_id, city_name, country_id, country_name
        (any of which may be None), or None if the player does not exist
    """
    result = await session.execute(
        select(
            Player.id,
            Player.age_group,
            Player.city_id,
            City.name.label("city_name"),
            City.country_id,
            Country.name.label("country_name"),
        )
        .outerjoin(City, Player.city_id == City.id)
        .outerjoin(Country, City.country_id == Country.id)
        .where(Player.id == player_id)
    )
    row = result.first()
    if row is None:
        return None
    return {
        "age_group": row.age_group,
        "city_id": row.city_id,
        "city_name": row.city_name,
        "country_id": row.country_id,
        "country_name": row.country_name,
    }


async def get_player_summaries(
    session: AsyncSession, player_ids: Iterable[int]
) -> Dict[int, Dict]:
    """
    Batch-fetch display info for a set of players in one query.

    Returns:
        Dict keyed by player ID with id, name, avatar, age_group
    """
    ids = list(set(player_ids))
    if not ids:
        return {}
    result = await session.execute(
        select(Player.id, Player.full_name, Player.avatar, Player.age_group).where(
            Player.id.in_(ids)
        )
    )
    return {
        row.id: {
            "id": row.id,
            "name": row.full_name,
            "avatar": row.avatar,
            "age_group": row.age_group,
        }
        for row in result.all()
    }


def unknown_player(player_id: int) -> Dict:
    """Placeholder summary for a player that no longer resolves."""
    return {"id": player_id, "name": "Unknown", "avatar": None, "age_group": None}
