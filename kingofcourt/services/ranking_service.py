"""
Ranking service: ranks, crowns, competition cards and leaderboards.

All reads, no locks. Players are ordered by total XP descending with ties
broken by player ID ascending, so "rank 1" always names exactly one player
even when XP is equal. Leaderboards display competition ranks instead
(equal XP shares a rank, see ``assign_ranks``).
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_
from kingofcourt.database.models import (
    City,
    Country,
    Match,
    MatchStatus,
    Player,
    PlayerStats,
    Venue,
)
from kingofcourt.services import reference_service
from kingofcourt.services.errors import NotFound, SportNotFound, ValidationError
from kingofcourt.services.rewards import (
    assign_ranks,
    calculate_accuracy,
    calculate_win_rate,
    calculate_xp_progress,
)
from kingofcourt.utils.constants import GLOBAL_SCOPE_NAME, TOTAL_CHALLENGES
import logging

logger = logging.getLogger(__name__)

SCOPES = ("venue", "city", "country")

# Deterministic order used for every rank/crown read
RANK_ORDER = (PlayerStats.total_xp.desc(), PlayerStats.player_id.asc())


async def get_rank(session: AsyncSession, player_id: int, sport_id: int) -> int:
    """
    Get a player's 1-based global position for a sport.

    Counts the players ahead: more XP, or equal XP and a lower player ID.

    Args:
        session: Database session
        player_id: Player ID
        sport_id: Sport ID

    Returns:
        Rank, or 0 if the player has no stats row for the sport
    """
    result = await session.execute(
        select(PlayerStats.total_xp).where(
            PlayerStats.player_id == player_id, PlayerStats.sport_id == sport_id
        )
    )
    xp = result.scalar_one_or_none()
    if xp is None:
        return 0

    ahead = await session.execute(
        select(func.count(PlayerStats.id)).where(
            PlayerStats.sport_id == sport_id,
            or_(
                PlayerStats.total_xp > xp,
                and_(PlayerStats.total_xp == xp, PlayerStats.player_id < player_id),
            ),
        )
    )
    return (ahead.scalar() or 0) + 1


async def _top_player_id(session: AsyncSession, query) -> Optional[int]:
    result = await session.execute(query.order_by(*RANK_ORDER).limit(1))
    return result.scalar_one_or_none()


async def is_king_of_scope(
    session: AsyncSession, player_id: int, sport_id: int, scope: str
) -> Dict:
    """
    Check whether a player holds the crown for a scope.

    venue: global rank 1 for the sport (no age restriction); name is "Global"
    when king. city / country: top of the players sharing the player's city
    (or country, via city) and age group; name is the city/country name.
    A player without city, country or age group holds no city/country crown.

    Args:
        session: Database session
        player_id: Player ID
        sport_id: Sport ID
        scope: "venue", "city" or "country"

    Returns:
        Dict with is_king and name
    """
    if scope not in SCOPES:
        raise ValidationError(f"Unknown scope: {scope}")

    if scope == "venue":
        top = await _top_player_id(
            session, select(PlayerStats.player_id).where(PlayerStats.sport_id == sport_id)
        )
        is_king = top == player_id
        return {"is_king": is_king, "name": GLOBAL_SCOPE_NAME if is_king else None}

    placement = await reference_service.get_player_placement(session, player_id)
    if not placement or not placement["age_group"] or not placement["city_id"]:
        return {"is_king": False, "name": None}

    query = (
        select(PlayerStats.player_id)
        .join(Player, Player.id == PlayerStats.player_id)
        .where(
            PlayerStats.sport_id == sport_id,
            Player.age_group == placement["age_group"],
        )
    )
    if scope == "city":
        query = query.where(Player.city_id == placement["city_id"])
        name = placement["city_name"]
    else:
        if not placement["country_id"]:
            return {"is_king": False, "name": None}
        query = query.join(City, City.id == Player.city_id).where(
            City.country_id == placement["country_id"]
        )
        name = placement["country_name"]

    top = await _top_player_id(session, query)
    return {"is_king": top == player_id, "name": name}


async def get_crown_status(session: AsyncSession, player_id: int, sport_slug: str) -> Dict:
    """
    Get all three crowns for a player in a sport.

    Returns:
        Dict with is_king_of_court/city/country and court/city/country names.
        All False/None for an unknown sport.
    """
    sport = await reference_service.get_sport_by_slug(session, sport_slug)
    if not sport:
        return _empty_crowns()
    return await _crowns_for_sport(session, player_id, sport.id)


async def _crowns_for_sport(session: AsyncSession, player_id: int, sport_id: int) -> Dict:
    court = await is_king_of_scope(session, player_id, sport_id, "venue")
    city = await is_king_of_scope(session, player_id, sport_id, "city")
    country = await is_king_of_scope(session, player_id, sport_id, "country")
    return {
        "is_king_of_court": court["is_king"],
        "is_king_of_city": city["is_king"],
        "is_king_of_country": country["is_king"],
        "court_name": court["name"],
        "city_name": city["name"],
        "country_name": country["name"],
    }


def _empty_crowns() -> Dict:
    return {
        "is_king_of_court": False,
        "is_king_of_city": False,
        "is_king_of_country": False,
        "court_name": None,
        "city_name": None,
        "country_name": None,
    }


def _build_card_stats(stats: Optional[PlayerStats], rank: int) -> Dict:
    """Derive the card numbers from a stats row (None reads as all zeros)."""
    xp = stats.total_xp if stats else 0
    played = stats.matches_played if stats else 0
    won = stats.matches_won if stats else 0
    progress = calculate_xp_progress(xp)
    return {
        "rank": rank,
        "xp": xp,
        "xp_progress": progress["current"],
        "xp_to_next_level": progress["to_next"],
        "rp": stats.available_rp if stats else 0,
        "total_points": stats.total_points_scored if stats else 0,
        "win_rate": calculate_win_rate(won, played),
        "matches_played": played,
        "matches_won": won,
        "matches_lost": stats.matches_lost if stats else 0,
        "challenges_completed": stats.challenges_completed if stats else 0,
        "total_challenges": TOTAL_CHALLENGES,
        "three_point_accuracy": calculate_accuracy(
            stats.three_point_made if stats else 0,
            stats.three_point_attempted if stats else 0,
        ),
        "free_throw_accuracy": calculate_accuracy(
            stats.free_throw_made if stats else 0,
            stats.free_throw_attempted if stats else 0,
        ),
        "shot_accuracy": calculate_accuracy(
            stats.shots_made if stats else 0,
            stats.shots_attempted if stats else 0,
        ),
    }


async def get_competition_card(
    session: AsyncSession, player_id: int, sport_slug: str
) -> Dict:
    """
    Get a player's competition card for a sport.

    Args:
        session: Database session
        player_id: Player ID
        sport_slug: Sport slug (e.g. "basketball")

    Returns:
        Dict with player, stats and crowns. An unknown sport, or a player who
        has never played it, yields a zeroed card.

    Raises:
        NotFound: If the player does not exist
    """
    summaries = await reference_service.get_player_summaries(session, [player_id])
    player = summaries.get(player_id)
    if not player:
        raise NotFound("Player not found")

    sport = await reference_service.get_sport_by_slug(session, sport_slug)
    if not sport:
        stats = _build_card_stats(None, 0)
        return {"player": player, "sport": sport_slug, "stats": stats, "crowns": _empty_crowns()}

    result = await session.execute(
        select(PlayerStats).where(
            PlayerStats.player_id == player_id, PlayerStats.sport_id == sport.id
        )
    )
    stats_row = result.scalar_one_or_none()
    rank = await get_rank(session, player_id, sport.id)
    return {
        "player": player,
        "sport": sport.slug,
        "stats": _build_card_stats(stats_row, rank),
        "crowns": await _crowns_for_sport(session, player_id, sport.id),
    }


async def _get_location(
    session: AsyncSession, level: str, location_id: Optional[int]
) -> Optional[Dict]:
    if location_id is None:
        return None
    model = {"venue": Venue, "city": City, "country": Country}[level]
    result = await session.execute(select(model.id, model.name).where(model.id == location_id))
    row = result.first()
    if row is None:
        raise NotFound(f"{level.capitalize()} not found")
    return {"id": row.id, "name": row.name}


async def get_rankings(
    session: AsyncSession,
    sport_slug: str,
    level: str,
    location_id: Optional[int] = None,
    age_group: Optional[str] = None,
    limit: int = 10,
    viewer_id: Optional[int] = None,
) -> Dict:
    """
    Get a leaderboard for a sport.

    venue: players who have completed a match at the venue (no venue given
    means everyone with stats). city / country: players placed in the city
    or country. ``age_group`` narrows any level.

    Args:
        session: Database session
        sport_slug: Sport slug
        level: "venue", "city" or "country"
        location_id: Venue, city or country ID for the level
        age_group: Optional age group filter
        limit: Max ranked players returned
        viewer_id: Optional player whose own row is returned as current_user

    Returns:
        Dict with level, sport, location, king, rankings, current_user,
        total_players

    Raises:
        ValidationError: Unknown level, or city/country without a location
        SportNotFound: Unknown sport slug
        NotFound: Unknown location
    """
    if level not in SCOPES:
        raise ValidationError(f"Unknown ranking level: {level}")
    if level in ("city", "country") and location_id is None:
        raise ValidationError(f"A {level} is required for {level} rankings")

    sport = await reference_service.get_sport_by_slug(session, sport_slug)
    if not sport:
        raise SportNotFound()
    location = await _get_location(session, level, location_id)

    query = (
        select(
            Player.id,
            Player.full_name,
            Player.avatar,
            Player.gender,
            PlayerStats.total_xp.label("xp"),
        )
        .join(PlayerStats, PlayerStats.player_id == Player.id)
        .where(PlayerStats.sport_id == sport.id)
    )
    if level == "venue" and location_id is not None:
        completed_here = and_(
            Match.venue_id == location_id,
            Match.sport_id == sport.id,
            Match.status == MatchStatus.COMPLETED.value,
        )
        query = query.where(
            or_(
                Player.id.in_(select(Match.player1_id).where(completed_here)),
                Player.id.in_(select(Match.player2_id).where(completed_here)),
            )
        )
    elif level == "city":
        query = query.where(Player.city_id == location_id)
    elif level == "country":
        query = query.join(City, City.id == Player.city_id).where(City.country_id == location_id)
    if age_group:
        query = query.where(Player.age_group == age_group)

    result = await session.execute(query.order_by(PlayerStats.total_xp.desc(), Player.id.asc()))
    ranked = assign_ranks(
        [
            {
                "id": row.id,
                "name": row.full_name,
                "avatar": row.avatar,
                "gender": row.gender,
                "xp": row.xp,
            }
            for row in result.all()
        ]
    )
    for index, entry in enumerate(ranked):
        entry["is_king"] = index == 0

    current_user = None
    if viewer_id is not None:
        current_user = next((p for p in ranked if p["id"] == viewer_id), None)

    return {
        "level": level,
        "sport": sport.slug,
        "location": location,
        "king": ranked[0] if ranked else None,
        "rankings": ranked[:limit],
        "current_user": current_user,
        "total_players": len(ranked),
    }


async def get_ranks_for_players(
    session: AsyncSession, player_ids: List[int], sport_id: int
) -> Dict[int, int]:
    """
    Get global ranks for a set of players in one pass.

    Returns:
        Dict of player ID -> rank (players without stats are omitted)
    """
    if not player_ids:
        return {}
    result = await session.execute(
        select(PlayerStats.player_id).where(PlayerStats.sport_id == sport_id).order_by(*RANK_ORDER)
    )
    wanted = set(player_ids)
    ranks = {}
    for position, pid in enumerate(result.scalars().all(), start=1):
        if pid in wanted:
            ranks[pid] = position
    return ranks
