"""
Presence service: which players are physically at which venue.

Presence is geofence-driven. A manual check-in is allowed within
MAX_CHECK_IN_DISTANCE_M; heartbeats move a player between present and absent
with hysteresis (in at AUTO_CHECK_IN_RADIUS_M, out beyond
AUTO_CHECK_OUT_RADIUS_M). Rows older than STALE_PRESENCE_HOURS read as absent
and are deleted by the periodic sweep.

Check-in, check-out and heartbeat for one (player, venue) pair run under an
in-process asyncio.Lock and commit before the lock is released, so the next
caller decides from committed state. Across processes the heartbeat reads the
presence row FOR UPDATE (Postgres), and the unique (player_id, venue_id)
constraint plus an upsert keeps a single row per pair. These operations commit
their own transaction.
"""

import asyncio
import enum
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, and_
from kingofcourt.database.db import dialect_insert
from kingofcourt.database.models import ActivePresence, Player, Venue
from kingofcourt.services import ranking_service, reference_service
from kingofcourt.services.errors import TooFar, VenueNotFound
from kingofcourt.utils.constants import (
    AUTO_CHECK_IN_RADIUS_M,
    AUTO_CHECK_OUT_RADIUS_M,
    MAX_CHECK_IN_DISTANCE_M,
    STALE_PRESENCE_HOURS,
)
from kingofcourt.utils.datetime_utils import isoformat_or_none, utcnow
from kingofcourt.utils.geo_utils import calculate_distance_m, format_distance
import logging

logger = logging.getLogger(__name__)


class PresenceState(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"


def next_presence_state(state: PresenceState, distance_m: float) -> PresenceState:
    """
    Geofence transition for one heartbeat.

    present and farther than the check-out radius -> absent;
    absent and within the check-in radius -> present; otherwise unchanged.

    Examples:
        >>> next_presence_state(PresenceState.ABSENT, 100)
        <PresenceState.PRESENT: 'present'>
        >>> next_presence_state(PresenceState.PRESENT, 250)
        <PresenceState.PRESENT: 'present'>
        >>> next_presence_state(PresenceState.ABSENT, 250)
        <PresenceState.ABSENT: 'absent'>
    """
    if state == PresenceState.PRESENT and distance_m > AUTO_CHECK_OUT_RADIUS_M:
        return PresenceState.ABSENT
    if state == PresenceState.ABSENT and distance_m <= AUTO_CHECK_IN_RADIUS_M:
        return PresenceState.PRESENT
    return state


# Per-(player, venue) locks for in-process serialization; an entry lives only
# while some caller holds or waits on it
_presence_locks: Dict[Tuple[int, int], asyncio.Lock] = {}
_presence_lock_users: Dict[Tuple[int, int], int] = {}


@asynccontextmanager
async def _presence_lock(player_id: int, venue_id: int):
    key = (player_id, venue_id)
    lock = _presence_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _presence_locks[key] = lock
    _presence_lock_users[key] = _presence_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _presence_lock_users[key] -= 1
        if _presence_lock_users[key] == 0:
            del _presence_lock_users[key]
            del _presence_locks[key]


def _stale_cutoff(threshold_hours: float = STALE_PRESENCE_HOURS):
    return utcnow() - timedelta(hours=threshold_hours)


def _venue_distance_m(venue: Venue, latitude: float, longitude: float) -> Optional[float]:
    """Distance from a point to the venue, or None if the venue has no coordinates."""
    if venue.latitude is None or venue.longitude is None:
        return None
    return calculate_distance_m(latitude, longitude, venue.latitude, venue.longitude)


async def _require_venue(session: AsyncSession, venue_id: int) -> Venue:
    venue = await reference_service.get_venue(session, venue_id)
    if not venue:
        raise VenueNotFound()
    return venue


async def _get_fresh_presence(
    session: AsyncSession, player_id: int, venue_id: int, for_update: bool = False
) -> Optional[ActivePresence]:
    """Get the player's presence row at a venue, ignoring stale rows."""
    query = select(ActivePresence).where(
        ActivePresence.player_id == player_id,
        ActivePresence.venue_id == venue_id,
        ActivePresence.last_seen_at >= _stale_cutoff(),
    )
    if for_update:
        query = query.with_for_update()  # Waits on a concurrent writer of this row
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def _upsert_presence(
    session: AsyncSession, player_id: int, venue_id: int, latitude: float, longitude: float
) -> None:
    now = utcnow()
    stmt = dialect_insert(session, ActivePresence).values(
        player_id=player_id,
        venue_id=venue_id,
        latitude=latitude,
        longitude=longitude,
        last_seen_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["player_id", "venue_id"],
        set_={"latitude": latitude, "longitude": longitude, "last_seen_at": now},
    )
    await session.execute(stmt)


async def _enter_venue(
    session: AsyncSession, player_id: int, venue_id: int, latitude: float, longitude: float
) -> None:
    """Mark the player present here and absent everywhere else."""
    await session.execute(
        delete(ActivePresence).where(
            ActivePresence.player_id == player_id,
            ActivePresence.venue_id != venue_id,
        )
    )
    await _upsert_presence(session, player_id, venue_id, latitude, longitude)
    await session.flush()


async def _leave_venue(session: AsyncSession, player_id: int, venue_id: int) -> bool:
    result = await session.execute(
        delete(ActivePresence).where(
            ActivePresence.player_id == player_id,
            ActivePresence.venue_id == venue_id,
        )
    )
    await session.flush()
    return result.rowcount > 0


async def check_in(
    session: AsyncSession, player_id: int, venue_id: int, latitude: float, longitude: float
) -> Dict:
    """
    Manually check a player in at a venue.

    Args:
        session: Database session
        player_id: Player ID
        venue_id: Venue ID
        latitude: Player's latitude
        longitude: Player's longitude

    Returns:
        Dict with checked_in, distance_m (None if the venue has no
        coordinates), venue_name, message

    Raises:
        VenueNotFound: Unknown venue
        TooFar: Farther than MAX_CHECK_IN_DISTANCE_M from the venue
    """
    async with _presence_lock(player_id, venue_id):
        venue = await _require_venue(session, venue_id)
        distance_m = _venue_distance_m(venue, latitude, longitude)
        if distance_m is not None and distance_m > MAX_CHECK_IN_DISTANCE_M:
            raise TooFar(distance_m, MAX_CHECK_IN_DISTANCE_M)

        await _enter_venue(session, player_id, venue_id, latitude, longitude)
        await session.commit()

    logger.info(f"Player {player_id} checked in at venue {venue_id}")
    return {
        "checked_in": True,
        "distance_m": round(distance_m, 1) if distance_m is not None else None,
        "venue_name": venue.name,
        "message": f"Checked in to {venue.name}",
    }


async def check_out(session: AsyncSession, player_id: int, venue_id: int) -> Dict:
    """
    Check a player out of a venue. Idempotent.

    Returns:
        Dict with checked_in (always False) and whether a row was removed
    """
    async with _presence_lock(player_id, venue_id):
        removed = await _leave_venue(session, player_id, venue_id)
        await session.commit()
    if removed:
        logger.info(f"Player {player_id} checked out of venue {venue_id}")
    return {"checked_in": False, "removed": removed}


async def heartbeat(
    session: AsyncSession, player_id: int, venue_id: int, latitude: float, longitude: float
) -> Dict:
    """
    Process a periodic location report while a player is near a venue.

    Applies ``next_presence_state``. A player who stays present has their
    position and last_seen_at refreshed. For a venue without coordinates
    there is no geofence: a present player is refreshed, an absent one stays
    absent.

    Returns:
        Dict with action (checked_in | checked_out | refreshed | none),
        checked_in and distance_m
    """
    async with _presence_lock(player_id, venue_id):
        venue = await _require_venue(session, venue_id)
        distance_m = _venue_distance_m(venue, latitude, longitude)
        current = await _get_fresh_presence(session, player_id, venue_id, for_update=True)
        state = PresenceState.PRESENT if current else PresenceState.ABSENT
        new_state = state if distance_m is None else next_presence_state(state, distance_m)

        if state == PresenceState.ABSENT and new_state == PresenceState.PRESENT:
            await _enter_venue(session, player_id, venue_id, latitude, longitude)
            action = "checked_in"
        elif state == PresenceState.PRESENT and new_state == PresenceState.ABSENT:
            await _leave_venue(session, player_id, venue_id)
            action = "checked_out"
        elif new_state == PresenceState.PRESENT:
            await _upsert_presence(session, player_id, venue_id, latitude, longitude)
            await session.flush()
            action = "refreshed"
        else:
            action = "none"
        await session.commit()

    if action in ("checked_in", "checked_out"):
        where = f" ({format_distance(distance_m)} away)" if distance_m is not None else ""
        logger.info(f"Player {player_id} auto-{action.replace('_', '-')} at venue {venue_id}{where}")
    return {
        "action": action,
        "checked_in": new_state == PresenceState.PRESENT,
        "distance_m": round(distance_m, 1) if distance_m is not None else None,
    }


async def get_status(session: AsyncSession, player_id: int, venue_id: int) -> Dict:
    """Get whether a player is currently checked in at a venue (stale reads as absent)."""
    presence = await _get_fresh_presence(session, player_id, venue_id)
    if not presence:
        return {"is_checked_in": False, "last_seen_at": None}
    return {"is_checked_in": True, "last_seen_at": isoformat_or_none(presence.last_seen_at)}


async def list_active_at_venue(
    session: AsyncSession,
    venue_id: int,
    sport_slug: Optional[str] = None,
    viewer_latitude: Optional[float] = None,
    viewer_longitude: Optional[float] = None,
) -> List[Dict]:
    """
    Get players currently present at a venue.

    Args:
        session: Database session
        venue_id: Venue ID
        sport_slug: When given, entries carry the player's rank and king flag
            for that sport and are ordered by rank (unranked last)
        viewer_latitude: Optional viewer position for per-player distance
        viewer_longitude: Optional viewer position for per-player distance

    Returns:
        List of dicts with player id, name, avatar, last_seen_at, distance_m,
        and rank/is_king when a sport is given
    """
    result = await session.execute(
        select(
            ActivePresence.player_id,
            ActivePresence.latitude,
            ActivePresence.longitude,
            ActivePresence.last_seen_at,
            Player.full_name,
            Player.avatar,
        )
        .join(Player, Player.id == ActivePresence.player_id)
        .where(
            and_(
                ActivePresence.venue_id == venue_id,
                ActivePresence.last_seen_at >= _stale_cutoff(),
            )
        )
        .order_by(ActivePresence.last_seen_at.desc(), ActivePresence.player_id.asc())
    )
    rows = result.all()

    players = []
    for row in rows:
        distance_m = None
        if viewer_latitude is not None and viewer_longitude is not None:
            distance_m = round(
                calculate_distance_m(viewer_latitude, viewer_longitude, row.latitude, row.longitude), 1
            )
        players.append({
            "id": row.player_id,
            "name": row.full_name,
            "avatar": row.avatar,
            "last_seen_at": isoformat_or_none(row.last_seen_at),
            "distance_m": distance_m,
        })

    if not sport_slug or not players:
        return players

    sport = await reference_service.get_sport_by_slug(session, sport_slug)
    if not sport:
        for entry in players:
            entry["rank"] = None
            entry["is_king"] = False
        return players

    ranks = await ranking_service.get_ranks_for_players(
        session, [p["id"] for p in players], sport.id
    )
    for entry in players:
        entry["rank"] = ranks.get(entry["id"])
        entry["is_king"] = entry["rank"] == 1
    players.sort(key=lambda p: (p["rank"] is None, p["rank"] or 0))
    return players


async def cleanup_stale_presences(
    session: AsyncSession, threshold_hours: float = STALE_PRESENCE_HOURS
) -> int:
    """
    Delete presence rows not refreshed within ``threshold_hours``.

    Returns:
        Number of rows deleted
    """
    result = await session.execute(
        delete(ActivePresence).where(ActivePresence.last_seen_at < _stale_cutoff(threshold_hours))
    )
    await session.flush()
    return result.rowcount or 0
