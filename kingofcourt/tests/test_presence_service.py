"""
Tests for presence_service: check-in/out, geofence heartbeats, active players
and stale presence cleanup.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, func

from kingofcourt.database.models import ActivePresence
from kingofcourt.services import presence_service
from kingofcourt.services.errors import TooFar, VenueNotFound
from kingofcourt.services.presence_service import PresenceState, next_presence_state
from kingofcourt.tests.conftest import create_venue, set_stats
from kingofcourt.utils.datetime_utils import utcnow

METERS_PER_DEGREE_LAT = 111_195.0


def north_of(venue, meters):
    """A point ``meters`` due north of a venue."""
    return venue.latitude + meters / METERS_PER_DEGREE_LAT, venue.longitude


async def presence_count(session, player_id=None):
    query = select(func.count(ActivePresence.id))
    if player_id is not None:
        query = query.where(ActivePresence.player_id == player_id)
    return (await session.execute(query)).scalar()


async def add_stale_presence(session, player_id, venue, hours_ago=3):
    session.add(ActivePresence(
        player_id=player_id,
        venue_id=venue.id,
        latitude=venue.latitude,
        longitude=venue.longitude,
        last_seen_at=utcnow() - timedelta(hours=hours_ago),
    ))
    await session.flush()


# ============================================================================
# next_presence_state
# ============================================================================


@pytest.mark.parametrize(
    "state,distance,expected",
    [
        (PresenceState.ABSENT, 150, PresenceState.PRESENT),
        (PresenceState.ABSENT, 200, PresenceState.PRESENT),
        (PresenceState.ABSENT, 250, PresenceState.ABSENT),
        (PresenceState.PRESENT, 250, PresenceState.PRESENT),
        (PresenceState.PRESENT, 300, PresenceState.PRESENT),
        (PresenceState.PRESENT, 301, PresenceState.ABSENT),
    ],
)
def test_next_presence_state_hysteresis(state, distance, expected):
    assert next_presence_state(state, distance) == expected


# ============================================================================
# check_in / check_out
# ============================================================================


@pytest.mark.asyncio
async def test_check_in_within_range(db_session, world):
    venue = world["venue"]
    lat, lng = north_of(venue, 50)

    result = await presence_service.check_in(db_session, world["alice"], venue.id, lat, lng)

    assert result["checked_in"] is True
    assert result["distance_m"] == pytest.approx(50, abs=1)
    assert result["venue_name"] == "Central Court"
    assert result["message"] == "Checked in to Central Court"
    status = await presence_service.get_status(db_session, world["alice"], venue.id)
    assert status["is_checked_in"] is True
    assert status["last_seen_at"] is not None


@pytest.mark.asyncio
async def test_check_in_too_far(db_session, world):
    venue = world["venue"]
    lat, lng = north_of(venue, 650)

    with pytest.raises(TooFar) as exc_info:
        await presence_service.check_in(db_session, world["alice"], venue.id, lat, lng)

    assert exc_info.value.to_dict()["distance_m"] == pytest.approx(650, abs=2)
    assert await presence_count(db_session) == 0


@pytest.mark.asyncio
async def test_manual_check_in_allowed_outside_auto_radius(db_session, world):
    """Manual check-in reaches further than the heartbeat geofence."""
    venue = world["venue"]
    lat, lng = north_of(venue, 450)
    result = await presence_service.check_in(db_session, world["alice"], venue.id, lat, lng)
    assert result["checked_in"] is True


@pytest.mark.asyncio
async def test_check_in_unknown_venue(db_session, world):
    with pytest.raises(VenueNotFound):
        await presence_service.check_in(db_session, world["alice"], 4040, 0.0, 0.0)


@pytest.mark.asyncio
async def test_check_in_venue_without_coordinates(db_session, world):
    gym = await create_venue(db_session, name="Indoor Gym", latitude=None, longitude=None)

    result = await presence_service.check_in(db_session, world["alice"], gym.id, 10.0, 10.0)

    assert result["checked_in"] is True
    assert result["distance_m"] is None


@pytest.mark.asyncio
async def test_check_in_moves_player_between_venues(db_session, world):
    """A player is present at one venue at a time."""
    first = world["venue"]
    second = await create_venue(db_session, name="Riverside Court", latitude=first.latitude, longitude=first.longitude)

    await presence_service.check_in(db_session, world["alice"], first.id, first.latitude, first.longitude)
    await presence_service.check_in(db_session, world["alice"], second.id, second.latitude, second.longitude)

    assert (await presence_service.get_status(db_session, world["alice"], first.id))["is_checked_in"] is False
    assert (await presence_service.get_status(db_session, world["alice"], second.id))["is_checked_in"] is True
    assert await presence_count(db_session, world["alice"]) == 1


@pytest.mark.asyncio
async def test_repeated_check_in_keeps_one_row(db_session, world):
    venue = world["venue"]
    for meters in (10, 20, 30):
        lat, lng = north_of(venue, meters)
        await presence_service.check_in(db_session, world["alice"], venue.id, lat, lng)

    assert await presence_count(db_session, world["alice"]) == 1


@pytest.mark.asyncio
async def test_check_out_is_idempotent(db_session, world):
    venue = world["venue"]
    await presence_service.check_in(db_session, world["alice"], venue.id, venue.latitude, venue.longitude)

    first = await presence_service.check_out(db_session, world["alice"], venue.id)
    second = await presence_service.check_out(db_session, world["alice"], venue.id)

    assert first == {"checked_in": False, "removed": True}
    assert second == {"checked_in": False, "removed": False}


# ============================================================================
# heartbeat
# ============================================================================


@pytest.mark.asyncio
async def test_heartbeat_auto_check_in_and_out(db_session, world):
    venue = world["venue"]
    player = world["alice"]

    # Absent in the dead band: nothing happens
    result = await presence_service.heartbeat(db_session, player, venue.id, *north_of(venue, 250))
    assert result["action"] == "none"
    assert result["checked_in"] is False

    # Inside the check-in radius
    result = await presence_service.heartbeat(db_session, player, venue.id, *north_of(venue, 150))
    assert result["action"] == "checked_in"
    assert result["checked_in"] is True

    # Present in the dead band: stays present
    result = await presence_service.heartbeat(db_session, player, venue.id, *north_of(venue, 250))
    assert result["action"] == "refreshed"
    assert result["checked_in"] is True

    # Beyond the check-out radius
    result = await presence_service.heartbeat(db_session, player, venue.id, *north_of(venue, 350))
    assert result["action"] == "checked_out"
    assert result["checked_in"] is False
    assert await presence_count(db_session, player) == 0


@pytest.mark.asyncio
async def test_heartbeat_refresh_updates_position(db_session, world):
    venue = world["venue"]
    await presence_service.check_in(db_session, world["alice"], venue.id, venue.latitude, venue.longitude)
    lat, lng = north_of(venue, 100)

    await presence_service.heartbeat(db_session, world["alice"], venue.id, lat, lng)

    row = (
        await db_session.execute(
            select(ActivePresence)
            .where(ActivePresence.player_id == world["alice"])
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert row.latitude == pytest.approx(lat)


@pytest.mark.asyncio
async def test_heartbeat_stale_presence_reads_as_absent(db_session, world):
    venue = world["venue"]
    await add_stale_presence(db_session, world["alice"], venue)

    result = await presence_service.heartbeat(db_session, world["alice"], venue.id, *north_of(venue, 250))

    assert result["action"] == "none"
    assert result["checked_in"] is False


@pytest.mark.asyncio
async def test_heartbeat_venue_without_coordinates(db_session, world):
    gym = await create_venue(db_session, name="Indoor Gym", latitude=None, longitude=None)

    absent = await presence_service.heartbeat(db_session, world["alice"], gym.id, 1.0, 1.0)
    assert absent["action"] == "none"

    await presence_service.check_in(db_session, world["alice"], gym.id, 1.0, 1.0)
    present = await presence_service.heartbeat(db_session, world["alice"], gym.id, 5.0, 5.0)
    assert present["action"] == "refreshed"
    assert present["distance_m"] is None


@pytest.mark.asyncio
async def test_overlapping_heartbeats_decide_from_committed_state(session_factory, committed_world):
    """The second heartbeat sees the check-out the first one made, not the row before it."""
    venue = committed_world["venue"]
    player = committed_world["alice"]
    async with session_factory() as session:
        await presence_service.check_in(session, player, venue.id, venue.latitude, venue.longitude)

    async def beat(meters):
        async with session_factory() as session:
            return await presence_service.heartbeat(session, player, venue.id, *north_of(venue, meters))

    leaving, lingering = await asyncio.gather(beat(400), beat(250))

    assert leaving["action"] == "checked_out"
    assert lingering["action"] == "none"
    assert lingering["checked_in"] is False
    async with session_factory() as session:
        status = await presence_service.get_status(session, player, venue.id)
    assert status["is_checked_in"] is False


@pytest.mark.asyncio
async def test_presence_locks_are_released_after_use(db_session, world):
    venue = world["venue"]
    for player_id in range(1000, 1050):
        await presence_service.check_out(db_session, player_id, venue.id)
    await presence_service.check_in(db_session, world["alice"], venue.id, venue.latitude, venue.longitude)
    await presence_service.heartbeat(db_session, world["alice"], venue.id, *north_of(venue, 100))
    with pytest.raises(TooFar):
        await presence_service.check_in(db_session, world["bob"], venue.id, *north_of(venue, 5000))

    assert presence_service._presence_locks == {}
    assert presence_service._presence_lock_users == {}


@pytest.mark.asyncio
async def test_presence_lock_kept_while_a_caller_waits():
    async def hold(entered, release):
        async with presence_service._presence_lock(1, 2):
            entered.set()
            await release.wait()

    entered, release = asyncio.Event(), asyncio.Event()
    holder = asyncio.create_task(hold(entered, release))
    await entered.wait()
    waiter = asyncio.create_task(hold(asyncio.Event(), asyncio.Event()))
    await asyncio.sleep(0)

    assert presence_service._presence_lock_users[(1, 2)] == 2

    release.set()
    await holder
    assert (1, 2) in presence_service._presence_locks
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert presence_service._presence_locks == {}


# ============================================================================
# Status, active players, cleanup
# ============================================================================


@pytest.mark.asyncio
async def test_status_ignores_stale_rows(db_session, world):
    await add_stale_presence(db_session, world["alice"], world["venue"])
    status = await presence_service.get_status(db_session, world["alice"], world["venue"].id)
    assert status == {"is_checked_in": False, "last_seen_at": None}


@pytest.mark.asyncio
async def test_active_players_ranked_by_sport(db_session, world):
    venue = world["venue"]
    await set_stats(db_session, world["alice"], world["sport"].id, total_xp=300)
    await set_stats(db_session, world["bob"], world["sport"].id, total_xp=500)
    for name in ("carol", "alice", "bob"):
        await presence_service.check_in(db_session, world[name], venue.id, venue.latitude, venue.longitude)

    players = await presence_service.list_active_at_venue(db_session, venue.id, sport_slug="basketball")

    assert [p["id"] for p in players] == [world["bob"], world["alice"], world["carol"]]
    assert [p["rank"] for p in players] == [1, 2, None]
    assert [p["is_king"] for p in players] == [True, False, False]
    assert players[0]["name"] == "Bob Otieno"


@pytest.mark.asyncio
async def test_active_players_excludes_stale_and_other_venues(db_session, world):
    venue = world["venue"]
    elsewhere = await create_venue(db_session, name="Riverside Court", latitude=venue.latitude, longitude=venue.longitude)
    await presence_service.check_in(db_session, world["alice"], venue.id, venue.latitude, venue.longitude)
    await presence_service.check_in(db_session, world["bob"], elsewhere.id, venue.latitude, venue.longitude)
    await add_stale_presence(db_session, world["carol"], venue)

    players = await presence_service.list_active_at_venue(db_session, venue.id)

    assert [p["id"] for p in players] == [world["alice"]]
    assert "rank" not in players[0]
    assert players[0]["distance_m"] is None


@pytest.mark.asyncio
async def test_active_players_distance_from_viewer(db_session, world):
    venue = world["venue"]
    lat, lng = north_of(venue, 100)
    await presence_service.check_in(db_session, world["alice"], venue.id, lat, lng)

    players = await presence_service.list_active_at_venue(
        db_session, venue.id, viewer_latitude=venue.latitude, viewer_longitude=venue.longitude
    )

    assert players[0]["distance_m"] == pytest.approx(100, abs=1)


@pytest.mark.asyncio
async def test_cleanup_deletes_only_stale_rows(db_session, world):
    venue = world["venue"]
    await presence_service.check_in(db_session, world["alice"], venue.id, venue.latitude, venue.longitude)
    await add_stale_presence(db_session, world["bob"], venue)
    await add_stale_presence(db_session, world["carol"], venue, hours_ago=5)

    deleted = await presence_service.cleanup_stale_presences(db_session)

    assert deleted == 2
    assert await presence_count(db_session) == 1
