"""Venue presence route handlers (check-in, heartbeat, active players)."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kingofcourt.api.auth_dependencies import get_current_player
from kingofcourt.api.routes import limiter, to_http_exception
from kingofcourt.database.db import get_db_session
from kingofcourt.models.schemas import (
    ActivePlayer,
    CheckInResponse,
    CheckOutResponse,
    HeartbeatResponse,
    LocationReport,
    PresenceStatusResponse,
)
from kingofcourt.services import presence_service
from kingofcourt.services.errors import CompetitionError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/venues/{venue_id}/check-in", response_model=CheckInResponse)
@limiter.limit("30/minute")
async def check_in(
    request: Request,
    venue_id: int,
    payload: LocationReport,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Check in at a venue (must be within range)."""
    try:
        return await presence_service.check_in(
            session, player["player_id"], venue_id, payload.latitude, payload.longitude
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error checking in at venue {venue_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error checking in")


@router.delete("/api/venues/{venue_id}/check-in", response_model=CheckOutResponse)
async def check_out(
    venue_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Check out of a venue."""
    try:
        return await presence_service.check_out(session, player["player_id"], venue_id)
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error checking out of venue {venue_id}: {e}")
        raise HTTPException(status_code=500, detail="Error checking out")


@router.get("/api/venues/{venue_id}/check-in", response_model=PresenceStatusResponse)
async def get_check_in_status(
    venue_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Whether the current player is checked in at a venue."""
    try:
        return await presence_service.get_status(session, player["player_id"], venue_id)
    except Exception as e:
        logger.error(f"Error fetching check-in status for venue {venue_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching check-in status")


@router.post("/api/venues/{venue_id}/heartbeat", response_model=HeartbeatResponse)
@limiter.limit("120/minute")
async def heartbeat(
    request: Request,
    venue_id: int,
    payload: LocationReport,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Periodic location report; auto check-in/out by geofence."""
    try:
        return await presence_service.heartbeat(
            session, player["player_id"], venue_id, payload.latitude, payload.longitude
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error processing heartbeat for venue {venue_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error processing heartbeat")


@router.get("/api/venues/{venue_id}/active-players", response_model=List[ActivePlayer])
async def get_active_players(
    venue_id: int,
    sport: Optional[str] = Query(None),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Players currently at a venue, ranked when a sport is given."""
    try:
        return await presence_service.list_active_at_venue(
            session, venue_id, sport_slug=sport, viewer_latitude=lat, viewer_longitude=lng
        )
    except Exception as e:
        logger.error(f"Error fetching active players for venue {venue_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching active players")
