"""Ranking, crown and competition card route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kingofcourt.api.auth_dependencies import get_current_player
from kingofcourt.api.routes import to_http_exception
from kingofcourt.database.db import get_db_session
from kingofcourt.models.schemas import (
    CompetitionCardResponse,
    CrownStatus,
    RankingsResponse,
    RankResponse,
)
from kingofcourt.services import ranking_service, reference_service
from kingofcourt.services.errors import CompetitionError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/rankings/{sport_slug}", response_model=RankingsResponse)
async def get_rankings(
    sport_slug: str,
    level: str = Query("city", pattern="^(venue|city|country)$"),
    location_id: Optional[int] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Leaderboard for a sport.

    City and country boards default to the caller's own city/country and are
    limited to the caller's age group.
    """
    try:
        age_group = None
        if level in ("city", "country"):
            placement = await reference_service.get_player_placement(session, player["player_id"])
            if placement:
                age_group = placement["age_group"]
                if location_id is None:
                    location_id = placement["city_id"] if level == "city" else placement["country_id"]
        return await ranking_service.get_rankings(
            session,
            sport_slug,
            level,
            location_id=location_id,
            age_group=age_group,
            limit=limit,
            viewer_id=player["player_id"],
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching {level} rankings for {sport_slug}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching rankings")


@router.get("/api/players/me/card/{sport_slug}", response_model=CompetitionCardResponse)
async def get_my_card(
    sport_slug: str,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Competition card for the current player."""
    try:
        return await ranking_service.get_competition_card(session, player["player_id"], sport_slug)
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching card: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching competition card")


@router.get("/api/players/{player_id}/card/{sport_slug}", response_model=CompetitionCardResponse)
async def get_player_card(
    player_id: int,
    sport_slug: str,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Competition card for any player."""
    try:
        return await ranking_service.get_competition_card(session, player_id, sport_slug)
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching card for player {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching competition card")


@router.get("/api/players/{player_id}/rank/{sport_slug}", response_model=RankResponse)
async def get_player_rank(
    player_id: int,
    sport_slug: str,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Global rank of a player for a sport (0 when unranked)."""
    try:
        sport = await reference_service.get_sport_by_slug(session, sport_slug)
        if not sport:
            return {"player_id": player_id, "sport": sport_slug, "rank": 0}
        rank = await ranking_service.get_rank(session, player_id, sport.id)
        return {"player_id": player_id, "sport": sport.slug, "rank": rank}
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching rank for player {player_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching rank")


@router.get("/api/players/{player_id}/crowns/{sport_slug}", response_model=CrownStatus)
async def get_player_crowns(
    player_id: int,
    sport_slug: str,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Crowns a player holds for a sport."""
    try:
        return await ranking_service.get_crown_status(session, player_id, sport_slug)
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching crowns for player {player_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching crowns")
