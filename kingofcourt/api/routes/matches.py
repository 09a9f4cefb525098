"""1v1 match route handlers."""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kingofcourt.api.auth_dependencies import get_current_player, require_moderator
from kingofcourt.api.routes import limiter, to_http_exception
from kingofcourt.database.db import get_db_session
from kingofcourt.models.schemas import (
    ChallengeCreate,
    DisputeCreate,
    DisputeResolution,
    MatchResponse,
    RecordingSubmit,
)
from kingofcourt.services import match_service
from kingofcourt.services.errors import CompetitionError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/matches/challenge", response_model=MatchResponse)
@limiter.limit("30/minute")
async def create_challenge(
    request: Request,
    payload: ChallengeCreate,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Challenge another player to a 1v1 match."""
    try:
        return await match_service.create_challenge(
            session, player["player_id"], payload.opponent_id, payload.venue_id, payload.sport_id
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating challenge: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating challenge")


@router.get("/api/matches", response_model=List[MatchResponse])
async def list_matches(
    status: str = Query("all", pattern="^(all|active|completed|disputed)$"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get the current player's match history."""
    try:
        return await match_service.list_player_matches(
            session, player["player_id"], status_filter=status, limit=limit, offset=offset
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching matches: {e}")
        raise HTTPException(status_code=500, detail="Error fetching matches")


@router.get("/api/matches/{match_id}", response_model=MatchResponse)
async def get_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Get a single match."""
    try:
        return await match_service.get_match(session, match_id)
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching match")


@router.post("/api/matches/{match_id}/accept", response_model=MatchResponse)
async def accept_challenge(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept a challenge."""
    try:
        return await match_service.accept_challenge(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error accepting match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error accepting challenge")


@router.post("/api/matches/{match_id}/decline", response_model=MatchResponse)
async def decline_challenge(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Decline a challenge."""
    try:
        return await match_service.decline_challenge(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error declining match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error declining challenge")


@router.post("/api/matches/{match_id}/start", response_model=MatchResponse)
async def start_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Start an accepted match; the caller becomes the recorder."""
    try:
        return await match_service.start_match(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error starting match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error starting match")


@router.post("/api/matches/{match_id}/cancel-recording", response_model=MatchResponse)
async def cancel_recording(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Release the recording lock before anything was uploaded."""
    try:
        return await match_service.cancel_recording(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error cancelling recording for match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling recording")


@router.post("/api/matches/{match_id}/recording", response_model=MatchResponse)
async def submit_recording(
    match_id: int,
    payload: RecordingSubmit,
    background_tasks: BackgroundTasks,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Attach the match recording and queue it for scoring."""
    try:
        result = await match_service.submit_recording(
            session, match_id, player["player_id"], payload.media_ref
        )
        # Analysis runs in its own session and must see the uploading state
        await session.commit()
        background_tasks.add_task(match_service.run_match_analysis, match_id)
        return result
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error submitting recording for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting recording")


@router.post("/api/matches/{match_id}/agree", response_model=MatchResponse)
async def agree_to_result(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm a completed match result."""
    try:
        return await match_service.agree_to_result(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error agreeing to match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error agreeing to result")


@router.post("/api/matches/{match_id}/dispute", response_model=MatchResponse)
async def dispute_match(
    match_id: int,
    payload: DisputeCreate,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Dispute a completed match result."""
    try:
        return await match_service.dispute_match(
            session, match_id, player["player_id"], payload.reason, payload.details
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error disputing match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error disputing match")


@router.post("/api/matches/{match_id}/resolve", response_model=MatchResponse)
async def resolve_dispute(
    match_id: int,
    payload: DisputeResolution,
    moderator: dict = Depends(require_moderator),
    session: AsyncSession = Depends(get_db_session),
):
    """Close a dispute (moderators only)."""
    try:
        result = await match_service.resolve_dispute(
            session, match_id, payload.player1_score, payload.player2_score
        )
        logger.info(f"Moderator {moderator['player_id']} resolved dispute on match {match_id}")
        return result
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error resolving dispute on match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resolving dispute")


@router.post("/api/matches/{match_id}/cancel", response_model=MatchResponse)
async def cancel_match(
    match_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel an unplayed match."""
    try:
        return await match_service.cancel_match(session, match_id, player["player_id"])
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error cancelling match {match_id}: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling match")
