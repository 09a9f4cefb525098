"""Match invitation route handlers."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kingofcourt.api.auth_dependencies import get_current_player
from kingofcourt.api.routes import limiter, to_http_exception
from kingofcourt.database.db import get_db_session
from kingofcourt.models.schemas import (
    InvitationCreate,
    InvitationRespond,
    InvitationRespondResponse,
    InvitationResponse,
    PendingCountResponse,
)
from kingofcourt.services import invitation_service
from kingofcourt.services.errors import CompetitionError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/invitations", response_model=InvitationResponse)
@limiter.limit("30/minute")
async def send_invitation(
    request: Request,
    payload: InvitationCreate,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Invite another player to a match."""
    try:
        return await invitation_service.send_invitation(
            session,
            player["player_id"],
            payload.receiver_player_id,
            payload.venue_id,
            payload.sport_id,
            payload.scheduled_at,
            payload.message,
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error sending invitation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error sending invitation")


@router.get("/api/invitations/pending-count", response_model=PendingCountResponse)
async def get_pending_count(
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Number of pending invitations waiting for the current player."""
    try:
        count = await invitation_service.count_pending(session, player["player_id"])
        return {"count": count}
    except Exception as e:
        logger.error(f"Error counting pending invitations: {e}")
        raise HTTPException(status_code=500, detail="Error counting pending invitations")


@router.get("/api/invitations", response_model=List[InvitationResponse])
async def list_invitations(
    direction: str = Query("received", pattern="^(sent|received)$"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """List the current player's sent or received invitations."""
    try:
        return await invitation_service.list_invitations(
            session, player["player_id"], direction, limit=limit, offset=offset
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error fetching invitations: {e}")
        raise HTTPException(status_code=500, detail="Error fetching invitations")


@router.post("/api/invitations/{invitation_id}/respond", response_model=InvitationRespondResponse)
async def respond_to_invitation(
    invitation_id: int,
    payload: InvitationRespond,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept (creates the match) or decline an invitation."""
    try:
        return await invitation_service.respond_to_invitation(
            session, invitation_id, player["player_id"], payload.accept
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error responding to invitation {invitation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error responding to invitation")


@router.delete("/api/invitations/{invitation_id}")
async def cancel_invitation(
    invitation_id: int,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel an outgoing pending invitation."""
    try:
        return await invitation_service.cancel_invitation(
            session, invitation_id, player["player_id"]
        )
    except CompetitionError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error cancelling invitation {invitation_id}: {e}")
        raise HTTPException(status_code=500, detail="Error cancelling invitation")
