"""
Authentication dependencies for FastAPI routes.

Session issuance lives in the upstream auth gateway, which forwards the
authenticated player as the ``X-Player-Id`` header. These dependencies only
check that the player exists.
"""

import os
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from kingofcourt.database.db import get_db_session
from kingofcourt.database.models import Player

# Comma-separated player IDs allowed to resolve disputes
MODERATOR_PLAYER_IDS = {
    int(pid) for pid in os.getenv("MODERATOR_PLAYER_IDS", "").split(",") if pid.strip()
}


async def get_current_player(
    x_player_id: Optional[int] = Header(None),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Dependency to get the authenticated player from the gateway header.

    Returns:
        Dict with player_id and name

    Raises:
        HTTPException: 401 if the header is missing, 403 if the player is unknown
    """
    if x_player_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    result = await session.execute(
        select(Player.id, Player.full_name).where(Player.id == x_player_id)
    )
    player = result.first()
    if player is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Player profile required",
        )

    return {"player_id": player.id, "name": player.full_name}


async def require_moderator(player: dict = Depends(get_current_player)) -> dict:
    """Require a dispute moderator."""
    if player["player_id"] not in MODERATOR_PLAYER_IDS:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Moderator access required")
    return player
