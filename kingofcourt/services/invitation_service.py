"""
Invitation service for scheduled 1v1 match invitations.

Handles sending, accepting/declining (which spawns the match on accept),
cancelling and listing invitations.
"""

from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.exc import IntegrityError
from kingofcourt.database.models import (
    PENDING_PAIR_INDEX,
    InvitationStatus,
    MatchInvitation,
    Venue,
)
from kingofcourt.services import match_service, reference_service
from kingofcourt.services.errors import (
    DuplicatePending,
    Forbidden,
    NotFound,
    NotPending,
    PastSchedule,
    SelfInvitation,
    SportNotFound,
    ValidationError,
    VenueNotFound,
)
from kingofcourt.utils.datetime_utils import ensure_utc, isoformat_or_none, utcnow
import logging

logger = logging.getLogger(__name__)

DIRECTIONS = ("sent", "received")


async def get_pending_invitation(
    session: AsyncSession, player_id: int, other_player_id: int
) -> Optional[MatchInvitation]:
    """
    Get a pending invitation between two players (in either direction).

    Args:
        session: Database session
        player_id: One player
        other_player_id: The other player

    Returns:
        MatchInvitation or None
    """
    result = await session.execute(
        select(MatchInvitation)
        .where(
            and_(
                MatchInvitation.status == InvitationStatus.PENDING.value,
                or_(
                    and_(
                        MatchInvitation.sender_player_id == player_id,
                        MatchInvitation.receiver_player_id == other_player_id,
                    ),
                    and_(
                        MatchInvitation.sender_player_id == other_player_id,
                        MatchInvitation.receiver_player_id == player_id,
                    ),
                ),
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_invitation(session: AsyncSession, invitation_id: int) -> MatchInvitation:
    result = await session.execute(
        select(MatchInvitation).where(MatchInvitation.id == invitation_id)
    )
    invitation = result.scalar_one_or_none()
    if not invitation:
        raise NotFound("Invitation not found")
    return invitation


async def _resolve_pending(
    session: AsyncSession, invitation: MatchInvitation, new_status: InvitationStatus
) -> None:
    """
    Move a pending invitation to ``new_status`` with one conditional UPDATE.

    Raises:
        NotPending: If the invitation was no longer pending at write time
    """
    result = await session.execute(
        update(MatchInvitation)
        .where(
            MatchInvitation.id == invitation.id,
            MatchInvitation.status == InvitationStatus.PENDING.value,
        )
        .values(status=new_status.value, responded_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotPending()
    await session.refresh(invitation)


async def send_invitation(
    session: AsyncSession,
    sender_id: int,
    receiver_id: int,
    venue_id: int,
    sport_id: int,
    scheduled_at: datetime,
    message: Optional[str] = None,
) -> Dict:
    """
    Invite another player to a match at a venue and time.

    Args:
        session: Database session
        sender_id: Player sending the invitation
        receiver_id: Player being invited
        venue_id: Venue to play at
        sport_id: Sport to play
        scheduled_at: When the match is scheduled (naive values are UTC)
        message: Optional note to the receiver

    Returns:
        Dict with invitation data

    Raises:
        SelfInvitation, PastSchedule, VenueNotFound, SportNotFound,
        DuplicatePending (checked in that order). The pending-pair unique
        index also raises DuplicatePending for a send that raced past the
        check.
    """
    if sender_id == receiver_id:
        raise SelfInvitation()

    scheduled_at = ensure_utc(scheduled_at)
    if scheduled_at <= utcnow():
        raise PastSchedule()

    if not await reference_service.venue_exists(session, venue_id):
        raise VenueNotFound()
    if not await reference_service.sport_exists(session, sport_id):
        raise SportNotFound()

    existing = await get_pending_invitation(session, sender_id, receiver_id)
    if existing:
        if existing.sender_player_id == sender_id:
            raise DuplicatePending("You already have a pending invitation to this player")
        raise DuplicatePending(
            "This player already invited you. Respond to their invitation instead."
        )

    invitation = MatchInvitation(
        sender_player_id=sender_id,
        receiver_player_id=receiver_id,
        venue_id=venue_id,
        sport_id=sport_id,
        scheduled_at=scheduled_at,
        message=message,
        status=InvitationStatus.PENDING.value,
    )
    session.add(invitation)
    try:
        await session.flush()
    except IntegrityError as e:
        # A concurrent send for the same pair got in first
        if PENDING_PAIR_INDEX in str(e.orig):
            raise DuplicatePending("A pending invitation between you and this player already exists")
        raise
    await session.refresh(invitation)

    logger.info(f"Player {sender_id} invited player {receiver_id} (invitation {invitation.id})")
    return await _format_invitation(session, invitation)


async def respond_to_invitation(
    session: AsyncSession, invitation_id: int, responder_id: int, accept: bool
) -> Dict:
    """
    Accept or decline a pending invitation.

    Accepting creates the match (status ``accepted``) in the same transaction.

    Args:
        session: Database session
        invitation_id: Invitation ID
        responder_id: Player responding (must be the receiver)
        accept: True to accept, False to decline

    Returns:
        {"status": "accepted", "match_id": id} or {"status": "declined"}

    Raises:
        NotFound, Forbidden, NotPending
    """
    invitation = await _get_invitation(session, invitation_id)
    if invitation.receiver_player_id != responder_id:
        raise Forbidden("Only the invited player can respond to this invitation")

    if not accept:
        await _resolve_pending(session, invitation, InvitationStatus.DECLINED)
        logger.info(f"Invitation {invitation_id} declined by player {responder_id}")
        return {"status": InvitationStatus.DECLINED.value}

    await _resolve_pending(session, invitation, InvitationStatus.ACCEPTED)
    match = await match_service.create_match_from_invitation(session, invitation)
    logger.info(f"Invitation {invitation_id} accepted; match {match.id} created")
    return {"status": InvitationStatus.ACCEPTED.value, "match_id": match.id}


async def cancel_invitation(
    session: AsyncSession, invitation_id: int, requester_id: int
) -> Dict:
    """
    Cancel an outgoing pending invitation.

    Args:
        session: Database session
        invitation_id: Invitation ID
        requester_id: Player cancelling (must be the sender)

    Returns:
        {"success": True}

    Raises:
        NotFound, Forbidden, NotPending
    """
    invitation = await _get_invitation(session, invitation_id)
    if invitation.sender_player_id != requester_id:
        raise Forbidden("Only the sender can cancel this invitation")

    await _resolve_pending(session, invitation, InvitationStatus.CANCELLED)
    logger.info(f"Invitation {invitation_id} cancelled by player {requester_id}")
    return {"success": True}


async def list_invitations(
    session: AsyncSession,
    player_id: int,
    direction: str,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """
    Get a player's invitations, newest first.

    Args:
        session: Database session
        player_id: Player ID
        direction: "sent" or "received"
        limit: Max results
        offset: Pagination offset

    Returns:
        List of invitation dicts
    """
    if direction not in DIRECTIONS:
        raise ValidationError("Direction must be 'sent' or 'received'")

    column = (
        MatchInvitation.sender_player_id
        if direction == "sent"
        else MatchInvitation.receiver_player_id
    )
    result = await session.execute(
        select(MatchInvitation)
        .where(column == player_id)
        .order_by(MatchInvitation.created_at.desc(), MatchInvitation.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return await _format_invitations_batch(session, result.scalars().all())


async def count_pending(session: AsyncSession, player_id: int) -> int:
    """Count pending invitations received by a player."""
    result = await session.execute(
        select(func.count(MatchInvitation.id)).where(
            MatchInvitation.receiver_player_id == player_id,
            MatchInvitation.status == InvitationStatus.PENDING.value,
        )
    )
    return result.scalar() or 0


async def _format_invitations_batch(
    session: AsyncSession, invitations: List[MatchInvitation]
) -> List[Dict]:
    """
    Batch-format MatchInvitation ORM objects into response dicts.

    Fetches player and venue names in one query each instead of per invitation.
    """
    if not invitations:
        return []

    player_ids = set()
    for inv in invitations:
        player_ids.add(inv.sender_player_id)
        player_ids.add(inv.receiver_player_id)
    players = await reference_service.get_player_summaries(session, player_ids)

    venue_result = await session.execute(
        select(Venue.id, Venue.name).where(Venue.id.in_({inv.venue_id for inv in invitations}))
    )
    venue_names = {row.id: row.name for row in venue_result.all()}

    formatted = []
    for inv in invitations:
        sender = players.get(inv.sender_player_id) or reference_service.unknown_player(inv.sender_player_id)
        receiver = players.get(inv.receiver_player_id) or reference_service.unknown_player(inv.receiver_player_id)
        formatted.append({
            "id": inv.id,
            "sender": {"id": sender["id"], "name": sender["name"], "avatar": sender["avatar"]},
            "receiver": {"id": receiver["id"], "name": receiver["name"], "avatar": receiver["avatar"]},
            "venue": {"id": inv.venue_id, "name": venue_names.get(inv.venue_id, "Unknown")},
            "sport_id": inv.sport_id,
            "scheduled_at": isoformat_or_none(inv.scheduled_at),
            "status": inv.status,
            "message": inv.message,
            "created_at": isoformat_or_none(inv.created_at),
            "responded_at": isoformat_or_none(inv.responded_at),
        })
    return formatted


async def _format_invitation(session: AsyncSession, invitation: MatchInvitation) -> Dict:
    """Format a single MatchInvitation; delegates to _format_invitations_batch."""
    results = await _format_invitations_batch(session, [invitation])
    return results[0]
