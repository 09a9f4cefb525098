"""
Match lifecycle service for 1v1 matches.

Owns the match state machine:

    pending -> accepted -> in_progress -> uploading -> analyzing -> completed | disputed
    disputed -> completed                      (moderation)
    pending | accepted | in_progress -> cancelled

Every transition is a single conditional UPDATE keyed on the expected source
status. Zero affected rows means the match was not in that status when the
write happened (including losing a race to a concurrent caller), which is
reported as InvalidState; a previous read is never trusted.

Completing a match credits PlayerStats for both players in the same
transaction as the status change.
"""

from typing import Dict, Iterable, List, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_
from kingofcourt.database import db
from kingofcourt.database.db import dialect_insert
from kingofcourt.database.models import (
    ACTIVE_MATCH_STATUSES,
    CANCELLABLE_MATCH_STATUSES,
    Match,
    MatchInvitation,
    MatchStatus,
    PlayerStats,
    Sport,
    Venue,
)
from kingofcourt.services import reference_service, scoring_oracle
from kingofcourt.services.errors import (
    DuplicatePending,
    Forbidden,
    InvalidState,
    NotFound,
    SportNotFound,
    ValidationError,
    VenueNotFound,
)
from kingofcourt.services.rewards import calculate_rewards, determine_winner
from kingofcourt.utils.constants import LOSER_XP
from kingofcourt.utils.datetime_utils import isoformat_or_none, utcnow
import logging

logger = logging.getLogger(__name__)

ANALYSIS_FAILED_REASON = "analysis_failed"

MATCH_FILTERS = {
    "all": None,
    "active": ACTIVE_MATCH_STATUSES,
    "completed": (MatchStatus.COMPLETED.value,),
    "disputed": (MatchStatus.DISPUTED.value,),
}


# ============================================================================
# Helpers
# ============================================================================


async def get_match_row(session: AsyncSession, match_id: int) -> Match:
    """
    Load a match or raise NotFound.

    Args:
        session: Database session
        match_id: Match ID

    Returns:
        Match ORM object
    """
    result = await session.execute(select(Match).where(Match.id == match_id))
    match = result.scalar_one_or_none()
    if not match:
        raise NotFound("Match not found")
    return match


def _require_participant(match: Match, actor_id: int) -> None:
    if not match.is_participant(actor_id):
        raise Forbidden("You are not a participant in this match")


async def _transition(
    session: AsyncSession,
    match: Match,
    from_statuses: Sequence[str],
    values: Dict,
    extra_conditions: Iterable = (),
) -> None:
    """
    Apply a conditional status transition and reload the match.

    Raises:
        InvalidState: If no row matched (wrong source state or lost race)
    """
    result = await session.execute(
        update(Match)
        .where(Match.id == match.id, Match.status.in_(list(from_statuses)), *extra_conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = await session.execute(select(Match.status).where(Match.id == match.id))
        raise InvalidState(from_statuses, current.scalar_one_or_none())
    await session.refresh(match)


async def _credit_player_stats(
    session: AsyncSession,
    player_id: int,
    sport_id: int,
    xp: int,
    rp: int = 0,
    won: bool = False,
    lost: bool = False,
    points: int = 0,
    shots_made: int = 0,
    shots_attempted: int = 0,
) -> None:
    """
    Add one match worth of results to a player's stats row.

    Creates the row if the player has never played this sport, then applies
    SQL-side increments so concurrent completions never lose an update.
    """
    ensure_row = dialect_insert(session, PlayerStats).values(
        player_id=player_id,
        sport_id=sport_id,
        total_xp=0,
        total_rp=0,
        available_rp=0,
        matches_played=0,
        matches_won=0,
        matches_lost=0,
        challenges_completed=0,
        total_points_scored=0,
        three_point_made=0,
        three_point_attempted=0,
        free_throw_made=0,
        free_throw_attempted=0,
        shots_made=0,
        shots_attempted=0,
        users_invited=0,
    ).on_conflict_do_nothing(index_elements=["player_id", "sport_id"])
    await session.execute(ensure_row)

    await session.execute(
        update(PlayerStats)
        .where(PlayerStats.player_id == player_id, PlayerStats.sport_id == sport_id)
        .values(
            total_xp=PlayerStats.total_xp + xp,
            total_rp=PlayerStats.total_rp + rp,
            available_rp=PlayerStats.available_rp + rp,
            matches_played=PlayerStats.matches_played + 1,
            matches_won=PlayerStats.matches_won + (1 if won else 0),
            matches_lost=PlayerStats.matches_lost + (1 if lost else 0),
            total_points_scored=PlayerStats.total_points_scored + points,
            shots_made=PlayerStats.shots_made + shots_made,
            shots_attempted=PlayerStats.shots_attempted + shots_attempted,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )


async def _credit_match_rewards(session: AsyncSession, match: Match) -> None:
    """Credit both players for a scored match (winner/loser or tie)."""
    shots = {
        match.player1_id: (match.player1_shots_made or 0, match.player1_shots_attempted or 0),
        match.player2_id: (match.player2_shots_made or 0, match.player2_shots_attempted or 0),
    }
    points = {
        match.player1_id: match.player1_score or 0,
        match.player2_id: match.player2_score or 0,
    }

    if match.winner_id is None:
        for player_id in (match.player1_id, match.player2_id):
            await _credit_player_stats(
                session,
                player_id,
                match.sport_id,
                xp=match.loser_xp or LOSER_XP,
                points=points[player_id],
                shots_made=shots[player_id][0],
                shots_attempted=shots[player_id][1],
            )
        return

    loser_id = match.opponent_of(match.winner_id)
    await _credit_player_stats(
        session,
        match.winner_id,
        match.sport_id,
        xp=match.winner_xp or 0,
        rp=match.winner_rp or 0,
        won=True,
        points=points[match.winner_id],
        shots_made=shots[match.winner_id][0],
        shots_attempted=shots[match.winner_id][1],
    )
    await _credit_player_stats(
        session,
        loser_id,
        match.sport_id,
        xp=match.loser_xp or 0,
        lost=True,
        points=points[loser_id],
        shots_made=shots[loser_id][0],
        shots_attempted=shots[loser_id][1],
    )


def _scored_match_values(
    match: Match, player1_score: int, player2_score: int
) -> Dict:
    """Build the column values for a scored match: scores, winner and rewards."""
    winner_id = determine_winner(match.player1_id, match.player2_id, player1_score, player2_score)
    if winner_id is None:
        rewards = {"winner_xp": None, "winner_rp": None, "loser_xp": LOSER_XP}
    else:
        rewards = calculate_rewards(
            max(player1_score, player2_score), min(player1_score, player2_score)
        )
    return {
        "player1_score": player1_score,
        "player2_score": player2_score,
        "winner_id": winner_id,
        "requires_review": winner_id is None,
        **rewards,
    }


# ============================================================================
# Creation
# ============================================================================


async def create_match_from_invitation(
    session: AsyncSession, invitation: MatchInvitation
) -> Match:
    """
    Spawn the match for an accepted invitation.

    The match starts in ``accepted``: both players already agreed to play.

    Args:
        session: Database session
        invitation: The invitation that was just accepted

    Returns:
        The new Match ORM object
    """
    match = Match(
        venue_id=invitation.venue_id,
        sport_id=invitation.sport_id,
        player1_id=invitation.sender_player_id,
        player2_id=invitation.receiver_player_id,
        invitation_id=invitation.id,
        status=MatchStatus.ACCEPTED.value,
    )
    session.add(match)
    await session.flush()
    await session.refresh(match)
    logger.info(f"Match {match.id} created from invitation {invitation.id}")
    return match


async def get_active_match_between(
    session: AsyncSession, player_id: int, other_player_id: int
) -> Optional[Match]:
    """Get a not-yet-finished match between two players (in either order)."""
    result = await session.execute(
        select(Match)
        .where(
            and_(
                Match.status.in_(ACTIVE_MATCH_STATUSES),
                or_(
                    and_(Match.player1_id == player_id, Match.player2_id == other_player_id),
                    and_(Match.player1_id == other_player_id, Match.player2_id == player_id),
                ),
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_challenge(
    session: AsyncSession,
    challenger_id: int,
    opponent_id: int,
    venue_id: int,
    sport_id: int,
) -> Dict:
    """
    Challenge another player directly (no scheduled invitation).

    Args:
        session: Database session
        challenger_id: Player issuing the challenge (becomes player1)
        opponent_id: Player being challenged (becomes player2)
        venue_id: Venue the match is anchored to
        sport_id: Sport being played

    Returns:
        Match view dict in ``pending``

    Raises:
        ValidationError: Self-challenge
        VenueNotFound / SportNotFound: Unknown reference data
        DuplicatePending: An unfinished match already exists between the two
    """
    if challenger_id == opponent_id:
        raise ValidationError("Cannot challenge yourself")
    if not await reference_service.venue_exists(session, venue_id):
        raise VenueNotFound()
    if not await reference_service.sport_exists(session, sport_id):
        raise SportNotFound()
    if not await reference_service.player_exists(session, opponent_id):
        raise NotFound("Opponent not found")
    if await get_active_match_between(session, challenger_id, opponent_id):
        raise DuplicatePending("Already have an active challenge with this player")

    match = Match(
        venue_id=venue_id,
        sport_id=sport_id,
        player1_id=challenger_id,
        player2_id=opponent_id,
        status=MatchStatus.PENDING.value,
    )
    session.add(match)
    await session.flush()
    await session.refresh(match)
    logger.info(f"Player {challenger_id} challenged player {opponent_id} (match {match.id})")
    return await format_match(session, match)


# ============================================================================
# Transitions
# ============================================================================


async def accept_challenge(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """Challenged player accepts: pending -> accepted."""
    match = await get_match_row(session, match_id)
    if actor_id != match.player2_id:
        raise Forbidden("Only the challenged player can accept")
    await _transition(session, match, [MatchStatus.PENDING.value], {"status": MatchStatus.ACCEPTED.value})
    return await format_match(session, match)


async def decline_challenge(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """Challenged player declines: pending -> cancelled."""
    match = await get_match_row(session, match_id)
    if actor_id != match.player2_id:
        raise Forbidden("Only the challenged player can decline")
    await _transition(session, match, [MatchStatus.PENDING.value], {"status": MatchStatus.CANCELLED.value})
    return await format_match(session, match)


async def start_match(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """
    Start a match: accepted -> in_progress.

    The starting participant takes the recording lock.
    """
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    await _transition(
        session,
        match,
        [MatchStatus.ACCEPTED.value],
        {
            "status": MatchStatus.IN_PROGRESS.value,
            "started_at": utcnow(),
            "recording_by": actor_id,
        },
    )
    logger.info(f"Match {match_id} started by player {actor_id}")
    return await format_match(session, match)


async def cancel_recording(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """
    Release the recording lock before anything was uploaded: in_progress -> accepted.
    """
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    if match.recording_by is not None and match.recording_by != actor_id:
        raise Forbidden("You are not the one recording")
    await _transition(
        session,
        match,
        [MatchStatus.IN_PROGRESS.value],
        {"status": MatchStatus.ACCEPTED.value, "recording_by": None, "started_at": None},
        extra_conditions=[Match.video_url.is_(None)],
    )
    return await format_match(session, match)


async def submit_recording(
    session: AsyncSession, match_id: int, actor_id: int, media_ref: str
) -> Dict:
    """
    Attach the match recording: in_progress -> uploading.

    Analysis (uploading -> analyzing -> completed/disputed) runs afterwards,
    see ``run_match_analysis``.

    Args:
        session: Database session
        match_id: Match ID
        actor_id: Participant submitting the recording
        media_ref: Reference (URL) to the stored recording

    Returns:
        Match view dict
    """
    if not media_ref or not media_ref.strip():
        raise ValidationError("Recording reference is required")
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    if match.recording_by is not None and match.recording_by != actor_id:
        raise Forbidden("Only the recording player can upload the match video")
    await _transition(
        session,
        match,
        [MatchStatus.IN_PROGRESS.value],
        {"status": MatchStatus.UPLOADING.value, "video_url": media_ref.strip()},
    )
    logger.info(f"Recording submitted for match {match_id}")
    return await format_match(session, match)


async def begin_analysis(session: AsyncSession, match_id: int) -> Match:
    """Hand the recording to the oracle: uploading -> analyzing."""
    match = await get_match_row(session, match_id)
    await _transition(
        session, match, [MatchStatus.UPLOADING.value], {"status": MatchStatus.ANALYZING.value}
    )
    return match


async def record_result(
    session: AsyncSession,
    match_id: int,
    result: Dict,
    attempts: int = 1,
) -> Dict:
    """
    Settle an analyzed match: analyzing -> completed, and credit rewards.

    Higher score wins. A tie leaves the winner unset, flags the match for
    manual review and gives both players participation XP.

    Args:
        session: Database session
        match_id: Match ID
        result: Normalized oracle result (player1_score, player2_score, confidence, ...)
        attempts: Oracle attempts used

    Returns:
        Match view dict
    """
    match = await get_match_row(session, match_id)
    values = _scored_match_values(match, result["player1_score"], result["player2_score"])
    values.update(
        status=MatchStatus.COMPLETED.value,
        completed_at=utcnow(),
        analysis_confidence=result.get("confidence"),
        analysis_attempts=attempts,
        player1_shots_made=result.get("player1_shots_made"),
        player1_shots_attempted=result.get("player1_shots_attempted"),
        player2_shots_made=result.get("player2_shots_made"),
        player2_shots_attempted=result.get("player2_shots_attempted"),
    )
    await _transition(session, match, [MatchStatus.ANALYZING.value], values)
    await _credit_match_rewards(session, match)
    await session.flush()

    if match.winner_id is None:
        logger.info(f"Match {match_id} tied {match.player1_score}-{match.player2_score}; flagged for review")
    else:
        logger.info(
            f"Match {match_id} completed {match.player1_score}-{match.player2_score}, "
            f"winner {match.winner_id} (+{match.winner_xp} XP, +{match.winner_rp} RP)"
        )
    return await format_match(session, match)


async def fail_analysis(
    session: AsyncSession, match_id: int, error: Optional[str], attempts: int
) -> Dict:
    """
    Give up on scoring: analyzing -> disputed with a system reason. No rewards.
    """
    match = await get_match_row(session, match_id)
    await _transition(
        session,
        match,
        [MatchStatus.ANALYZING.value],
        {
            "status": MatchStatus.DISPUTED.value,
            "dispute_reason": ANALYSIS_FAILED_REASON,
            "dispute_details": error or "Scoring service did not return a usable result",
            "disputed_by": None,
            "disputed_at": utcnow(),
            "analysis_attempts": attempts,
        },
    )
    logger.warning(f"Match {match_id} moved to disputed after {attempts} failed scoring attempt(s): {error}")
    return await format_match(session, match)


async def analyze_match(
    session: AsyncSession,
    match_id: int,
    oracle: Optional[scoring_oracle.ScoringOracle] = None,
    max_attempts: int = scoring_oracle.ORACLE_MAX_ATTEMPTS,
    timeout_seconds: float = scoring_oracle.ORACLE_TIMEOUT_SECONDS,
    retry_delay_seconds: float = scoring_oracle.ORACLE_RETRY_DELAY_SECONDS,
) -> Dict:
    """
    Score an uploaded match within one session.

    Moves uploading -> analyzing, calls the oracle with bounded retries, then
    settles the match as completed (usable result) or disputed (budget spent).
    The match never stays in ``analyzing``.

    Returns:
        Match view dict
    """
    match = await begin_analysis(session, match_id)
    oracle = oracle or scoring_oracle.get_scoring_oracle()
    result, attempts, error = await scoring_oracle.analyze_with_retries(
        oracle,
        match.video_url,
        max_attempts=max_attempts,
        timeout_seconds=timeout_seconds,
        retry_delay_seconds=retry_delay_seconds,
    )
    if result is None:
        return await fail_analysis(session, match_id, error, attempts)
    return await record_result(session, match_id, result, attempts=attempts)


async def run_match_analysis(
    match_id: int, oracle: Optional[scoring_oracle.ScoringOracle] = None
) -> None:
    """
    Background entry point: score a match with its own sessions.

    The ``analyzing`` status is committed before the oracle is called so other
    readers see it, and no database connection is held while waiting on the
    oracle.
    """
    try:
        async with db.AsyncSessionLocal() as session:
            match = await begin_analysis(session, match_id)
            media_ref = match.video_url
            await session.commit()
    except (InvalidState, NotFound) as e:
        logger.warning(f"Skipping analysis for match {match_id}: {e}")
        return

    oracle = oracle or scoring_oracle.get_scoring_oracle()
    result, attempts, error = await scoring_oracle.analyze_with_retries(oracle, media_ref)

    async with db.AsyncSessionLocal() as session:
        try:
            if result is None:
                await fail_analysis(session, match_id, error, attempts)
            else:
                await record_result(session, match_id, result, attempts=attempts)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Error settling match {match_id}: {e}", exc_info=True)
            raise


async def agree_to_result(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """
    Record a participant's agreement with a completed result.

    Once both flags are set the result is confirmed. Agreeing twice is a no-op.
    """
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    flag = "player1_agreed" if actor_id == match.player1_id else "player2_agreed"
    await _transition(session, match, [MatchStatus.COMPLETED.value], {flag: True})
    if match.player1_agreed and match.player2_agreed:
        logger.info(f"Match {match_id} result confirmed by both players")
    return await format_match(session, match)


async def dispute_match(
    session: AsyncSession,
    match_id: int,
    actor_id: int,
    reason: str,
    details: Optional[str] = None,
) -> Dict:
    """
    Flag a completed result as disputed: completed -> disputed.

    Only allowed while the other participant has not agreed yet. Rewards
    already credited stay in place.
    """
    if not reason or not reason.strip():
        raise ValidationError("A dispute reason is required")
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    other_agreed_column = (
        Match.player2_agreed if actor_id == match.player1_id else Match.player1_agreed
    )
    try:
        await _transition(
            session,
            match,
            [MatchStatus.COMPLETED.value],
            {
                "status": MatchStatus.DISPUTED.value,
                "dispute_reason": reason.strip(),
                "dispute_details": details,
                "disputed_by": actor_id,
                "disputed_at": utcnow(),
            },
            extra_conditions=[other_agreed_column.is_(False)],
        )
    except InvalidState as e:
        if e.current == MatchStatus.COMPLETED.value:
            raise InvalidState(
                MatchStatus.COMPLETED.value,
                e.current,
                message="Your opponent already agreed to this result",
            )
        raise
    logger.info(f"Match {match_id} disputed by player {actor_id}: {reason}")
    return await format_match(session, match)


async def resolve_dispute(
    session: AsyncSession,
    match_id: int,
    player1_score: Optional[int] = None,
    player2_score: Optional[int] = None,
) -> Dict:
    """
    Moderation outcome: disputed -> completed.

    A match disputed by a player keeps its scores and rewards. A match that
    was never scored (the oracle gave up) needs moderator scores, which are
    settled and credited here.
    """
    match = await get_match_row(session, match_id)
    values: Dict = {"status": MatchStatus.COMPLETED.value, "completed_at": utcnow()}
    needs_scoring = match.player1_score is None
    if needs_scoring:
        if player1_score is None or player2_score is None:
            raise ValidationError("Scores are required to resolve an unscored match")
        values.update(_scored_match_values(match, player1_score, player2_score))
    await _transition(
        session,
        match,
        [MatchStatus.DISPUTED.value],
        values,
        extra_conditions=[Match.player1_score.is_(None)] if needs_scoring else [Match.player1_score.isnot(None)],
    )
    if needs_scoring:
        await _credit_match_rewards(session, match)
        await session.flush()
    logger.info(f"Dispute on match {match_id} resolved")
    return await format_match(session, match)


async def cancel_match(session: AsyncSession, match_id: int, actor_id: int) -> Dict:
    """Cancel an unplayed match: pending | accepted | in_progress -> cancelled."""
    match = await get_match_row(session, match_id)
    _require_participant(match, actor_id)
    await _transition(
        session,
        match,
        CANCELLABLE_MATCH_STATUSES,
        {"status": MatchStatus.CANCELLED.value, "recording_by": None},
    )
    logger.info(f"Match {match_id} cancelled by player {actor_id}")
    return await format_match(session, match)


# ============================================================================
# Reads
# ============================================================================


async def get_match(session: AsyncSession, match_id: int) -> Dict:
    """Get a match view dict, or raise NotFound."""
    match = await get_match_row(session, match_id)
    return await format_match(session, match)


async def list_player_matches(
    session: AsyncSession,
    player_id: int,
    status_filter: str = "all",
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """
    Get a player's matches, newest first.

    Args:
        session: Database session
        player_id: Player ID
        status_filter: "all", "active", "completed" or "disputed"
        limit: Max results
        offset: Pagination offset

    Returns:
        List of match view dicts
    """
    if status_filter not in MATCH_FILTERS:
        raise ValidationError(f"Unknown match filter: {status_filter}")
    query = select(Match).where(
        or_(Match.player1_id == player_id, Match.player2_id == player_id)
    )
    statuses = MATCH_FILTERS[status_filter]
    if statuses:
        query = query.where(Match.status.in_(statuses))
    query = query.order_by(Match.created_at.desc(), Match.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return await format_matches_batch(session, result.scalars().all())


async def format_matches_batch(session: AsyncSession, matches: Sequence[Match]) -> List[Dict]:
    """
    Batch-format Match ORM objects into view dicts.

    Fetches player, venue and sport names in one query each instead of per match.
    """
    if not matches:
        return []

    player_ids = set()
    for m in matches:
        player_ids.update((m.player1_id, m.player2_id))
    players = await reference_service.get_player_summaries(session, player_ids)

    venue_result = await session.execute(
        select(Venue.id, Venue.name).where(Venue.id.in_({m.venue_id for m in matches}))
    )
    venue_names = {row.id: row.name for row in venue_result.all()}
    sport_result = await session.execute(
        select(Sport.id, Sport.name, Sport.slug).where(Sport.id.in_({m.sport_id for m in matches}))
    )
    sports = {row.id: row for row in sport_result.all()}

    def side(player_id: int, score: Optional[int], agreed: bool) -> Dict:
        summary = players.get(player_id) or reference_service.unknown_player(player_id)
        return {
            "id": player_id,
            "name": summary["name"],
            "avatar": summary["avatar"],
            "score": score,
            "agreed": bool(agreed),
        }

    formatted = []
    for m in matches:
        sport = sports.get(m.sport_id)
        dispute = None
        if m.disputed_at is not None or m.dispute_reason:
            dispute = {
                "reason": m.dispute_reason,
                "details": m.dispute_details,
                "disputed_by": m.disputed_by,
                "disputed_at": isoformat_or_none(m.disputed_at),
            }
        formatted.append({
            "id": m.id,
            "status": m.status,
            "venue": {"id": m.venue_id, "name": venue_names.get(m.venue_id, "Unknown")},
            "sport": {
                "id": m.sport_id,
                "name": sport.name if sport else "Unknown",
                "slug": sport.slug if sport else None,
            },
            "player1": side(m.player1_id, m.player1_score, m.player1_agreed),
            "player2": side(m.player2_id, m.player2_score, m.player2_agreed),
            "winner_id": m.winner_id,
            "requires_review": bool(m.requires_review),
            "is_confirmed": bool(m.player1_agreed and m.player2_agreed),
            "invitation_id": m.invitation_id,
            "rewards": {
                "winner_xp": m.winner_xp,
                "winner_rp": m.winner_rp,
                "loser_xp": m.loser_xp,
            },
            "dispute": dispute,
            "recording_by": m.recording_by,
            "video_url": m.video_url,
            "analysis_confidence": m.analysis_confidence,
            "created_at": isoformat_or_none(m.created_at),
            "started_at": isoformat_or_none(m.started_at),
            "completed_at": isoformat_or_none(m.completed_at),
        })
    return formatted


async def format_match(session: AsyncSession, match: Match) -> Dict:
    """Format a single Match; delegates to format_matches_batch."""
    results = await format_matches_batch(session, [match])
    return results[0]
