"""
Tests for match_service: the 1v1 match state machine, scoring and rewards.
"""

import asyncio

import pytest
from sqlalchemy import select

from kingofcourt.database.models import Match, MatchStatus, PlayerStats
from kingofcourt.services import match_service
from kingofcourt.services.errors import (
    DuplicatePending,
    Forbidden,
    InvalidState,
    NotFound,
    OracleFailure,
    ValidationError,
)
from kingofcourt.services.scoring_oracle import ScoringOracle
from kingofcourt.tests.conftest import set_stats


class FakeOracle(ScoringOracle):
    """Replays canned outcomes; the last outcome repeats. Exceptions are raised."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def analyze(self, media_ref):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def score(p1, p2, confidence=0.9, **extra):
    return {"player1Score": p1, "player2Score": p2, "confidence": confidence, **extra}


async def get_stats(session, player_id, sport_id):
    result = await session.execute(
        select(PlayerStats)
        .where(PlayerStats.player_id == player_id, PlayerStats.sport_id == sport_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def challenge(session, world, challenger="alice", opponent="bob"):
    return await match_service.create_challenge(
        session, world[challenger], world[opponent], world["venue"].id, world["sport"].id
    )


async def uploaded_match(session, world):
    """Drive a fresh alice-vs-bob match to uploading. Alice records."""
    m = await challenge(session, world)
    await match_service.accept_challenge(session, m["id"], world["bob"])
    await match_service.start_match(session, m["id"], world["alice"])
    await match_service.submit_recording(session, m["id"], world["alice"], "https://cdn.example.com/m.mp4")
    return m["id"]


async def completed_match(session, world, p1=21, p2=15):
    match_id = await uploaded_match(session, world)
    await match_service.analyze_match(
        session, match_id, oracle=FakeOracle(score(p1, p2)), retry_delay_seconds=0
    )
    return match_id


# ============================================================================
# Challenges
# ============================================================================


@pytest.mark.asyncio
async def test_create_challenge_is_pending(db_session, world):
    m = await challenge(db_session, world)

    assert m["status"] == "pending"
    assert m["player1"]["id"] == world["alice"]
    assert m["player2"]["id"] == world["bob"]
    assert m["player1"]["score"] is None
    assert m["sport"]["slug"] == "basketball"
    assert m["venue"]["name"] == "Central Court"
    assert m["winner_id"] is None
    assert m["dispute"] is None


@pytest.mark.asyncio
async def test_cannot_challenge_yourself(db_session, world):
    with pytest.raises(ValidationError):
        await challenge(db_session, world, challenger="alice", opponent="alice")


@pytest.mark.asyncio
async def test_challenge_unknown_opponent(db_session, world):
    with pytest.raises(NotFound):
        await match_service.create_challenge(
            db_session, world["alice"], 99999, world["venue"].id, world["sport"].id
        )


@pytest.mark.asyncio
async def test_duplicate_active_challenge_rejected_both_directions(db_session, world):
    await challenge(db_session, world)
    with pytest.raises(DuplicatePending):
        await challenge(db_session, world)
    with pytest.raises(DuplicatePending):
        await challenge(db_session, world, challenger="bob", opponent="alice")


@pytest.mark.asyncio
async def test_new_challenge_allowed_after_cancel(db_session, world):
    m = await challenge(db_session, world)
    await match_service.cancel_match(db_session, m["id"], world["alice"])

    again = await challenge(db_session, world)
    assert again["status"] == "pending"


@pytest.mark.asyncio
async def test_only_challenged_player_accepts(db_session, world):
    m = await challenge(db_session, world)
    with pytest.raises(Forbidden):
        await match_service.accept_challenge(db_session, m["id"], world["alice"])

    accepted = await match_service.accept_challenge(db_session, m["id"], world["bob"])
    assert accepted["status"] == "accepted"

    with pytest.raises(InvalidState):
        await match_service.accept_challenge(db_session, m["id"], world["bob"])


@pytest.mark.asyncio
async def test_decline_challenge_cancels(db_session, world):
    m = await challenge(db_session, world)
    declined = await match_service.decline_challenge(db_session, m["id"], world["bob"])
    assert declined["status"] == "cancelled"


# ============================================================================
# Starting and recording
# ============================================================================


@pytest.mark.asyncio
async def test_start_requires_accepted(db_session, world):
    m = await challenge(db_session, world)
    with pytest.raises(InvalidState) as exc_info:
        await match_service.start_match(db_session, m["id"], world["alice"])
    assert exc_info.value.current == "pending"


@pytest.mark.asyncio
async def test_start_takes_recording_lock(db_session, world):
    m = await challenge(db_session, world)
    await match_service.accept_challenge(db_session, m["id"], world["bob"])

    started = await match_service.start_match(db_session, m["id"], world["bob"])

    assert started["status"] == "in_progress"
    assert started["recording_by"] == world["bob"]
    assert started["started_at"] is not None


@pytest.mark.asyncio
async def test_concurrent_starts_one_recorder(session_factory, committed_world):
    """Both players press start at once: one holds the recording lock, the other gets InvalidState."""
    w = committed_world
    async with session_factory() as session:
        m = await challenge(session, w)
        await match_service.accept_challenge(session, m["id"], w["bob"])
        await session.commit()

    async def start(player_id):
        async with session_factory() as session:
            try:
                started = await match_service.start_match(session, m["id"], player_id)
            except InvalidState:
                await session.rollback()
                return None
            await session.commit()
            return started

    results = await asyncio.gather(start(w["alice"]), start(w["bob"]))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    async with session_factory() as session:
        match = await session.get(Match, m["id"])
    assert match.status == MatchStatus.IN_PROGRESS.value
    assert match.recording_by == winners[0]["recording_by"]
    assert match.recording_by in (w["alice"], w["bob"])


@pytest.mark.asyncio
async def test_outsider_cannot_start(db_session, world):
    m = await challenge(db_session, world)
    await match_service.accept_challenge(db_session, m["id"], world["bob"])
    with pytest.raises(Forbidden):
        await match_service.start_match(db_session, m["id"], world["carol"])


@pytest.mark.asyncio
async def test_only_recorder_submits_recording(db_session, world):
    m = await challenge(db_session, world)
    await match_service.accept_challenge(db_session, m["id"], world["bob"])
    await match_service.start_match(db_session, m["id"], world["alice"])

    with pytest.raises(Forbidden):
        await match_service.submit_recording(db_session, m["id"], world["bob"], "https://x/v.mp4")
    with pytest.raises(ValidationError):
        await match_service.submit_recording(db_session, m["id"], world["alice"], "   ")

    uploaded = await match_service.submit_recording(db_session, m["id"], world["alice"], "https://x/v.mp4")
    assert uploaded["status"] == "uploading"
    assert uploaded["video_url"] == "https://x/v.mp4"


@pytest.mark.asyncio
async def test_cancel_recording_returns_to_accepted(db_session, world):
    m = await challenge(db_session, world)
    await match_service.accept_challenge(db_session, m["id"], world["bob"])
    await match_service.start_match(db_session, m["id"], world["alice"])

    released = await match_service.cancel_recording(db_session, m["id"], world["alice"])

    assert released["status"] == "accepted"
    assert released["recording_by"] is None
    assert released["started_at"] is None


@pytest.mark.asyncio
async def test_cancel_recording_after_upload_rejected(db_session, world):
    match_id = await uploaded_match(db_session, world)
    with pytest.raises(InvalidState):
        await match_service.cancel_recording(db_session, match_id, world["alice"])


# ============================================================================
# Analysis
# ============================================================================


@pytest.mark.asyncio
async def test_analysis_completes_and_credits_rewards(db_session, world):
    match_id = await uploaded_match(db_session, world)

    result = await match_service.analyze_match(
        db_session,
        match_id,
        oracle=FakeOracle(score(21, 15, player1ShotsMade=9, player1ShotsAttempted=20)),
        retry_delay_seconds=0,
    )

    assert result["status"] == "completed"
    assert result["winner_id"] == world["alice"]
    assert result["player1"]["score"] == 21
    assert result["player2"]["score"] == 15
    assert result["rewards"] == {"winner_xp": 160, "winner_rp": 32, "loser_xp": 50}
    assert result["analysis_confidence"] == pytest.approx(0.9)
    assert result["completed_at"] is not None

    winner = await get_stats(db_session, world["alice"], world["sport"].id)
    assert winner.total_xp == 160
    assert winner.total_rp == 32
    assert winner.available_rp == 32
    assert winner.matches_played == 1
    assert winner.matches_won == 1
    assert winner.matches_lost == 0
    assert winner.total_points_scored == 21
    assert winner.shots_made == 9
    assert winner.shots_attempted == 20

    loser = await get_stats(db_session, world["bob"], world["sport"].id)
    assert loser.total_xp == 50
    assert loser.total_rp == 0
    assert loser.matches_played == 1
    assert loser.matches_lost == 1
    assert loser.total_points_scored == 15




@pytest.mark.asyncio
async def test_rewards_accumulate_on_existing_stats(db_session, world):
    await set_stats(db_session, world["alice"], world["sport"].id, total_xp=500, matches_played=4, matches_won=3, matches_lost=1)

    await completed_match(db_session, world, 11, 9)

    stats = await get_stats(db_session, world["alice"], world["sport"].id)
    # 11-9: 50 base + 50 win + 20 margin
    assert stats.total_xp == 620
    assert stats.matches_played == 5
    assert stats.matches_won == 4
    assert stats.matches_lost == 1


@pytest.mark.asyncio
async def test_tie_flags_review_and_gives_participation_xp(db_session, world):
    match_id = await uploaded_match(db_session, world)

    result = await match_service.analyze_match(
        db_session, match_id, oracle=FakeOracle(score(15, 15)), retry_delay_seconds=0
    )

    assert result["status"] == "completed"
    assert result["winner_id"] is None
    assert result["requires_review"] is True
    for player in ("alice", "bob"):
        stats = await get_stats(db_session, world[player], world["sport"].id)
        assert stats.total_xp == 50
        assert stats.matches_played == 1
        assert stats.matches_won == 0
        assert stats.matches_lost == 0


@pytest.mark.asyncio
async def test_oracle_retry_then_success(db_session, world):
    match_id = await uploaded_match(db_session, world)
    oracle = FakeOracle(OracleFailure("garbled"), score(5, 11))

    result = await match_service.analyze_match(db_session, match_id, oracle=oracle, retry_delay_seconds=0)

    assert oracle.calls == 2
    assert result["status"] == "completed"
    assert result["winner_id"] == world["bob"]
    row = (await db_session.execute(select(Match).where(Match.id == match_id))).scalar_one()
    assert row.analysis_attempts == 2


@pytest.mark.asyncio
async def test_oracle_exhausted_moves_to_disputed(db_session, world):
    """The match never stays in analyzing: a spent retry budget lands in disputed."""
    match_id = await uploaded_match(db_session, world)
    oracle = FakeOracle(RuntimeError("upstream 503"))

    result = await match_service.analyze_match(
        db_session, match_id, oracle=oracle, max_attempts=3, retry_delay_seconds=0
    )

    assert oracle.calls == 3
    assert result["status"] == "disputed"
    assert result["dispute"]["reason"] == match_service.ANALYSIS_FAILED_REASON
    assert result["dispute"]["disputed_by"] is None
    assert result["player1"]["score"] is None
    assert await get_stats(db_session, world["alice"], world["sport"].id) is None


@pytest.mark.asyncio
async def test_oracle_timeout_counts_as_attempt(db_session, world):
    class SlowOracle(ScoringOracle):
        async def analyze(self, media_ref):
            await asyncio.sleep(5)

    match_id = await uploaded_match(db_session, world)
    result = await match_service.analyze_match(
        db_session, match_id, oracle=SlowOracle(), max_attempts=2,
        timeout_seconds=0.01, retry_delay_seconds=0,
    )

    assert result["status"] == "disputed"
    assert "timed out" in result["dispute"]["details"]


@pytest.mark.asyncio
async def test_low_confidence_result_is_not_trusted(db_session, world):
    match_id = await uploaded_match(db_session, world)
    result = await match_service.analyze_match(
        db_session, match_id, oracle=FakeOracle(score(21, 3, confidence=0.1)),
        max_attempts=1, retry_delay_seconds=0,
    )
    assert result["status"] == "disputed"


@pytest.mark.asyncio
async def test_analysis_requires_uploading(db_session, world):
    m = await challenge(db_session, world)
    with pytest.raises(InvalidState):
        await match_service.analyze_match(db_session, m["id"], oracle=FakeOracle(score(1, 0)))


@pytest.mark.asyncio
async def test_run_match_analysis_uses_own_sessions(db_session, world):
    match_id = await uploaded_match(db_session, world)
    await db_session.commit()

    await match_service.run_match_analysis(match_id, oracle=FakeOracle(score(21, 19)))

    row = (
        await db_session.execute(
            select(Match).where(Match.id == match_id).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert row.status == MatchStatus.COMPLETED.value
    assert row.winner_id == world["alice"]
    stats = await get_stats(db_session, world["alice"], world["sport"].id)
    assert stats.matches_won == 1


@pytest.mark.asyncio
async def test_run_match_analysis_skips_wrong_state(db_session, world):
    m = await challenge(db_session, world)
    await db_session.commit()
    oracle = FakeOracle(score(1, 0))

    await match_service.run_match_analysis(m["id"], oracle=oracle)

    assert oracle.calls == 0


# ============================================================================
# Agreement, disputes, moderation
# ============================================================================


@pytest.mark.asyncio
async def test_both_agree_confirms_result(db_session, world):
    match_id = await completed_match(db_session, world)

    first = await match_service.agree_to_result(db_session, match_id, world["alice"])
    assert first["player1"]["agreed"] is True
    assert first["is_confirmed"] is False

    second = await match_service.agree_to_result(db_session, match_id, world["bob"])
    assert second["is_confirmed"] is True
    assert second["status"] == "completed"


@pytest.mark.asyncio
async def test_agree_before_completion_rejected(db_session, world):
    match_id = await uploaded_match(db_session, world)
    with pytest.raises(InvalidState):
        await match_service.agree_to_result(db_session, match_id, world["alice"])


@pytest.mark.asyncio
async def test_dispute_completed_match(db_session, world):
    match_id = await completed_match(db_session, world)

    result = await match_service.dispute_match(
        db_session, match_id, world["bob"], "wrong_score", details="I hit the last three"
    )

    assert result["status"] == "disputed"
    assert result["dispute"]["reason"] == "wrong_score"
    assert result["dispute"]["details"] == "I hit the last three"
    assert result["dispute"]["disputed_by"] == world["bob"]
    # Rewards credited at completion stay in place
    stats = await get_stats(db_session, world["alice"], world["sport"].id)
    assert stats.total_xp == 160


@pytest.mark.asyncio
async def test_dispute_after_opponent_agreed_rejected(db_session, world):
    match_id = await completed_match(db_session, world)
    await match_service.agree_to_result(db_session, match_id, world["alice"])

    with pytest.raises(InvalidState) as exc_info:
        await match_service.dispute_match(db_session, match_id, world["bob"], "wrong_score")
    assert "already agreed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_dispute_requires_reason_and_participant(db_session, world):
    match_id = await completed_match(db_session, world)
    with pytest.raises(ValidationError):
        await match_service.dispute_match(db_session, match_id, world["bob"], "  ")
    with pytest.raises(Forbidden):
        await match_service.dispute_match(db_session, match_id, world["carol"], "wrong_score")


@pytest.mark.asyncio
async def test_resolve_player_dispute_keeps_scores(db_session, world):
    match_id = await completed_match(db_session, world)
    await match_service.dispute_match(db_session, match_id, world["bob"], "wrong_score")

    result = await match_service.resolve_dispute(db_session, match_id)

    assert result["status"] == "completed"
    assert result["player1"]["score"] == 21
    stats = await get_stats(db_session, world["alice"], world["sport"].id)
    assert stats.matches_played == 1


@pytest.mark.asyncio
async def test_resolve_failed_analysis_needs_scores_and_credits(db_session, world):
    match_id = await uploaded_match(db_session, world)
    await match_service.analyze_match(
        db_session, match_id, oracle=FakeOracle(OracleFailure("blurry")),
        max_attempts=1, retry_delay_seconds=0,
    )

    with pytest.raises(ValidationError):
        await match_service.resolve_dispute(db_session, match_id)

    result = await match_service.resolve_dispute(db_session, match_id, player1_score=8, player2_score=11)

    assert result["status"] == "completed"
    assert result["winner_id"] == world["bob"]
    bob = await get_stats(db_session, world["bob"], world["sport"].id)
    assert bob.matches_won == 1
    assert bob.total_rp == 26


@pytest.mark.asyncio
async def test_resolve_requires_disputed(db_session, world):
    match_id = await completed_match(db_session, world)
    with pytest.raises(InvalidState):
        await match_service.resolve_dispute(db_session, match_id)


# ============================================================================
# Cancellation and reads
# ============================================================================


@pytest.mark.asyncio
async def test_cancel_in_progress_releases_lock(db_session, world):
    m = await challenge(db_session, world)
    await match_service.accept_challenge(db_session, m["id"], world["bob"])
    await match_service.start_match(db_session, m["id"], world["alice"])

    result = await match_service.cancel_match(db_session, m["id"], world["bob"])

    assert result["status"] == "cancelled"
    assert result["recording_by"] is None


@pytest.mark.asyncio
async def test_cannot_cancel_completed_match(db_session, world):
    match_id = await completed_match(db_session, world)
    with pytest.raises(InvalidState) as exc_info:
        await match_service.cancel_match(db_session, match_id, world["alice"])
    assert exc_info.value.current == "completed"


@pytest.mark.asyncio
async def test_get_unknown_match(db_session, world):
    with pytest.raises(NotFound):
        await match_service.get_match(db_session, 31337)


@pytest.mark.asyncio
async def test_list_player_matches_filters(db_session, world):
    done_id = await completed_match(db_session, world)
    active = await challenge(db_session, world, challenger="carol", opponent="alice")

    everything = await match_service.list_player_matches(db_session, world["alice"])
    assert [m["id"] for m in everything] == [active["id"], done_id]

    only_active = await match_service.list_player_matches(db_session, world["alice"], "active")
    assert [m["id"] for m in only_active] == [active["id"]]

    only_completed = await match_service.list_player_matches(db_session, world["alice"], "completed")
    assert [m["id"] for m in only_completed] == [done_id]

    assert await match_service.list_player_matches(db_session, world["bob"], "disputed") == []

    with pytest.raises(ValidationError):
        await match_service.list_player_matches(db_session, world["alice"], "weird")
