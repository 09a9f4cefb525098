"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


# ============================================================================
# Shared
# ============================================================================


class PlayerRef(BaseModel):
    """Minimal player reference."""

    id: int
    name: str
    avatar: Optional[str] = None


class VenueRef(BaseModel):
    """Minimal venue reference."""

    id: int
    name: str


class SportRef(BaseModel):
    id: int
    name: str
    slug: Optional[str] = None


# ============================================================================
# Invitations
# ============================================================================


class InvitationCreate(BaseModel):
    """Request to invite another player to a match."""

    receiver_player_id: int
    venue_id: int
    sport_id: int
    scheduled_at: datetime
    message: Optional[str] = Field(None, max_length=500)


class InvitationRespond(BaseModel):
    """Accept or decline an invitation."""

    accept: bool


class InvitationResponse(BaseModel):
    """Invitation data."""

    id: int
    sender: PlayerRef
    receiver: PlayerRef
    venue: VenueRef
    sport_id: int
    scheduled_at: Optional[str] = None
    status: str
    message: Optional[str] = None
    created_at: Optional[str] = None
    responded_at: Optional[str] = None


class InvitationRespondResponse(BaseModel):
    status: str
    match_id: Optional[int] = None


class PendingCountResponse(BaseModel):
    count: int


# ============================================================================
# Matches
# ============================================================================


class ChallengeCreate(BaseModel):
    """Request to challenge another player directly."""

    opponent_id: int
    venue_id: int
    sport_id: int


class RecordingSubmit(BaseModel):
    """Reference to an uploaded match recording."""

    media_ref: str = Field(..., min_length=1, max_length=2048)


class DisputeCreate(BaseModel):
    """Dispute a completed match result."""

    reason: str = Field(..., min_length=1, max_length=200)
    details: Optional[str] = Field(None, max_length=2000)


class DisputeResolution(BaseModel):
    """Moderator scores, required only for matches the oracle could not score."""

    player1_score: Optional[int] = Field(None, ge=0)
    player2_score: Optional[int] = Field(None, ge=0)


class MatchSide(PlayerRef):
    score: Optional[int] = None
    agreed: bool = False


class MatchRewards(BaseModel):
    winner_xp: Optional[int] = None
    winner_rp: Optional[int] = None
    loser_xp: Optional[int] = None


class MatchDispute(BaseModel):
    reason: Optional[str] = None
    details: Optional[str] = None
    disputed_by: Optional[int] = None
    disputed_at: Optional[str] = None


class MatchResponse(BaseModel):
    """Match data."""

    id: int
    status: str
    venue: VenueRef
    sport: SportRef
    player1: MatchSide
    player2: MatchSide
    winner_id: Optional[int] = None
    requires_review: bool = False
    is_confirmed: bool = False
    invitation_id: Optional[int] = None
    rewards: MatchRewards
    dispute: Optional[MatchDispute] = None
    recording_by: Optional[int] = None
    video_url: Optional[str] = None
    analysis_confidence: Optional[float] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


# ============================================================================
# Rankings
# ============================================================================


class RankResponse(BaseModel):
    player_id: int
    sport: str
    rank: int


class CrownStatus(BaseModel):
    """Crowns held by a player for one sport."""

    is_king_of_court: bool
    is_king_of_city: bool
    is_king_of_country: bool
    court_name: Optional[str] = None
    city_name: Optional[str] = None
    country_name: Optional[str] = None


class CardStats(BaseModel):
    rank: int
    xp: int
    xp_progress: int
    xp_to_next_level: int
    rp: int
    total_points: int
    win_rate: int
    matches_played: int
    matches_won: int
    matches_lost: int
    challenges_completed: int
    total_challenges: int
    three_point_accuracy: int
    free_throw_accuracy: int
    shot_accuracy: int


class CardPlayer(PlayerRef):
    age_group: Optional[str] = None


class CompetitionCardResponse(BaseModel):
    """Competition card for a player and sport."""

    player: CardPlayer
    sport: str
    stats: CardStats
    crowns: CrownStatus


class RankedPlayer(PlayerRef):
    rank: int
    xp: int
    gender: Optional[str] = None
    is_king: bool = False


class RankingsResponse(BaseModel):
    """Leaderboard for a sport and level."""

    level: str
    sport: str
    location: Optional[VenueRef] = None
    king: Optional[RankedPlayer] = None
    rankings: List[RankedPlayer]
    current_user: Optional[RankedPlayer] = None
    total_players: int


# ============================================================================
# Presence
# ============================================================================


class LocationReport(BaseModel):
    """A player's current position."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CheckInResponse(BaseModel):
    checked_in: bool
    distance_m: Optional[float] = None
    venue_name: str
    message: str


class CheckOutResponse(BaseModel):
    checked_in: bool
    removed: bool


class HeartbeatResponse(BaseModel):
    action: str
    checked_in: bool
    distance_m: Optional[float] = None


class PresenceStatusResponse(BaseModel):
    is_checked_in: bool
    last_seen_at: Optional[str] = None


class ActivePlayer(PlayerRef):
    last_seen_at: Optional[str] = None
    distance_m: Optional[float] = None
    rank: Optional[int] = None
    is_king: Optional[bool] = None
