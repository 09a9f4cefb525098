"""
SQLAlchemy ORM models for the competition and presence engine.

Reference tables (countries, cities, venues, sports, players) are owned by
the reference-data service and only read here. Invitations, matches, player
stats and active presences are owned by the engine.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from kingofcourt.database.db import Base


class AgeGroup(str, enum.Enum):
    """Coarse age partition used by city and country crowns."""

    UNDER_18 = "under-18"
    AGE_18_30 = "18-30"
    AGE_31_PLUS = "31+"


class InvitationStatus(str, enum.Enum):
    """Match invitation status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class MatchStatus(str, enum.Enum):
    """Match status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


# Statuses a participant may still cancel from
CANCELLABLE_MATCH_STATUSES = (
    MatchStatus.PENDING.value,
    MatchStatus.ACCEPTED.value,
    MatchStatus.IN_PROGRESS.value,
)

# Statuses that block a new challenge between the same pair
ACTIVE_MATCH_STATUSES = (
    MatchStatus.PENDING.value,
    MatchStatus.ACCEPTED.value,
    MatchStatus.IN_PROGRESS.value,
    MatchStatus.UPLOADING.value,
    MatchStatus.ANALYZING.value,
)


class Country(Base):
    """Countries."""

    __tablename__ = "countries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    code = Column(String(3), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    cities = relationship("City", back_populates="country")


class City(Base):
    """Cities, each belonging to one country."""

    __tablename__ = "cities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    country_id = Column(Integer, ForeignKey("countries.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    country = relationship("Country", back_populates="cities")
    venues = relationship("Venue", back_populates="city")

    __table_args__ = (Index("idx_cities_country", "country_id"),)


class Venue(Base):
    """Courts and other places where matches are played."""

    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    city = relationship("City", back_populates="venues")

    __table_args__ = (
        Index("idx_venues_city", "city_id"),
        Index("idx_venues_lat_lng", "latitude", "longitude"),
    )


class Sport(Base):
    """Sports players compete in."""

    __tablename__ = "sports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Player(Base):
    """Player profiles."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    gender = Column(String, nullable=True)
    age_group = Column(String(10), nullable=True)  # AgeGroup value
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True)
    avatar = Column(String, nullable=True)  # Can store initials (e.g., "JD") or image URL
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    city = relationship("City", foreign_keys=[city_id])
    stats = relationship("PlayerStats", back_populates="player")

    __table_args__ = (
        Index("idx_players_name", "full_name"),
        Index("idx_players_city_age", "city_id", "age_group"),
    )


class PlayerStats(Base):
    """Per-sport aggregate stats; the source of every ranking read."""

    __tablename__ = "player_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    total_xp = Column(Integer, default=0, nullable=False)
    total_rp = Column(Integer, default=0, nullable=False)
    available_rp = Column(Integer, default=0, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    matches_won = Column(Integer, default=0, nullable=False)
    matches_lost = Column(Integer, default=0, nullable=False)
    challenges_completed = Column(Integer, default=0, nullable=False)
    total_points_scored = Column(Integer, default=0, nullable=False)
    three_point_made = Column(Integer, default=0, nullable=False)
    three_point_attempted = Column(Integer, default=0, nullable=False)
    free_throw_made = Column(Integer, default=0, nullable=False)
    free_throw_attempted = Column(Integer, default=0, nullable=False)
    shots_made = Column(Integer, default=0, nullable=False)
    shots_attempted = Column(Integer, default=0, nullable=False)
    users_invited = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    player = relationship("Player", back_populates="stats")
    sport = relationship("Sport")

    __table_args__ = (
        UniqueConstraint("player_id", "sport_id", name="uq_player_stats_player_sport"),
        CheckConstraint(
            "matches_won + matches_lost <= matches_played",
            name="ck_player_stats_results_le_played",
        ),
        Index("idx_player_stats_sport_xp", "sport_id", "total_xp"),
    )


# Name prefix of the unique index behind "one pending invitation per pair"
PENDING_PAIR_INDEX = "uq_match_invitations_pending_pair"


class MatchInvitation(Base):
    """Scheduled match invitation from one player to another."""

    __tablename__ = "match_invitations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    receiver_player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    message = Column(Text, nullable=True)
    status = Column(String(20), default=InvitationStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    sender = relationship("Player", foreign_keys=[sender_player_id])
    receiver = relationship("Player", foreign_keys=[receiver_player_id])
    venue = relationship("Venue")
    sport = relationship("Sport")

    __table_args__ = (
        Index("idx_match_invitations_receiver_status", "receiver_player_id", "status"),
        Index("idx_match_invitations_sender_status", "sender_player_id", "status"),
        # At most one pending invitation per unordered player pair. Postgres has
        # least/greatest; SQLite spells them as the multi-argument min/max.
        Index(
            f"{PENDING_PAIR_INDEX}_pg",
            func.least(sender_player_id, receiver_player_id),
            func.greatest(sender_player_id, receiver_player_id),
            unique=True,
            postgresql_where=(status == InvitationStatus.PENDING.value),
        ).ddl_if(dialect="postgresql"),
        Index(
            f"{PENDING_PAIR_INDEX}_sqlite",
            func.min(sender_player_id, receiver_player_id),
            func.max(sender_player_id, receiver_player_id),
            unique=True,
            sqlite_where=(status == InvitationStatus.PENDING.value),
        ).ddl_if(dialect="sqlite"),
    )


class Match(Base):
    """1v1 match between two players at a venue."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False)
    sport_id = Column(Integer, ForeignKey("sports.id"), nullable=False)
    player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)  # Challenger
    player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    player1_score = Column(Integer, nullable=True)
    player2_score = Column(Integer, nullable=True)
    winner_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    status = Column(String(20), default=MatchStatus.PENDING.value, nullable=False)
    player1_agreed = Column(Boolean, default=False, nullable=False)
    player2_agreed = Column(Boolean, default=False, nullable=False)
    invitation_id = Column(Integer, ForeignKey("match_invitations.id"), nullable=True)
    # Rewards granted at completion
    winner_xp = Column(Integer, nullable=True)
    winner_rp = Column(Integer, nullable=True)
    loser_xp = Column(Integer, nullable=True)
    # Recording / analysis
    recording_by = Column(Integer, ForeignKey("players.id"), nullable=True)
    video_url = Column(String, nullable=True)
    analysis_confidence = Column(Float, nullable=True)
    analysis_attempts = Column(Integer, default=0, nullable=False)
    requires_review = Column(Boolean, default=False, nullable=False)  # Tied score
    player1_shots_made = Column(Integer, nullable=True)
    player1_shots_attempted = Column(Integer, nullable=True)
    player2_shots_made = Column(Integer, nullable=True)
    player2_shots_attempted = Column(Integer, nullable=True)
    # Dispute
    dispute_reason = Column(String, nullable=True)
    dispute_details = Column(Text, nullable=True)
    disputed_by = Column(Integer, ForeignKey("players.id"), nullable=True)  # NULL = system
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    player1 = relationship("Player", foreign_keys=[player1_id], lazy="select")
    player2 = relationship("Player", foreign_keys=[player2_id], lazy="select")
    venue = relationship("Venue", lazy="select")
    sport = relationship("Sport", lazy="select")
    invitation = relationship("MatchInvitation", foreign_keys=[invitation_id])

    def is_participant(self, player_id: int) -> bool:
        """Check whether a player is one of the two sides of this match."""
        return player_id in (self.player1_id, self.player2_id)

    def opponent_of(self, player_id: int) -> int:
        """Get the other participant's player ID."""
        return self.player2_id if player_id == self.player1_id else self.player1_id

    __table_args__ = (
        CheckConstraint("player1_id <> player2_id", name="ck_matches_distinct_players"),
        CheckConstraint(
            "(player1_score IS NULL) = (player2_score IS NULL)",
            name="ck_matches_scores_together",
        ),
        Index("idx_matches_player1", "player1_id"),
        Index("idx_matches_player2", "player2_id"),
        Index("idx_matches_status", "status"),
        Index("idx_matches_venue_sport", "venue_id", "sport_id"),
        Index("idx_matches_invitation", "invitation_id"),
    )


class ActivePresence(Base):
    """Geofence-derived presence of a player at a venue."""

    __tablename__ = "active_presences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    player = relationship("Player")
    venue = relationship("Venue")

    __table_args__ = (
        UniqueConstraint("player_id", "venue_id", name="uq_active_presence_player_venue"),
        Index("idx_active_presences_venue_seen", "venue_id", "last_seen_at"),
        Index("idx_active_presences_last_seen", "last_seen_at"),
    )
