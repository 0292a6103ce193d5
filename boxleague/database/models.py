"""
SQLAlchemy ORM models for the box league engine.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from boxleague.database.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class MemberStatus(str, enum.Enum):
    """League member status enum."""

    ACTIVE = "active"
    WITHDRAWN = "withdrawn"
    SUSPENDED = "suspended"


class MemberRole(str, enum.Enum):
    MEMBER = "member"
    ORGANIZER = "organizer"


class SeasonState(str, enum.Enum):
    """Season lifecycle state."""

    SETUP = "setup"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ScheduledWeekStatus(str, enum.Enum):
    """Status of a week in the season schedule."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


class BoxMatchStatus(str, enum.Enum):
    """Lifecycle of a generated box match, owned by score verification."""

    SCHEDULED = "scheduled"
    PENDING_VERIFICATION = "pending_verification"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class League(Base):
    """Box leagues."""

    __tablename__ = "leagues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    members = relationship("LeagueMember", back_populates="league", cascade="all, delete-orphan")
    seasons = relationship("Season", back_populates="league")


class LeagueMember(Base):
    """League roster entry with rating and substitute eligibility data."""

    __tablename__ = "league_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    player_id = Column(String, nullable=False)  # Identity lives outside the engine
    display_name = Column(String, nullable=False)
    rating = Column(Float, nullable=True)  # Seeding rating, highest goes to box 1
    status = Column(String(20), default=MemberStatus.ACTIVE.value, nullable=False)
    role = Column(String(20), default=MemberRole.MEMBER.value, nullable=False)
    external_rating_id = Column(String, nullable=True)  # Linked rating account (e.g. DUPR)
    rating_consent = Column(Boolean, default=False, nullable=False)
    subs_used_this_season = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    league = relationship("League", back_populates="members")

    __table_args__ = (
        UniqueConstraint("league_id", "player_id"),
        Index("idx_league_members_league", "league_id"),
        CheckConstraint(
            f"status IN ({', '.join(repr(e.value) for e in MemberStatus)})",
            name="check_member_status_valid",
        ),
    )


class Season(Base):
    """Seasons within leagues, holding the rules template and week schedule."""

    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    name = Column(String, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_weeks = Column(Integer, nullable=False)
    state = Column(String(20), default=SeasonState.SETUP.value, nullable=False)
    rules = Column(JSONType, nullable=False)  # WeekRulesSnapshot template
    week_schedule = Column(JSONType, nullable=False)  # [{week_number, scheduled_date, status, ...}]
    court_labels = Column(JSONType, nullable=True)  # Courts boxes are assigned to, in order
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    league = relationship("League", back_populates="seasons")
    weeks = relationship("BoxWeekRecord", back_populates="season", order_by="BoxWeekRecord.week_number")
    player_stats = relationship("SeasonPlayerStats", back_populates="season")

    __table_args__ = (
        CheckConstraint(
            f"state IN ({', '.join(repr(e.value) for e in SeasonState)})",
            name="check_season_state_valid",
        ),
        Index("idx_seasons_league", "league_id"),
    )


class BoxWeekRecord(Base):
    """
    One week of a box league season: the week aggregate.

    Every write goes through week_store.transactional_update, which bumps
    revision with a compare-and-swap on the previous value.
    """

    __tablename__ = "box_weeks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    week_number = Column(Integer, nullable=False)
    state = Column(String(20), nullable=False, default="draft")
    scheduled_date = Column(Date, nullable=True)
    box_assignments = Column(JSONType, nullable=False)
    absences = Column(JSONType, nullable=False)
    court_assignments = Column(JSONType, nullable=False)
    rules_snapshot = Column(JSONType, nullable=False)
    attendance = Column(JSONType, nullable=False)
    attendance_locked = Column(Boolean, default=False, nullable=False)
    frozen_boxes = Column(JSONType, nullable=False)
    rotation_version = Column(Integer, nullable=False)
    standings_snapshot = Column(JSONType, nullable=True)
    movements = Column(JSONType, nullable=False)
    stats_applied = Column(Boolean, default=False, nullable=False)
    revision = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    season = relationship("Season", back_populates="weeks")

    __table_args__ = (
        UniqueConstraint("season_id", "week_number"),
        Index("idx_box_weeks_season", "season_id"),
        Index("idx_box_weeks_league", "league_id"),
    )


class BoxMatch(Base):
    """
    A generated box match.

    The id is derived from (league, season, week, box, round, rotation version)
    so regenerating matches for the same week never creates duplicates.
    """

    __tablename__ = "box_matches"

    id = Column(String, primary_key=True)
    league_id = Column(Integer, ForeignKey("leagues.id"), nullable=False)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    week_number = Column(Integer, nullable=False)
    box_number = Column(Integer, nullable=False)
    round_number = Column(Integer, nullable=False)
    team_a = Column(JSONType, nullable=False)  # [player_id, player_id]
    team_b = Column(JSONType, nullable=False)
    status = Column(String(30), default=BoxMatchStatus.SCHEDULED.value, nullable=False)
    games = Column(JSONType, nullable=True)  # [[team_a_score, team_b_score], ...]
    winner_side = Column(String(1), nullable=True)  # 'a' or 'b'
    points_to = Column(Integer, nullable=False)
    win_by = Column(Integer, nullable=False)
    best_of = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_box_matches_week", "season_id", "week_number"),
        Index("idx_box_matches_box", "season_id", "week_number", "box_number"),
        CheckConstraint(
            f"status IN ({', '.join(repr(e.value) for e in BoxMatchStatus)})",
            name="check_box_match_status_valid",
        ),
    )


class SeasonPlayerStats(Base):
    """Rolling per-season totals, updated once per finalized week."""

    __tablename__ = "season_player_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id"), nullable=False)
    player_id = Column(String, nullable=False)
    weeks_played = Column(Integer, default=0, nullable=False)
    weeks_absent = Column(Integer, default=0, nullable=False)
    weeks_as_substitute = Column(Integer, default=0, nullable=False)
    total_matches = Column(Integer, default=0, nullable=False)
    total_wins = Column(Integer, default=0, nullable=False)
    total_losses = Column(Integer, default=0, nullable=False)
    total_points_for = Column(Integer, default=0, nullable=False)
    total_points_against = Column(Integer, default=0, nullable=False)
    win_percentage = Column(Integer, default=0, nullable=False)  # 0-100, rounded
    starting_box = Column(Integer, nullable=True)
    current_box = Column(Integer, nullable=True)
    highest_box = Column(Integer, nullable=True)  # Lowest box number reached
    promotions = Column(Integer, default=0, nullable=False)
    relegations = Column(Integer, default=0, nullable=False)
    no_shows = Column(Integer, default=0, nullable=False)
    check_in_rate = Column(Integer, default=0, nullable=False)  # 0-100, rounded
    final_standing = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    season = relationship("Season", back_populates="player_stats")

    __table_args__ = (
        UniqueConstraint("season_id", "player_id"),
        Index("idx_season_player_stats_season", "season_id"),
    )
