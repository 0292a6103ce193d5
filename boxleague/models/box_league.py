"""
Pydantic domain models for the box league engine.

These are the values the services pass around and the shapes stored in the
JSON columns of the box_weeks table. The week aggregate is never mutated in
place; services build a modified copy and hand it to the week store.
"""

import enum
from datetime import datetime, date
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict

from boxleague.utils.constants import (
    DEFAULT_TIEBREAKERS,
    DEFAULT_MAX_SUBS_PER_SEASON,
    ROTATION_VERSION,
)


# ============================================================================
# Enums
# ============================================================================


class WeekState(str, enum.Enum):
    """Week lifecycle state."""

    DRAFT = "draft"
    ACTIVE = "active"
    CLOSING = "closing"
    FINALIZED = "finalized"


class AbsencePolicy(str, enum.Enum):
    """What an absent player receives in standings."""

    FREEZE = "freeze"
    GHOST_SCORE = "ghost_score"
    AVERAGE_POINTS = "average_points"
    AUTO_RELEGATE = "auto_relegate"


class Movement(str, enum.Enum):
    PROMOTION = "promotion"
    RELEGATION = "relegation"
    STAYED = "stayed"
    FROZEN = "frozen"


class AttendanceStatus(str, enum.Enum):
    CHECKED_IN = "checked_in"
    NOT_CHECKED_IN = "not_checked_in"
    NO_SHOW = "no_show"
    EXCUSED = "excused"


class SubBoxRestriction(str, enum.Enum):
    """Which boxes a substitute may come from, relative to the vacancy."""

    SAME_ONLY = "same_only"
    SAME_OR_LOWER = "same_or_lower"
    ANY = "any"


class Tiebreaker(str, enum.Enum):
    WINS = "wins"
    HEAD_TO_HEAD = "head_to_head"
    POINTS_DIFF = "points_diff"
    POINTS_FOR = "points_for"
    POINTS_AGAINST = "points_against"


# ============================================================================
# Rules
# ============================================================================


class SubstituteRules(BaseModel):
    """Eligibility settings for substitutes."""

    sub_must_be_member: bool = False
    sub_allowed_from_boxes: SubBoxRestriction = SubBoxRestriction.SAME_OR_LOWER
    sub_max_rating_gap: Optional[float] = None
    sub_must_have_rating_linked: bool = False
    sub_must_have_rating_consent: bool = False


class WeekRulesSnapshot(BaseModel):
    """
    Rules copied from the season template when a week is created.

    A week keeps its snapshot even if the season rules change later.
    """

    points_to: int = Field(default=11, ge=1)
    win_by: int = Field(default=2, ge=1)
    best_of: int = Field(default=1, ge=1)
    promotion_count: int = Field(default=1, ge=0)
    relegation_count: int = Field(default=1, ge=0)
    # Tiebreaker keys are kept as plain strings; unknown keys are ignored when sorting
    tiebreakers: List[str] = Field(default_factory=lambda: list(DEFAULT_TIEBREAKERS))
    # None means every round of the box must be completed before movement
    min_completed_rounds_for_movement: Optional[int] = Field(default=None, ge=0)
    absence_policy: AbsencePolicy = AbsencePolicy.FREEZE
    allow_substitutes: bool = True
    # None means unlimited
    max_subs_per_season: Optional[int] = DEFAULT_MAX_SUBS_PER_SEASON
    substitutes: SubstituteRules = Field(default_factory=SubstituteRules)


# ============================================================================
# Week aggregate
# ============================================================================


class BoxAssignment(BaseModel):
    """Ordered players in one box. Order encodes seed position."""

    box_number: int = Field(ge=1)
    player_ids: List[str] = Field(default_factory=list)


class CourtAssignment(BaseModel):
    box_number: int
    court_label: str


class WeekAbsence(BaseModel):
    player_id: str
    box_number: int
    position_in_box: int  # Index into the box's player_ids at removal time
    declared_at: datetime
    declared_by_user_id: Optional[str] = None
    policy_applied: AbsencePolicy
    is_no_show: bool = False
    reason: Optional[str] = None
    reason_text: Optional[str] = None
    player_name: Optional[str] = None
    substitute_id: Optional[str] = None
    substitute_name: Optional[str] = None


class PlayerMovement(BaseModel):
    player_id: str
    from_box: int
    to_box: int
    reason: Movement


class BoxStanding(BaseModel):
    """Derived per-player result for one box. Recomputed, never patched."""

    player_id: str
    box_number: int
    position_in_box: int
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    points_diff: int = 0
    movement: Movement = Movement.STAYED
    was_absent: bool = False
    substitute_id: Optional[str] = None


class BoxStandingsResult(BaseModel):
    box_number: int
    standings: List[BoxStanding]
    completed_rounds: int
    total_rounds: int
    movement_frozen: bool


class StandingsSnapshot(BaseModel):
    week_number: int
    calculated_at: datetime
    matches_updated_at_max: Optional[datetime] = None
    source_match_count: int = 0
    boxes: List[BoxStandingsResult] = Field(default_factory=list)


class BoxWeek(BaseModel):
    """The week aggregate: the unit of transactional consistency."""

    model_config = ConfigDict(use_enum_values=False)

    id: Optional[int] = None
    league_id: int
    season_id: int
    week_number: int = Field(ge=1)
    state: WeekState = WeekState.DRAFT
    scheduled_date: Optional[date] = None
    box_assignments: List[BoxAssignment] = Field(default_factory=list)
    absences: List[WeekAbsence] = Field(default_factory=list)
    court_assignments: List[CourtAssignment] = Field(default_factory=list)
    rules_snapshot: WeekRulesSnapshot = Field(default_factory=WeekRulesSnapshot)
    attendance: Dict[str, AttendanceStatus] = Field(default_factory=dict)
    attendance_locked: bool = False
    frozen_boxes: List[int] = Field(default_factory=list)
    rotation_version: int = ROTATION_VERSION
    revision: int = 0
    updated_at: Optional[datetime] = None
    standings_snapshot: Optional[StandingsSnapshot] = None
    movements: List[PlayerMovement] = Field(default_factory=list)
    stats_applied: bool = False

    def find_player(self, player_id: str) -> Optional[tuple]:
        """Return (box_number, position_in_box) for a player, or None."""
        for box in self.box_assignments:
            if player_id in box.player_ids:
                return box.box_number, box.player_ids.index(player_id)
        return None

    def get_box(self, box_number: int) -> Optional[BoxAssignment]:
        for box in self.box_assignments:
            if box.box_number == box_number:
                return box
        return None

    def get_absence(self, player_id: str) -> Optional[WeekAbsence]:
        for absence in self.absences:
            if absence.player_id == player_id:
                return absence
        return None

    def all_player_ids(self) -> List[str]:
        return [pid for box in self.box_assignments for pid in box.player_ids]


# ============================================================================
# Packing and rotation
# ============================================================================


class BoxDistribution(BaseModel):
    box_number: int
    box_size: int
    player_ids: List[str]


class PackingCounts(BaseModel):
    fives: int = 0
    fours: int = 0
    sixes: int = 0


class BoxPackingResult(BaseModel):
    success: bool
    total_players: int
    box_sizes: List[int] = Field(default_factory=list)
    distribution: PackingCounts = Field(default_factory=PackingCounts)
    box_count: int = 0
    error: Optional[str] = None


class PlayerAdjustment(BaseModel):
    add: Optional[int] = None
    remove: Optional[int] = None
    message: str


class RebalanceCheck(BaseModel):
    needs_rebalance: bool
    current: PackingCounts
    ideal: Optional[PackingCounts] = None
    suggestion: Optional[str] = None


class GeneratedPairing(BaseModel):
    round_number: int
    team_a_player_ids: List[str]
    team_b_player_ids: List[str]
    bye_player_id: Optional[str] = None
    resting_player_ids: List[str] = Field(default_factory=list)


# ============================================================================
# Absence helpers
# ============================================================================


class SubstituteCandidate(BaseModel):
    """What the eligibility filter needs to know about a candidate."""

    player_id: str
    is_member: bool = False
    box_number: Optional[int] = None  # Box the candidate plays in when a member
    rating: Optional[float] = None
    external_rating_id: Optional[str] = None
    rating_consent: bool = False


class SubstituteEligibility(BaseModel):
    eligible: bool
    reason: Optional[str] = None


class SeasonAverage(BaseModel):
    """Per-match averages from a player's season so far."""

    matches_played: int = 0
    wins_per_match: float = 0.0
    points_for_per_match: float = 0.0
    points_against_per_match: float = 0.0


class AbsencePolicyResult(BaseModel):
    player_id: str
    matches_played: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    movement_override: Optional[Movement] = None


class TransitionCheck(BaseModel):
    allowed: bool
    reason: Optional[str] = None
