"""
Pydantic models for API request validation.
"""

from typing import Optional, List
from pydantic import BaseModel, Field

from boxleague.models.box_league import AbsencePolicy, BoxAssignment, CourtAssignment


class CreateLeagueRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class AddMemberRequest(BaseModel):
    """Request to add a player to a league roster."""

    player_id: str
    display_name: str
    rating: Optional[float] = None
    role: str = "member"
    external_rating_id: Optional[str] = None
    rating_consent: bool = False


class UpdateMemberStatusRequest(BaseModel):
    status: str


class CreateSeasonRequest(BaseModel):
    """Request to create a season. week_dates must have one ISO date per week."""

    name: Optional[str] = None
    start_date: str
    end_date: str
    total_weeks: int = Field(ge=1)
    week_dates: List[str]
    rules: Optional[dict] = None  # WeekRulesSnapshot fields, defaults when omitted
    court_labels: Optional[List[str]] = None


class RescheduleWeekRequest(BaseModel):
    new_date: str


class UpdateBoxAssignmentsRequest(BaseModel):
    box_assignments: List[BoxAssignment]


class UpdateCourtAssignmentsRequest(BaseModel):
    court_assignments: List[CourtAssignment]


class FreezeBoxRequest(BaseModel):
    frozen: bool = True


class DeclareAbsenceRequest(BaseModel):
    """Request to declare a player absent for a week."""

    player_id: str
    declared_by: Optional[str] = None
    reason: Optional[str] = None
    reason_text: Optional[str] = None
    policy: Optional[AbsencePolicy] = None  # Defaults to the week's rules
    player_name: Optional[str] = None


class RecordNoShowRequest(BaseModel):
    player_id: str
    marked_by: Optional[str] = None
    reason_text: Optional[str] = None
    policy: Optional[AbsencePolicy] = None
    player_name: Optional[str] = None


class CancelAbsenceRequest(BaseModel):
    is_organizer: bool = False


class AssignSubstituteRequest(BaseModel):
    substitute_id: str
    substitute_name: Optional[str] = None


class CheckInRequest(BaseModel):
    player_id: str
    by_organizer: bool = False


class AttendanceLockRequest(BaseModel):
    locked: bool


class RecordMatchResultRequest(BaseModel):
    """Final game scores for a box match, [team_a, team_b] per game."""

    games: List[List[int]] = Field(min_length=1)
    status: str = "completed"
