"""
Pure absence, substitute and attendance rules for the week aggregate.

Every mutator takes a BoxWeek and returns a modified copy, raising a typed
error when the change is not allowed. Nothing here touches the database;
absence_service runs these inside week_store.transactional_update.

Box order is seed order, so absences remember the slot a player was
removed from and substitutes and returning players go back into that slot.
"""

from datetime import datetime
from typing import Dict, Iterable, Optional

from boxleague.models.box_league import (
    AbsencePolicy,
    AbsencePolicyResult,
    AttendanceStatus,
    BoxAssignment,
    BoxWeek,
    Movement,
    SeasonAverage,
    SubstituteCandidate,
    SubstituteEligibility,
    SubstituteRules,
    SubBoxRestriction,
    WeekAbsence,
    WeekState,
)
from boxleague.services.exceptions import (
    AbsenceNotFoundError,
    DuplicateAbsenceError,
    InvalidTransitionError,
    PlayerNotAssignedError,
    SubstituteUnavailableError,
)
from boxleague.utils.constants import DEFAULT_EXPECTED_MATCHES, MIN_BOX_SIZE, MAX_BOX_SIZE
from boxleague.utils.datetime_utils import utcnow


# ============================================================================
# Absences
# ============================================================================


def _remove_for_absence(
    week: BoxWeek,
    player_id: str,
    declared_by: Optional[str],
    policy: Optional[AbsencePolicy],
    is_no_show: bool,
    reason: Optional[str],
    reason_text: Optional[str],
    player_name: Optional[str],
    now: Optional[datetime],
) -> BoxWeek:
    if week.get_absence(player_id) is not None:
        raise DuplicateAbsenceError("Absence already declared for this player")

    location = week.find_player(player_id)
    if location is None:
        raise PlayerNotAssignedError("Player is not assigned to this week")
    box_number, position = location

    week = week.model_copy(deep=True)
    week.get_box(box_number).player_ids.remove(player_id)
    week.absences.append(
        WeekAbsence(
            player_id=player_id,
            box_number=box_number,
            position_in_box=position,
            declared_at=now or utcnow(),
            declared_by_user_id=declared_by,
            policy_applied=policy or week.rules_snapshot.absence_policy,
            is_no_show=is_no_show,
            reason=reason,
            reason_text=reason_text,
            player_name=player_name,
        )
    )
    week.attendance[player_id] = AttendanceStatus.NO_SHOW if is_no_show else AttendanceStatus.EXCUSED
    return week


def declare_absence(
    week: BoxWeek,
    player_id: str,
    declared_by: Optional[str] = None,
    reason: Optional[str] = None,
    policy: Optional[AbsencePolicy] = None,
    reason_text: Optional[str] = None,
    player_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BoxWeek:
    """
    Take a player out of their box ahead of the week.

    Only allowed while the week is still a draft. The policy defaults to the
    week's rules snapshot.
    """
    if week.state != WeekState.DRAFT:
        raise InvalidTransitionError(
            f"Absences can only be declared while the week is in draft (week is {week.state.value})"
        )
    return _remove_for_absence(
        week, player_id, declared_by, policy, False, reason, reason_text, player_name, now
    )


def record_no_show(
    week: BoxWeek,
    player_id: str,
    marked_by: Optional[str] = None,
    policy: Optional[AbsencePolicy] = None,
    reason_text: Optional[str] = None,
    player_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BoxWeek:
    """Mark a player as a no-show (draft or active weeks)."""
    if week.state not in (WeekState.DRAFT, WeekState.ACTIVE):
        raise InvalidTransitionError(
            f"No-shows can only be recorded in draft or active weeks (week is {week.state.value})"
        )
    return _remove_for_absence(
        week, player_id, marked_by, policy, True, "no_show", reason_text, player_name, now
    )


def _ensure_box(week: BoxWeek, box_number: int) -> BoxAssignment:
    box = week.get_box(box_number)
    if box is None:
        # Box was removed while editing the draft; bring it back empty
        box = BoxAssignment(box_number=box_number, player_ids=[])
        week.box_assignments.append(box)
        week.box_assignments.sort(key=lambda b: b.box_number)
    return box


def cancel_absence(week: BoxWeek, player_id: str, is_organizer: bool = False) -> BoxWeek:
    """
    Put an absent player back into their box.

    The player returns to the slot recorded on their absence (clamped if the
    box shrank) and only the substitute linked to this absence is removed.
    """
    if week.state == WeekState.ACTIVE and not is_organizer:
        raise InvalidTransitionError("Only organizers can make players active during an active week")
    if week.state not in (WeekState.DRAFT, WeekState.ACTIVE):
        raise InvalidTransitionError(
            f"Absences cannot be cancelled once the week is {week.state.value}"
        )

    absence = week.get_absence(player_id)
    if absence is None:
        raise AbsenceNotFoundError(f"No absence recorded for player {player_id}")

    week = week.model_copy(deep=True)
    box = _ensure_box(week, absence.box_number)
    if absence.substitute_id and absence.substitute_id in box.player_ids:
        box.player_ids.remove(absence.substitute_id)

    position = min(absence.position_in_box, len(box.player_ids))
    box.player_ids.insert(position, player_id)
    week.absences = [a for a in week.absences if a.player_id != player_id]
    week.attendance[player_id] = AttendanceStatus.NOT_CHECKED_IN
    return week


# ============================================================================
# Substitutes
# ============================================================================


def assign_substitute(
    week: BoxWeek,
    absent_player_id: str,
    substitute_id: str,
    substitute_name: Optional[str] = None,
) -> BoxWeek:
    """Put a substitute into the absent player's slot."""
    if week.state not in (WeekState.DRAFT, WeekState.ACTIVE):
        raise InvalidTransitionError(
            f"Substitutes cannot be assigned once the week is {week.state.value}"
        )
    if not week.rules_snapshot.allow_substitutes:
        raise SubstituteUnavailableError("Substitutes are not allowed in this league")

    absence = week.get_absence(absent_player_id)
    if absence is None:
        raise AbsenceNotFoundError(f"No absence recorded for player {absent_player_id}")
    if absence.substitute_id:
        raise SubstituteUnavailableError("Absence already has a substitute assigned")
    if substitute_id in week.all_player_ids():
        raise SubstituteUnavailableError(f"Substitute {substitute_id} is already assigned to a box")
    if week.get_absence(substitute_id) is not None:
        raise SubstituteUnavailableError(f"Substitute {substitute_id} is absent this week")

    week = week.model_copy(deep=True)
    absence = week.get_absence(absent_player_id)
    box = _ensure_box(week, absence.box_number)
    position = min(absence.position_in_box, len(box.player_ids))
    box.player_ids.insert(position, substitute_id)
    absence.substitute_id = substitute_id
    absence.substitute_name = substitute_name
    return week


def remove_substitute(week: BoxWeek, absent_player_id: str) -> BoxWeek:
    """
    Take a substitute back out, leaving the absence in place.

    Draft only. Nothing changes when there is no absence or no substitute.
    """
    if week.state != WeekState.DRAFT:
        raise InvalidTransitionError(
            f"Substitutes can only be removed while the week is in draft (week is {week.state.value})"
        )

    absence = week.get_absence(absent_player_id)
    if absence is None or not absence.substitute_id:
        return week

    week = week.model_copy(deep=True)
    absence = week.get_absence(absent_player_id)
    box = week.get_box(absence.box_number)
    if box is not None and absence.substitute_id in box.player_ids:
        box.player_ids.remove(absence.substitute_id)
    absence.substitute_id = None
    absence.substitute_name = None
    return week


def can_be_substitute(
    candidate: SubstituteCandidate,
    absent_box_number: int,
    rules: SubstituteRules,
    playing_ids: Iterable[str] = (),
    absent_player_rating: Optional[float] = None,
) -> SubstituteEligibility:
    """
    Decide whether a candidate may fill a vacancy in absent_box_number.

    Pure predicate so callers can filter a candidate pool before trying an
    assignment.
    """
    if candidate.player_id in set(playing_ids):
        return SubstituteEligibility(eligible=False, reason="Already playing this week")

    if rules.sub_must_be_member and not candidate.is_member:
        return SubstituteEligibility(eligible=False, reason="Substitute must be a league member")

    if candidate.box_number is not None:
        if (
            rules.sub_allowed_from_boxes == SubBoxRestriction.SAME_ONLY
            and candidate.box_number != absent_box_number
        ):
            return SubstituteEligibility(
                eligible=False, reason=f"Substitute must come from box {absent_box_number}"
            )
        if (
            rules.sub_allowed_from_boxes == SubBoxRestriction.SAME_OR_LOWER
            and candidate.box_number < absent_box_number
        ):
            return SubstituteEligibility(
                eligible=False, reason="Substitute cannot come from a higher box"
            )

    if (
        rules.sub_max_rating_gap is not None
        and candidate.rating is not None
        and absent_player_rating is not None
        and abs(candidate.rating - absent_player_rating) > rules.sub_max_rating_gap
    ):
        return SubstituteEligibility(
            eligible=False,
            reason=f"Rating gap exceeds {rules.sub_max_rating_gap}",
        )

    if rules.sub_must_have_rating_linked and not candidate.external_rating_id:
        return SubstituteEligibility(eligible=False, reason="Substitute must have a linked rating account")

    if rules.sub_must_have_rating_consent and not candidate.rating_consent:
        return SubstituteEligibility(eligible=False, reason="Substitute must consent to rating submission")

    return SubstituteEligibility(eligible=True)


def has_exceeded_max_subs(subs_used: int, max_subs_per_season: Optional[int]) -> bool:
    """True when no more substitutes are allowed (None means unlimited)."""
    if max_subs_per_season is None:
        return False
    return subs_used >= max_subs_per_season


# ============================================================================
# Absence policy
# ============================================================================


def apply_absence_policy(
    policy: AbsencePolicy,
    player_id: str,
    season_average: Optional[SeasonAverage] = None,
    expected_matches: int = DEFAULT_EXPECTED_MATCHES,
) -> AbsencePolicyResult:
    """
    Synthetic standing contribution for an absent player.

    - freeze: zero stats, movement frozen
    - ghost_score: zero stats, ordinary movement rules
    - average_points: season per-match averages scaled to a full week,
      ghost_score behaviour when there is no history yet
    - auto_relegate: zero stats, movement forced to relegation
    """
    policy = AbsencePolicy(policy)

    if policy == AbsencePolicy.FREEZE:
        return AbsencePolicyResult(player_id=player_id, movement_override=Movement.FROZEN)

    if policy == AbsencePolicy.AUTO_RELEGATE:
        return AbsencePolicyResult(player_id=player_id, movement_override=Movement.RELEGATION)

    if policy == AbsencePolicy.AVERAGE_POINTS and season_average and season_average.matches_played > 0:
        wins = min(expected_matches, round(season_average.wins_per_match * expected_matches))
        return AbsencePolicyResult(
            player_id=player_id,
            matches_played=expected_matches,
            wins=wins,
            losses=expected_matches - wins,
            points_for=round(season_average.points_for_per_match * expected_matches),
            points_against=round(season_average.points_against_per_match * expected_matches),
        )

    return AbsencePolicyResult(player_id=player_id)


# ============================================================================
# Attendance
# ============================================================================


def check_in_player(week: BoxWeek, player_id: str, by_organizer: bool = False) -> BoxWeek:
    if week.state not in (WeekState.DRAFT, WeekState.ACTIVE):
        raise InvalidTransitionError(f"Check-in is closed (week is {week.state.value})")
    if week.attendance_locked and not by_organizer:
        raise InvalidTransitionError("Attendance is locked")
    if week.find_player(player_id) is None:
        raise PlayerNotAssignedError("Player is not assigned to this week")

    week = week.model_copy(deep=True)
    week.attendance[player_id] = AttendanceStatus.CHECKED_IN
    return week


def mark_excused(week: BoxWeek, player_id: str) -> BoxWeek:
    if week.state == WeekState.FINALIZED:
        raise InvalidTransitionError("Attendance cannot change after the week is finalized")
    if week.find_player(player_id) is None and week.get_absence(player_id) is None:
        raise PlayerNotAssignedError("Player is not assigned to this week")

    week = week.model_copy(deep=True)
    week.attendance[player_id] = AttendanceStatus.EXCUSED
    return week


def set_attendance_lock(week: BoxWeek, locked: bool) -> BoxWeek:
    week = week.model_copy(deep=True)
    week.attendance_locked = locked
    return week


# ============================================================================
# Summaries
# ============================================================================


def get_absence_summary(week: BoxWeek) -> Dict:
    by_box: Dict[int, int] = {}
    by_policy: Dict[str, int] = {}
    for absence in week.absences:
        by_box[absence.box_number] = by_box.get(absence.box_number, 0) + 1
        key = absence.policy_applied.value
        by_policy[key] = by_policy.get(key, 0) + 1

    with_subs = sum(1 for a in week.absences if a.substitute_id)
    return {
        "total": len(week.absences),
        "no_shows": sum(1 for a in week.absences if a.is_no_show),
        "with_substitutes": with_subs,
        "without_substitutes": len(week.absences) - with_subs,
        "by_box": by_box,
        "by_policy": by_policy,
    }


def can_box_run_matches(week: BoxWeek, box_number: int) -> bool:
    """True when the box currently has enough players to play its rotation."""
    box = week.get_box(box_number)
    return box is not None and MIN_BOX_SIZE <= len(box.player_ids) <= MAX_BOX_SIZE
