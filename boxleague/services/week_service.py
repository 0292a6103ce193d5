"""
Week lifecycle for box leagues: draft -> active -> closing -> finalized.

Transitions never skip a state and never go backwards. Each transition is
one transactional update of the week aggregate; side effects that must be
atomic with it (match creation on activate, season stats on finalize) run
in the same database transaction through the week store's write hook.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import Season, ScheduledWeekStatus, MemberStatus
from boxleague.models.box_league import (
    AttendanceStatus,
    BoxAssignment,
    BoxWeek,
    CourtAssignment,
    TransitionCheck,
    WeekRulesSnapshot,
    WeekState,
)
from boxleague.services import (
    league_service,
    match_service,
    promotion_service,
    season_stats_service,
    standings_service,
    week_store,
)
from boxleague.services.exceptions import (
    BoxSizeValidationError,
    BoxSizeViolation,
    InvalidTransitionError,
    MatchesPendingError,
    SeasonNotFoundError,
)
from boxleague.utils.constants import MIN_BOX_SIZE, MAX_BOX_SIZE

logger = logging.getLogger(__name__)

NEXT_STATE = {
    WeekState.DRAFT: WeekState.ACTIVE,
    WeekState.ACTIVE: WeekState.CLOSING,
    WeekState.CLOSING: WeekState.FINALIZED,
}


# ============================================================================
# Pure rules
# ============================================================================


def get_box_size_violations(week: BoxWeek) -> List[BoxSizeViolation]:
    """Boxes outside 4-6 players, with how many to add (+) or remove (-)."""
    violations = []
    for box in sorted(week.box_assignments, key=lambda b: b.box_number):
        size = len(box.player_ids)
        if size < MIN_BOX_SIZE:
            violations.append(BoxSizeViolation(box.box_number, size, MIN_BOX_SIZE - size))
        elif size > MAX_BOX_SIZE:
            violations.append(BoxSizeViolation(box.box_number, size, MAX_BOX_SIZE - size))
    return violations


def can_transition_to(
    week: BoxWeek,
    target: WeekState,
    pending_matches: int = 0,
    disputed_matches: int = 0,
) -> TransitionCheck:
    """Whether the week may move to target right now."""
    target = WeekState(target)
    if NEXT_STATE.get(week.state) != target:
        return TransitionCheck(
            allowed=False,
            reason=f"Cannot transition from {week.state.value} to {target.value}",
        )

    if target == WeekState.ACTIVE:
        if not week.box_assignments:
            return TransitionCheck(allowed=False, reason="Week has no box assignments")
        violations = get_box_size_violations(week)
        if violations:
            return TransitionCheck(allowed=False, reason=str(BoxSizeValidationError(violations)))

    if target == WeekState.FINALIZED and (pending_matches or disputed_matches):
        return TransitionCheck(allowed=False, reason=str(MatchesPendingError(pending_matches, disputed_matches)))

    return TransitionCheck(allowed=True)


def _require_transition(week: BoxWeek, target: WeekState) -> None:
    if NEXT_STATE.get(week.state) != target:
        raise InvalidTransitionError(f"Cannot transition from {week.state.value} to {target.value}")


def assign_courts_to_boxes(box_count: int, court_labels: Optional[List[str]]) -> List[CourtAssignment]:
    """Box 1 gets the first court and so on. Boxes beyond the court list get none."""
    labels = list(court_labels or [])
    if labels and box_count > len(labels):
        logger.warning(f"{box_count} boxes but only {len(labels)} courts configured")
    return [
        CourtAssignment(box_number=i + 1, court_label=label)
        for i, label in enumerate(labels[:box_count])
    ]


def build_week_draft(
    league_id: int,
    season_id: int,
    week_number: int,
    box_assignments: List[BoxAssignment],
    rules: WeekRulesSnapshot,
    court_labels: Optional[List[str]] = None,
    scheduled_date: Optional[date] = None,
) -> BoxWeek:
    players = [pid for box in box_assignments for pid in box.player_ids]
    return BoxWeek(
        league_id=league_id,
        season_id=season_id,
        week_number=week_number,
        state=WeekState.DRAFT,
        scheduled_date=scheduled_date,
        box_assignments=box_assignments,
        court_assignments=assign_courts_to_boxes(len(box_assignments), court_labels),
        rules_snapshot=rules.model_copy(deep=True),
        attendance={pid: AttendanceStatus.NOT_CHECKED_IN for pid in players},
    )


def _validate_assignments(box_assignments: List[BoxAssignment]) -> None:
    seen = set()
    numbers = set()
    for box in box_assignments:
        if box.box_number in numbers:
            raise ValueError(f"Box {box.box_number} appears more than once")
        numbers.add(box.box_number)
        for pid in box.player_ids:
            if pid in seen:
                raise ValueError(f"Player {pid} is assigned to more than one box")
            seen.add(pid)


def replace_box_assignments(week: BoxWeek, box_assignments: List[BoxAssignment]) -> BoxWeek:
    """Replace the draft lineup. Sizes are not checked until activation."""
    if week.state != WeekState.DRAFT:
        raise InvalidTransitionError("Box assignments can only be edited while the week is in draft")
    _validate_assignments(box_assignments)
    absent = {a.player_id for a in week.absences}
    clash = absent & {pid for box in box_assignments for pid in box.player_ids}
    if clash:
        raise ValueError(f"Absent players cannot be assigned: {', '.join(sorted(clash))}")

    week = week.model_copy(deep=True)
    week.box_assignments = sorted(
        [b.model_copy(deep=True) for b in box_assignments], key=lambda b: b.box_number
    )
    for pid in week.all_player_ids():
        week.attendance.setdefault(pid, AttendanceStatus.NOT_CHECKED_IN)
    return week


def replace_court_assignments(week: BoxWeek, court_assignments: List[CourtAssignment]) -> BoxWeek:
    if week.state != WeekState.DRAFT:
        raise InvalidTransitionError("Court assignments can only be edited while the week is in draft")
    week = week.model_copy(deep=True)
    week.court_assignments = [c.model_copy() for c in court_assignments]
    return week


def set_box_movement_frozen(week: BoxWeek, box_number: int, frozen: bool) -> BoxWeek:
    if week.state == WeekState.FINALIZED:
        raise InvalidTransitionError("Movement cannot be changed after the week is finalized")
    if week.get_box(box_number) is None:
        raise ValueError(f"Box {box_number} does not exist in week {week.week_number}")
    week = week.model_copy(deep=True)
    frozen_boxes = set(week.frozen_boxes)
    if frozen:
        frozen_boxes.add(box_number)
    else:
        frozen_boxes.discard(box_number)
    week.frozen_boxes = sorted(frozen_boxes)
    return week


# ============================================================================
# Season schedule helpers
# ============================================================================


async def _get_season(session: AsyncSession, season_id: int) -> Season:
    season = await session.get(Season, season_id, populate_existing=True)
    if season is None:
        raise SeasonNotFoundError(f"Season {season_id} not found")
    return season


def _schedule_entry(season: Season, week_number: int) -> Optional[Dict]:
    for entry in season.week_schedule or []:
        if entry.get("week_number") == week_number:
            return entry
    return None


async def set_schedule_status(session: AsyncSession, season_id: int, week_number: int, status: str) -> None:
    """Update one entry of the season's week schedule and commit."""
    season = await _get_season(session, season_id)
    schedule = [dict(entry) for entry in season.week_schedule or []]
    changed = False
    for entry in schedule:
        if entry.get("week_number") == week_number and entry.get("status") != status:
            entry["status"] = status
            changed = True
    if changed:
        season.week_schedule = schedule
        await session.commit()


# ============================================================================
# Queries
# ============================================================================


async def get_week(session: AsyncSession, season_id: int, week_number: int) -> BoxWeek:
    return await week_store.get_or_raise(session, season_id, week_number)


async def list_weeks(session: AsyncSession, season_id: int) -> List[BoxWeek]:
    return await week_store.list_for_season(session, season_id)


async def get_current_week(session: AsyncSession, season_id: int) -> Optional[BoxWeek]:
    """
    The week a season is working on.

    Lowest week number that is not finalized; when every week is finalized,
    the highest week number. None when the season has no weeks.
    """
    weeks = await list_weeks(session, season_id)
    if not weeks:
        return None
    open_weeks = [w for w in weeks if w.state != WeekState.FINALIZED]
    if open_weeks:
        return min(open_weeks, key=lambda w: w.week_number)
    return max(weeks, key=lambda w: w.week_number)


# ============================================================================
# Lifecycle
# ============================================================================


async def create_week_draft(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    box_assignments: List[BoxAssignment],
    scheduled_date: Optional[date] = None,
) -> BoxWeek:
    """
    Create a draft week, snapshotting the season's current rules.

    Returns the existing week unchanged if it was already created.
    """
    existing, exists = await week_store.get(session, season_id, week_number)
    if exists:
        return existing

    season = await _get_season(session, season_id)
    if week_number < 1 or week_number > season.total_weeks:
        raise ValueError(f"Week {week_number} is outside season {season_id} (1-{season.total_weeks})")
    _validate_assignments(box_assignments)

    if scheduled_date is None:
        entry = _schedule_entry(season, week_number)
        if entry:
            raw = entry.get("rescheduled_to") or entry.get("scheduled_date")
            scheduled_date = date.fromisoformat(raw) if raw else None

    week = build_week_draft(
        league_id=season.league_id,
        season_id=season_id,
        week_number=week_number,
        box_assignments=box_assignments,
        rules=WeekRulesSnapshot.model_validate(season.rules or {}),
        court_labels=season.court_labels,
        scheduled_date=scheduled_date,
    )
    created = await week_store.insert(session, week)
    logger.info(
        f"Created draft week {week_number} for season {season_id} "
        f"with {len(box_assignments)} boxes"
    )
    return created


async def update_box_assignments(
    session: AsyncSession, season_id: int, week_number: int, box_assignments: List[BoxAssignment]
) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda week: replace_box_assignments(week, box_assignments),
    )


async def update_court_assignments(
    session: AsyncSession, season_id: int, week_number: int, court_assignments: List[CourtAssignment]
) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda week: replace_court_assignments(week, court_assignments),
    )


async def freeze_box_movement(
    session: AsyncSession, season_id: int, week_number: int, box_number: int, frozen: bool = True
) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda week: set_box_movement_frozen(week, box_number, frozen),
    )


async def reset_to_draft(session: AsyncSession, season_id: int, week_number: int) -> BoxWeek:
    """
    Regenerate a draft week's boxes from the current roster.

    Absences, attendance and court assignments start over. Only valid while
    the week is still a draft.
    """
    week = await week_store.get_or_raise(session, season_id, week_number)
    if week.state != WeekState.DRAFT:
        raise InvalidTransitionError("Only draft weeks can be reset")

    season = await _get_season(session, season_id)
    assignments = await league_service.build_assignments_from_roster(session, season.league_id)
    court_labels = season.court_labels

    def _reset(current: BoxWeek) -> BoxWeek:
        if current.state != WeekState.DRAFT:
            raise InvalidTransitionError("Only draft weeks can be reset")
        current.box_assignments = [a.model_copy(deep=True) for a in assignments]
        current.absences = []
        current.frozen_boxes = []
        current.attendance = {
            pid: AttendanceStatus.NOT_CHECKED_IN for pid in current.all_player_ids()
        }
        current.attendance_locked = False
        current.court_assignments = assign_courts_to_boxes(len(assignments), court_labels)
        return current

    updated = await week_store.transactional_update(session, season_id, week_number, _reset)
    logger.info(f"Reset week {week_number} of season {season_id} to a fresh draft")
    return updated


async def activate_week(session: AsyncSession, season_id: int, week_number: int) -> BoxWeek:
    """
    draft -> active.

    Every box must hold 4-6 players. Matches are created in the same
    transaction, so a failed activation leaves neither an active week nor
    stray matches behind.
    """

    def _activate(week: BoxWeek) -> BoxWeek:
        _require_transition(week, WeekState.ACTIVE)
        if not week.box_assignments:
            raise InvalidTransitionError("Week has no box assignments")
        violations = get_box_size_violations(week)
        if violations:
            raise BoxSizeValidationError(violations)
        week.state = WeekState.ACTIVE
        return week

    async def _create_matches(session: AsyncSession, previous: BoxWeek, week: BoxWeek) -> None:
        await match_service.create_matches_for_week(session, week)

    week = await week_store.transactional_update(
        session, season_id, week_number, _activate, on_write=_create_matches
    )
    logger.info(f"Activated week {week_number} of season {season_id}")
    await set_schedule_status(session, season_id, week_number, ScheduledWeekStatus.ACTIVE.value)
    return week


async def start_closing_week(session: AsyncSession, season_id: int, week_number: int) -> BoxWeek:
    """active -> closing. No new results or absence edits after this."""

    def _close(week: BoxWeek) -> BoxWeek:
        _require_transition(week, WeekState.CLOSING)
        week.state = WeekState.CLOSING
        return week

    week = await week_store.transactional_update(session, season_id, week_number, _close)
    logger.info(f"Week {week_number} of season {season_id} is closing")
    return week


async def finalize_week(session: AsyncSession, season_id: int, week_number: int) -> Dict:
    """
    closing -> finalized.

    Computes standings and movements, applies season stats once, then
    creates the next week's draft. Calling it again on a finalized week
    changes nothing and returns the stored result.

    Returns:
        {"week", "standings", "movements", "already_finalized", "next_week"}
    """
    already_finalized = False

    async def _finalize(week: BoxWeek) -> Optional[BoxWeek]:
        nonlocal already_finalized
        if week.state == WeekState.FINALIZED:
            already_finalized = True
            return None
        _require_transition(week, WeekState.FINALIZED)

        pending, disputed = await match_service.count_blocking_matches(session, season_id, week_number)
        if pending or disputed:
            raise MatchesPendingError(pending, disputed)

        snapshot, movements = await standings_service.compute_week_standings(session, week)
        week.standings_snapshot = snapshot
        week.movements = movements
        week.state = WeekState.FINALIZED
        return week

    async def _apply_stats(session: AsyncSession, previous: BoxWeek, week: BoxWeek) -> None:
        if previous.stats_applied:
            return
        await season_stats_service.update_stats_after_week(
            session, week, week.standings_snapshot, week.movements
        )
        week.stats_applied = True

    week = await week_store.transactional_update(
        session, season_id, week_number, _finalize, on_write=_apply_stats
    )
    if already_finalized:
        logger.info(f"Week {week_number} of season {season_id} already finalized")
    else:
        logger.info(
            f"Finalized week {week_number} of season {season_id}: "
            f"{len(week.movements)} movements"
        )

    await set_schedule_status(session, season_id, week_number, ScheduledWeekStatus.COMPLETED.value)
    next_week = await _create_next_week(session, week)

    return {
        "week": week,
        "standings": week.standings_snapshot,
        "movements": week.movements,
        "already_finalized": already_finalized,
        "next_week": next_week,
    }


async def _create_next_week(session: AsyncSession, week: BoxWeek) -> Optional[BoxWeek]:
    """
    Draft the following week from this week's movements.

    Cancelled weeks are skipped, so the draft goes to the next scheduled
    week; nothing is drafted after the last one. Members who withdrew are
    dropped and new active members join the bottom box.
    """
    season = await _get_season(session, week.season_id)
    next_number = week.week_number + 1
    while next_number <= season.total_weeks:
        entry = _schedule_entry(season, next_number)
        if not entry or entry.get("status") != ScheduledWeekStatus.CANCELLED.value:
            break
        logger.info(f"Week {next_number} of season {season.id} is cancelled, not drafting it")
        next_number += 1
    if next_number > season.total_weeks:
        return None

    existing, exists = await week_store.get(session, week.season_id, next_number)
    if exists:
        return existing

    assignments = promotion_service.generate_next_week_assignments(
        week.standings_snapshot.boxes if week.standings_snapshot else [], week.movements
    )

    members = await league_service.list_members(session, season.league_id)
    status_by_player = {m.player_id: m.status for m in members}
    assigned = {pid for box in assignments for pid in box.player_ids}
    for player_id in sorted(assigned):
        status = status_by_player.get(player_id)
        if status is not None and status != MemberStatus.ACTIVE.value:
            assignments = promotion_service.remove_withdrawn_player(assignments, player_id)
    for member in members:
        if member.status == MemberStatus.ACTIVE.value and member.player_id not in assigned:
            assignments = promotion_service.place_new_joiner(assignments, member.player_id)
    assignments = [
        BoxAssignment(box_number=i + 1, player_ids=b.player_ids)
        for i, b in enumerate(a for a in assignments if a.player_ids)
    ]

    return await create_week_draft(session, week.season_id, next_number, assignments)
