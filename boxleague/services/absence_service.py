"""
Absence, substitute and attendance operations against stored weeks.

Thin async layer over absence_rules: each call is one transactional update
of the week. During an active week the box's unplayed matches follow the
lineup, so substitutes are swapped in and out of them in the same
transaction.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import MemberStatus
from boxleague.models.box_league import (
    AbsencePolicy,
    BoxWeek,
    SubstituteCandidate,
    WeekState,
)
from boxleague.services import (
    absence_rules,
    league_service,
    match_service,
    season_stats_service,
    week_store,
)
from boxleague.services.exceptions import AbsenceNotFoundError, SubstituteUnavailableError

logger = logging.getLogger(__name__)


async def _current_box(session: AsyncSession, season_id: int, player_id: str) -> Optional[int]:
    """Box a player is currently seeded in this season, if they have played."""
    stats = await season_stats_service.get_player_stats(session, season_id, player_id)
    return stats.current_box if stats is not None else None


async def declare_absence(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    player_id: str,
    declared_by: Optional[str] = None,
    reason: Optional[str] = None,
    policy: Optional[AbsencePolicy] = None,
    reason_text: Optional[str] = None,
    player_name: Optional[str] = None,
) -> BoxWeek:
    week = await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.declare_absence(
            w, player_id,
            declared_by=declared_by,
            reason=reason,
            policy=policy,
            reason_text=reason_text,
            player_name=player_name,
        ),
    )
    logger.info(f"Player {player_id} declared absent for week {week_number} of season {season_id}")
    return week


async def record_no_show(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    player_id: str,
    marked_by: Optional[str] = None,
    policy: Optional[AbsencePolicy] = None,
    reason_text: Optional[str] = None,
    player_name: Optional[str] = None,
) -> BoxWeek:
    week = await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.record_no_show(
            w, player_id,
            marked_by=marked_by,
            policy=policy,
            reason_text=reason_text,
            player_name=player_name,
        ),
    )
    logger.info(f"Player {player_id} marked as no-show for week {week_number} of season {season_id}")
    return week


async def cancel_absence(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    player_id: str,
    is_organizer: bool = False,
) -> BoxWeek:
    """Return an absent player to their box, removing their substitute if any."""

    async def _swap_back(session: AsyncSession, previous: BoxWeek, week: BoxWeek) -> None:
        absence = previous.get_absence(player_id)
        if previous.state == WeekState.ACTIVE and absence is not None and absence.substitute_id:
            await match_service.replace_player_in_open_matches(
                session, season_id, week_number, absence.box_number,
                absence.substitute_id, player_id,
            )

    week = await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.cancel_absence(w, player_id, is_organizer=is_organizer),
        on_write=_swap_back,
    )
    logger.info(f"Cancelled absence of player {player_id} for week {week_number} of season {season_id}")
    return week


async def assign_substitute(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    absent_player_id: str,
    substitute_id: str,
    substitute_name: Optional[str] = None,
) -> BoxWeek:
    """
    Fill an absence with a substitute.

    League members are checked against the week's substitute rules and the
    absent player's season allowance. The absent player's counter goes up
    once the week is written.
    """

    async def _assign(week: BoxWeek) -> BoxWeek:
        absence = week.get_absence(absent_player_id)
        if absence is None:
            raise AbsenceNotFoundError(f"No absence recorded for player {absent_player_id}")

        rules = week.rules_snapshot
        absent_member = await league_service.get_member(session, week.league_id, absent_player_id)
        if absent_member is not None and absence_rules.has_exceeded_max_subs(
            absent_member.subs_used_this_season, rules.max_subs_per_season
        ):
            raise SubstituteUnavailableError(
                f"Player {absent_player_id} has used all {rules.max_subs_per_season} substitutes this season"
            )

        candidate = await league_service.get_substitute_candidate(
            session, week.league_id, substitute_id,
            await _current_box(session, season_id, substitute_id),
        )
        eligibility = absence_rules.can_be_substitute(
            candidate,
            absence.box_number,
            rules.substitutes,
            playing_ids=week.all_player_ids(),
            absent_player_rating=absent_member.rating if absent_member else None,
        )
        if not eligibility.eligible:
            raise SubstituteUnavailableError(eligibility.reason)

        return absence_rules.assign_substitute(week, absent_player_id, substitute_id, substitute_name)

    async def _swap_in(session: AsyncSession, previous: BoxWeek, week: BoxWeek) -> None:
        if previous.state == WeekState.ACTIVE:
            absence = week.get_absence(absent_player_id)
            await match_service.replace_player_in_open_matches(
                session, season_id, week_number, absence.box_number,
                absent_player_id, substitute_id,
            )

    week = await week_store.transactional_update(
        session, season_id, week_number, _assign, on_write=_swap_in
    )
    logger.info(
        f"Substitute {substitute_id} assigned for player {absent_player_id} "
        f"in week {week_number} of season {season_id}"
    )

    try:
        await league_service.increment_subs_used(session, week.league_id, absent_player_id)
    except Exception as e:
        await session.rollback()
        logger.warning(f"Could not update substitute count for player {absent_player_id}: {e}")

    return week


async def remove_substitute(
    session: AsyncSession, season_id: int, week_number: int, absent_player_id: str
) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.remove_substitute(w, absent_player_id),
    )


async def find_eligible_substitutes(
    session: AsyncSession, season_id: int, week_number: int, absent_player_id: str
) -> List[Dict]:
    """
    League members who could fill this absence, best rating match first.

    Members already playing in the week or absent themselves are left out.
    """
    week = await week_store.get_or_raise(session, season_id, week_number)
    absence = week.get_absence(absent_player_id)
    if absence is None:
        raise AbsenceNotFoundError(f"No absence recorded for player {absent_player_id}")

    absent_member = await league_service.get_member(session, week.league_id, absent_player_id)
    absent_rating = absent_member.rating if absent_member else None
    playing = set(week.all_player_ids())
    absent_ids = {a.player_id for a in week.absences}

    eligible = []
    for member in await league_service.list_members(session, week.league_id):
        if member.player_id in playing or member.player_id in absent_ids:
            continue
        if member.status != MemberStatus.ACTIVE.value:
            continue
        candidate = SubstituteCandidate(
            player_id=member.player_id,
            is_member=True,
            box_number=await _current_box(session, season_id, member.player_id),
            rating=member.rating,
            external_rating_id=member.external_rating_id,
            rating_consent=member.rating_consent,
        )
        check = absence_rules.can_be_substitute(
            candidate,
            absence.box_number,
            week.rules_snapshot.substitutes,
            playing_ids=playing,
            absent_player_rating=absent_rating,
        )
        if check.eligible:
            eligible.append(league_service.member_to_dict(member))

    if absent_rating is not None:
        eligible.sort(
            key=lambda m: (m["rating"] is None, abs((m["rating"] or 0.0) - absent_rating))
        )
    return eligible


# ============================================================================
# Attendance
# ============================================================================


async def check_in_player(
    session: AsyncSession, season_id: int, week_number: int, player_id: str, by_organizer: bool = False
) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.check_in_player(w, player_id, by_organizer=by_organizer),
    )


async def mark_excused(session: AsyncSession, season_id: int, week_number: int, player_id: str) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.mark_excused(w, player_id),
    )


async def set_attendance_lock(session: AsyncSession, season_id: int, week_number: int, locked: bool) -> BoxWeek:
    return await week_store.transactional_update(
        session, season_id, week_number,
        lambda w: absence_rules.set_attendance_lock(w, locked),
    )


async def get_absence_summary(session: AsyncSession, season_id: int, week_number: int) -> Dict:
    week = await week_store.get_or_raise(session, season_id, week_number)
    return absence_rules.get_absence_summary(week)
