"""
Adapter to the match domain.

The engine creates one match per box round when a week activates and later
reads back completed results. How a score is entered, confirmed or disputed
is owned elsewhere; record_match_result is the write that subsystem uses
once a result is final.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import BoxMatch, BoxMatchStatus
from boxleague.models.box_league import BoxWeek, WeekState
from boxleague.services import week_store
from boxleague.services.exceptions import InvalidTransitionError, MatchNotFoundError
from boxleague.services.rotation import generate_box_pairings
from boxleague.utils.datetime_utils import utcnow, ensure_utc

logger = logging.getLogger(__name__)

UNRESOLVED_STATUSES = (BoxMatchStatus.PENDING_VERIFICATION.value, BoxMatchStatus.DISPUTED.value)


def build_match_id(
    league_id: int,
    season_id: int,
    week_number: int,
    box_number: int,
    round_number: int,
    rotation_version: int,
) -> str:
    """Deterministic match id; the same inputs always name the same match."""
    return f"{league_id}-s{season_id}-w{week_number}-b{box_number}-r{round_number}-v{rotation_version}"


def match_to_dict(match: BoxMatch) -> Dict:
    return {
        "id": match.id,
        "season_id": match.season_id,
        "week_number": match.week_number,
        "box_number": match.box_number,
        "round_number": match.round_number,
        "team_a": list(match.team_a or []),
        "team_b": list(match.team_b or []),
        "status": match.status,
        "games": match.games,
        "winner_side": match.winner_side,
        "points_to": match.points_to,
        "win_by": match.win_by,
        "best_of": match.best_of,
        "updated_at": ensure_utc(match.updated_at).isoformat() if match.updated_at else None,
    }


async def create_matches_for_week(session: AsyncSession, week: BoxWeek) -> Dict[str, List[str]]:
    """
    Insert the rotation matches for every box in the week.

    Matches that already exist are left alone, so retries are safe. Does not
    commit; the caller's transaction owns the insert.

    Returns:
        {"created": [...ids], "existing": [...ids]}
    """
    rules = week.rules_snapshot
    planned: Dict[str, BoxMatch] = {}
    for box in week.box_assignments:
        for pairing in generate_box_pairings(box.player_ids):
            match_id = build_match_id(
                week.league_id,
                week.season_id,
                week.week_number,
                box.box_number,
                pairing.round_number,
                week.rotation_version,
            )
            planned[match_id] = BoxMatch(
                id=match_id,
                league_id=week.league_id,
                season_id=week.season_id,
                week_number=week.week_number,
                box_number=box.box_number,
                round_number=pairing.round_number,
                team_a=pairing.team_a_player_ids,
                team_b=pairing.team_b_player_ids,
                status=BoxMatchStatus.SCHEDULED.value,
                points_to=rules.points_to,
                win_by=rules.win_by,
                best_of=rules.best_of,
                updated_at=utcnow(),
            )

    if not planned:
        return {"created": [], "existing": []}

    result = await session.execute(select(BoxMatch.id).where(BoxMatch.id.in_(list(planned))))
    existing = set(result.scalars().all())

    created = []
    for match_id, match in planned.items():
        if match_id in existing:
            continue
        session.add(match)
        created.append(match_id)
    await session.flush()

    logger.info(
        f"Week {week.week_number} of season {week.season_id}: "
        f"created {len(created)} matches, {len(existing)} already existed"
    )
    return {"created": created, "existing": sorted(existing)}


async def get_week_matches(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    box_number: Optional[int] = None,
    status: Optional[str] = None,
) -> List[BoxMatch]:
    query = select(BoxMatch).where(
        BoxMatch.season_id == season_id,
        BoxMatch.week_number == week_number,
    )
    if box_number is not None:
        query = query.where(BoxMatch.box_number == box_number)
    if status is not None:
        query = query.where(BoxMatch.status == status)
    query = query.order_by(BoxMatch.box_number, BoxMatch.round_number)
    result = await session.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def get_completed_matches(
    session: AsyncSession, season_id: int, week_number: int, box_number: Optional[int] = None
) -> List[BoxMatch]:
    """Completed matches for a week, optionally for one box."""
    return await get_week_matches(
        session, season_id, week_number, box_number, status=BoxMatchStatus.COMPLETED.value
    )


async def count_blocking_matches(session: AsyncSession, season_id: int, week_number: int) -> Tuple[int, int]:
    """(pending_verification, disputed) match counts that block finalization."""
    result = await session.execute(
        select(BoxMatch.status, func.count())
        .where(
            BoxMatch.season_id == season_id,
            BoxMatch.week_number == week_number,
            BoxMatch.status.in_(UNRESOLVED_STATUSES),
        )
        .group_by(BoxMatch.status)
    )
    counts = dict(result.all())
    return (
        counts.get(BoxMatchStatus.PENDING_VERIFICATION.value, 0),
        counts.get(BoxMatchStatus.DISPUTED.value, 0),
    )


async def get_latest_match_update(
    session: AsyncSession, season_id: int, week_number: int
) -> Optional[datetime]:
    result = await session.execute(
        select(func.max(BoxMatch.updated_at)).where(
            BoxMatch.season_id == season_id,
            BoxMatch.week_number == week_number,
        )
    )
    return ensure_utc(result.scalar_one_or_none())


async def replace_player_in_open_matches(
    session: AsyncSession,
    season_id: int,
    week_number: int,
    box_number: int,
    old_player_id: str,
    new_player_id: str,
) -> int:
    """
    Swap a player in the box's unplayed matches (substitutes during play).

    Does not commit. Returns the number of matches changed.
    """
    matches = await get_week_matches(
        session, season_id, week_number, box_number, status=BoxMatchStatus.SCHEDULED.value
    )
    changed = 0
    for match in matches:
        team_a = [new_player_id if p == old_player_id else p for p in match.team_a]
        team_b = [new_player_id if p == old_player_id else p for p in match.team_b]
        if team_a != list(match.team_a) or team_b != list(match.team_b):
            match.team_a = team_a
            match.team_b = team_b
            match.updated_at = utcnow()
            changed += 1
    if changed:
        await session.flush()
    return changed


def _winner_from_games(games: List[List[int]]) -> str:
    won_a = sum(1 for a, b in games if a > b)
    won_b = sum(1 for a, b in games if b > a)
    if won_a == won_b:
        raise ValueError("Match result must have a winner")
    return "a" if won_a > won_b else "b"


async def record_match_result(
    session: AsyncSession,
    match_id: str,
    games: List[List[int]],
    status: str = BoxMatchStatus.COMPLETED.value,
) -> Dict:
    """
    Store final game scores for a match.

    Args:
        games: [[team_a_score, team_b_score], ...] per game
        status: completed, or pending_verification / disputed while the
            scoring subsystem is still resolving it

    Raises:
        InvalidTransitionError: The week is not active, or is closing and the
            match already had a final result
    """
    valid = {s.value for s in BoxMatchStatus}
    if status not in valid:
        raise ValueError(f"Invalid match status '{status}'")
    if not games:
        raise ValueError("At least one game score is required")
    for game in games:
        if len(game) != 2 or any(score < 0 for score in game):
            raise ValueError(f"Invalid game score {game}")
        if game[0] == game[1]:
            raise ValueError(f"Game cannot end tied: {game}")

    match = await session.get(BoxMatch, match_id)
    if match is None:
        raise MatchNotFoundError(f"Match {match_id} not found")

    week = await week_store.get_or_raise(session, match.season_id, match.week_number)
    # Closing weeks take no new results, only resolution of unverified ones
    resolving = week.state == WeekState.CLOSING and match.status in UNRESOLVED_STATUSES
    if week.state != WeekState.ACTIVE and not resolving:
        raise InvalidTransitionError(
            f"Cannot record a result for match {match_id}: week {week.week_number} is {week.state.value}"
        )

    match.games = [list(g) for g in games]
    match.winner_side = _winner_from_games(games)
    match.status = status
    match.updated_at = utcnow()
    await session.commit()
    await session.refresh(match)
    return match_to_dict(match)
