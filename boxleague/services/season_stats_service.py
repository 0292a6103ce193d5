"""
Season-long player stats for box leagues.

Unlike standings, these rows are a rolling aggregate: each finalized week is
added exactly once. finalize_week guards that with the week's stats_applied
flag and applies the update in the same transaction as the state change.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import SeasonPlayerStats
from boxleague.models.box_league import (
    AttendanceStatus,
    BoxWeek,
    Movement,
    PlayerMovement,
    SeasonAverage,
    StandingsSnapshot,
)
from boxleague.utils.constants import MIN_MATCHES_FOR_TOP_PERFORMER

logger = logging.getLogger(__name__)


def stats_to_dict(stats: SeasonPlayerStats) -> Dict:
    return {
        "season_id": stats.season_id,
        "player_id": stats.player_id,
        "weeks_played": stats.weeks_played,
        "weeks_absent": stats.weeks_absent,
        "weeks_as_substitute": stats.weeks_as_substitute,
        "total_matches": stats.total_matches,
        "total_wins": stats.total_wins,
        "total_losses": stats.total_losses,
        "total_points_for": stats.total_points_for,
        "total_points_against": stats.total_points_against,
        "win_percentage": stats.win_percentage,
        "starting_box": stats.starting_box,
        "current_box": stats.current_box,
        "highest_box": stats.highest_box,
        "promotions": stats.promotions,
        "relegations": stats.relegations,
        "no_shows": stats.no_shows,
        "check_in_rate": stats.check_in_rate,
        "final_standing": stats.final_standing,
    }


def _percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round(part / whole * 100)


async def get_player_stats(session: AsyncSession, season_id: int, player_id: str) -> Optional[SeasonPlayerStats]:
    result = await session.execute(
        select(SeasonPlayerStats).where(
            SeasonPlayerStats.season_id == season_id,
            SeasonPlayerStats.player_id == player_id,
        )
    )
    return result.scalar_one_or_none()


async def list_season_stats(session: AsyncSession, season_id: int) -> List[SeasonPlayerStats]:
    result = await session.execute(
        select(SeasonPlayerStats)
        .where(SeasonPlayerStats.season_id == season_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def initialize_player_stats(
    session: AsyncSession, season_id: int, player_id: str, box_number: Optional[int]
) -> SeasonPlayerStats:
    """Create a zeroed stats row for a player starting in box_number. Flushes, does not commit."""
    stats = SeasonPlayerStats(
        season_id=season_id,
        player_id=player_id,
        weeks_played=0,
        weeks_absent=0,
        weeks_as_substitute=0,
        total_matches=0,
        total_wins=0,
        total_losses=0,
        total_points_for=0,
        total_points_against=0,
        win_percentage=0,
        starting_box=box_number,
        current_box=box_number,
        highest_box=box_number,
        promotions=0,
        relegations=0,
        no_shows=0,
        check_in_rate=0,
    )
    session.add(stats)
    await session.flush()
    return stats


async def update_stats_after_week(
    session: AsyncSession,
    week: BoxWeek,
    snapshot: StandingsSnapshot,
    movements: List[PlayerMovement],
) -> int:
    """
    Add one finalized week to every player's season totals.

    Must run exactly once per week; the caller owns that guarantee and the
    transaction (this flushes but does not commit). Absent players count a
    week absent and keep their totals; synthetic absence-policy results only
    affect that week's ranking.

    Returns:
        Number of player rows updated
    """
    movement_by_player = {m.player_id: m for m in movements}
    updated = 0

    for box in snapshot.boxes:
        for standing in box.standings:
            stats = await get_player_stats(session, week.season_id, standing.player_id)
            if stats is None:
                stats = await initialize_player_stats(
                    session, week.season_id, standing.player_id, box.box_number
                )

            if standing.was_absent:
                stats.weeks_absent += 1
            else:
                stats.weeks_played += 1
                stats.total_matches += standing.matches_played
                stats.total_wins += standing.wins
                stats.total_losses += standing.losses
                stats.total_points_for += standing.points_for
                stats.total_points_against += standing.points_against

            movement = movement_by_player.get(standing.player_id)
            stats.current_box = movement.to_box if movement else box.box_number
            if stats.highest_box is None or stats.current_box < stats.highest_box:
                stats.highest_box = stats.current_box
            if movement is not None and movement.reason == Movement.PROMOTION:
                stats.promotions += 1
            elif movement is not None and movement.reason == Movement.RELEGATION:
                stats.relegations += 1

            if week.attendance.get(standing.player_id) == AttendanceStatus.NO_SHOW:
                stats.no_shows += 1

            stats.win_percentage = _percentage(stats.total_wins, stats.total_matches)
            stats.check_in_rate = _percentage(
                stats.weeks_played, stats.weeks_played + stats.weeks_absent
            )
            updated += 1

    for absence in week.absences:
        if absence.substitute_id:
            await record_substitute_play(session, week.season_id, absence.substitute_id)

    await session.flush()
    logger.info(
        f"Applied week {week.week_number} to season {week.season_id} stats for {updated} players"
    )
    return updated


async def record_substitute_play(session: AsyncSession, season_id: int, player_id: str) -> bool:
    """
    Count a week spent as a substitute.

    Only players who already have season stats (league members) are
    tracked; outside substitutes are ignored.
    """
    stats = await get_player_stats(session, season_id, player_id)
    if stats is None:
        return False
    stats.weeks_as_substitute += 1
    return True


async def get_season_averages(
    session: AsyncSession, season_id: int, player_ids: Iterable[str]
) -> Dict[str, SeasonAverage]:
    """Per-match averages for the given players (players without history are omitted)."""
    player_ids = list(player_ids)
    if not player_ids:
        return {}
    result = await session.execute(
        select(SeasonPlayerStats).where(
            SeasonPlayerStats.season_id == season_id,
            SeasonPlayerStats.player_id.in_(player_ids),
        )
    )
    averages = {}
    for stats in result.scalars().all():
        if stats.total_matches <= 0:
            continue
        averages[stats.player_id] = SeasonAverage(
            matches_played=stats.total_matches,
            wins_per_match=stats.total_wins / stats.total_matches,
            points_for_per_match=stats.total_points_for / stats.total_matches,
            points_against_per_match=stats.total_points_against / stats.total_matches,
        )
    return averages


# ============================================================================
# Leaderboards
# ============================================================================


def _box_sort_value(stats: SeasonPlayerStats) -> int:
    # Players without a box sort last
    return stats.current_box if stats.current_box is not None else 10 ** 6


async def get_season_leaderboard(session: AsyncSession, season_id: int, limit: Optional[int] = None) -> List[Dict]:
    """Players ranked by current box (top box first), then win percentage."""
    rows = await list_season_stats(session, season_id)
    rows.sort(key=lambda s: (_box_sort_value(s), -s.win_percentage, -s.total_wins, s.player_id))
    if limit is not None:
        rows = rows[:limit]
    return [dict(stats_to_dict(s), rank=i + 1) for i, s in enumerate(rows)]


async def get_top_performers(session: AsyncSession, season_id: int, limit: int = 5) -> List[Dict]:
    """Highest win percentage among players with enough matches."""
    rows = [
        s for s in await list_season_stats(session, season_id)
        if s.total_matches >= MIN_MATCHES_FOR_TOP_PERFORMER
    ]
    rows.sort(
        key=lambda s: (
            -s.win_percentage,
            -(s.total_points_for - s.total_points_against),
            s.player_id,
        )
    )
    return [stats_to_dict(s) for s in rows[:limit]]


async def get_most_improved(session: AsyncSession, season_id: int, limit: int = 5) -> List[Dict]:
    """Players who climbed the most boxes since their first week."""
    improved = []
    for stats in await list_season_stats(session, season_id):
        if stats.starting_box is None or stats.current_box is None:
            continue
        climbed = stats.starting_box - stats.current_box
        if climbed > 0:
            improved.append((climbed, stats))
    improved.sort(key=lambda item: (-item[0], item[1].player_id))
    return [dict(stats_to_dict(s), boxes_climbed=c) for c, s in improved[:limit]]


async def calculate_final_standings(
    session: AsyncSession,
    season_id: int,
    last_positions: Optional[Dict[str, int]] = None,
) -> List[Dict]:
    """
    Write final_standing for every player in the season.

    Order: current box, then finishing position in the last finalized week,
    then win percentage. Flushes, does not commit.
    """
    last_positions = last_positions or {}
    rows = await list_season_stats(session, season_id)
    rows.sort(
        key=lambda s: (
            _box_sort_value(s),
            last_positions.get(s.player_id, 10 ** 6),
            -s.win_percentage,
            s.player_id,
        )
    )
    for index, stats in enumerate(rows):
        stats.final_standing = index + 1
    await session.flush()
    return [stats_to_dict(s) for s in rows]
