"""
Box standings and movement.

Standings are always derived: they are rebuilt from the week aggregate and
the completed matches every time, never patched. The result for a finalized
week is stored on the week as a snapshot, with a watermark of the newest
match update so callers can tell when it has gone stale.
"""

import logging
from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from boxleague.database.models import BoxMatch, BoxMatchStatus
from boxleague.models.box_league import (
    BoxAssignment,
    BoxStanding,
    BoxStandingsResult,
    BoxWeek,
    Movement,
    PlayerMovement,
    SeasonAverage,
    StandingsSnapshot,
    Tiebreaker,
)
from boxleague.services import match_service, season_stats_service
from boxleague.services.absence_rules import apply_absence_policy
from boxleague.services.rotation import get_round_count
from boxleague.utils.constants import (
    DEFAULT_EXPECTED_MATCHES,
    STANDINGS_FAST_PATH_SECONDS,
    VALID_BOX_SIZES,
)
from boxleague.utils.datetime_utils import utcnow, ensure_utc

logger = logging.getLogger(__name__)


# ============================================================================
# Tallies
# ============================================================================


class PlayerTally:
    """Running totals for one player while folding in a box's matches."""

    def __init__(self, player_id: str, seed_position: int):
        self.player_id = player_id
        self.seed_position = seed_position
        self.matches_played = 0
        self.wins = 0
        self.losses = 0
        self.points_for = 0
        self.points_against = 0
        self.was_absent = False
        self.substitute_id: Optional[str] = None
        self.movement_override: Optional[Movement] = None
        # opponent_id -> wins minus losses against that opponent
        self.head_to_head: Dict[str, int] = {}

    @property
    def points_diff(self) -> int:
        return self.points_for - self.points_against

    def record_match(self, won: bool, scored: int, conceded: int, opponents: Iterable[str]) -> None:
        self.matches_played += 1
        if won:
            self.wins += 1
        else:
            self.losses += 1
        self.points_for += scored
        self.points_against += conceded
        for opponent in opponents:
            self.head_to_head[opponent] = self.head_to_head.get(opponent, 0) + (1 if won else -1)


def standings_roster(week: BoxWeek, box: BoxAssignment) -> List[str]:
    """
    Players ranked in a box: the seeded members, never their substitutes.

    Substitutes are dropped and absent players go back into the slots they
    were removed from.
    """
    box_absences = sorted(
        (a for a in week.absences if a.box_number == box.box_number),
        key=lambda a: a.position_in_box,
    )
    substitutes = {a.substitute_id for a in box_absences if a.substitute_id}
    roster = [pid for pid in box.player_ids if pid not in substitutes]
    for absence in box_absences:
        roster.insert(min(absence.position_in_box, len(roster)), absence.player_id)
    return roster


def _game_totals(match: BoxMatch) -> Tuple[int, int]:
    points_a = sum(int(game[0]) for game in match.games or [])
    points_b = sum(int(game[1]) for game in match.games or [])
    return points_a, points_b


def fold_matches(tallies: Dict[str, PlayerTally], matches: Sequence[BoxMatch]) -> int:
    """
    Add completed match results to the tallies of regular players.

    Players without a tally (substitutes) and absent players are skipped, and
    no head-to-head is recorded against a substitute.

    Returns:
        Number of completed matches folded in
    """
    completed = 0
    for match in matches:
        if match.status != BoxMatchStatus.COMPLETED.value or match.winner_side not in ("a", "b"):
            continue
        completed += 1
        points_a, points_b = _game_totals(match)
        team_a = list(match.team_a or [])
        team_b = list(match.team_b or [])

        for side, team, opponents, scored, conceded in (
            ("a", team_a, team_b, points_a, points_b),
            ("b", team_b, team_a, points_b, points_a),
        ):
            for player_id in team:
                tally = tallies.get(player_id)
                if tally is None or tally.was_absent:
                    continue
                ranked_opponents = [
                    o for o in opponents if o in tallies and not tallies[o].was_absent
                ]
                tally.record_match(match.winner_side == side, scored, conceded, ranked_opponents)
    return completed


def scheduled_round_count(box_matches: Sequence[BoxMatch], roster_size: int) -> int:
    """
    Rounds a box has to play this week.

    Counts the box's generated matches that were not cancelled, since a
    no-show shrinks the box after its matches exist. Before matches are
    generated the rotation for the seeded roster is used.
    """
    scheduled = [m for m in box_matches if m.status != BoxMatchStatus.CANCELLED.value]
    if scheduled:
        return len(scheduled)
    return get_round_count(roster_size) if roster_size in VALID_BOX_SIZES else 0


# ============================================================================
# Sorting
# ============================================================================


def _tiebreaker_value(tally: PlayerTally, key: str):
    if key == Tiebreaker.WINS.value:
        return tally.wins
    if key == Tiebreaker.POINTS_DIFF.value:
        return tally.points_diff
    if key == Tiebreaker.POINTS_FOR.value:
        return tally.points_for
    if key == Tiebreaker.POINTS_AGAINST.value:
        return -tally.points_against  # Fewer conceded ranks higher
    return None


def sort_standings(tallies: List[PlayerTally], tiebreakers: List[str]) -> List[PlayerTally]:
    """
    Order players by the tiebreaker chain, best first.

    Keys are applied left to right until one separates two players. Head to
    head only separates a two-way tie (players level on every earlier
    numeric key). Seed position is the last resort, so the result does not
    depend on input order.
    """
    # For each head_to_head entry, how many players share the numeric values
    # of every key before it
    group_sizes: Dict[int, Dict[tuple, int]] = {}
    for index, key in enumerate(tiebreakers):
        if key != Tiebreaker.HEAD_TO_HEAD.value:
            continue
        numeric_before = [k for k in tiebreakers[:index] if k != Tiebreaker.HEAD_TO_HEAD.value]
        sizes: Dict[tuple, int] = {}
        for tally in tallies:
            group = tuple(_tiebreaker_value(tally, k) for k in numeric_before)
            sizes[group] = sizes.get(group, 0) + 1
        group_sizes[index] = sizes

    def compare(a: PlayerTally, b: PlayerTally) -> int:
        for index, key in enumerate(tiebreakers):
            if key == Tiebreaker.HEAD_TO_HEAD.value:
                numeric_before = [k for k in tiebreakers[:index] if k != Tiebreaker.HEAD_TO_HEAD.value]
                group = tuple(_tiebreaker_value(a, k) for k in numeric_before)
                if group_sizes[index].get(group, 0) != 2:
                    continue
                a_vs_b = a.head_to_head.get(b.player_id, 0)
                if a_vs_b > 0:
                    return -1
                if a_vs_b < 0:
                    return 1
                continue

            value_a = _tiebreaker_value(a, key)
            value_b = _tiebreaker_value(b, key)
            if value_a is None or value_a == value_b:
                continue
            return -1 if value_a > value_b else 1

        return a.seed_position - b.seed_position

    return sorted(tallies, key=cmp_to_key(compare))


# ============================================================================
# Box standings
# ============================================================================


def _position_movement(
    position: int,
    box_size: int,
    box_number: int,
    last_box_number: int,
    promotion_count: int,
    relegation_count: int,
) -> Movement:
    if box_number > 1 and position <= promotion_count:
        return Movement.PROMOTION
    if box_number < last_box_number and position > box_size - relegation_count:
        return Movement.RELEGATION
    return Movement.STAYED


def calculate_box_standings(
    week: BoxWeek,
    box: BoxAssignment,
    matches: Sequence[BoxMatch],
    season_averages: Optional[Dict[str, SeasonAverage]] = None,
) -> BoxStandingsResult:
    """
    Rank one box and decide who moves.

    Args:
        week: The week aggregate (absences, rules, frozen boxes)
        box: The box to rank
        matches: Matches for this box; anything not completed is ignored
        season_averages: Per-player averages for the average_points policy
    """
    rules = week.rules_snapshot
    season_averages = season_averages or {}

    roster = standings_roster(week, box)
    tallies: Dict[str, PlayerTally] = {
        pid: PlayerTally(pid, seed_position=index) for index, pid in enumerate(roster)
    }

    box_absences = {a.player_id: a for a in week.absences if a.box_number == box.box_number}
    for player_id, absence in box_absences.items():
        tally = tallies[player_id]
        tally.was_absent = True
        tally.substitute_id = absence.substitute_id

    box_matches = [m for m in matches if m.box_number == box.box_number]
    completed_rounds = fold_matches(tallies, box_matches)

    for player_id, absence in box_absences.items():
        contribution = apply_absence_policy(
            absence.policy_applied,
            player_id,
            season_averages.get(player_id),
            DEFAULT_EXPECTED_MATCHES,
        )
        tally = tallies[player_id]
        tally.matches_played = contribution.matches_played
        tally.wins = contribution.wins
        tally.losses = contribution.losses
        tally.points_for = contribution.points_for
        tally.points_against = contribution.points_against
        tally.movement_override = contribution.movement_override

    total_rounds = scheduled_round_count(box_matches, len(roster))
    required_rounds = (
        rules.min_completed_rounds_for_movement
        if rules.min_completed_rounds_for_movement is not None
        else total_rounds
    )
    movement_frozen = box.box_number in week.frozen_boxes or completed_rounds < required_rounds

    ordered = sort_standings(list(tallies.values()), rules.tiebreakers)
    last_box_number = max(b.box_number for b in week.box_assignments)

    standings = []
    for index, tally in enumerate(ordered):
        position = index + 1
        if movement_frozen:
            movement = Movement.FROZEN
        elif tally.movement_override is not None:
            movement = tally.movement_override
            # Nobody can drop below the bottom box
            if movement == Movement.RELEGATION and box.box_number >= last_box_number:
                movement = Movement.STAYED
        else:
            movement = _position_movement(
                position,
                len(ordered),
                box.box_number,
                last_box_number,
                rules.promotion_count,
                rules.relegation_count,
            )

        standings.append(
            BoxStanding(
                player_id=tally.player_id,
                box_number=box.box_number,
                position_in_box=position,
                matches_played=tally.matches_played,
                wins=tally.wins,
                losses=tally.losses,
                points_for=tally.points_for,
                points_against=tally.points_against,
                points_diff=tally.points_diff,
                movement=movement,
                was_absent=tally.was_absent,
                substitute_id=tally.substitute_id,
            )
        )

    return BoxStandingsResult(
        box_number=box.box_number,
        standings=standings,
        completed_rounds=completed_rounds,
        total_rounds=total_rounds,
        movement_frozen=movement_frozen,
    )


def movements_from_standings(boxes: List[BoxStandingsResult]) -> List[PlayerMovement]:
    """Promotion and relegation records; players who stay produce none."""
    movements = []
    for box in boxes:
        for standing in box.standings:
            if standing.movement == Movement.PROMOTION:
                to_box = box.box_number - 1
            elif standing.movement == Movement.RELEGATION:
                to_box = box.box_number + 1
            else:
                continue
            movements.append(
                PlayerMovement(
                    player_id=standing.player_id,
                    from_box=box.box_number,
                    to_box=to_box,
                    reason=standing.movement,
                )
            )
    return movements


def calculate_week_standings(
    week: BoxWeek,
    matches: Sequence[BoxMatch],
    season_averages: Optional[Dict[str, SeasonAverage]] = None,
    now: Optional[datetime] = None,
) -> Tuple[StandingsSnapshot, List[PlayerMovement]]:
    """Standings for every box plus the resulting movements."""
    boxes = [
        calculate_box_standings(week, box, matches, season_averages)
        for box in sorted(week.box_assignments, key=lambda b: b.box_number)
    ]
    watermark = None
    for match in matches:
        updated = ensure_utc(match.updated_at)
        if updated is not None and (watermark is None or updated > watermark):
            watermark = updated

    snapshot = StandingsSnapshot(
        week_number=week.week_number,
        calculated_at=now or utcnow(),
        matches_updated_at_max=watermark,
        source_match_count=sum(
            1 for m in matches if m.status == BoxMatchStatus.COMPLETED.value
        ),
        boxes=boxes,
    )
    return snapshot, movements_from_standings(boxes)


def is_standings_stale(
    snapshot: Optional[StandingsSnapshot],
    latest_match_updated_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """
    Whether a stored snapshot may no longer match the match data.

    Snapshots younger than the fast-path window are trusted without looking
    at matches.
    """
    if snapshot is None:
        return True
    now = now or utcnow()
    calculated_at = ensure_utc(snapshot.calculated_at)
    if now - calculated_at < timedelta(seconds=STANDINGS_FAST_PATH_SECONDS):
        return False
    latest = ensure_utc(latest_match_updated_at)
    if latest is None:
        return False
    watermark = ensure_utc(snapshot.matches_updated_at_max)
    return watermark is None or latest > watermark


# ============================================================================
# Database-backed reads
# ============================================================================


async def compute_week_standings(
    session: AsyncSession, week: BoxWeek
) -> Tuple[StandingsSnapshot, List[PlayerMovement]]:
    """Build standings for a week from its matches and season history."""
    matches = await match_service.get_week_matches(session, week.season_id, week.week_number)
    absent_ids = [a.player_id for a in week.absences]
    averages = await season_stats_service.get_season_averages(session, week.season_id, absent_ids)
    return calculate_week_standings(week, matches, averages)


async def get_week_standings(session: AsyncSession, week: BoxWeek) -> StandingsSnapshot:
    """
    Current standings for a week.

    Finalized weeks serve their stored snapshot unless match data has moved
    on since it was taken; everything else is computed fresh.
    """
    if week.standings_snapshot is not None:
        latest = await match_service.get_latest_match_update(session, week.season_id, week.week_number)
        if not is_standings_stale(week.standings_snapshot, latest):
            return week.standings_snapshot
        logger.info(f"Standings snapshot for week {week.week_number} is stale, recalculating")

    snapshot, _ = await compute_week_standings(session, week)
    return snapshot
