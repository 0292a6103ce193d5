"""
Tests for box standings, tiebreakers and movement.
"""
from datetime import datetime, timedelta
from itertools import permutations

import pytz

from boxleague.database.models import BoxMatch, BoxMatchStatus
from boxleague.models.box_league import (
    AbsencePolicy,
    AttendanceStatus,
    BoxAssignment,
    BoxWeek,
    Movement,
    SeasonAverage,
    StandingsSnapshot,
    WeekRulesSnapshot,
    WeekState,
)
from boxleague.services import absence_rules, promotion_service
from boxleague.services.rotation import generate_box_pairings
from boxleague.services.standings_service import (
    PlayerTally,
    calculate_box_standings,
    calculate_week_standings,
    is_standings_stale,
    sort_standings,
    standings_roster,
)

NOW = datetime(2025, 3, 4, 20, 0, tzinfo=pytz.UTC)


def make_week(**rules):
    boxes = [
        BoxAssignment(box_number=1, player_ids=["a1", "a2", "a3", "a4"]),
        BoxAssignment(box_number=2, player_ids=["b1", "b2", "b3", "b4"]),
    ]
    return BoxWeek(
        league_id=1,
        season_id=1,
        week_number=1,
        state=WeekState.CLOSING,
        box_assignments=boxes,
        rules_snapshot=WeekRulesSnapshot(**rules),
        attendance={pid: AttendanceStatus.CHECKED_IN for b in boxes for pid in b.player_ids},
    )


def play_box(week, box_number, scores, status=BoxMatchStatus.COMPLETED.value):
    """Matches for a box's current lineup; scores[i] is round i+1's (team_a, team_b)."""
    box = week.get_box(box_number)
    matches = []
    for pairing, (score_a, score_b) in zip(generate_box_pairings(box.player_ids), scores):
        matches.append(
            BoxMatch(
                id=f"w1-b{box_number}-r{pairing.round_number}",
                league_id=1,
                season_id=1,
                week_number=week.week_number,
                box_number=box_number,
                round_number=pairing.round_number,
                team_a=pairing.team_a_player_ids,
                team_b=pairing.team_b_player_ids,
                status=status,
                games=[[score_a, score_b]],
                winner_side="a" if score_a > score_b else "b",
                points_to=11,
                win_by=2,
                best_of=1,
                updated_at=NOW,
            )
        )
    return matches


# Round 3 goes to team b, so seed 2 finishes first on points difference
STANDARD_SCORES = [(11, 5), (11, 9), (7, 11)]


def tally(player_id, seed, wins=0, pf=0, pa=0, h2h=None):
    t = PlayerTally(player_id, seed)
    t.wins = wins
    t.points_for = pf
    t.points_against = pa
    t.head_to_head = h2h or {}
    return t


# ============================================================================
# Tiebreakers
# ============================================================================

def test_head_to_head_breaks_two_way_tie():
    x = tally("x", 1, wins=2, pf=20, pa=25, h2h={"y": 1})
    y = tally("y", 0, wins=2, pf=30, pa=20, h2h={"x": -1})
    z = tally("z", 2, wins=0)
    ordered = sort_standings([y, z, x], ["wins", "head_to_head", "points_diff"])
    assert [t.player_id for t in ordered] == ["x", "y", "z"]


def test_head_to_head_ignored_for_three_way_tie():
    x = tally("x", 0, wins=2, pf=20, pa=25, h2h={"y": 1, "z": -1})
    y = tally("y", 1, wins=2, pf=30, pa=20, h2h={"x": -1, "z": 1})
    z = tally("z", 2, wins=2, pf=22, pa=21, h2h={"x": 1, "y": -1})
    ordered = sort_standings([x, y, z], ["wins", "head_to_head", "points_diff"])
    assert [t.player_id for t in ordered] == ["y", "z", "x"]


def test_points_against_ranks_fewer_conceded_higher():
    x = tally("x", 0, wins=1, pf=10, pa=30)
    y = tally("y", 1, wins=1, pf=10, pa=12)
    ordered = sort_standings([x, y], ["wins", "points_against"])
    assert [t.player_id for t in ordered] == ["y", "x"]


def test_unknown_tiebreaker_is_ignored_and_seed_decides():
    x = tally("x", 1, wins=1)
    y = tally("y", 0, wins=1)
    ordered = sort_standings([x, y], ["wins", "coin_flip"])
    assert [t.player_id for t in ordered] == ["y", "x"]


def test_sort_is_independent_of_input_order():
    tallies = [
        tally("a", 0, wins=2, pf=29, pa=25),
        tally("b", 1, wins=2, pf=31, pa=23),
        tally("c", 2, wins=2, pf=27, pa=27),
        tally("d", 3, wins=0, pf=21, pa=33),
    ]
    expected = ["b", "a", "c", "d"]
    for perm in permutations(tallies):
        ordered = sort_standings(list(perm), ["wins", "head_to_head", "points_diff", "points_for"])
        assert [t.player_id for t in ordered] == expected


# ============================================================================
# Box standings and movement
# ============================================================================

def test_week_standings_promote_and_relegate():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES) + play_box(week, 2, STANDARD_SCORES)

    snapshot, movements = calculate_week_standings(week, matches, now=NOW)

    box1, box2 = snapshot.boxes
    assert [s.player_id for s in box1.standings] == ["a2", "a1", "a3", "a4"]
    assert [s.movement for s in box1.standings] == [
        Movement.STAYED, Movement.STAYED, Movement.STAYED, Movement.RELEGATION,
    ]
    assert [s.player_id for s in box2.standings] == ["b2", "b1", "b3", "b4"]
    # Nobody is relegated out of the bottom box
    assert box2.standings[-1].movement == Movement.STAYED
    assert box2.standings[0].movement == Movement.PROMOTION

    assert {(m.player_id, m.from_box, m.to_box, m.reason) for m in movements} == {
        ("a4", 1, 2, Movement.RELEGATION),
        ("b2", 2, 1, Movement.PROMOTION),
    }
    assert snapshot.source_match_count == 6
    assert snapshot.matches_updated_at_max == NOW
    assert box1.completed_rounds == 3 and box1.total_rounds == 3


def test_stats_on_standings():
    week = make_week()
    result = calculate_box_standings(week, week.get_box(1), play_box(week, 1, STANDARD_SCORES))
    a2 = next(s for s in result.standings if s.player_id == "a2")
    assert (a2.matches_played, a2.wins, a2.losses) == (3, 2, 1)
    assert (a2.points_for, a2.points_against, a2.points_diff) == (31, 23, 8)


def test_standings_ignore_match_order():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES)
    expected = calculate_box_standings(week, week.get_box(1), matches)
    for perm in permutations(matches):
        assert calculate_box_standings(week, week.get_box(1), list(perm)) == expected


def unplayed(match):
    match.status = BoxMatchStatus.SCHEDULED.value
    match.games = None
    match.winner_side = None
    return match


def test_incomplete_box_is_frozen():
    week = make_week()
    box1_matches = play_box(week, 1, STANDARD_SCORES)
    unplayed(box1_matches[2])
    matches = box1_matches + play_box(week, 2, STANDARD_SCORES)
    snapshot, movements = calculate_week_standings(week, matches, now=NOW)

    box1 = snapshot.boxes[0]
    assert box1.movement_frozen
    assert box1.completed_rounds == 2
    assert box1.total_rounds == 3
    assert all(s.movement == Movement.FROZEN for s in box1.standings)
    assert [m.player_id for m in movements] == ["b2"]


def test_min_completed_rounds_allows_movement():
    week = make_week(min_completed_rounds_for_movement=2)
    matches = play_box(week, 1, STANDARD_SCORES)[:2]
    result = calculate_box_standings(week, week.get_box(1), matches)
    assert not result.movement_frozen


def test_pending_matches_do_not_count():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES, status=BoxMatchStatus.PENDING_VERIFICATION.value)
    result = calculate_box_standings(week, week.get_box(1), matches)
    assert result.completed_rounds == 0
    assert all(s.matches_played == 0 for s in result.standings)


def test_organizer_frozen_box():
    week = make_week()
    week.frozen_boxes = [2]
    matches = play_box(week, 1, STANDARD_SCORES) + play_box(week, 2, STANDARD_SCORES)
    _, movements = calculate_week_standings(week, matches, now=NOW)
    assert [m.player_id for m in movements] == ["a4"]


# ============================================================================
# Absences in standings
# ============================================================================

def _week_with_absence(player_id, policy):
    week = make_week()
    week.state = WeekState.DRAFT
    week = absence_rules.declare_absence(week, player_id, policy=policy)
    week = absence_rules.assign_substitute(week, player_id, "s1")
    week.state = WeekState.CLOSING
    return week


def test_no_show_during_play_keeps_box_frozen_until_played():
    week = make_week()
    week.state = WeekState.ACTIVE
    week = absence_rules.record_no_show(week, "a2", marked_by="organizer")
    assert week.get_box(1).player_ids == ["a1", "a3", "a4"]

    result = calculate_box_standings(week, week.get_box(1), [])
    assert result.total_rounds == 3
    assert result.movement_frozen
    assert all(s.movement == Movement.FROZEN for s in result.standings)

    scheduled = [unplayed(m) for m in play_box(make_week(), 1, STANDARD_SCORES)]
    result = calculate_box_standings(week, week.get_box(1), scheduled)
    assert (result.completed_rounds, result.total_rounds) == (0, 3)
    assert result.movement_frozen


def test_no_show_in_five_box_waits_for_every_scheduled_round():
    week = make_week()
    week.box_assignments[0] = BoxAssignment(box_number=1, player_ids=["a1", "a2", "a3", "a4", "a5"])
    week.attendance["a5"] = AttendanceStatus.CHECKED_IN
    matches = play_box(week, 1, [(11, 5)] * 5)
    unplayed(matches[3])
    unplayed(matches[4])

    week.state = WeekState.ACTIVE
    week = absence_rules.record_no_show(week, "a5", marked_by="organizer")
    result = calculate_box_standings(week, week.get_box(1), matches)

    assert (result.completed_rounds, result.total_rounds) == (3, 5)
    assert result.movement_frozen


def test_cancelled_matches_are_not_required():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES)
    unplayed(matches[2]).status = BoxMatchStatus.CANCELLED.value
    result = calculate_box_standings(week, week.get_box(1), matches)
    assert (result.completed_rounds, result.total_rounds) == (2, 2)
    assert not result.movement_frozen


def test_substitute_never_appears_in_standings():
    week = _week_with_absence("b4", AbsencePolicy.FREEZE)
    assert week.get_box(2).player_ids == ["b1", "b2", "b3", "s1"]
    assert standings_roster(week, week.get_box(2)) == ["b1", "b2", "b3", "b4"]

    result = calculate_box_standings(week, week.get_box(2), play_box(week, 2, [(11, 5)] * 3))
    ids = [s.player_id for s in result.standings]
    assert "s1" not in ids
    assert ids == ["b1", "b2", "b3", "b4"]

    b1 = result.standings[0]
    # Matches alongside the substitute still count for regular players
    assert (b1.matches_played, b1.wins) == (3, 3)

    b4 = result.standings[-1]
    assert b4.was_absent
    assert b4.substitute_id == "s1"
    assert b4.matches_played == 0
    assert b4.movement == Movement.FROZEN


def test_auto_relegate_in_bottom_box_stays():
    week = _week_with_absence("b4", AbsencePolicy.AUTO_RELEGATE)
    result = calculate_box_standings(week, week.get_box(2), play_box(week, 2, [(11, 5)] * 3))
    b4 = next(s for s in result.standings if s.player_id == "b4")
    assert b4.movement == Movement.STAYED


def test_auto_relegate_above_bottom_box_relegates():
    week = _week_with_absence("a1", AbsencePolicy.AUTO_RELEGATE)
    result = calculate_box_standings(week, week.get_box(1), play_box(week, 1, [(11, 5)] * 3))
    a1 = next(s for s in result.standings if s.player_id == "a1")
    assert a1.movement == Movement.RELEGATION


def test_average_points_policy_uses_season_history():
    week = _week_with_absence("b4", AbsencePolicy.AVERAGE_POINTS)
    averages = {
        "b4": SeasonAverage(
            matches_played=8, wins_per_match=1.0, points_for_per_match=11, points_against_per_match=3
        )
    }
    result = calculate_box_standings(
        week, week.get_box(2), play_box(week, 2, [(11, 5)] * 3), averages
    )
    top = result.standings[0]
    assert top.player_id == "b4"
    assert (top.matches_played, top.wins, top.points_for, top.points_against) == (4, 4, 44, 12)
    assert top.movement == Movement.PROMOTION


# ============================================================================
# Next week
# ============================================================================

def test_next_week_assignments_follow_movements():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES) + play_box(week, 2, STANDARD_SCORES)
    snapshot, movements = calculate_week_standings(week, matches, now=NOW)

    assignments = promotion_service.generate_next_week_assignments(snapshot.boxes, movements)
    assert [a.player_ids for a in assignments] == [
        ["a2", "a1", "a3", "b2"],
        ["a4", "b1", "b3", "b4"],
    ]


def test_movement_summary():
    week = make_week()
    matches = play_box(week, 1, STANDARD_SCORES) + play_box(week, 2, STANDARD_SCORES)
    _, movements = calculate_week_standings(week, matches, now=NOW)
    summary = promotion_service.get_movement_summary(movements)
    assert summary["promotions"] == 1
    assert summary["relegations"] == 1
    assert summary["by_box"] == {1: {"promoted": 0, "relegated": 1}, 2: {"promoted": 1, "relegated": 0}}


# ============================================================================
# Snapshot staleness
# ============================================================================

def _snapshot(calculated_at, watermark):
    return StandingsSnapshot(week_number=1, calculated_at=calculated_at, matches_updated_at_max=watermark)


def test_missing_snapshot_is_stale():
    assert is_standings_stale(None, NOW, now=NOW)


def test_fresh_snapshot_is_trusted():
    snapshot = _snapshot(NOW - timedelta(minutes=1), NOW - timedelta(hours=1))
    assert not is_standings_stale(snapshot, NOW, now=NOW)


def test_old_snapshot_stale_only_when_matches_moved_on():
    watermark = NOW - timedelta(hours=1)
    snapshot = _snapshot(NOW - timedelta(minutes=10), watermark)
    assert is_standings_stale(snapshot, NOW, now=NOW)
    assert not is_standings_stale(snapshot, watermark, now=NOW)
    assert not is_standings_stale(snapshot, None, now=NOW)
