"""
Week lifecycle tests against the database: activation, closing, finalization
and the next week's draft.
"""
import pytest

from boxleague.database.models import BoxMatchStatus
from boxleague.models.box_league import BoxAssignment, BoxWeek, CourtAssignment, WeekState
from boxleague.services import (
    league_service,
    match_service,
    season_service,
    season_stats_service,
    standings_service,
    week_service,
    week_store,
)
from boxleague.services.exceptions import (
    BoxSizeValidationError,
    InvalidTransitionError,
    MatchesPendingError,
)


async def _start_season(make_league, db_session, **kwargs):
    league, season = await make_league(**kwargs)
    activated = await season_service.activate_season(db_session, season["id"])
    return league, season, activated["week"]


async def _play_all(db_session, season_id, week_number, games=None):
    for match in await match_service.get_week_matches(db_session, season_id, week_number):
        await match_service.record_match_result(db_session, match.id, games or [[11, 5]])


# ============================================================================
# Pure transition rules
# ============================================================================


def _week(state=WeekState.DRAFT, sizes=(5, 5)):
    boxes = []
    n = 0
    for i, size in enumerate(sizes):
        boxes.append(BoxAssignment(box_number=i + 1, player_ids=[f"p{n + j}" for j in range(size)]))
        n += size
    return BoxWeek(league_id=1, season_id=1, week_number=1, state=state, box_assignments=boxes)


def test_transitions_only_move_forward_one_step():
    assert week_service.can_transition_to(_week(), WeekState.ACTIVE).allowed
    assert not week_service.can_transition_to(_week(), WeekState.CLOSING).allowed
    assert not week_service.can_transition_to(_week(WeekState.ACTIVE), WeekState.DRAFT).allowed
    assert not week_service.can_transition_to(_week(WeekState.FINALIZED), WeekState.FINALIZED).allowed


def test_activation_check_reports_bad_box_sizes():
    check = week_service.can_transition_to(_week(sizes=(5, 3)), WeekState.ACTIVE)
    assert not check.allowed
    assert "box 2 has 3 players (add 1)" in check.reason


def test_finalize_check_counts_blocking_matches():
    week = _week(WeekState.CLOSING)
    assert week_service.can_transition_to(week, WeekState.FINALIZED).allowed
    check = week_service.can_transition_to(week, WeekState.FINALIZED, pending_matches=1)
    assert not check.allowed


def test_box_size_violations_report_delta():
    violations = week_service.get_box_size_violations(_week(sizes=(7, 5, 2)))
    assert [(v.box_number, v.size, v.delta) for v in violations] == [(1, 7, -1), (3, 2, 2)]


def test_courts_assigned_in_box_order():
    courts = week_service.assign_courts_to_boxes(3, ["North", "South"])
    assert [(c.box_number, c.court_label) for c in courts] == [(1, "North"), (2, "South")]
    assert week_service.assign_courts_to_boxes(2, None) == []


def test_replace_box_assignments_rejects_duplicates():
    week = _week()
    with pytest.raises(ValueError, match="more than one box"):
        week_service.replace_box_assignments(
            week,
            [
                BoxAssignment(box_number=1, player_ids=["p0", "p1", "p2", "p3"]),
                BoxAssignment(box_number=2, player_ids=["p3", "p4", "p5", "p6"]),
            ],
        )


def test_replace_box_assignments_only_in_draft():
    with pytest.raises(InvalidTransitionError):
        week_service.replace_box_assignments(_week(WeekState.ACTIVE), _week().box_assignments)


# ============================================================================
# Activation
# ============================================================================


@pytest.mark.asyncio
async def test_activating_season_drafts_first_week(db_session, make_league):
    _, season, week = await _start_season(make_league, db_session, court_labels=["Court A", "Court B"])

    assert week.state == WeekState.DRAFT
    assert week.week_number == 1
    assert [b.player_ids for b in week.box_assignments] == [
        ["p01", "p02", "p03", "p04", "p05"],
        ["p06", "p07", "p08", "p09", "p10"],
    ]
    assert [c.court_label for c in week.court_assignments] == ["Court A", "Court B"]
    assert week.scheduled_date.isoformat() == "2025-03-04"


@pytest.mark.asyncio
async def test_activate_week_creates_rotation_matches(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)

    week = await week_service.activate_week(db_session, season["id"], 1)

    assert week.state == WeekState.ACTIVE
    matches = await match_service.get_week_matches(db_session, season["id"], 1)
    assert len(matches) == 10
    assert {m.status for m in matches} == {BoxMatchStatus.SCHEDULED.value}
    assert matches[0].team_a == ["p01", "p02"]
    assert matches[0].team_b == ["p03", "p04"]

    progress = await season_service.get_season_progress(db_session, season["id"])
    assert progress["current_week"] == 1
    stored = await season_service.get_season(db_session, season["id"])
    assert stored.week_schedule[0]["status"] == "active"


@pytest.mark.asyncio
async def test_activation_with_undersized_box_fails_cleanly(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session, player_count=8)
    await week_service.update_box_assignments(
        db_session,
        season["id"],
        1,
        [
            BoxAssignment(box_number=1, player_ids=["p01", "p02", "p03", "p04", "p05"]),
            BoxAssignment(box_number=2, player_ids=["p06", "p07", "p08"]),
        ],
    )

    with pytest.raises(BoxSizeValidationError) as exc_info:
        await week_service.activate_week(db_session, season["id"], 1)

    assert [v.to_dict() for v in exc_info.value.violations] == [{"box_number": 2, "size": 3, "delta": 1}]
    week = await week_service.get_week(db_session, season["id"], 1)
    assert week.state == WeekState.DRAFT
    assert await match_service.get_week_matches(db_session, season["id"], 1) == []


@pytest.mark.asyncio
async def test_activate_twice_is_rejected(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    await week_service.activate_week(db_session, season["id"], 1)

    with pytest.raises(InvalidTransitionError):
        await week_service.activate_week(db_session, season["id"], 1)
    assert len(await match_service.get_week_matches(db_session, season["id"], 1)) == 10


@pytest.mark.asyncio
async def test_draft_edits_locked_after_activation(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    await week_service.activate_week(db_session, season["id"], 1)

    with pytest.raises(InvalidTransitionError):
        await week_service.update_court_assignments(
            db_session, season["id"], 1, [CourtAssignment(box_number=1, court_label="Court 9")]
        )
    with pytest.raises(InvalidTransitionError):
        await week_service.reset_to_draft(db_session, season["id"], 1)


@pytest.mark.asyncio
async def test_reset_to_draft_picks_up_new_members(db_session, make_league):
    league, season, _ = await _start_season(make_league, db_session)
    await week_service.freeze_box_movement(db_session, season["id"], 1, 2)
    await league_service.add_member(db_session, league["id"], "p11", "Player 11", rating=99.5)

    week = await week_service.reset_to_draft(db_session, season["id"], 1)

    assert [len(b.player_ids) for b in week.box_assignments] == [5, 6]
    assert week.box_assignments[0].player_ids[:2] == ["p01", "p11"]
    assert week.frozen_boxes == []
    assert week.attendance["p11"] == "not_checked_in"


# ============================================================================
# Closing and finalizing
# ============================================================================


@pytest.mark.asyncio
async def test_finalize_requires_closing(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    await week_service.activate_week(db_session, season["id"], 1)

    with pytest.raises(InvalidTransitionError):
        await week_service.finalize_week(db_session, season["id"], 1)


@pytest.mark.asyncio
async def test_finalize_blocked_by_unverified_match(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    await week_service.activate_week(db_session, season["id"], 1)
    await _play_all(db_session, season["id"], 1)
    first = (await match_service.get_week_matches(db_session, season["id"], 1))[0]
    await match_service.record_match_result(
        db_session, first.id, [[11, 9]], status=BoxMatchStatus.PENDING_VERIFICATION.value
    )
    await week_service.start_closing_week(db_session, season["id"], 1)

    with pytest.raises(MatchesPendingError) as exc_info:
        await week_service.finalize_week(db_session, season["id"], 1)

    assert exc_info.value.pending == 1
    week = await week_service.get_week(db_session, season["id"], 1)
    assert week.state == WeekState.CLOSING
    assert not week.stats_applied


@pytest.mark.asyncio
async def test_closing_week_takes_no_new_results(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await week_service.start_closing_week(db_session, season_id, 1)
    first = (await match_service.get_week_matches(db_session, season_id, 1))[0]

    with pytest.raises(InvalidTransitionError, match="week 1 is closing"):
        await match_service.record_match_result(db_session, first.id, [[11, 4]])

    stored = (await match_service.get_week_matches(db_session, season_id, 1))[0]
    assert stored.status == BoxMatchStatus.SCHEDULED.value
    assert stored.games is None


@pytest.mark.asyncio
async def test_unverified_result_can_be_resolved_while_closing(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await _play_all(db_session, season_id, 1)
    first = (await match_service.get_week_matches(db_session, season_id, 1))[0]
    await match_service.record_match_result(
        db_session, first.id, [[11, 9]], status=BoxMatchStatus.DISPUTED.value
    )
    await week_service.start_closing_week(db_session, season_id, 1)

    resolved = await match_service.record_match_result(db_session, first.id, [[11, 9]])
    assert resolved["status"] == "completed"

    result = await week_service.finalize_week(db_session, season_id, 1)
    assert result["week"].state == WeekState.FINALIZED


@pytest.mark.asyncio
async def test_finalized_week_rejects_late_results(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await _play_all(db_session, season_id, 1)
    await week_service.start_closing_week(db_session, season_id, 1)
    finalized = (await week_service.finalize_week(db_session, season_id, 1))["week"]
    first = (await match_service.get_week_matches(db_session, season_id, 1))[0]

    with pytest.raises(InvalidTransitionError, match="week 1 is finalized"):
        await match_service.record_match_result(db_session, first.id, [[3, 11]])

    stored = (await match_service.get_week_matches(db_session, season_id, 1))[0]
    assert stored.games == [[11, 5]]
    assert stored.winner_side == "a"
    standings = await standings_service.get_week_standings(db_session, finalized)
    assert standings == finalized.standings_snapshot


@pytest.mark.asyncio
async def test_completed_matches_filter_by_box_and_status(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    box_two = await match_service.get_week_matches(db_session, season_id, 1, box_number=2)
    await match_service.record_match_result(db_session, box_two[0].id, [[11, 7]])
    await match_service.record_match_result(
        db_session, box_two[1].id, [[11, 8]], status=BoxMatchStatus.PENDING_VERIFICATION.value
    )
    box_one = await match_service.get_week_matches(db_session, season_id, 1, box_number=1)
    await match_service.record_match_result(db_session, box_one[0].id, [[9, 11]])

    completed = await match_service.get_completed_matches(db_session, season_id, 1, box_number=2)
    assert [m.id for m in completed] == [box_two[0].id]
    assert completed[0].winner_side == "a"

    everywhere = await match_service.get_completed_matches(db_session, season_id, 1)
    assert [m.id for m in everywhere] == [box_one[0].id, box_two[0].id]


@pytest.mark.asyncio
async def test_full_week_moves_players_and_drafts_next_week(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await _play_all(db_session, season_id, 1)
    await week_service.start_closing_week(db_session, season_id, 1)

    result = await week_service.finalize_week(db_session, season_id, 1)

    assert not result["already_finalized"]
    week = result["week"]
    assert week.state == WeekState.FINALIZED
    assert week.stats_applied

    box_one = result["standings"].boxes[0]
    assert [s.player_id for s in box_one.standings] == ["p01", "p02", "p04", "p03", "p05"]
    assert box_one.standings[0].wins == 4

    moves = {(m.player_id, m.from_box, m.to_box, m.reason.value) for m in result["movements"]}
    assert moves == {("p05", 1, 2, "relegation"), ("p06", 2, 1, "promotion")}

    next_week = result["next_week"]
    assert next_week.week_number == 2
    assert next_week.state == WeekState.DRAFT
    assert [b.player_ids for b in next_week.box_assignments] == [
        ["p01", "p02", "p04", "p03", "p06"],
        ["p05", "p07", "p09", "p08", "p10"],
    ]

    leader = await season_stats_service.get_player_stats(db_session, season_id, "p01")
    assert (leader.total_matches, leader.total_wins, leader.win_percentage) == (4, 4, 100)
    assert (leader.total_points_for, leader.total_points_against) == (44, 20)
    promoted = await season_stats_service.get_player_stats(db_session, season_id, "p06")
    assert (promoted.starting_box, promoted.current_box, promoted.promotions) == (2, 1, 1)
    relegated = await season_stats_service.get_player_stats(db_session, season_id, "p05")
    assert (relegated.current_box, relegated.relegations) == (2, 1)

    stored = await season_service.get_season(db_session, season_id)
    assert stored.week_schedule[0]["status"] == "completed"

    current = await week_service.get_current_week(db_session, season_id)
    assert current.week_number == 2


@pytest.mark.asyncio
async def test_finalizing_twice_changes_nothing(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await _play_all(db_session, season_id, 1)
    await week_service.start_closing_week(db_session, season_id, 1)
    first = await week_service.finalize_week(db_session, season_id, 1)
    stats_before = [
        season_stats_service.stats_to_dict(s)
        for s in await season_stats_service.list_season_stats(db_session, season_id)
    ]

    second = await week_service.finalize_week(db_session, season_id, 1)

    assert second["already_finalized"]
    assert second["week"].revision == first["week"].revision
    assert second["movements"] == first["movements"]
    assert second["next_week"].id == first["next_week"].id
    stats_after = [
        season_stats_service.stats_to_dict(s)
        for s in await season_stats_service.list_season_stats(db_session, season_id)
    ]
    assert stats_after == stats_before
    assert len(await week_service.list_weeks(db_session, season_id)) == 2


@pytest.mark.asyncio
async def test_last_week_does_not_draft_another(db_session, make_league):
    _, season, _ = await _start_season(make_league, db_session, total_weeks=1)
    await week_service.activate_week(db_session, season["id"], 1)
    await _play_all(db_session, season["id"], 1)
    await week_service.start_closing_week(db_session, season["id"], 1)

    result = await week_service.finalize_week(db_session, season["id"], 1)

    assert result["next_week"] is None
    current = await week_service.get_current_week(db_session, season["id"])
    assert current.week_number == 1
    assert current.state == WeekState.FINALIZED


@pytest.mark.asyncio
async def test_withdrawn_member_left_out_of_next_week(db_session, make_league):
    league, season, _ = await _start_season(make_league, db_session, player_count=11)
    season_id = season["id"]
    await week_service.activate_week(db_session, season_id, 1)
    await _play_all(db_session, season_id, 1)
    await week_service.start_closing_week(db_session, season_id, 1)
    await league_service.update_member_status(db_session, league["id"], "p11", "withdrawn")

    result = await week_service.finalize_week(db_session, season_id, 1)

    players = [pid for box in result["next_week"].box_assignments for pid in box.player_ids]
    assert "p11" not in players
    assert len(players) == 10


@pytest.mark.asyncio
async def test_no_current_week_before_activation(db_session, make_league):
    _, season = await make_league()
    assert await week_service.get_current_week(db_session, season["id"]) is None
    assert await week_store.list_for_season(db_session, season["id"]) == []
