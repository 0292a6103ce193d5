"""
Tests for next-week lineup adjustments: joiners, withdrawals, rebalancing.
"""
import pytest

from boxleague.models.box_league import BoxAssignment, BoxStanding, BoxStandingsResult, Movement, PlayerMovement
from boxleague.services import promotion_service


def lineup():
    return [
        BoxAssignment(box_number=1, player_ids=["a", "b", "c", "d", "e"]),
        BoxAssignment(box_number=2, player_ids=["f", "g", "h", "i"]),
    ]


def test_new_joiner_goes_to_bottom_box():
    result = promotion_service.place_new_joiner(lineup(), "new")
    assert result[-1].player_ids == ["f", "g", "h", "i", "new"]
    # input untouched
    assert lineup()[-1].player_ids == ["f", "g", "h", "i"]


def test_new_joiner_placed_by_rating():
    ratings = {"a": 90, "b": 85, "c": 80, "d": 75, "e": 70, "f": 60, "g": 55, "h": 50, "i": 45}
    result = promotion_service.place_new_joiner(lineup(), "new", method="rating", rating=78, ratings=ratings)
    assert result[0].player_ids == ["a", "b", "c", "new", "d", "e"]


def test_rating_placement_without_rating_falls_back_to_bottom():
    result = promotion_service.place_new_joiner(lineup(), "new", method="rating")
    assert result[-1].player_ids[-1] == "new"


def test_new_joiner_into_empty_lineup():
    result = promotion_service.place_new_joiner([], "new")
    assert result == [BoxAssignment(box_number=1, player_ids=["new"])]


def test_joiner_already_assigned_rejected():
    with pytest.raises(ValueError):
        promotion_service.place_new_joiner(lineup(), "a")


def test_unknown_placement_method_rejected():
    with pytest.raises(ValueError):
        promotion_service.place_new_joiner(lineup(), "new", method="random")


def test_remove_withdrawn_player():
    result = promotion_service.remove_withdrawn_player(lineup(), "g")
    assert result[1].player_ids == ["f", "h", "i"]
    assert [b.box_number for b in result] == [1, 2]


def test_needs_rebalancing_after_withdrawals():
    boxes = promotion_service.remove_withdrawn_player(lineup(), "g")
    check = promotion_service.needs_rebalancing(boxes)
    assert check.needs_rebalance


def _standing(player_id, box_number, position, movement=Movement.STAYED):
    return BoxStanding(player_id=player_id, box_number=box_number, position_in_box=position, movement=movement)


def test_empty_boxes_are_dropped_and_renumbered():
    boxes = [
        BoxStandingsResult(
            box_number=1,
            standings=[_standing("a", 1, 1), _standing("b", 1, 2)],
            completed_rounds=3,
            total_rounds=3,
            movement_frozen=False,
        ),
        BoxStandingsResult(box_number=2, standings=[], completed_rounds=0, total_rounds=0, movement_frozen=True),
        BoxStandingsResult(
            box_number=3,
            standings=[_standing("c", 3, 1)],
            completed_rounds=3,
            total_rounds=3,
            movement_frozen=False,
        ),
    ]
    result = promotion_service.generate_next_week_assignments(boxes, [])
    assert [(b.box_number, b.player_ids) for b in result] == [(1, ["a", "b"]), (2, ["c"])]


def test_relegated_players_lead_the_lower_box():
    boxes = [
        BoxStandingsResult(
            box_number=1,
            standings=[_standing("a", 1, 1), _standing("b", 1, 2, Movement.RELEGATION)],
            completed_rounds=3,
            total_rounds=3,
            movement_frozen=False,
        ),
        BoxStandingsResult(
            box_number=2,
            standings=[_standing("c", 2, 1, Movement.PROMOTION), _standing("d", 2, 2)],
            completed_rounds=3,
            total_rounds=3,
            movement_frozen=False,
        ),
    ]
    movements = [
        PlayerMovement(player_id="b", from_box=1, to_box=2, reason=Movement.RELEGATION),
        PlayerMovement(player_id="c", from_box=2, to_box=1, reason=Movement.PROMOTION),
    ]
    result = promotion_service.generate_next_week_assignments(boxes, movements)
    assert [b.player_ids for b in result] == [["a", "c"], ["b", "d"]]
