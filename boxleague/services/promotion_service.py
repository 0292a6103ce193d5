"""
Next-week box assignments from a finalized week.

A box for the new week is built from the top down:
  1. players relegated from the box above, in finishing order
  2. players who stayed (or were frozen), in finishing order
  3. players promoted from the box below, in finishing order
"""

from typing import Dict, List, Optional

from boxleague.models.box_league import (
    BoxAssignment,
    BoxStandingsResult,
    Movement,
    PlayerMovement,
    RebalanceCheck,
)
from boxleague.services.box_packing import check_rebalance_needed


def generate_next_week_assignments(
    boxes: List[BoxStandingsResult], movements: List[PlayerMovement]
) -> List[BoxAssignment]:
    """
    Apply movements to last week's standings.

    Args:
        boxes: Standings per box from the finalized week
        movements: Promotion/relegation records for that week

    Returns:
        Assignments for the next week; empty boxes are dropped and the rest
        renumbered from 1
    """
    moved = {m.player_id: m for m in movements}
    ordered_boxes = sorted(boxes, key=lambda b: b.box_number)

    def finishers(box: BoxStandingsResult) -> List[str]:
        return [s.player_id for s in sorted(box.standings, key=lambda s: s.position_in_box)]

    by_number = {b.box_number: b for b in ordered_boxes}
    assignments = []
    for box in ordered_boxes:
        number = box.box_number
        from_above = []
        if number - 1 in by_number:
            from_above = [
                pid for pid in finishers(by_number[number - 1])
                if pid in moved and moved[pid].reason == Movement.RELEGATION and moved[pid].to_box == number
            ]
        stayed = [pid for pid in finishers(box) if pid not in moved]
        from_below = []
        if number + 1 in by_number:
            from_below = [
                pid for pid in finishers(by_number[number + 1])
                if pid in moved and moved[pid].reason == Movement.PROMOTION and moved[pid].to_box == number
            ]
        player_ids = from_above + stayed + from_below
        if player_ids:
            assignments.append(player_ids)

    return [BoxAssignment(box_number=i + 1, player_ids=ids) for i, ids in enumerate(assignments)]


def place_new_joiner(
    assignments: List[BoxAssignment],
    player_id: str,
    method: str = "bottom",
    rating: Optional[float] = None,
    ratings: Optional[Dict[str, float]] = None,
) -> List[BoxAssignment]:
    """
    Add a player who joined mid-season.

    "bottom" appends to the last box. "rating" places the player in the
    first box whose lowest-rated player they outrate, slotted by rating;
    without a rating it falls back to the bottom.
    """
    result = [b.model_copy(deep=True) for b in assignments]
    if any(player_id in b.player_ids for b in result):
        raise ValueError(f"Player {player_id} is already assigned")
    if not result:
        return [BoxAssignment(box_number=1, player_ids=[player_id])]

    ratings = ratings or {}
    if method == "rating" and rating is not None:
        for box in result:
            box_ratings = [ratings[p] for p in box.player_ids if p in ratings]
            if box_ratings and rating >= min(box_ratings):
                position = len(box.player_ids)
                for index, pid in enumerate(box.player_ids):
                    if pid in ratings and rating > ratings[pid]:
                        position = index
                        break
                box.player_ids.insert(position, player_id)
                return result
    elif method not in ("bottom", "rating"):
        raise ValueError(f"Unknown placement method '{method}'")

    result[-1].player_ids.append(player_id)
    return result


def remove_withdrawn_player(assignments: List[BoxAssignment], player_id: str) -> List[BoxAssignment]:
    """Drop a player from whichever box they are in. Box order is kept."""
    return [
        BoxAssignment(box_number=b.box_number, player_ids=[p for p in b.player_ids if p != player_id])
        for b in assignments
    ]


def needs_rebalancing(assignments: List[BoxAssignment]) -> RebalanceCheck:
    return check_rebalance_needed([len(b.player_ids) for b in assignments])


def get_movement_summary(movements: List[PlayerMovement]) -> Dict:
    promotions = [m for m in movements if m.reason == Movement.PROMOTION]
    relegations = [m for m in movements if m.reason == Movement.RELEGATION]
    by_box: Dict[int, Dict[str, int]] = {}
    for m in movements:
        entry = by_box.setdefault(m.from_box, {"promoted": 0, "relegated": 0})
        if m.reason == Movement.PROMOTION:
            entry["promoted"] += 1
        else:
            entry["relegated"] += 1
    return {
        "promotions": len(promotions),
        "relegations": len(relegations),
        "by_box": by_box,
    }
