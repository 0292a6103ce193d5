"""
Box packing: split a roster into boxes of 4, 5 or 6 players.

Packing prefers as many boxes of 5 as possible, then boxes of 4, and only
uses boxes of 6 when the leftover divides evenly by 6. Everything here is
pure; the same input always produces the same box sizes.
"""

from typing import List, Optional

from boxleague.models.box_league import (
    BoxPackingResult,
    BoxDistribution,
    PackingCounts,
    PlayerAdjustment,
    RebalanceCheck,
)
from boxleague.utils.constants import MIN_BOX_SIZE, MAX_ADJUSTMENT_DELTA


class BoxPackingError(ValueError):
    """Raised when players cannot be distributed into boxes."""


# ============================================================================
# Packing
# ============================================================================


def pack_players_into_boxes(player_count: int) -> BoxPackingResult:
    """
    Find the box sizes for a roster.

    Tries every (fives, fours) combination starting from the most fives
    possible and returns the first one whose leftover is a multiple of 6.

    Args:
        player_count: Number of players to pack

    Returns:
        BoxPackingResult with success=False and an error message when the
        count cannot be packed
    """
    if player_count < MIN_BOX_SIZE:
        return BoxPackingResult(
            success=False,
            total_players=player_count,
            error=f"Need at least {MIN_BOX_SIZE} players to create a box (have {player_count}).",
        )

    for fives in range(player_count // 5, -1, -1):
        after_fives = player_count - fives * 5
        for fours in range(after_fives // 4, -1, -1):
            leftover = after_fives - fours * 4
            if leftover % 6 != 0:
                continue
            sixes = leftover // 6
            box_sizes = [5] * fives + [4] * fours + [6] * sixes
            return BoxPackingResult(
                success=True,
                total_players=player_count,
                box_sizes=box_sizes,
                distribution=PackingCounts(fives=fives, fours=fours, sixes=sixes),
                box_count=len(box_sizes),
            )

    return BoxPackingResult(
        success=False,
        total_players=player_count,
        error=(
            f"Cannot create valid boxes with {player_count} players. "
            "Try adding or removing players."
        ),
    )


def distribute_players_to_boxes(
    ordered_player_ids: List[str], packing: BoxPackingResult
) -> List[BoxDistribution]:
    """
    Slice an ordered roster into boxes.

    Box 1 receives the first box_sizes[0] players, box 2 the next slice and
    so on, so a rating-sorted roster puts the strongest players in box 1.

    Raises:
        BoxPackingError: If the packing failed or the roster length does not
            match the packing
    """
    if not packing.success:
        raise BoxPackingError(packing.error or "Cannot distribute players with a failed packing")

    expected = sum(packing.box_sizes)
    if len(ordered_player_ids) != expected:
        raise BoxPackingError(
            f"Player count mismatch: have {len(ordered_player_ids)} players, "
            f"packing expects {expected}"
        )

    distributions = []
    offset = 0
    for index, size in enumerate(packing.box_sizes):
        distributions.append(
            BoxDistribution(
                box_number=index + 1,
                box_size=size,
                player_ids=list(ordered_player_ids[offset:offset + size]),
            )
        )
        offset += size
    return distributions


# ============================================================================
# Queries
# ============================================================================


def is_packable(player_count: int) -> bool:
    return pack_players_into_boxes(player_count).success


def get_valid_player_counts(min_count: int = MIN_BOX_SIZE, max_count: int = 50) -> List[int]:
    """All packable counts in [min_count, max_count]."""
    return [n for n in range(min_count, max_count + 1) if is_packable(n)]


def get_invalid_player_counts(min_count: int = MIN_BOX_SIZE, max_count: int = 50) -> List[int]:
    """All unpackable counts in [min_count, max_count]."""
    return [n for n in range(min_count, max_count + 1) if not is_packable(n)]


def suggest_player_adjustment(player_count: int) -> Optional[PlayerAdjustment]:
    """
    Suggest how to make an unpackable roster packable.

    Finds the smallest number of players to add and the smallest number to
    remove (1-3 each). Returns None when the count already packs.
    """
    if is_packable(player_count):
        return None

    add = None
    for delta in range(1, MAX_ADJUSTMENT_DELTA + 1):
        if is_packable(player_count + delta):
            add = delta
            break

    remove = None
    for delta in range(1, MAX_ADJUSTMENT_DELTA + 1):
        if player_count - delta < MIN_BOX_SIZE:
            break
        if is_packable(player_count - delta):
            remove = delta
            break

    options = []
    if add is not None:
        options.append(f"add {add} player{'s' if add != 1 else ''}")
    if remove is not None:
        options.append(f"remove {remove} player{'s' if remove != 1 else ''}")

    if options:
        message = f"{player_count} players cannot be packed. Try to " + " or ".join(options) + "."
    else:
        message = f"{player_count} players cannot be packed."
    return PlayerAdjustment(add=add, remove=remove, message=message)


def _count_sizes(box_sizes: List[int]) -> PackingCounts:
    return PackingCounts(
        fives=box_sizes.count(5),
        fours=box_sizes.count(4),
        sixes=box_sizes.count(6),
    )


def check_rebalance_needed(current_box_sizes: List[int]) -> RebalanceCheck:
    """
    Compare current box sizes against the ideal packing for the same total.

    Mid-season withdrawals and joiners can leave a box lineup that still
    works but no longer matches what a fresh packing would produce.
    """
    current = _count_sizes(current_box_sizes)
    ideal_packing = pack_players_into_boxes(sum(current_box_sizes))

    if not ideal_packing.success:
        return RebalanceCheck(
            needs_rebalance=True,
            current=current,
            ideal=None,
            suggestion=ideal_packing.error,
        )

    ideal = ideal_packing.distribution
    if ideal == current and all(4 <= s <= 6 for s in current_box_sizes):
        return RebalanceCheck(needs_rebalance=False, current=current, ideal=ideal)

    return RebalanceCheck(
        needs_rebalance=True,
        current=current,
        ideal=ideal,
        suggestion=(
            f"Rebalance to {ideal.fives} boxes of 5, {ideal.fours} boxes of 4, "
            f"{ideal.sixes} boxes of 6."
        ),
    )


def get_box_size_range(box_sizes: List[int]) -> Optional[tuple]:
    """(smallest, largest) box size, or None for an empty lineup."""
    if not box_sizes:
        return None
    return min(box_sizes), max(box_sizes)


def format_packing_for_display(packing: BoxPackingResult) -> str:
    """
    Human-readable packing summary.

    Example: "3 boxes of 5, 1 box of 4 (19 players)"
    """
    if not packing.success:
        return packing.error or "Invalid packing"

    parts = []
    for size, count in (
        (5, packing.distribution.fives),
        (4, packing.distribution.fours),
        (6, packing.distribution.sixes),
    ):
        if count:
            parts.append(f"{count} box{'es' if count != 1 else ''} of {size}")
    return f"{', '.join(parts)} ({packing.total_players} players)"
