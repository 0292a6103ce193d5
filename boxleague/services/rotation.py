"""
Doubles rotation tables for 4, 5 and 6 player boxes.

Each box plays one match per round on its court. Patterns index into the
seeded player order (0 = top seed), so the same ordered box always produces
the same schedule.

- 4 players: 3 rounds, every pair partners exactly once.
- 5 players: 5 rounds, every pair partners exactly once, one bye per round
  rotating through all five players.
- 6 players: 6 rounds, two resting per round. Twelve distinct partnerships,
  four matches and two rests per player, no back-to-back rests, and every
  player meets every other player across the net at least once.
"""

from itertools import combinations
from typing import Dict, List, Tuple

from boxleague.models.box_league import GeneratedPairing
from boxleague.utils.constants import VALID_BOX_SIZES


class RotationError(ValueError):
    """Raised when a rotation is requested for an unsupported box size."""


# (team_a, team_b, sitting_out)
RoundPattern = Tuple[Tuple[int, int], Tuple[int, int], Tuple[int, ...]]

ROTATION_PATTERNS: Dict[int, List[RoundPattern]] = {
    4: [
        ((0, 1), (2, 3), ()),
        ((0, 2), (1, 3), ()),
        ((0, 3), (1, 2), ()),
    ],
    5: [
        ((0, 1), (2, 3), (4,)),
        ((0, 2), (3, 4), (1,)),
        ((0, 3), (1, 4), (2,)),
        ((0, 4), (1, 2), (3,)),
        ((1, 3), (2, 4), (0,)),
    ],
    6: [
        ((0, 1), (2, 4), (3, 5)),
        ((0, 3), (1, 5), (2, 4)),
        ((1, 2), (4, 5), (0, 3)),
        ((0, 2), (3, 5), (1, 4)),
        ((0, 4), (1, 3), (2, 5)),
        ((2, 5), (3, 4), (0, 1)),
    ],
}


def _get_pattern(box_size: int) -> List[RoundPattern]:
    if box_size not in VALID_BOX_SIZES:
        raise RotationError(
            f"Box size must be one of {', '.join(str(s) for s in VALID_BOX_SIZES)} (got {box_size})"
        )
    return ROTATION_PATTERNS[box_size]


def get_round_count(box_size: int) -> int:
    """Number of rounds (matches) a box of this size plays in a week."""
    return len(_get_pattern(box_size))


def get_matches_per_player(box_size: int) -> int:
    pattern = _get_pattern(box_size)
    return sum(1 for team_a, team_b, _ in pattern if 0 in team_a or 0 in team_b)


def generate_box_pairings(ordered_player_ids: List[str]) -> List[GeneratedPairing]:
    """
    Build the full week rotation for one box.

    Args:
        ordered_player_ids: Box players in seed order (4-6 unique ids)

    Returns:
        One GeneratedPairing per round, in round order
    """
    if len(set(ordered_player_ids)) != len(ordered_player_ids):
        raise RotationError("Box contains duplicate player ids")

    pattern = _get_pattern(len(ordered_player_ids))
    players = ordered_player_ids

    pairings = []
    for round_index, (team_a, team_b, sitting_out) in enumerate(pattern):
        resting = [players[i] for i in sitting_out]
        pairings.append(
            GeneratedPairing(
                round_number=round_index + 1,
                team_a_player_ids=[players[i] for i in team_a],
                team_b_player_ids=[players[i] for i in team_b],
                bye_player_id=resting[0] if len(resting) == 1 else None,
                resting_player_ids=resting if len(resting) > 1 else [],
            )
        )
    return pairings


def get_bye_rounds(box_size: int) -> Dict[int, List[int]]:
    """Map of seed index -> rounds (1-based) in which that seed sits out."""
    byes: Dict[int, List[int]] = {i: [] for i in range(box_size)}
    for round_index, (_, _, sitting_out) in enumerate(_get_pattern(box_size)):
        for seat in sitting_out:
            byes[seat].append(round_index + 1)
    return byes


def validate_pattern_fairness(box_size: int) -> dict:
    """
    Check a rotation table against the fairness rules.

    Returns:
        Dict with matches/rests per seat, repeated partnerships and matchups,
        opponent coverage, and an overall "valid" flag with any issues found.
    """
    pattern = _get_pattern(box_size)
    matches = {i: 0 for i in range(box_size)}
    rests = {i: 0 for i in range(box_size)}
    partner_counts: Dict[Tuple[int, int], int] = {}
    matchup_counts: Dict[Tuple[Tuple[int, int], Tuple[int, int]], int] = {}
    opponents: Dict[int, set] = {i: set() for i in range(box_size)}
    issues = []

    for round_index, (team_a, team_b, sitting_out) in enumerate(pattern):
        seated = set(team_a) | set(team_b)
        if len(seated) != 4 or seated & set(sitting_out):
            issues.append(f"Round {round_index + 1} does not seat four distinct players")
        if seated | set(sitting_out) != set(range(box_size)):
            issues.append(f"Round {round_index + 1} does not account for every player")

        for team in (team_a, team_b):
            key = tuple(sorted(team))
            partner_counts[key] = partner_counts.get(key, 0) + 1
        matchup = tuple(sorted([tuple(sorted(team_a)), tuple(sorted(team_b))]))
        matchup_counts[matchup] = matchup_counts.get(matchup, 0) + 1

        for seat in seated:
            matches[seat] += 1
        for seat in sitting_out:
            rests[seat] += 1
        for a in team_a:
            opponents[a].update(team_b)
        for b in team_b:
            opponents[b].update(team_a)

    repeated_partnerships = [pair for pair, count in partner_counts.items() if count > 1]
    repeated_matchups = [m for m, count in matchup_counts.items() if count > 1]

    if len(set(matches.values())) > 1:
        issues.append(f"Uneven match counts: {matches}")
    if len(set(rests.values())) > 1:
        issues.append(f"Uneven rest counts: {rests}")

    # Only demand zero repeats when the round count leaves room for them
    possible_partnerships = len(list(combinations(range(box_size), 2)))
    if repeated_partnerships and len(pattern) * 2 <= possible_partnerships:
        issues.append(f"Repeated partnerships: {repeated_partnerships}")
    if repeated_matchups:
        issues.append(f"Repeated matchups: {repeated_matchups}")

    for seat, rounds in get_bye_rounds(box_size).items():
        if any(later - earlier == 1 for earlier, later in zip(rounds, rounds[1:])):
            issues.append(f"Seat {seat} sits out back-to-back rounds {rounds}")

    return {
        "box_size": box_size,
        "rounds": len(pattern),
        "matches_per_player": matches,
        "rests_per_player": rests,
        "repeated_partnerships": repeated_partnerships,
        "repeated_matchups": repeated_matchups,
        "faces_everyone": all(len(opponents[i]) == box_size - 1 for i in range(box_size)),
        "valid": not issues,
        "issues": issues,
    }


def format_pairing(pairing: GeneratedPairing, names: Dict[str, str] = None) -> str:
    """Readable one-line round description, e.g. "R1: A & B vs C & D (bye: E)"."""
    names = names or {}

    def label(pid: str) -> str:
        return names.get(pid, pid)

    team_a = " & ".join(label(p) for p in pairing.team_a_player_ids)
    team_b = " & ".join(label(p) for p in pairing.team_b_player_ids)
    text = f"R{pairing.round_number}: {team_a} vs {team_b}"
    if pairing.bye_player_id:
        text += f" (bye: {label(pairing.bye_player_id)})"
    elif pairing.resting_player_ids:
        text += f" (resting: {', '.join(label(p) for p in pairing.resting_player_ids)})"
    return text
