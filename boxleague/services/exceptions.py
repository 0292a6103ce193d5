"""
Typed failures raised by the box league services.

Everything subclasses ValueError so route handlers can keep mapping
service errors to 4xx responses the same way they always have.
"""

from typing import List, Optional


class BoxLeagueError(ValueError):
    """Base class for box league validation errors."""


# --- Not found ---


class LeagueNotFoundError(BoxLeagueError):
    """Raised when a league does not exist."""


class SeasonNotFoundError(BoxLeagueError):
    """Raised when a season does not exist."""


class WeekNotFoundError(BoxLeagueError):
    """Raised when a week has not been created for a season."""


class MemberNotFoundError(BoxLeagueError):
    """Raised when a player is not a member of the league."""


class AbsenceNotFoundError(BoxLeagueError):
    """Raised when no absence is recorded for a player in a week."""


class MatchNotFoundError(BoxLeagueError):
    """Raised when a box match id is unknown."""


# --- Validation ---


class InvalidTransitionError(BoxLeagueError):
    """Raised when a week or season lifecycle transition is not allowed."""


class BoxSizeViolation:
    """One box that is outside the legal size range."""

    def __init__(self, box_number: int, size: int, delta: int):
        self.box_number = box_number
        self.size = size
        # Players to add (positive) or remove (negative) to reach a legal size
        self.delta = delta

    def to_dict(self) -> dict:
        return {"box_number": self.box_number, "size": self.size, "delta": self.delta}

    def __repr__(self) -> str:
        return f"BoxSizeViolation(box={self.box_number}, size={self.size}, delta={self.delta})"


class BoxSizeValidationError(InvalidTransitionError):
    """Raised when a week cannot activate because boxes are out of range."""

    def __init__(self, violations: List[BoxSizeViolation]):
        self.violations = violations
        parts = []
        for v in violations:
            direction = f"add {v.delta}" if v.delta > 0 else f"remove {-v.delta}"
            parts.append(f"box {v.box_number} has {v.size} players ({direction})")
        super().__init__("Boxes must have 4-6 active players: " + "; ".join(parts))


class PlayerNotAssignedError(BoxLeagueError):
    """Raised when a player is not assigned to any box this week."""


class DuplicateAbsenceError(BoxLeagueError):
    """Raised when an absence is already recorded for the player."""


class SubstituteUnavailableError(BoxLeagueError):
    """Raised when a substitute cannot be placed into a box."""


class SeasonValidationError(BoxLeagueError):
    """Raised for invalid season setup (dates, schedule, roster)."""


class MatchesPendingError(InvalidTransitionError):
    """Raised when a week cannot finalize while matches await verification."""

    def __init__(self, pending: int, disputed: int):
        self.pending = pending
        self.disputed = disputed
        super().__init__(
            f"Cannot finalize week: {disputed} disputed and {pending} pending matches"
        )


# --- Conflicts ---


class WeekConflictError(BoxLeagueError):
    """Raised when a week update keeps losing to concurrent writers."""

    def __init__(self, season_id: int, week_number: int, attempts: int, detail: Optional[str] = None):
        self.season_id = season_id
        self.week_number = week_number
        self.attempts = attempts
        message = (
            f"Week {week_number} of season {season_id} was modified concurrently "
            f"({attempts} attempts)"
        )
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
