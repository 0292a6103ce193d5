"""
Constants used across the box league engine.
"""

# Box sizing
MIN_BOX_SIZE = 4
MAX_BOX_SIZE = 6
VALID_BOX_SIZES = (4, 5, 6)
DEFAULT_BOX_SIZE = 5
MAX_ADJUSTMENT_DELTA = 3  # Largest add/remove suggestion for unpackable rosters

# Rotation
ROTATION_VERSION = 1  # Bump whenever the rotation tables change (part of match identity)

# Standings
STANDINGS_FAST_PATH_SECONDS = 300  # Snapshots younger than this are never stale
DEFAULT_TIEBREAKERS = ["wins", "head_to_head", "points_diff", "points_for"]

# Absence policy
DEFAULT_EXPECTED_MATCHES = 4  # Matches a player would have played in a full week
DEFAULT_MAX_SUBS_PER_SEASON = 2

# Season stats
MIN_MATCHES_FOR_TOP_PERFORMER = 3

# Week aggregate persistence
MAX_TRANSACTION_RETRIES = 5
