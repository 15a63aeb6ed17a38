"""
Static constants for recallkit.

FSRS algorithm parameters, the deck line format and the statistics export
layout, plus the default file names. No runtime configuration here.
"""
from typing import Tuple

# Default FSRS parameters (weights 'w')
# Sourced from: py-fsrs library (specifically fsrs.scheduler.DEFAULT_PARAMETERS)
DEFAULT_PARAMETERS: Tuple[float, ...] = (
    0.2172,  # w[0]
    1.1771,  # w[1]
    3.2602,  # w[2]
    16.1507, # w[3]
    7.0114,  # w[4]
    0.57,    # w[5]
    2.0966,  # w[6]
    0.0069,  # w[7]
    1.5261,  # w[8]
    0.112,   # w[9]
    1.0178,  # w[10]
    1.849,   # w[11]
    0.1133,  # w[12]
    0.3127,  # w[13]
    2.2934,  # w[14]
    0.2191,  # w[15]
    3.0004,  # w[16]
    0.7536,  # w[17]
    0.3332,  # w[18]
    0.1437,  # w[19]
    0.2,     # w[20]
)

# Default desired retention rate if not specified elsewhere.
DEFAULT_DESIRED_RETENTION: float = 0.9

# --- Deck format ---

# Tried in order; the first separator present in a line wins.
CARD_SEPARATORS: Tuple[str, ...] = (">>", "::", "|")
COMMENT_PREFIX = "#"
# Guard against binary or mis-split input, far beyond any real card.
MAX_FIELD_LENGTH = 1000
# Raw lines are shortened to this many characters in parse reports.
REPORT_LINE_WIDTH = 50
REPORT_MAX_ISSUES = 10

# --- Statistics ---

# Orphan sessions get an estimated duration of this many seconds per card.
DEFAULT_SECONDS_PER_CARD = 30
WEEK_DAYS = 7
MONTH_DAYS = 30
STATS_DATE_FORMAT = "%Y-%m-%d"
STATS_CSV_HEADER: Tuple[str, ...] = (
    "Date",
    "Cards Reviewed",
    "Session Time (min)",
    "Session Count",
    "New Cards",
    "Reviewed Cards",
)

# --- Legacy file-backed store ---

DEFAULT_STATE_FILE = "spaced_repetition_state.json"
DEFAULT_STATS_FILE = "spaced_repetition_stats.json"
DEFAULT_DB_FILE = "spaced_repetition.db"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
