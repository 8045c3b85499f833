"""
Constants used across the ELO rating system.
"""

# Season rating defaults (a season row may override each of these)
INITIAL_RATING = 1500
K_FACTOR = 32
MIN_GAMES_FOR_RANKING = 5

# Margin of victory weighting
BASE_WIN_MARGIN = 2  # A win by this margin carries multiplier 1.0
MARGIN_MULTIPLIER_STEP = 10  # Each extra point adds 1/10 to the multiplier
MAX_MARGIN_BONUS = 0.5  # Multiplier is capped at 1.5

# Game admission rules
MIN_WINNING_SCORE = 11
MIN_WIN_MARGIN = 2
MAX_SCORE = 30
TEAM_SIZE = 2
DUPLICATE_SUBMISSION_WINDOW_SECONDS = 5 * 60

# Replay job limits
DEFAULT_REPLAY_TIMEOUT_SECONDS = 60
REPLAY_RETRY_ATTEMPTS = 1
