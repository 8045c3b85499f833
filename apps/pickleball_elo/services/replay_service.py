"""
Season replay engine.
Folds the rating formula over a season's games in game-time order and
builds the final per-player state from scratch.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from pickleball_elo.services import rating_service
from pickleball_elo.utils.constants import INITIAL_RATING, K_FACTOR, TEAM_SIZE
from pickleball_elo.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)


# ============================================================================
# PlayerRatingState Class
# ============================================================================

class PlayerRatingState:
    """Running rating/record state for a single player within one season."""

    def __init__(self, player_id: int, initial_rating: int = INITIAL_RATING):
        self.player_id = player_id
        self.rating = initial_rating
        self.wins = 0
        self.losses = 0
        self.highest_rating = initial_rating
        self.lowest_rating = initial_rating
        self.current_streak = 0
        self.longest_win_streak = 0

    @property
    def games_played(self) -> int:
        return self.wins + self.losses

    def apply_result(self, delta: int, won: bool) -> None:
        """Apply a signed rating change and record the result."""
        self.rating += delta
        self.highest_rating = max(self.highest_rating, self.rating)
        self.lowest_rating = min(self.lowest_rating, self.rating)
        if won:
            self.wins += 1
            self.current_streak += 1
            self.longest_win_streak = max(self.longest_win_streak, self.current_streak)
        else:
            self.losses += 1
            self.current_streak = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "player_id": self.player_id,
            "rating": self.rating,
            "wins": self.wins,
            "losses": self.losses,
            "highest_rating": self.highest_rating,
            "lowest_rating": self.lowest_rating,
            "current_streak": self.current_streak,
            "longest_win_streak": self.longest_win_streak,
        }


# ============================================================================
# Game Record Helpers
# ============================================================================

def game_sort_key(game: Any) -> Tuple[Any, int]:
    """Replay order: game time ascending, ties broken by id (insertion order)."""
    return (ensure_utc(game.game_time), game.id)


def find_malformed_reason(game: Any) -> Optional[str]:
    """
    Check a stored game record before it is replayed.

    Returns:
        A human readable reason if the game cannot be replayed, else None
    """
    teams = getattr(game, "player_ids", None)
    if not isinstance(teams, (list, tuple)) or len(teams) != 2:
        return "missing teams"

    for team in teams:
        if not isinstance(team, (list, tuple)) or len(team) != TEAM_SIZE:
            return "team does not have exactly two players"
        if any(player_id is None for player_id in team):
            return "missing player"

    all_players = list(teams[0]) + list(teams[1])
    if len(set(all_players)) != len(all_players):
        return "duplicate player"

    scores = (getattr(game, "team1_score", None), getattr(game, "team2_score", None))
    if any(not isinstance(score, int) or isinstance(score, bool) for score in scores):
        return "missing score"
    if scores[0] == scores[1]:
        return "tied score"

    if getattr(game, "game_time", None) is None:
        return "missing game time"

    return None


# ============================================================================
# SeasonReplayTracker Class
# ============================================================================

class SeasonReplayTracker:
    """Tracks rating state for all players across one season's games."""

    def __init__(self, initial_rating: int = INITIAL_RATING, k_factor: int = K_FACTOR):
        self.initial_rating = initial_rating
        self.k_factor = k_factor
        self.players: Dict[int, PlayerRatingState] = {}
        self.elo_changes: Dict[int, int] = {}  # game id -> stored magnitude
        self.skipped_game_ids: List[int] = []

    def get_player(self, player_id: int) -> PlayerRatingState:
        """Get or create a player's state at the season baseline."""
        if player_id not in self.players:
            self.players[player_id] = PlayerRatingState(player_id, self.initial_rating)
        return self.players[player_id]

    def process_game(self, game: Any) -> Optional[int]:
        """
        Apply one game to the running state.

        Args:
            game: Game ORM object (or anything exposing id, player_ids,
                  team1_score, team2_score and game_time)

        Returns:
            The stored ELO change magnitude, or None if the game was skipped
        """
        reason = find_malformed_reason(game)
        if reason is not None:
            logger.error(
                f"Skipping malformed game {getattr(game, 'id', None)} during replay: {reason}"
            )
            self.skipped_game_ids.append(getattr(game, "id", None))
            return None

        team1, team2 = game.player_ids
        team1_players = [self.get_player(player_id) for player_id in team1]
        team2_players = [self.get_player(player_id) for player_id in team2]

        # Team ratings come from the running state, not the ratings at submission
        team1_rating = rating_service.team_rating([p.rating for p in team1_players])
        team2_rating = rating_service.team_rating([p.rating for p in team2_players])

        change = rating_service.game_elo_change(
            team1_rating, team2_rating, game.team1_score, game.team2_score, self.k_factor
        )

        team1_won = rating_service.calculate_winner(game.team1_score, game.team2_score) == 1
        winners, losers = (team1_players, team2_players) if team1_won else (team2_players, team1_players)
        for player in winners:
            player.apply_result(change, won=True)
        for player in losers:
            player.apply_result(-change, won=False)

        self.elo_changes[game.id] = change
        return change

    @property
    def game_count(self) -> int:
        return len(self.elo_changes)


# ============================================================================
# Main Processing Function
# ============================================================================

def replay_games(
    games: Iterable[Any],
    initial_rating: int = INITIAL_RATING,
    k_factor: int = K_FACTOR,
) -> SeasonReplayTracker:
    """
    Recompute a season from scratch.

    Games are sorted by (game_time, id) here regardless of the order they
    arrive in, so a shuffled input yields the same result. Malformed games
    are logged and skipped.

    Args:
        games: All games of one season
        initial_rating: Season baseline rating
        k_factor: Season K-factor

    Returns:
        Tracker holding final per-player state and per-game ELO changes
    """
    tracker = SeasonReplayTracker(initial_rating, k_factor)

    games = list(games)
    replayable = [game for game in games if getattr(game, "game_time", None) is not None]
    unordered = [game for game in games if getattr(game, "game_time", None) is None]

    for game in sorted(replayable, key=game_sort_key):
        tracker.process_game(game)

    # Games without a timestamp cannot be placed in the timeline
    for game in unordered:
        tracker.process_game(game)

    return tracker
