"""
Pydantic models for API request/response validation.
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict


class CreateGameRequest(BaseModel):
    """Request to record a new game."""

    season_id: Optional[int] = None  # Defaults to the active season
    team1_player1_id: int
    team1_player2_id: int
    team2_player1_id: int
    team2_player2_id: int
    team1_score: int
    team2_score: int
    game_time: Optional[str] = None  # ISO-8601; defaults to now

    @property
    def team1(self) -> List[int]:
        return [self.team1_player1_id, self.team1_player2_id]

    @property
    def team2(self) -> List[int]:
        return [self.team2_player1_id, self.team2_player2_id]


class CreateGameResponse(BaseModel):
    """Response from recording a game."""

    status: str
    message: str
    game_id: int
    season_id: int
    elo_change: int
    replay_job_id: int


class UpdateGameRequest(BaseModel):
    """Request to correct an existing game."""

    team1_player1_id: int
    team1_player2_id: int
    team2_player1_id: int
    team2_player2_id: int
    team1_score: int
    team2_score: int
    game_time: Optional[str] = None  # Keeps the stored time when omitted

    @property
    def team1(self) -> List[int]:
        return [self.team1_player1_id, self.team1_player2_id]

    @property
    def team2(self) -> List[int]:
        return [self.team2_player1_id, self.team2_player2_id]


class ReplayResult(BaseModel):
    """Outcome of a season replay."""

    season_id: int
    game_count: int
    player_count: int
    skipped_game_ids: List[Optional[int]] = []
    reset_player_count: int = 0
    ratings_version: int


class GameMutationResponse(BaseModel):
    """Response from editing or deleting a game."""

    status: str
    game_id: int
    season_id: int
    replay: Optional[ReplayResult] = None


class RankingEntry(BaseModel):
    """One player's line on the season leaderboard."""

    model_config = ConfigDict(from_attributes=True)

    player_id: int
    name: Optional[str] = None
    rating: int
    wins: int
    losses: int
    games_played: int
    win_rate: float
    highest_rating: int
    lowest_rating: int
    current_streak: int = 0
    longest_win_streak: int = 0
    rank: Optional[int] = None  # None while below the game threshold


class RankingsResponse(BaseModel):
    """Season leaderboard."""

    season_id: int
    min_games: int
    ranked: List[RankingEntry]
    unranked: List[RankingEntry]


class ReplayJobResponse(BaseModel):
    """Replay job status."""

    id: int
    season_id: int
    status: str
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    game_count: Optional[int] = None
    player_count: Optional[int] = None
    skipped_game_ids: List[int] = []
    error_message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    message: str
