"""
Game admission, edit and deletion.

Validates game results before they are stored and makes sure every change
to a season's history ends in a season replay.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from pickleball_elo.services import data_service, rating_service
from pickleball_elo.services.replay_queue import get_replay_queue
from pickleball_elo.utils.constants import (
    MAX_SCORE,
    MIN_WINNING_SCORE,
    MIN_WIN_MARGIN,
    TEAM_SIZE,
)
from pickleball_elo.utils.datetime_utils import parse_game_time

logger = logging.getLogger(__name__)


class GameValidationError(ValueError):
    """A submitted game breaks a scoring or roster rule."""


class DuplicateSubmissionError(GameValidationError):
    """The same game was already submitted a moment ago."""

    def __init__(self, existing_game_id: int):
        self.existing_game_id = existing_game_id
        super().__init__(
            f"This game looks like a duplicate of game {existing_game_id} submitted moments ago"
        )


def _validate_team(team: Any, label: str) -> List[int]:
    if not isinstance(team, (list, tuple)) or len(team) != TEAM_SIZE:
        raise GameValidationError(f"{label} must have exactly {TEAM_SIZE} players")

    player_ids = []
    for player_id in team:
        if player_id is None or player_id == "":
            raise GameValidationError(f"{label} is missing a player")
        if isinstance(player_id, bool) or not isinstance(player_id, int):
            raise GameValidationError(f"{label} has an invalid player id: {player_id!r}")
        player_ids.append(player_id)
    return player_ids


def _validate_score(score: Any, label: str) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise GameValidationError(f"{label} score must be a whole number")
    if score < 0:
        raise GameValidationError(f"{label} score cannot be negative")
    if score > MAX_SCORE:
        raise GameValidationError(f"{label} score cannot exceed {MAX_SCORE}")
    return score


def validate_game(
    team1: Sequence[Any],
    team2: Sequence[Any],
    team1_score: Any,
    team2_score: Any,
) -> Tuple[List[int], List[int], int, int]:
    """
    Check a game result against the roster and scoring rules.

    Rules:
    - Each team has exactly two players and every slot is filled
    - All four players are different people
    - Scores are whole numbers between 0 and MAX_SCORE
    - No ties; the winner reaches at least 11 and wins by at least 2

    Returns:
        (team1_ids, team2_ids, team1_score, team2_score)

    Raises:
        GameValidationError: With a message suitable for the user
    """
    team1_ids = _validate_team(team1, "Team 1")
    team2_ids = _validate_team(team2, "Team 2")

    all_players = team1_ids + team2_ids
    if len(set(all_players)) != len(all_players):
        raise GameValidationError("A player cannot appear twice in the same game")

    score1 = _validate_score(team1_score, "Team 1")
    score2 = _validate_score(team2_score, "Team 2")

    if score1 == score2:
        raise GameValidationError("Games cannot end in a tie")

    winning, losing = max(score1, score2), min(score1, score2)
    if winning < MIN_WINNING_SCORE:
        raise GameValidationError(f"The winning team must score at least {MIN_WINNING_SCORE}")
    if winning - losing < MIN_WIN_MARGIN:
        raise GameValidationError(f"The winning team must win by at least {MIN_WIN_MARGIN}")

    return team1_ids, team2_ids, score1, score2


async def _check_players_exist(session: AsyncSession, player_ids: List[int]) -> None:
    existing = await data_service.get_existing_player_ids(session, player_ids)
    missing = [player_id for player_id in player_ids if player_id not in existing]
    if missing:
        raise GameValidationError(f"Unknown player(s): {', '.join(str(m) for m in missing)}")


def _check_season_window(season: Dict, played_at: datetime) -> None:
    start = parse_game_time(season["start_date"])
    end = parse_game_time(season["end_date"])
    if not start <= played_at < end:
        raise GameValidationError(
            f"Game time {played_at.isoformat()} is outside season {season['name']} "
            f"({start.date()} to {end.date()})"
        )


async def provisional_elo_change(
    session: AsyncSession,
    season: Dict,
    team1_ids: List[int],
    team2_ids: List[int],
    team1_score: int,
    team2_score: int,
) -> int:
    """
    Delta against the current season snapshots, for immediate feedback.

    Players without a snapshot count at the season baseline. The next
    replay overwrites this value.
    """
    snapshots = await data_service.get_player_season_snapshots(
        session, season["id"], team1_ids + team2_ids
    )

    def rating_of(player_id: int) -> int:
        snapshot = snapshots.get(player_id)
        return snapshot["rating"] if snapshot else season["initial_rating"]

    return rating_service.game_elo_change(
        rating_service.team_rating([rating_of(p) for p in team1_ids]),
        rating_service.team_rating([rating_of(p) for p in team2_ids]),
        team1_score,
        team2_score,
        season["k_factor"],
    )


async def admit_game(
    session: AsyncSession,
    season_id: int,
    team1: Sequence[Any],
    team2: Sequence[Any],
    team1_score: Any,
    team2_score: Any,
    game_time: Optional[Any] = None,
    recorded_by: Optional[int] = None,
    recorded_by_name: Optional[str] = None,
) -> Optional[Dict]:
    """
    Validate and store a new game, then queue a replay of its season.

    The stored delta is provisional; the queued replay recomputes it in
    game-time order together with every snapshot of the season.

    Returns:
        Dict with the stored game and the replay job id, or None if the
        season does not exist

    Raises:
        GameValidationError: If the game breaks a rule, the season is not
            active or the game time falls outside the season
        DuplicateSubmissionError: If the same game was submitted within the window
    """
    team1_ids, team2_ids, score1, score2 = validate_game(team1, team2, team1_score, team2_score)

    try:
        played_at = parse_game_time(game_time)
    except ValueError as e:
        raise GameValidationError(str(e))

    season = await data_service.get_season(session, season_id)
    if not season:
        return None
    if not season["is_active"]:
        raise GameValidationError(f"Season {season['name']} is not active")
    _check_season_window(season, played_at)

    await _check_players_exist(session, team1_ids + team2_ids)

    duplicate_id = await data_service.find_recent_duplicate(
        session, season_id, team1_ids, team2_ids, score1, score2
    )
    if duplicate_id is not None:
        logger.info(f"Rejected duplicate submission of game {duplicate_id} in season {season_id}")
        raise DuplicateSubmissionError(duplicate_id)

    elo_change = await provisional_elo_change(session, season, team1_ids, team2_ids, score1, score2)

    game = await data_service.create_game(
        session,
        season_id=season_id,
        team1_player_ids=team1_ids,
        team2_player_ids=team2_ids,
        team1_score=score1,
        team2_score=score2,
        elo_change=elo_change,
        game_time=played_at,
        recorded_by=recorded_by,
        recorded_by_name=recorded_by_name,
    )
    logger.info(f"Admitted game {game.id} in season {season_id} ({score1}-{score2}, delta {elo_change})")

    job_id = await get_replay_queue().enqueue_replay(session, season_id)

    return {
        "game_id": game.id,
        "season_id": season_id,
        "elo_change": elo_change,
        "replay_job_id": job_id,
    }


async def edit_game(
    session: AsyncSession,
    game_id: int,
    team1: Sequence[Any],
    team2: Sequence[Any],
    team1_score: Any,
    team2_score: Any,
    game_time: Optional[Any] = None,
) -> Optional[Dict]:
    """
    Overwrite a game's players and scores (and optionally its time), then
    replay its season.

    Returns:
        Dict with the game id and the replay result, or None if the game
        does not exist

    Raises:
        GameValidationError: If the edited game breaks a rule or its new time
            falls outside the season
        ReplayConflictError, ReplayTimeoutError: If the replay fails twice
    """
    team1_ids, team2_ids, score1, score2 = validate_game(team1, team2, team1_score, team2_score)

    played_at = None
    if game_time is not None:
        try:
            played_at = parse_game_time(game_time)
        except ValueError as e:
            raise GameValidationError(str(e))

    game = await data_service.get_game(session, game_id)
    if not game:
        return None

    await _check_players_exist(session, team1_ids + team2_ids)

    if played_at is not None:
        season = await data_service.get_season(session, game.season_id)
        _check_season_window(season, played_at)

    season_id = game.season_id
    await data_service.update_game(
        session, game, team1_ids, team2_ids, score1, score2, game_time=played_at
    )
    logger.info(f"Edited game {game_id} in season {season_id}; replaying season")

    replay = await data_service.replay_season_with_retry(session, season_id)
    return {"game_id": game_id, "season_id": season_id, "replay": replay}


async def delete_game(session: AsyncSession, game_id: int) -> Optional[Dict]:
    """
    Delete a game and replay its season.

    Returns:
        Dict with the deleted game id and the replay result, or None if the
        game does not exist
    """
    game = await data_service.get_game(session, game_id)
    if not game:
        return None

    season_id = game.season_id
    deleted = await data_service.delete_game(session, game_id)
    if not deleted:
        return None
    logger.info(f"Deleted game {game_id} from season {season_id}; replaying season")

    replay = await data_service.replay_season_with_retry(session, season_id)
    return {"game_id": game_id, "season_id": season_id, "replay": replay}
