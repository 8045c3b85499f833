"""
Data service layer for database operations.
Handles CRUD for players, seasons, games and rating snapshots, and runs the
season replay against the database.
"""

import asyncio
import logging
import os
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from pickleball_elo.database.models import (
    Player, Season, Game, PlayerSeasonRating, Setting,
)
from pickleball_elo.services import replay_service
from pickleball_elo.utils.constants import (
    DEFAULT_REPLAY_TIMEOUT_SECONDS,
    DUPLICATE_SUBMISSION_WINDOW_SECONDS,
    REPLAY_RETRY_ATTEMPTS,
)
from pickleball_elo.utils.datetime_utils import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)

REPLAY_TIMEOUT_SECONDS = float(
    os.getenv("REPLAY_TIMEOUT_SECONDS", str(DEFAULT_REPLAY_TIMEOUT_SECONDS))
)


class ReplayConflictError(RuntimeError):
    """Another replay of the same season committed first."""


class ReplayTimeoutError(RuntimeError):
    """A season replay took longer than the configured limit."""


# Per-season locks serializing read-fold-write within this process.
# One entry per season id, never evicted; seasons are few and long-lived.
_season_locks: Dict[int, asyncio.Lock] = {}


def get_season_lock(season_id: int) -> asyncio.Lock:
    """Get (or create) the replay lock for a season."""
    if season_id not in _season_locks:
        _season_locks[season_id] = asyncio.Lock()
    return _season_locks[season_id]


# ============================================================================
# Players
# ============================================================================

async def create_player(
    session: AsyncSession,
    full_name: str,
    phone_number: Optional[str] = None,
    is_admin: bool = False,
) -> Player:
    """Create a player profile."""
    player = Player(full_name=full_name, phone_number=phone_number, is_admin=is_admin)
    session.add(player)
    await session.flush()
    await session.commit()
    await session.refresh(player)
    return player


async def get_player(session: AsyncSession, player_id: int) -> Optional[Dict]:
    """Get a player by ID."""
    player = await session.get(Player, player_id)
    if not player:
        return None
    return {
        "id": player.id,
        "full_name": player.full_name,
        "nickname": player.nickname,
        "rating": player.rating,
        "wins": player.wins,
        "losses": player.losses,
        "is_admin": player.is_admin,
    }


async def get_existing_player_ids(session: AsyncSession, player_ids: List[int]) -> set:
    """Return the subset of player_ids that exist."""
    if not player_ids:
        return set()
    result = await session.execute(select(Player.id).where(Player.id.in_(player_ids)))
    return set(result.scalars().all())


# ============================================================================
# Settings
# ============================================================================

async def get_setting(session: AsyncSession, key: str) -> Optional[str]:
    """
    Get a setting value.

    Args:
        session: Database session
        key: Setting key

    Returns:
        Setting value or None if not found
    """
    result = await session.execute(
        select(Setting).where(Setting.key == key)
    )
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(session: AsyncSession, key: str, value: str) -> None:
    """
    Set a setting value (upsert).

    Args:
        session: Database session
        key: Setting key
        value: Setting value
    """
    setting = await session.get(Setting, key)
    if setting:
        setting.value = value
    else:
        session.add(Setting(key=key, value=value))
    await session.commit()


# ============================================================================
# Seasons
# ============================================================================

def _season_to_dict(season: Season) -> Dict:
    return {
        "id": season.id,
        "name": season.name,
        "start_date": isoformat_or_none(season.start_date),
        "end_date": isoformat_or_none(season.end_date),
        "is_active": season.is_active,
        "initial_rating": season.initial_rating,
        "k_factor": season.k_factor,
        "min_games_for_ranking": season.min_games_for_ranking,
        "ratings_version": season.ratings_version,
    }


async def create_season(
    session: AsyncSession,
    name: str,
    start_date: datetime,
    end_date: datetime,
    is_active: bool = True,
    initial_rating: Optional[int] = None,
    k_factor: Optional[int] = None,
    min_games_for_ranking: Optional[int] = None,
) -> Dict:
    """
    Create a season row. Activation policy belongs to the season admin tools;
    this only stores what it is given.

    Raises:
        ValueError: If the window is empty
    """
    if start_date >= end_date:
        raise ValueError("Start date must be before end date")

    season = Season(name=name, start_date=start_date, end_date=end_date, is_active=is_active)
    if initial_rating is not None:
        season.initial_rating = initial_rating
    if k_factor is not None:
        season.k_factor = k_factor
    if min_games_for_ranking is not None:
        season.min_games_for_ranking = min_games_for_ranking

    session.add(season)
    await session.flush()
    await session.commit()
    await session.refresh(season)
    return _season_to_dict(season)


async def get_season(session: AsyncSession, season_id: int) -> Optional[Dict]:
    """Get a season by ID."""
    season = await session.get(Season, season_id)
    return _season_to_dict(season) if season else None


async def list_seasons(session: AsyncSession) -> List[Dict]:
    """List all seasons, newest first."""
    result = await session.execute(
        select(Season).order_by(Season.start_date.desc(), Season.id.desc())
    )
    return [_season_to_dict(s) for s in result.scalars().all()]


async def get_active_season(session: AsyncSession) -> Optional[Dict]:
    """Get the active season (the most recently started one if several are flagged)."""
    result = await session.execute(
        select(Season)
        .where(Season.is_active == True)  # noqa: E712
        .order_by(Season.start_date.desc())
        .limit(1)
    )
    season = result.scalar_one_or_none()
    return _season_to_dict(season) if season else None


# ============================================================================
# Games
# ============================================================================

async def get_games_for_season(session: AsyncSession, season_id: int) -> List[Game]:
    """
    Load every game of a season in replay order.

    Ordered by game time ascending, ties broken by id.
    """
    result = await session.execute(
        select(Game)
        .where(Game.season_id == season_id)
        .order_by(Game.game_time.asc(), Game.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def get_game(session: AsyncSession, game_id: int) -> Optional[Game]:
    """Get a game ORM object by ID."""
    return await session.get(Game, game_id)


def _player_name(player: Optional[Player]) -> Optional[str]:
    return player.full_name if player else None


def game_to_dict(game: Game) -> Dict:
    """Serialize a game with player names (relationships must be loaded)."""
    return {
        "id": game.id,
        "season_id": game.season_id,
        "team1": {
            "player_ids": [game.team1_player1_id, game.team1_player2_id],
            "players": [_player_name(game.team1_player1), _player_name(game.team1_player2)],
            "score": game.team1_score,
        },
        "team2": {
            "player_ids": [game.team2_player1_id, game.team2_player2_id],
            "players": [_player_name(game.team2_player1), _player_name(game.team2_player2)],
            "score": game.team2_score,
        },
        "elo_change": game.elo_change,
        "game_time": isoformat_or_none(game.game_time),
        "created_at": isoformat_or_none(game.created_at),
        "recorded_by": {
            "id": game.recorded_by,
            "name": game.recorded_by_name,
        } if game.recorded_by else None,
    }


async def list_season_games(
    session: AsyncSession,
    season_id: int,
    limit: Optional[int] = None,
) -> List[Dict]:
    """
    Season game history, newest first, with player names.

    Args:
        session: Database session
        season_id: Season ID
        limit: Optional maximum number of games (None for all)

    Returns:
        List of game dicts

    Raises:
        ValueError: If limit is below 1
    """
    if limit is not None and limit < 1:
        raise ValueError("limit must be at least 1")

    query = (
        select(Game)
        .where(Game.season_id == season_id)
        .options(
            selectinload(Game.team1_player1),
            selectinload(Game.team1_player2),
            selectinload(Game.team2_player1),
            selectinload(Game.team2_player2),
        )
        .order_by(Game.game_time.desc(), Game.id.desc())
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)

    result = await session.execute(query)
    return [game_to_dict(game) for game in result.scalars().all()]


async def create_game(
    session: AsyncSession,
    season_id: int,
    team1_player_ids: List[int],
    team2_player_ids: List[int],
    team1_score: int,
    team2_score: int,
    elo_change: int,
    game_time: datetime,
    recorded_by: Optional[int] = None,
    recorded_by_name: Optional[str] = None,
) -> Game:
    """Insert a game row. Validation happens in game_service before this is called."""
    game = Game(
        season_id=season_id,
        team1_player1_id=team1_player_ids[0],
        team1_player2_id=team1_player_ids[1],
        team2_player1_id=team2_player_ids[0],
        team2_player2_id=team2_player_ids[1],
        team1_score=team1_score,
        team2_score=team2_score,
        elo_change=elo_change,
        game_time=game_time,
        created_at=utcnow(),
        recorded_by=recorded_by,
        recorded_by_name=recorded_by_name,
    )
    session.add(game)
    await session.flush()
    await session.commit()
    await session.refresh(game)
    return game


async def update_game(
    session: AsyncSession,
    game: Game,
    team1_player_ids: List[int],
    team2_player_ids: List[int],
    team1_score: int,
    team2_score: int,
    game_time: Optional[datetime] = None,
) -> Game:
    """Overwrite the teams, scores and (optionally) time of a game."""
    game.team1_player1_id, game.team1_player2_id = team1_player_ids
    game.team2_player1_id, game.team2_player2_id = team2_player_ids
    game.team1_score = team1_score
    game.team2_score = team2_score
    if game_time is not None:
        game.game_time = game_time
    await session.commit()
    return game


async def delete_game(session: AsyncSession, game_id: int) -> bool:
    """
    Delete a game.

    Returns:
        True if successful, False if game not found
    """
    result = await session.execute(
        delete(Game).where(Game.id == game_id)
    )
    await session.commit()
    return result.rowcount > 0


async def find_recent_duplicate(
    session: AsyncSession,
    season_id: int,
    team1_player_ids: List[int],
    team2_player_ids: List[int],
    team1_score: int,
    team2_score: int,
    window_seconds: int = DUPLICATE_SUBMISSION_WINDOW_SECONDS,
) -> Optional[int]:
    """
    Look for the same game submitted to the season within the window.

    Teams compare as sets of players; a submission with teams (and scores)
    swapped is the same game.

    Returns:
        ID of the earlier game, or None
    """
    cutoff = utcnow() - timedelta(seconds=window_seconds)
    result = await session.execute(
        select(Game).where(Game.season_id == season_id, Game.created_at > cutoff)
    )

    wanted = {
        (frozenset(team1_player_ids), team1_score),
        (frozenset(team2_player_ids), team2_score),
    }
    for game in result.scalars().all():
        existing = {
            (frozenset(game.player_ids[0]), game.team1_score),
            (frozenset(game.player_ids[1]), game.team2_score),
        }
        if existing == wanted:
            return game.id
    return None


async def update_game_delta(session: AsyncSession, game_id: int, elo_change: int) -> None:
    """Overwrite the stored ELO change of a game (nothing else)."""
    await session.execute(
        update(Game).where(Game.id == game_id).values(elo_change=elo_change)
    )


# ============================================================================
# Rating Snapshots
# ============================================================================

def _snapshot_to_dict(rating: PlayerSeasonRating) -> Dict:
    return {
        "season_id": rating.season_id,
        "player_id": rating.player_id,
        "rating": rating.rating,
        "wins": rating.wins,
        "losses": rating.losses,
        "highest_rating": rating.highest_rating,
        "lowest_rating": rating.lowest_rating,
        "current_streak": rating.current_streak,
        "longest_win_streak": rating.longest_win_streak,
    }


async def get_player_season_snapshot(
    session: AsyncSession, season_id: int, player_id: int
) -> Optional[Dict]:
    """Get one player's snapshot for a season, or None if absent."""
    result = await session.execute(
        select(PlayerSeasonRating).where(
            PlayerSeasonRating.season_id == season_id,
            PlayerSeasonRating.player_id == player_id,
        )
    )
    rating = result.scalar_one_or_none()
    return _snapshot_to_dict(rating) if rating else None


async def get_player_season_snapshots(
    session: AsyncSession, season_id: int, player_ids: Optional[List[int]] = None
) -> Dict[int, Dict]:
    """Get snapshots for a season keyed by player ID (optionally a subset)."""
    query = select(PlayerSeasonRating).where(PlayerSeasonRating.season_id == season_id)
    if player_ids is not None:
        query = query.where(PlayerSeasonRating.player_id.in_(player_ids))
    result = await session.execute(query)
    return {r.player_id: _snapshot_to_dict(r) for r in result.scalars().all()}


async def put_player_season_snapshot(
    session: AsyncSession, season_id: int, player_id: int, state: Dict
) -> None:
    """
    Write a player's snapshot for a season, replacing every field.

    Does not commit; the caller owns the transaction.
    """
    result = await session.execute(
        select(PlayerSeasonRating).where(
            PlayerSeasonRating.season_id == season_id,
            PlayerSeasonRating.player_id == player_id,
        )
    )
    rating = result.scalar_one_or_none()
    if rating is None:
        rating = PlayerSeasonRating(season_id=season_id, player_id=player_id)
        session.add(rating)

    rating.rating = state["rating"]
    rating.wins = state["wins"]
    rating.losses = state["losses"]
    rating.highest_rating = state["highest_rating"]
    rating.lowest_rating = state["lowest_rating"]
    rating.current_streak = state.get("current_streak", 0)
    rating.longest_win_streak = state.get("longest_win_streak", 0)


def _baseline_state(initial_rating: int) -> Dict:
    return {
        "rating": initial_rating,
        "wins": 0,
        "losses": 0,
        "highest_rating": initial_rating,
        "lowest_rating": initial_rating,
        "current_streak": 0,
        "longest_win_streak": 0,
    }


async def initialize_season_ratings(session: AsyncSession, season_id: int) -> int:
    """
    Seed a baseline snapshot for every existing player lacking one.

    Returns:
        Number of snapshots created, or -1 if the season does not exist
    """
    season = await session.get(Season, season_id)
    if not season:
        return -1

    existing = await get_player_season_snapshots(session, season_id)
    result = await session.execute(select(Player.id))
    created = 0
    for player_id in result.scalars().all():
        if player_id in existing:
            continue
        session.add(PlayerSeasonRating(
            season_id=season_id,
            player_id=player_id,
            **_baseline_state(season.initial_rating),
        ))
        created += 1

    await session.commit()
    return created


# ============================================================================
# Season Replay
# ============================================================================

async def replay_season_async(session: AsyncSession, season_id: int) -> Optional[Dict]:
    """
    Recompute every rating of a season from its full game history.

    This function:
    1. Loads all games of the season ordered by game time
    2. Folds the rating formula over them in memory (replay_service)
    3. Overwrites the snapshot of every player who appears in a game
    4. Resets any other snapshot of the season to the baseline
    5. Stamps the recomputed ELO change onto each game
    6. Bumps the season's ratings_version if nobody else did in the meantime

    All writes happen in one transaction. On any failure the session is
    rolled back and the previous snapshots stay visible.

    Args:
        session: Database session
        season_id: Season ID

    Returns:
        Dict with game_count, player_count, skipped_game_ids and
        ratings_version, or None if the season does not exist

    Raises:
        ReplayConflictError: If another replay committed for this season first
    """
    async with get_season_lock(season_id):
        try:
            result = await session.execute(
                select(Season).where(Season.id == season_id).execution_options(populate_existing=True)
            )
            season = result.scalar_one_or_none()
            if not season:
                return None

            version = season.ratings_version
            games = await get_games_for_season(session, season_id)
            logger.info(f"Replaying season {season_id}: {len(games)} games")

            tracker = replay_service.replay_games(games, season.initial_rating, season.k_factor)

            for player_id, state in tracker.players.items():
                await put_player_season_snapshot(session, season_id, player_id, state.to_dict())

            # Players no longer in any game keep an explicit baseline record
            existing = await get_player_season_snapshots(session, season_id)
            stale_ids = [pid for pid in existing if pid not in tracker.players]
            for player_id in stale_ids:
                await put_player_season_snapshot(
                    session, season_id, player_id, _baseline_state(season.initial_rating)
                )

            for game in games:
                new_change = tracker.elo_changes.get(game.id)
                if new_change is not None and new_change != game.elo_change:
                    await update_game_delta(session, game.id, new_change)

            bumped = await session.execute(
                update(Season)
                .where(Season.id == season_id, Season.ratings_version == version)
                .values(ratings_version=version + 1)
            )
            if bumped.rowcount != 1:
                raise ReplayConflictError(
                    f"Season {season_id} ratings changed during replay (version {version})"
                )

            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info(
        f"Replayed season {season_id}: {tracker.game_count} games, "
        f"{len(tracker.players)} players, {len(tracker.skipped_game_ids)} skipped"
    )
    return {
        "season_id": season_id,
        "game_count": tracker.game_count,
        "player_count": len(tracker.players),
        "skipped_game_ids": tracker.skipped_game_ids,
        "reset_player_count": len(stale_ids),
        "ratings_version": version + 1,
    }


async def replay_season_with_retry(
    session: AsyncSession,
    season_id: int,
    retries: int = REPLAY_RETRY_ATTEMPTS,
    timeout: Optional[float] = None,
) -> Optional[Dict]:
    """
    Run a bounded season replay, retrying on conflict or storage failure.

    Args:
        session: Database session
        season_id: Season ID
        retries: Extra attempts after the first failure
        timeout: Seconds allowed per attempt (defaults to REPLAY_TIMEOUT_SECONDS)

    Returns:
        Replay result dict, or None if the season does not exist

    Raises:
        ReplayTimeoutError, ReplayConflictError, SQLAlchemyError: After the
        last attempt fails
    """
    timeout = timeout if timeout is not None else REPLAY_TIMEOUT_SECONDS
    last_error: Optional[Exception] = None

    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(replay_season_async(session, season_id), timeout)
        except asyncio.TimeoutError:
            await session.rollback()
            last_error = ReplayTimeoutError(
                f"Replay of season {season_id} exceeded {timeout} seconds"
            )
        except (ReplayConflictError, SQLAlchemyError) as e:
            last_error = e

        if attempt < retries:
            logger.warning(
                f"Replay of season {season_id} failed (attempt {attempt + 1}): {last_error}; retrying"
            )

    logger.error(f"Replay of season {season_id} failed: {last_error}")
    raise last_error


# ============================================================================
# Player Lifetime Sync
# ============================================================================

async def sync_player_ratings_async(session: AsyncSession, season_id: int) -> Optional[Dict]:
    """
    Copy a season's snapshot ratings onto player profiles and recompute
    lifetime wins/losses from every stored game.

    Returns:
        Dict with updated player count, or None if the season does not exist
    """
    season = await session.get(Season, season_id)
    if not season:
        return None

    snapshots = await get_player_season_snapshots(session, season_id)

    wins: Dict[int, int] = defaultdict(int)
    losses: Dict[int, int] = defaultdict(int)
    result = await session.execute(select(Game))
    for game in result.scalars().all():
        if replay_service.find_malformed_reason(game) is not None:
            continue
        team1, team2 = game.player_ids
        winners, losers = (team1, team2) if game.team1_score > game.team2_score else (team2, team1)
        for player_id in winners:
            wins[player_id] += 1
        for player_id in losers:
            losses[player_id] += 1

    players_result = await session.execute(select(Player))
    updated = 0
    for player in players_result.scalars().all():
        snapshot = snapshots.get(player.id)
        if snapshot:
            player.rating = snapshot["rating"]
        player.wins = wins.get(player.id, 0)
        player.losses = losses.get(player.id, 0)
        updated += 1

    await session.commit()
    return {"season_id": season_id, "updated_player_count": updated}
