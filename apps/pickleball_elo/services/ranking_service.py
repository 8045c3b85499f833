"""
Ranking projection.
Turns persisted season snapshots into a leaderboard. Read-only.
"""

from typing import Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from pickleball_elo.database.models import Player, PlayerSeasonRating, Season
from pickleball_elo.utils.constants import MIN_GAMES_FOR_RANKING


def _ranking_sort_key(entry: Dict):
    # Highest rating first; equal ratings: more wins, then lower player id
    return (-entry["rating"], -entry["wins"], entry["player_id"])


def _to_entry(snapshot: Dict) -> Dict:
    wins = snapshot.get("wins") or 0
    losses = snapshot.get("losses") or 0
    games_played = wins + losses
    return {
        **snapshot,
        "wins": wins,
        "losses": losses,
        "games_played": games_played,
        "win_rate": round(wins / games_played, 3) if games_played > 0 else 0.0,
        "rank": None,
    }


def project_rankings(
    snapshots: List[Dict],
    min_games: int = MIN_GAMES_FOR_RANKING,
) -> Dict[str, List[Dict]]:
    """
    Split snapshots into ranked and unranked players.

    Players with fewer than ``min_games`` games are unranked and keep their
    raw stats. The rest are ordered by rating (descending) and receive
    1-based positions. Equal ratings are ordered by wins (descending), then
    by player id (ascending).

    Args:
        snapshots: Dicts with at least player_id, rating, wins and losses
        min_games: Minimum games played to be ranked

    Returns:
        {"ranked": [...], "unranked": [...]}
    """
    entries = [_to_entry(snapshot) for snapshot in snapshots]

    ranked = [e for e in entries if e["games_played"] >= min_games]
    unranked = [e for e in entries if e["games_played"] < min_games]

    ranked.sort(key=_ranking_sort_key)
    for index, entry in enumerate(ranked):
        entry["rank"] = index + 1

    unranked.sort(key=_ranking_sort_key)

    return {"ranked": ranked, "unranked": unranked}


async def get_season_rankings(
    session: AsyncSession,
    season_id: int,
    include_inactive: bool = False,
) -> Optional[Dict]:
    """
    Build the leaderboard for a season from its stored snapshots.

    Args:
        session: Database session
        season_id: Season ID
        include_inactive: Also list players without a snapshot as unranked,
            at the season baseline with no games

    Returns:
        Dict with season_id, min_games, ranked and unranked lists, or None
        if the season does not exist
    """
    season = await session.get(Season, season_id)
    if not season:
        return None

    result = await session.execute(
        select(PlayerSeasonRating, Player.full_name)
        .join(Player, PlayerSeasonRating.player_id == Player.id)
        .where(PlayerSeasonRating.season_id == season_id)
    )

    snapshots = []
    for rating, full_name in result.all():
        snapshots.append({
            "player_id": rating.player_id,
            "name": full_name,
            "rating": rating.rating,
            "wins": rating.wins,
            "losses": rating.losses,
            "highest_rating": rating.highest_rating,
            "lowest_rating": rating.lowest_rating,
            "current_streak": rating.current_streak,
            "longest_win_streak": rating.longest_win_streak,
        })

    if include_inactive:
        known = {s["player_id"] for s in snapshots}
        players_result = await session.execute(select(Player.id, Player.full_name))
        for player_id, full_name in players_result.all():
            if player_id in known:
                continue
            snapshots.append({
                "player_id": player_id,
                "name": full_name,
                "rating": season.initial_rating,
                "wins": 0,
                "losses": 0,
                "highest_rating": season.initial_rating,
                "lowest_rating": season.initial_rating,
                "current_streak": 0,
                "longest_win_streak": 0,
            })

    projection = project_rankings(snapshots, season.min_games_for_ranking)
    return {
        "season_id": season_id,
        "min_games": season.min_games_for_ranking,
        **projection,
    }
