"""
Tests for data_service: season replay persistence, snapshots, settings and
player sync.
"""
import asyncio
from datetime import datetime

import pytest
import pytz
from sqlalchemy import select, update
from pickleball_elo.database import db
from pickleball_elo.database.models import Player, PlayerSeasonRating, Season
from pickleball_elo.services import data_service
from pickleball_elo.services.data_service import ReplayConflictError, ReplayTimeoutError


async def ratings_version(session, season_id):
    result = await session.execute(
        select(Season.ratings_version).where(Season.id == season_id)
    )
    return result.scalar_one()


# ============================================================================
# Settings
# ============================================================================

@pytest.mark.asyncio
async def test_settings_round_trip(db_session):
    assert await data_service.get_setting(db_session, "log_level") is None
    await data_service.set_setting(db_session, "log_level", "DEBUG")
    assert await data_service.get_setting(db_session, "log_level") == "DEBUG"
    await data_service.set_setting(db_session, "log_level", "WARNING")
    assert await data_service.get_setting(db_session, "log_level") == "WARNING"


# ============================================================================
# Seasons
# ============================================================================

@pytest.mark.asyncio
async def test_create_season_defaults(db_session, season):
    assert season["initial_rating"] == 1500
    assert season["k_factor"] == 32
    assert season["min_games_for_ranking"] == 5
    assert season["ratings_version"] == 0
    active = await data_service.get_active_season(db_session)
    assert active["id"] == season["id"]


@pytest.mark.asyncio
async def test_create_season_rejects_empty_window(db_session):
    when = pytz.UTC.localize(datetime(2026, 6, 1))
    with pytest.raises(ValueError):
        await data_service.create_season(db_session, "Empty", when, when)


# ============================================================================
# Season Replay
# ============================================================================

@pytest.mark.asyncio
async def test_replay_writes_snapshots_and_deltas(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    game = await make_game(season["id"], (a, b), (c, d), 11, 9, elo_change=3)

    result = await data_service.replay_season_async(db_session, season["id"])

    assert result["game_count"] == 1
    assert result["player_count"] == 4
    assert result["skipped_game_ids"] == []
    assert (await data_service.get_game(db_session, game.id)).elo_change == 16

    snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], c)
    assert snapshot == {
        "season_id": season["id"],
        "player_id": c,
        "rating": 1484,
        "wins": 0,
        "losses": 1,
        "highest_rating": 1500,
        "lowest_rating": 1484,
        "current_streak": 0,
        "longest_win_streak": 0,
    }


@pytest.mark.asyncio
async def test_replay_is_idempotent_and_bumps_version(db_session, season, players, make_game):
    a, b, c, d, e, f = players
    await make_game(season["id"], (a, b), (c, d), 11, 9, minutes=0)
    await make_game(season["id"], (a, e), (c, f), 11, 4, minutes=5)
    await make_game(season["id"], (b, f), (d, e), 9, 11, minutes=10)

    await data_service.replay_season_async(db_session, season["id"])
    first = await data_service.get_player_season_snapshots(db_session, season["id"])
    await data_service.replay_season_async(db_session, season["id"])
    second = await data_service.get_player_season_snapshots(db_session, season["id"])

    assert first == second
    assert await ratings_version(db_session, season["id"]) == 2


@pytest.mark.asyncio
async def test_edit_early_game_changes_later_deltas(db_session, season, players, make_game):
    """Changing an early game's score changes the stored delta of a later game."""
    a, b, c, d, _, _ = players
    early = await make_game(season["id"], (a, b), (c, d), 11, 9, minutes=0)
    later = await make_game(season["id"], (a, c), (b, d), 11, 9, minutes=30)
    await data_service.replay_season_async(db_session, season["id"])
    # Even teams in the later game
    assert (await data_service.get_game(db_session, later.id)).elo_change == 16

    # Make the early game lopsided for a and d instead
    await data_service.update_game(db_session, early, [a, d], [b, c], 11, 2)
    await data_service.replay_season_async(db_session, season["id"])

    # a (1524) + c (1476) vs b (1476) + d (1524): still even
    assert (await data_service.get_game(db_session, later.id)).elo_change == 16

    await data_service.update_game(db_session, early, [a, c], [b, d], 11, 2)
    await data_service.replay_season_async(db_session, season["id"])
    # a and c now enter the later game 48 points ahead of b and d
    assert (await data_service.get_game(db_session, later.id)).elo_change < 16


@pytest.mark.asyncio
async def test_replay_resets_players_without_games(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    game = await make_game(season["id"], (a, b), (c, d), 11, 9)
    await data_service.replay_season_async(db_session, season["id"])

    await data_service.delete_game(db_session, game.id)
    result = await data_service.replay_season_async(db_session, season["id"])

    assert result["game_count"] == 0
    assert result["reset_player_count"] == 4
    for player_id in (a, b, c, d):
        snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], player_id)
        assert snapshot["rating"] == 1500
        assert snapshot["wins"] == 0
        assert snapshot["losses"] == 0
        assert snapshot["highest_rating"] == snapshot["lowest_rating"] == 1500


@pytest.mark.asyncio
async def test_replay_empty_season(db_session, season):
    result = await data_service.replay_season_async(db_session, season["id"])
    assert result["game_count"] == 0
    assert result["player_count"] == 0
    assert await data_service.get_player_season_snapshots(db_session, season["id"]) == {}


@pytest.mark.asyncio
async def test_replay_unknown_season(db_session):
    assert await data_service.replay_season_async(db_session, 404) is None


@pytest.mark.asyncio
async def test_replay_uses_season_configuration(db_session, players, make_game):
    a, b, c, d, _, _ = players
    season = await data_service.create_season(
        db_session,
        name="Ladder",
        start_date=pytz.UTC.localize(datetime(2026, 1, 1)),
        end_date=pytz.UTC.localize(datetime(2026, 7, 1)),
        initial_rating=1000,
        k_factor=40,
    )
    await make_game(season["id"], (a, b), (c, d), 11, 9)
    await data_service.replay_season_async(db_session, season["id"])

    snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], a)
    assert snapshot["rating"] == 1020


@pytest.mark.asyncio
async def test_replay_skips_malformed_game(db_session, season, players, make_game):
    """A stored game with a repeated player is skipped, the rest still counts."""
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9, minutes=0)
    broken = await make_game(season["id"], (a, b), (a, d), 11, 3, minutes=5)

    result = await data_service.replay_season_async(db_session, season["id"])

    assert result["skipped_game_ids"] == [broken.id]
    assert result["game_count"] == 1
    snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], a)
    assert snapshot["wins"] == 1


@pytest.mark.asyncio
async def test_replay_conflict_rolls_back(db_session, season, players, make_game, monkeypatch):
    """If another writer bumps the version mid-replay, nothing is committed."""
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9)
    original = data_service.get_games_for_season

    async def racing_get_games(session, season_id):
        async with db.AsyncSessionLocal() as other:
            await other.execute(
                update(Season)
                .where(Season.id == season_id)
                .values(ratings_version=Season.ratings_version + 1)
            )
            await other.commit()
        return await original(session, season_id)

    monkeypatch.setattr(data_service, "get_games_for_season", racing_get_games)

    with pytest.raises(ReplayConflictError):
        await data_service.replay_season_async(db_session, season["id"])

    assert await data_service.get_player_season_snapshots(db_session, season["id"]) == {}


@pytest.mark.asyncio
async def test_replay_with_retry_recovers_from_one_conflict(db_session, season, players, make_game, monkeypatch):
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9)
    original = data_service.replay_season_async
    calls = []

    async def flaky_replay(session, season_id):
        calls.append(season_id)
        if len(calls) == 1:
            raise ReplayConflictError("lost the race")
        return await original(session, season_id)

    monkeypatch.setattr(data_service, "replay_season_async", flaky_replay)

    result = await data_service.replay_season_with_retry(db_session, season["id"])

    assert len(calls) == 2
    assert result["game_count"] == 1


@pytest.mark.asyncio
async def test_replay_with_retry_gives_up_after_second_failure(db_session, season, monkeypatch):
    async def always_conflicts(session, season_id):
        raise ReplayConflictError("lost the race")

    monkeypatch.setattr(data_service, "replay_season_async", always_conflicts)

    with pytest.raises(ReplayConflictError):
        await data_service.replay_season_with_retry(db_session, season["id"])


@pytest.mark.asyncio
async def test_replay_with_retry_times_out(db_session, season, monkeypatch):
    async def slow_replay(session, season_id):
        await asyncio.sleep(5)

    monkeypatch.setattr(data_service, "replay_season_async", slow_replay)

    with pytest.raises(ReplayTimeoutError):
        await data_service.replay_season_with_retry(db_session, season["id"], timeout=0.01)


@pytest.mark.asyncio
async def test_concurrent_replays_are_serialized(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9)

    async with db.AsyncSessionLocal() as first, db.AsyncSessionLocal() as second:
        results = await asyncio.gather(
            data_service.replay_season_async(first, season["id"]),
            data_service.replay_season_async(second, season["id"]),
        )

    assert sorted(r["ratings_version"] for r in results) == [1, 2]
    snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], a)
    assert snapshot["rating"] == 1516


# ============================================================================
# Seeding, history and sync
# ============================================================================

@pytest.mark.asyncio
async def test_initialize_season_ratings(db_session, season, players, make_game):
    created = await data_service.initialize_season_ratings(db_session, season["id"])
    assert created == len(players)
    assert await data_service.initialize_season_ratings(db_session, season["id"]) == 0

    a, b, c, d, e, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9)
    await data_service.replay_season_async(db_session, season["id"])

    # Seeded rows survive a replay at the baseline
    snapshot = await data_service.get_player_season_snapshot(db_session, season["id"], e)
    assert snapshot["rating"] == 1500
    assert snapshot["wins"] + snapshot["losses"] == 0


@pytest.mark.asyncio
async def test_initialize_unknown_season(db_session):
    assert await data_service.initialize_season_ratings(db_session, 404) == -1


@pytest.mark.asyncio
async def test_list_season_games_newest_first(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    older = await make_game(season["id"], (a, b), (c, d), 11, 9, minutes=0)
    newer = await make_game(season["id"], (a, c), (b, d), 11, 5, minutes=20)

    games = await data_service.list_season_games(db_session, season["id"])

    assert [g["id"] for g in games] == [newer.id, older.id]
    assert games[1]["team1"]["players"] == ["Ana", "Ben"]
    assert games[1]["team2"]["score"] == 9
    assert games[0]["game_time"].startswith("2026-01-05T18:20:00")

    limited = await data_service.list_season_games(db_session, season["id"], limit=1)
    assert [g["id"] for g in limited] == [newer.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -3])
async def test_list_season_games_rejects_non_positive_limit(db_session, season, limit):
    with pytest.raises(ValueError, match="at least 1"):
        await data_service.list_season_games(db_session, season["id"], limit=limit)


@pytest.mark.asyncio
async def test_sync_player_ratings(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9, minutes=0)
    await make_game(season["id"], (a, c), (b, d), 11, 7, minutes=5)
    await data_service.replay_season_async(db_session, season["id"])

    result = await data_service.sync_player_ratings_async(db_session, season["id"])
    assert result["updated_player_count"] == len(players)

    rows = await db_session.execute(select(Player).where(Player.id.in_([a, d])))
    by_id = {p.id: p for p in rows.scalars().all()}
    snapshot_a = await data_service.get_player_season_snapshot(db_session, season["id"], a)
    assert by_id[a].rating == snapshot_a["rating"]
    assert (by_id[a].wins, by_id[a].losses) == (2, 0)
    assert (by_id[d].wins, by_id[d].losses) == (0, 2)


@pytest.mark.asyncio
async def test_snapshot_rows_unique_per_player(db_session, season, players, make_game):
    a, b, c, d, _, _ = players
    await make_game(season["id"], (a, b), (c, d), 11, 9)
    for _ in range(3):
        await data_service.replay_season_async(db_session, season["id"])
    rows = await db_session.execute(
        select(PlayerSeasonRating).where(PlayerSeasonRating.season_id == season["id"])
    )
    assert len(rows.scalars().all()) == 4
