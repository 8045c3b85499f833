#!/usr/bin/env python3
"""
Replay every season in the database.

This script:
1. Fetches all seasons
2. Runs a full replay (with one retry) for each season
3. Prints progress and a summary
"""

import asyncio
import os
import sys

# Add apps to path (so pickleball_elo.* imports work)
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(project_root, "apps"))

from pickleball_elo.database.db import AsyncSessionLocal  # noqa: E402
from pickleball_elo.services import data_service  # noqa: E402


async def replay_all_seasons():
    """Replay all seasons."""
    async with AsyncSessionLocal() as session:
        seasons = await data_service.list_seasons(session)

        if not seasons:
            print("❌ No seasons found in the database.")
            return

        print(f"✓ Found {len(seasons)} season(s)\n")

        successful = 0
        failed = []

        for idx, season in enumerate(seasons, 1):
            season_id = season["id"]
            print(f"[{idx}/{len(seasons)}] Replaying season: {season['name']} (ID: {season_id})")
            try:
                result = await data_service.replay_season_with_retry(session, season_id)
                print(
                    f"   ✓ {result['game_count']} games, {result['player_count']} players, "
                    f"{len(result['skipped_game_ids'])} skipped"
                )
                successful += 1
            except Exception as e:
                print(f"   ❌ Error: {str(e)}")
                failed.append((season, str(e)))

        print("=" * 60)
        print("📊 Summary")
        print("=" * 60)
        print(f"Total seasons: {len(seasons)}")
        print(f"✅ Successful: {successful}")
        print(f"❌ Failed: {len(failed)}")
        for season, error in failed:
            print(f"  - {season['name']} (ID: {season['id']}): {error}")


if __name__ == "__main__":
    asyncio.run(replay_all_seasons())
