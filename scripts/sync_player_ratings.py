#!/usr/bin/env python3
"""
Copy a season's ratings onto player profiles and recompute lifetime records.

Defaults to the active season.
"""

import argparse
import asyncio
import os
import sys

# Add apps to path (so pickleball_elo.* imports work)
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(project_root, "apps"))

from pickleball_elo.database.db import AsyncSessionLocal  # noqa: E402
from pickleball_elo.services import data_service  # noqa: E402


async def main():
    parser = argparse.ArgumentParser(description="Sync player profile ratings from a season")
    parser.add_argument("--season-id", type=int, help="Season to sync from (default: active season)")
    args = parser.parse_args()

    async with AsyncSessionLocal() as session:
        season_id = args.season_id
        if season_id is None:
            active = await data_service.get_active_season(session)
            if not active:
                print("❌ No active season; pass --season-id")
                return
            season_id = active["id"]

        result = await data_service.sync_player_ratings_async(session, season_id)
        if result is None:
            print(f"❌ Season {season_id} not found")
            return

        print(f"✓ Synced {result['updated_player_count']} players from season {season_id}")


if __name__ == "__main__":
    asyncio.run(main())
