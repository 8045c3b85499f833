#!/usr/bin/env python3
"""
Initialize default database values.
This script is run on startup to populate default settings.
"""

import asyncio
import logging
import os
from pickleball_elo.database import db
from pickleball_elo.services import data_service

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
    "admin_player_ids": "",
}


async def init_defaults():
    """Create any missing default settings. Existing values are left alone."""
    logger.info("Initializing default database values...")

    async with db.AsyncSessionLocal() as session:
        for key, value in DEFAULT_SETTINGS.items():
            existing = await data_service.get_setting(session, key)
            if existing is None:
                await data_service.set_setting(session, key, value)
                logger.info(f"✓ Set default setting {key}={value!r}")

    logger.info("✓ Default values initialized")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_defaults())
