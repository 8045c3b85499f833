"""
Authentication dependencies for FastAPI routes.
"""

import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from pickleball_elo.services import auth_service, data_service
from pickleball_elo.database.db import get_db_session

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_player(
    session: AsyncSession = Depends(get_db_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated player from the bearer token.

    Args:
        session: Database session
        credentials: HTTP Bearer token credentials

    Returns:
        Player dictionary

    Raises:
        HTTPException: If token is invalid or player not found
    """
    token = credentials.credentials

    payload = auth_service.verify_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    player_id = payload.get("player_id")
    if player_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    player = await data_service.get_player(session, player_id)
    if player is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Player not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return player


async def is_admin(session: AsyncSession, player: dict) -> bool:
    """
    Determine whether a player may change season history.

    A player is an admin when flagged on their profile or listed in the
    'admin_player_ids' setting (comma-separated player IDs).
    """
    if player.get("is_admin"):
        return True

    admin_setting = await data_service.get_setting(session, "admin_player_ids")
    if not admin_setting:
        return False

    admin_ids = set()
    for raw in admin_setting.split(","):
        raw = raw.strip()
        if raw.isdigit():
            admin_ids.add(int(raw))
        elif raw:
            logger.warning(f"Ignoring malformed entry in admin_player_ids: {raw!r}")
    return player["id"] in admin_ids


async def require_admin(
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """Require an admin player (game edits, deletions and manual replays)."""
    if not await is_admin(session, player):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return player
