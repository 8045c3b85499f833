"""Season history and leaderboard route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pickleball_elo.database.db import get_db_session
from pickleball_elo.models.schemas import RankingsResponse
from pickleball_elo.services import data_service, ranking_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/seasons/{season_id}/games")
async def list_season_games(
    season_id: int,
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of games"),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Season game history, newest first.

    Query params:
        limit: Optional maximum number of games
    """
    try:
        season = await data_service.get_season(session, season_id)
        if not season:
            raise HTTPException(status_code=404, detail=f"Season {season_id} not found")
        return await data_service.list_season_games(session, season_id, limit=limit)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error loading games: {str(e)}")


@router.get("/api/seasons/{season_id}/rankings", response_model=RankingsResponse)
async def get_season_rankings(
    season_id: int,
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Season leaderboard.

    Players with fewer than the season's minimum games are listed under
    "unranked" without a rank.
    """
    try:
        rankings = await ranking_service.get_season_rankings(
            session, season_id, include_inactive=include_inactive
        )
        if rankings is None:
            raise HTTPException(status_code=404, detail=f"Season {season_id} not found")
        return rankings
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error loading rankings: {str(e)}")
