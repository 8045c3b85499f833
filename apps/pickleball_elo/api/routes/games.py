"""Game admission, edit and deletion route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pickleball_elo.api.routes import limiter
from pickleball_elo.api.auth_dependencies import get_current_player, require_admin
from pickleball_elo.database.db import get_db_session
from pickleball_elo.models.schemas import (
    CreateGameRequest,
    CreateGameResponse,
    GameMutationResponse,
    UpdateGameRequest,
)
from pickleball_elo.services import data_service, game_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/games", response_model=CreateGameResponse)
@limiter.limit("30/minute")
async def create_game(
    request: Request,
    payload: CreateGameRequest,
    player: dict = Depends(get_current_player),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Record a game.

    Request body:
        {
            "season_id": 1,   // Optional - defaults to the active season
            "team1_player1_id": 1,
            "team1_player2_id": 2,
            "team2_player1_id": 3,
            "team2_player2_id": 4,
            "team1_score": 11,
            "team2_score": 7,
            "game_time": "2026-01-21T18:30:00Z"  // Optional - defaults to now
        }

    The returned elo_change is provisional; a season replay is queued and
    its job id returned.
    """
    try:
        season_id = payload.season_id
        if season_id is None:
            active = await data_service.get_active_season(session)
            if not active:
                raise HTTPException(status_code=400, detail="No active season")
            season_id = active["id"]

        result = await game_service.admit_game(
            session,
            season_id=season_id,
            team1=payload.team1,
            team2=payload.team2,
            team1_score=payload.team1_score,
            team2_score=payload.team2_score,
            game_time=payload.game_time,
            recorded_by=player["id"],
            recorded_by_name=player.get("full_name"),
        )
        if result is None:
            raise HTTPException(status_code=404, detail=f"Season {season_id} not found")

        return {"status": "success", "message": "Game recorded", **result}
    except game_service.GameValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error recording game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error recording game: {str(e)}")


@router.put("/api/games/{game_id}", response_model=GameMutationResponse)
async def update_game(
    game_id: int,
    payload: UpdateGameRequest,
    player: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Correct a game's players, scores or time (admin), then replay its season."""
    try:
        result = await game_service.edit_game(
            session,
            game_id,
            team1=payload.team1,
            team2=payload.team2,
            team1_score=payload.team1_score,
            team2_score=payload.team2_score,
            game_time=payload.game_time,
        )
        if result is None:
            raise HTTPException(status_code=404, detail=f"Game {game_id} not found")
        return {"status": "success", **result}
    except game_service.GameValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error updating game: {str(e)}")


@router.delete("/api/games/{game_id}", response_model=GameMutationResponse)
async def delete_game(
    game_id: int,
    player: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a game (admin), then replay its season."""
    try:
        result = await game_service.delete_game(session, game_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Game {game_id} not found")
        return {"status": "success", **result}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error deleting game: {str(e)}")
