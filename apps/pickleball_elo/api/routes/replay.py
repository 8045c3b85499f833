"""Season replay queue and health check route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from pickleball_elo.api.auth_dependencies import require_admin
from pickleball_elo.database.db import get_db_session
from pickleball_elo.models.schemas import HealthResponse, ReplayJobResponse
from pickleball_elo.services import data_service
from pickleball_elo.services.replay_queue import get_replay_queue

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/seasons/{season_id}/replay")
async def replay_season(
    season_id: int,
    player: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Queue a full replay of a season (admin).

    Returns:
        dict: Job ID and status
    """
    try:
        season = await data_service.get_season(session, season_id)
        if not season:
            raise HTTPException(status_code=404, detail=f"Season {season_id} not found")

        job_id = await get_replay_queue().enqueue_replay(session, season_id)
        logger.info(f"Player {player['id']} queued replay of season {season_id} (job {job_id})")
        return {"job_id": job_id, "status": "queued", "season_id": season_id}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error queueing replay: {str(e)}")


@router.get("/api/replay-jobs/status")
async def get_queue_status(
    player: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Get current queue status and recent jobs.

    Returns:
        dict: Queue status with running, pending, and recent jobs
    """
    try:
        return await get_replay_queue().get_queue_status(session)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting queue status: {str(e)}")


@router.get("/api/replay-jobs/{job_id}", response_model=ReplayJobResponse)
async def get_job_status(
    job_id: int,
    session: AsyncSession = Depends(get_db_session),
):
    """Get status of a specific replay job."""
    try:
        job_status = await get_replay_queue().get_job_status(session, job_id)
        if not job_status:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job_status
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error getting job status: {str(e)}")


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Service status
    """
    return {"status": "healthy", "message": "API is running"}
