"""
Season replay queue with deduplication.

Handles async season replay jobs with a database-backed queue that:
- Deduplicates concurrent requests per season
- Persists across server restarts
- Tracks job status
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Callable, Awaitable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from pickleball_elo.database.models import ReplayJob, ReplayJobStatus
from pickleball_elo.database import db
from pickleball_elo.utils.datetime_utils import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)

ReplayCallback = Callable[[AsyncSession, int], Awaitable[Optional[Dict]]]


class ReplayQueue:
    """Database-backed queue for season replay jobs."""

    def __init__(self, timeout_seconds: Optional[float] = None, poll_interval: float = 1.0):
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._replay_callback: Optional[ReplayCallback] = None
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval

    async def enqueue_replay(self, session: AsyncSession, season_id: int) -> int:
        """
        Enqueue a season replay job.

        Deduplication logic:
        - If a replay of the season is already pending, return that job
        - If one is running, queue at most one pending follow-up (a replay
          always reads the latest games, so one follow-up covers every
          change made while the current run is in flight)
        - Otherwise create a pending job

        Args:
            session: Database session
            season_id: Season to replay

        Returns:
            Job ID
        """
        queued = await self._find_job(session, season_id, ReplayJobStatus.PENDING)
        if queued:
            return queued.id

        running = await self._find_job(session, season_id, ReplayJobStatus.RUNNING)
        if running:
            logger.debug(f"Replay of season {season_id} running (job {running.id}); queueing follow-up")

        job = ReplayJob(season_id=season_id, status=ReplayJobStatus.PENDING, created_at=utcnow())
        session.add(job)
        await session.commit()
        await session.refresh(job)
        return job.id

    async def _find_job(
        self,
        session: AsyncSession,
        season_id: int,
        status: ReplayJobStatus,
    ) -> Optional[ReplayJob]:
        """Find the oldest job of a season in the given state."""
        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.season_id == season_id, ReplayJob.status == status)
            .order_by(ReplayJob.created_at.asc(), ReplayJob.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_first_queued_job(self, session: AsyncSession) -> Optional[ReplayJob]:
        """Get first pending job."""
        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.status == ReplayJobStatus.PENDING)
            .order_by(ReplayJob.created_at.asc(), ReplayJob.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def register_replay_callback(self, replay_callback: ReplayCallback) -> None:
        """
        Register the season replay function.

        Must be called before any job can run, typically during application
        startup.

        Args:
            replay_callback: Async function taking a session and season_id

        Raises:
            TypeError: If the callback is not callable
        """
        if not callable(replay_callback):
            raise TypeError("replay_callback must be callable")

        if self._replay_callback is not None:
            logger.warning("Re-registering replay callback (previous callback will be replaced)")

        self._replay_callback = replay_callback
        logger.info("Season replay callback registered")

    async def _run_replay(self, job_id: int) -> None:
        """Run a replay job that has already been marked running."""
        session = db.AsyncSessionLocal()
        try:
            job = await session.get(ReplayJob, job_id)
            if not job:
                return
            season_id = job.season_id

            if self._replay_callback is None:
                raise RuntimeError(
                    "Replay callback not registered. "
                    "Call register_replay_callback() before starting the queue worker."
                )

            try:
                result = await asyncio.wait_for(
                    self._replay_callback(session, season_id), self.timeout_seconds
                )
            except Exception as e:
                await session.rollback()
                if isinstance(e, asyncio.TimeoutError):
                    message = f"Replay timed out after {self.timeout_seconds} seconds"
                else:
                    message = str(e) or type(e).__name__
                logger.error(f"Replay job {job_id} (season {season_id}) failed: {message}")
                await session.execute(
                    update(ReplayJob)
                    .where(ReplayJob.id == job_id)
                    .values(
                        status=ReplayJobStatus.FAILED,
                        completed_at=utcnow(),
                        error_message=message,
                    )
                )
                await session.commit()
                return

            values = {"status": ReplayJobStatus.COMPLETED, "completed_at": utcnow()}
            if result is None:
                values.update(status=ReplayJobStatus.FAILED, error_message="Season not found")
            else:
                values.update(
                    game_count=result.get("game_count"),
                    player_count=result.get("player_count"),
                    skipped_game_ids=json.dumps(result.get("skipped_game_ids") or []),
                )
            await session.execute(
                update(ReplayJob).where(ReplayJob.id == job_id).values(**values)
            )
            await session.commit()
        finally:
            await session.close()

    async def process_next_job(self) -> Optional[int]:
        """
        Claim the oldest pending job and run it to completion.

        Returns:
            The processed job ID, or None if the queue was empty
        """
        async with db.AsyncSessionLocal() as session:
            job = await self._get_first_queued_job(session)
            if not job:
                return None
            claimed = await session.execute(
                update(ReplayJob)
                .where(ReplayJob.id == job.id, ReplayJob.status == ReplayJobStatus.PENDING)
                .values(status=ReplayJobStatus.RUNNING, started_at=utcnow())
            )
            await session.commit()
            job_id = job.id
            if claimed.rowcount != 1:
                # Another worker took it
                return None

        await self._run_replay(job_id)
        return job_id

    async def _process_queue_worker(self) -> None:
        """Background worker that processes pending jobs."""
        while not self._stop_event.is_set():
            try:
                job_id = await self.process_next_job()
                if job_id is None:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in replay queue worker")
                await asyncio.sleep(5)

    def _job_to_dict(self, job: ReplayJob) -> Dict:
        return {
            "id": job.id,
            "season_id": job.season_id,
            "status": job.status.value,
            "created_at": isoformat_or_none(job.created_at),
            "started_at": isoformat_or_none(job.started_at),
            "completed_at": isoformat_or_none(job.completed_at),
            "game_count": job.game_count,
            "player_count": job.player_count,
            "skipped_game_ids": json.loads(job.skipped_game_ids) if job.skipped_game_ids else [],
            "error_message": job.error_message,
        }

    async def get_queue_status(self, session: AsyncSession) -> Dict:
        """Get current queue status."""
        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.status == ReplayJobStatus.RUNNING)
            .order_by(ReplayJob.started_at.asc())
        )
        running = result.scalars().all()

        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.status == ReplayJobStatus.PENDING)
            .order_by(ReplayJob.created_at.asc(), ReplayJob.id.asc())
        )
        pending = result.scalars().all()

        # Last 10 finished jobs of each outcome
        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.status == ReplayJobStatus.COMPLETED)
            .order_by(ReplayJob.completed_at.desc())
            .limit(10)
        )
        recent_completed = result.scalars().all()

        result = await session.execute(
            select(ReplayJob)
            .where(ReplayJob.status == ReplayJobStatus.FAILED)
            .order_by(ReplayJob.completed_at.desc())
            .limit(10)
        )
        recent_failed = result.scalars().all()

        return {
            "running": [self._job_to_dict(j) for j in running],
            "pending": [self._job_to_dict(j) for j in pending],
            "recent_completed": [self._job_to_dict(j) for j in recent_completed],
            "recent_failed": [self._job_to_dict(j) for j in recent_failed],
        }

    async def get_job_status(self, session: AsyncSession, job_id: int) -> Optional[Dict]:
        """Get status of a specific job."""
        job = await session.get(ReplayJob, job_id)
        if not job:
            return None
        return self._job_to_dict(job)

    def start_background_worker(self) -> None:
        """Start the background worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._process_queue_worker())

    def stop_background_worker(self) -> None:
        """Stop the background worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()


# Global queue instance
_replay_queue = ReplayQueue()


def get_replay_queue() -> ReplayQueue:
    """Get the global replay queue instance."""
    return _replay_queue
