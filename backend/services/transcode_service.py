"""
Transcode service.
Submit, status and cancel operations on top of the job store and queue.
"""

import logging
from typing import Dict, List, Optional

from engine.job_queue import JobQueue
from engine.job_store import JobStore
from engine.lifecycle import Cancelled, JobSnapshot
from models.job import JobStatus
from models.track import AudioQuality, Track
from utils.exceptions import CapacityError, ConflictError, InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def parse_quality(value) -> AudioQuality:
    """Validate a quality value ("low", "medium", "high")."""
    if isinstance(value, AudioQuality):
        return value
    try:
        return AudioQuality(str(value).lower())
    except ValueError:
        allowed = ", ".join(q.value for q in AudioQuality)
        raise ValidationError(f"Invalid quality '{value}'. Allowed: {allowed}")


def parse_status(value: Optional[str]) -> Optional[JobStatus]:
    if value is None:
        return None
    try:
        return JobStatus(value.lower())
    except ValueError:
        allowed = ", ".join(s.value for s in JobStatus)
        raise ValidationError(f"Invalid status '{value}'. Allowed: {allowed}")


class TranscodeService:
    """Entry point for transcode work used by the HTTP layer."""

    _instance: Optional["TranscodeService"] = None

    def __init__(self, store: JobStore, queue: JobQueue):
        self.store = store
        self.queue = queue

    @classmethod
    def get_instance(cls) -> "TranscodeService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(JobStore.get_instance(), JobQueue.get_instance())
        return cls._instance

    async def submit(self, track_id: str, quality) -> JobSnapshot:
        """
        Create a pending job for a track and enqueue it.

        Raises:
            ValidationError: Bad quality or unknown track.
            CapacityError: The queue is full.
        """
        quality = parse_quality(quality)

        async with self.store.session() as db:
            track = await db.get(Track, track_id)
            if track is None:
                raise ValidationError(f"Unknown track: {track_id}")
            input_path = track.file_path

        self.queue.reserve_slot()
        try:
            job = await self.store.create(track_id, quality, input_path)
        except BaseException:
            self.queue.release_slot()
            raise
        await self.queue.enqueue(job.id, reserved=True)
        return job

    async def status(self, job_id: str) -> JobSnapshot:
        """Read-only snapshot; never waits on a worker."""
        return await self.store.get(job_id)

    async def cancel(self, job_id: str) -> JobSnapshot:
        """
        Cancel a job.

        Pending jobs fail with "cancelled" straight away. Processing jobs are
        signalled and marked failed by their worker at the next checkpoint.

        Raises:
            NotFoundError: Unknown job.
            ConflictError: The job already reached a terminal state.
        """
        job = await self.store.get(job_id)
        if job.is_terminal:
            raise ConflictError(f"Cannot cancel job in {job.status.value} state")

        self.queue.discard(job_id)

        if job.status == JobStatus.PENDING:
            # Committing first makes a worker's Started conflict and skip the job
            try:
                return await self.store.apply(job_id, Cancelled())
            except InvalidTransitionError:
                job = await self.store.get(job_id)
                if job.is_terminal:
                    raise ConflictError(f"Cannot cancel job in {job.status.value} state")

        if self.queue.signal_cancel(job_id):
            return job

        return await self.store.apply(job_id, Cancelled())

    async def retry(self, job_id: str) -> JobSnapshot:
        """Resubmit a failed job as a new job with the same track and quality."""
        job = await self.store.get(job_id)
        if job.status != JobStatus.FAILED:
            raise ConflictError(f"Only failed jobs can be retried (job is {job.status.value})")
        return await self.submit(job.track_id, job.quality)

    async def list_jobs(
        self,
        status: Optional[str] = None,
        track_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[JobSnapshot]:
        return await self.store.list_jobs(parse_status(status), track_id, skip, limit)

    async def cancel_for_track(self, track_id: str) -> int:
        """Cancel every live job of a track. Returns how many were cancelled."""
        cancelled = 0
        for status in (JobStatus.PENDING, JobStatus.PROCESSING):
            for job in await self.store.list_jobs(status=status, track_id=track_id, limit=1000):
                try:
                    await self.cancel(job.id)
                    cancelled += 1
                except (ConflictError, NotFoundError):
                    continue
        return cancelled

    async def retry_failed(self) -> Dict[str, int]:
        """Resubmit every failed job, stopping when the queue fills up."""
        failed = await self.store.ids_with_status(JobStatus.FAILED)
        retried = 0
        for job_id in failed:
            job = await self.store.get(job_id)
            try:
                await self.submit(job.track_id, job.quality)
            except CapacityError:
                logger.warning("Queue full, stopping failed job retry")
                break
            except ValidationError as e:
                logger.warning(f"Could not retry job {job_id}: {e.message}")
                continue
            retried += 1
        logger.info(f"Retried {retried}/{len(failed)} failed jobs")
        return {"retried_count": retried, "total_failed": len(failed)}

    async def clear_failed(self) -> int:
        cleared = await self.store.delete_with_status(JobStatus.FAILED)
        logger.info(f"Cleared {cleared} failed jobs")
        return cleared

    async def stats(self) -> dict:
        return {
            "jobs": await self.store.count_by_status(),
            "queue": self.queue.stats(),
        }


def get_transcode_service() -> TranscodeService:
    """Dependency returning the application's transcode service."""
    return TranscodeService.get_instance()
