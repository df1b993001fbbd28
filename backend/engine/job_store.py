"""
Durable store for transcode jobs.

Writes to one job are serialized by a per-job lock so concurrent updates
(progress reports, cancellation, completion) can never regress each other.
Reads take no lock and return the latest committed snapshot.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select

from models.database import async_session
from models.job import JobStatus, TranscodeJob
from models.track import AudioQuality
from engine.lifecycle import JobEvent, JobSnapshot, Requeued, Submitted, initial_fields, transition
from utils.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class JobStore:
    """Job records on top of the async SQLAlchemy session factory."""

    _instance: Optional["JobStore"] = None

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_session
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def get_instance(cls) -> "JobStore":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def session(self):
        """Open a new session on the store's database."""
        return self._session_factory()

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    async def create(self, track_id: str, quality: AudioQuality, input_path: str) -> JobSnapshot:
        """Create a pending job with zero progress."""
        fields = initial_fields(Submitted(track_id=track_id, quality=quality, input_path=input_path))
        async with self.session() as db:
            job = TranscodeJob(**fields)
            db.add(job)
            await db.commit()
            snapshot = JobSnapshot.from_model(job)
        logger.info(f"Job created: job_id={snapshot.id}, track_id={track_id}, quality={quality.value}")
        return snapshot

    async def get(self, job_id: str) -> JobSnapshot:
        async with self.session() as db:
            job = await db.get(TranscodeJob, job_id)
            if job is None:
                raise NotFoundError(f"Job not found: {job_id}")
            return JobSnapshot.from_model(job)

    async def apply(self, job_id: str, event: JobEvent) -> JobSnapshot:
        """
        Apply a lifecycle event to a job and commit it.

        Raises:
            NotFoundError: If the job does not exist.
            InvalidTransitionError: If the event is illegal in the job's state.
        """
        async with self._lock_for(job_id):
            async with self.session() as db:
                job = await db.get(TranscodeJob, job_id)
                if job is None:
                    self._locks.pop(job_id, None)
                    raise NotFoundError(f"Job not found: {job_id}")

                changes = transition(JobSnapshot.from_model(job), event)
                if changes:
                    for name, value in changes.items():
                        setattr(job, name, value)
                    job.updated_at = datetime.utcnow()
                    await db.commit()
                    if "status" in changes:
                        logger.info(f"Job {job_id}: {type(event).__name__} -> {job.status.value}")

                snapshot = JobSnapshot.from_model(job)

        if snapshot.is_terminal:
            self._locks.pop(job_id, None)
        return snapshot

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        track_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[JobSnapshot]:
        stmt = select(TranscodeJob)
        if status is not None:
            stmt = stmt.where(TranscodeJob.status == status)
        if track_id is not None:
            stmt = stmt.where(TranscodeJob.track_id == track_id)
        stmt = stmt.order_by(TranscodeJob.created_at.desc()).offset(skip).limit(limit)

        async with self.session() as db:
            result = await db.execute(stmt)
            return [JobSnapshot.from_model(job) for job in result.scalars().all()]

    async def ids_with_status(self, status: JobStatus) -> List[str]:
        """Ids of all jobs in a status, oldest first."""
        async with self.session() as db:
            result = await db.execute(
                select(TranscodeJob.id)
                .where(TranscodeJob.status == status)
                .order_by(TranscodeJob.created_at, TranscodeJob.id)
            )
            return list(result.scalars().all())

    async def recover_in_flight(self) -> List[str]:
        """
        Reset jobs left in PROCESSING by a previous process back to PENDING.

        Returns the ids of every pending job in FIFO order so the caller
        can requeue them.
        """
        stuck = await self.ids_with_status(JobStatus.PROCESSING)
        for job_id in stuck:
            logger.warning(f"Recovering stuck job: job_id={job_id} (was PROCESSING)")
            await self.apply(job_id, Requeued(reason="restart recovery"))

        pending = await self.ids_with_status(JobStatus.PENDING)
        if stuck or pending:
            logger.info(f"Reconciliation complete: {len(stuck)} processing reset, {len(pending)} pending")
        return pending

    async def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        async with self.session() as db:
            result = await db.execute(
                select(TranscodeJob.status, func.count(TranscodeJob.id)).group_by(TranscodeJob.status)
            )
            for status, count in result.all():
                counts[status.value] = count
        return counts

    async def delete_with_status(self, status: JobStatus) -> int:
        """Delete every job in a status. Returns the number removed."""
        async with self.session() as db:
            result = await db.execute(delete(TranscodeJob).where(TranscodeJob.status == status))
            await db.commit()
            return result.rowcount or 0

    async def delete_for_track(self, track_id: str) -> int:
        async with self.session() as db:
            result = await db.execute(delete(TranscodeJob).where(TranscodeJob.track_id == track_id))
            await db.commit()
            return result.rowcount or 0
