"""
Async job queue for transcode processing.
FIFO dispatch to a pool of N workers, one job per worker at a time,
with retry/backoff and a supervisor that restarts crashed workers.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional, Set

from config import settings
from engine.job_store import JobStore
from engine.lifecycle import Failed, Requeued
from engine.retry import RetryPolicy
from models.job import JobStatus
from utils.exceptions import CapacityError, ConflictError, NotFoundError, TranscodeError

logger = logging.getLogger(__name__)

JobProcessor = Callable[[str, asyncio.Event], Awaitable[None]]


class JobQueue:
    """
    Shared pending queue feeding a worker pool.

    Queue operations never await between reading and mutating the deque,
    so they are atomic for concurrent submitters and workers on the loop.
    """

    _instance: Optional["JobQueue"] = None

    def __init__(
        self,
        store: Optional[JobStore] = None,
        concurrency: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_size: Optional[int] = None,
    ):
        self._store = store or JobStore.get_instance()
        self._concurrency = max(1, concurrency or settings.worker_concurrency)
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._max_size = settings.queue_max_size if max_size is None else max_size

        self._pending: Deque[str] = deque()
        self._not_empty = asyncio.Condition()
        self._processor: Optional[JobProcessor] = None
        self._running = False

        self._workers: Dict[str, asyncio.Task] = {}
        self._supervisor_task: Optional[asyncio.Task] = None
        self._in_flight: Dict[str, str] = {}  # worker name -> job id
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._retry_timers: Set[asyncio.Task] = set()
        self._reserved = 0  # slots claimed by submitters still creating their job

    @classmethod
    def get_instance(cls) -> "JobQueue":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def set_processor(self, processor: JobProcessor) -> None:
        """
        Set the async function that processes each job.

        Args:
            processor: Async function taking (job_id, cancel_event)
        """
        self._processor = processor

    # --- Queue operations ---

    def _occupied(self) -> int:
        # Jobs waiting in retry timers will come back, so they hold a slot too
        return len(self._pending) + len(self._retry_timers) + self._reserved

    def ensure_capacity(self) -> None:
        """Raise CapacityError if no more jobs may be admitted."""
        if self._max_size and self._occupied() >= self._max_size:
            raise CapacityError(f"Transcode queue is full ({self._max_size} jobs waiting)")

    def reserve_slot(self) -> None:
        """
        Claim a queue slot for a job that is about to be created.

        The check and the claim happen without an await in between, so
        concurrent submitters cannot overshoot the queue bound. The slot is
        handed back by enqueue(reserved=True) or release_slot().
        """
        self.ensure_capacity()
        self._reserved += 1

    def release_slot(self) -> None:
        self._reserved = max(0, self._reserved - 1)

    async def enqueue(self, job_id: str, reserved: bool = False) -> None:
        """Add a job to the back of the queue."""
        async with self._not_empty:
            if reserved:
                self.release_slot()
            self._pending.append(job_id)
            self._not_empty.notify()
        logger.info(f"Job enqueued: job_id={job_id}, queue_size={len(self._pending)}")

    def discard(self, job_id: str) -> bool:
        """Remove a waiting job. Returns True if it was in the queue."""
        try:
            self._pending.remove(job_id)
        except ValueError:
            return False
        logger.info(f"Job removed from queue: job_id={job_id}")
        return True

    def signal_cancel(self, job_id: str) -> bool:
        """
        Ask the worker holding a job to stop at its next checkpoint.
        Returns False if no worker holds the job.
        """
        event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation signalled: job_id={job_id}")
        return True

    async def _dequeue(self) -> Optional[str]:
        async with self._not_empty:
            await self._not_empty.wait_for(lambda: self._pending or not self._running)
            if not self._running:
                return None
            return self._pending.popleft()

    # --- Worker pool ---

    async def start_workers(self) -> None:
        """Start the worker pool and its supervisor."""
        if self._running:
            logger.warning("Workers already running")
            return

        if self._processor is None:
            raise RuntimeError("No processor set. Call set_processor() first.")

        self._running = True
        for index in range(self._concurrency):
            self._spawn_worker(f"worker-{index}")
        self._supervisor_task = asyncio.create_task(self._supervise(), name="queue-supervisor")
        logger.info(f"Job queue workers started (concurrency={self._concurrency})")

    async def stop_workers(self, wait_for_current: bool = True) -> None:
        """
        Stop the worker pool.

        Args:
            wait_for_current: If True, let running jobs finish; otherwise
                cancel them (they are recovered on the next start).
        """
        self._running = False

        if self._supervisor_task:
            self._supervisor_task.cancel()
            await asyncio.gather(self._supervisor_task, return_exceptions=True)
            self._supervisor_task = None

        for timer in list(self._retry_timers):
            timer.cancel()

        async with self._not_empty:
            self._not_empty.notify_all()

        workers = list(self._workers.values())
        if not wait_for_current:
            for task in workers:
                task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()

        logger.info("Job queue workers stopped")

    def _spawn_worker(self, name: str) -> None:
        self._workers[name] = asyncio.create_task(self._worker_loop(name), name=name)

    async def _worker_loop(self, name: str) -> None:
        """Pull jobs until stopped. Unexpected exceptions escape to the supervisor."""
        while self._running:
            job_id = await self._dequeue()
            if job_id is None:
                break

            logger.info(f"{name} processing job: job_id={job_id}")
            cancel_event = asyncio.Event()
            self._in_flight[name] = job_id
            self._cancel_events[job_id] = cancel_event

            try:
                await self._processor(job_id, cancel_event)
            except TranscodeError as e:
                await self._handle_transcode_failure(job_id, e)

            self._cancel_events.pop(job_id, None)
            self._in_flight.pop(name, None)

    async def _supervise(self) -> None:
        """Restart crashed workers and recover the job each was holding."""
        while self._running and self._workers:
            done, _ = await asyncio.wait(
                set(self._workers.values()), return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                name = task.get_name()
                self._workers.pop(name, None)
                if task.cancelled() or not self._running:
                    continue

                error = task.exception()
                job_id = self._in_flight.pop(name, None)
                logger.error(f"{name} crashed: job_id={job_id}, error={error!r}")
                if job_id is not None:
                    self._cancel_events.pop(job_id, None)
                    await self._recover_crashed_job(job_id, error)

                self._spawn_worker(name)
                logger.info(f"{name} restarted")

    # --- Retry policy ---

    async def _handle_transcode_failure(self, job_id: str, error: TranscodeError) -> None:
        try:
            job = await self._store.get(job_id)
            if job.status != JobStatus.PROCESSING:
                return

            if error.retryable and self._retry_policy.can_retry(job.attempts):
                await self._store.apply(job_id, Requeued(reason=error.message))
                delay = self._retry_policy.delay_for(job.attempts)
                logger.warning(
                    f"Retrying job {job_id} in {delay:.1f}s "
                    f"(attempt {job.attempts}/{self._retry_policy.max_attempts}): {error.message}"
                )
                self._schedule_retry(job_id, delay)
            else:
                await self._store.apply(job_id, Failed(error=error.message))
                logger.error(f"Job failed after {job.attempts} attempt(s): job_id={job_id}")
        except (ConflictError, NotFoundError) as e:
            logger.info(f"Failure of job {job_id} not recorded: {e.message}")

    async def _recover_crashed_job(self, job_id: str, error: Optional[BaseException]) -> None:
        try:
            job = await self._store.get(job_id)
            if job.status != JobStatus.PROCESSING:
                return

            if self._retry_policy.can_retry(job.attempts):
                await self._store.apply(job_id, Requeued(reason="worker crashed"))
                self._schedule_retry(job_id, self._retry_policy.delay_for(job.attempts))
            else:
                await self._store.apply(job_id, Failed(error=f"worker crashed: {error!r}"))
        except (ConflictError, NotFoundError) as e:
            logger.info(f"Recovery of job {job_id} skipped: {e.message}")

    def _schedule_retry(self, job_id: str, delay: float) -> None:
        timer = asyncio.create_task(self._enqueue_later(job_id, delay))
        self._retry_timers.add(timer)
        timer.add_done_callback(self._retry_timers.discard)

    async def _enqueue_later(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._running:
            await self.enqueue(job_id)

    # --- Introspection ---

    @property
    def queue_size(self) -> int:
        """Current number of jobs waiting."""
        return len(self._pending)

    @property
    def is_running(self) -> bool:
        """Whether the workers are running."""
        return self._running

    @property
    def active_jobs(self) -> Dict[str, str]:
        return dict(self._in_flight)

    def stats(self) -> dict:
        return {
            "pending": len(self._pending),
            "active": len(self._in_flight),
            "active_jobs": sorted(self.active_jobs.values()),
            "scheduled_retries": len(self._retry_timers),
            "workers": len(self._workers),
            "concurrency": self._concurrency,
            "running": self._running,
        }
