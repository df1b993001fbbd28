"""
Transcode worker.
Executes a single job: pending -> processing -> completed | failed.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from config import settings
from engine.encoder import FFmpegEncoder, TranscodeCancelled
from engine.job_store import JobStore
from engine.lifecycle import Cancelled, Completed, JobSnapshot, ProgressUpdated, Started
from utils.exceptions import ConflictError, NotFoundError, TranscodeError
from utils.perf_logger import perf_logger

logger = logging.getLogger(__name__)


def build_output_path(job: JobSnapshot) -> Path:
    """Output locator for a job: <output_dir>/<track_id>/<job_id>_<quality>.mp3"""
    return Path(settings.output_dir) / job.track_id / f"{job.id}_{job.quality.value}.mp3"


async def _mark_cancelled(store: JobStore, job_id: str) -> None:
    try:
        await store.apply(job_id, Cancelled())
        logger.info(f"Job cancelled: job_id={job_id}")
    except (ConflictError, NotFoundError) as e:
        logger.info(f"Cancel for job {job_id} not applied: {e.message}")


async def process_transcode_job(
    job_id: str,
    cancel_event: asyncio.Event,
    store: Optional[JobStore] = None,
    encoder: Optional[FFmpegEncoder] = None,
) -> None:
    """
    Process one transcode job.

    TranscodeError propagates to the queue, which applies the retry
    policy. Any other exception is a worker crash and is handled by the
    queue's supervisor.
    """
    store = store or JobStore.get_instance()
    encoder = encoder or FFmpegEncoder()

    if cancel_event.is_set():
        await _mark_cancelled(store, job_id)
        return

    try:
        job = await store.apply(job_id, Started())
    except (ConflictError, NotFoundError) as e:
        # Cancelled or deleted while it was waiting
        logger.info(f"Skipping job {job_id}: {e.message}")
        return

    if not os.path.exists(job.input_path):
        raise TranscodeError(f"Input file not found: {job.input_path}", retryable=False)

    output_path = build_output_path(job)

    async def report_progress(percent: float) -> None:
        try:
            await store.apply(job_id, ProgressUpdated(percent))
        except (ConflictError, NotFoundError):
            # Job was terminated elsewhere; stop encoding at the next checkpoint
            cancel_event.set()

    phase = f"Transcode (Job {job_id}, {job.quality.value}, attempt {job.attempts})"
    perf_logger.start_phase(phase)
    outcome = "INTERRUPTED"
    try:
        try:
            await encoder.transcode(
                job.input_path,
                str(output_path),
                job.quality,
                on_progress=report_progress,
                cancel_event=cancel_event,
            )
        except TranscodeCancelled:
            outcome = "CANCELLED"
            await _mark_cancelled(store, job_id)
            return
        except TranscodeError as e:
            outcome = "FAILED"
            logger.error(f"Transcode failed: job_id={job_id}, error={e.message}")
            raise

        try:
            await store.apply(job_id, Completed(output_path=str(output_path)))
        except (ConflictError, NotFoundError) as e:
            outcome = "DISCARDED"
            logger.warning(f"Discarding output of job {job_id}: {e.message}")
            FFmpegEncoder.remove_partial(str(output_path))
            return

        outcome = "COMPLETED"
        logger.info(f"Transcode complete: job_id={job_id}, output={output_path}")
    finally:
        perf_logger.end_phase(phase, outcome)
