"""
Transcode job submission, status and cancellation endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from services.transcode_service import TranscodeService, get_transcode_service

logger = logging.getLogger(__name__)
router = APIRouter()


class SubmitJobRequest(BaseModel):
    """Request body for a new transcode job."""
    track_id: str
    quality: str = "high"


@router.post("/")
async def submit_job(
    request: SubmitJobRequest,
    service: TranscodeService = Depends(get_transcode_service)
):
    """Queue a transcode of a track at the requested quality."""
    job = await service.submit(request.track_id, request.quality)
    logger.info(f"Transcode queued: job_id={job.id}, track_id={job.track_id}")
    return {
        "job_id": job.id,
        "status": job.status.value,
        "message": "Transcode queued",
        "job": job.to_dict(),
    }


@router.get("/")
async def list_jobs(
    status: Optional[str] = None,
    track_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    service: TranscodeService = Depends(get_transcode_service)
):
    """List jobs, newest first, optionally filtered by status or track."""
    jobs = await service.list_jobs(status=status, track_id=track_id, skip=skip, limit=limit)
    return [job.to_dict() for job in jobs]


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    service: TranscodeService = Depends(get_transcode_service)
):
    """Get job status and progress."""
    job = await service.status(job_id)
    return job.to_dict()


@router.post("/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    service: TranscodeService = Depends(get_transcode_service)
):
    """Cancel a pending or processing job."""
    job = await service.cancel(job_id)
    message = "Job canceled" if job.is_terminal else "Cancellation requested"
    return {"message": message, "job": job.to_dict()}


@router.post("/{job_id}/retry")
async def retry_job(
    job_id: str,
    service: TranscodeService = Depends(get_transcode_service)
):
    """Resubmit a failed job as a new job."""
    job = await service.retry(job_id)
    return {
        "job_id": job.id,
        "retried_from": job_id,
        "status": job.status.value,
        "message": "Transcode queued",
    }
