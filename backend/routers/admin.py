"""
Operational endpoints: queue statistics and bulk handling of failed jobs.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import get_db, Track
from services.transcode_service import TranscodeService, get_transcode_service

router = APIRouter()


@router.get("/stats")
async def get_stats(
    db: AsyncSession = Depends(get_db),
    service: TranscodeService = Depends(get_transcode_service)
):
    """Track count, job counts by status and live queue state."""
    total_tracks = await db.scalar(select(func.count(Track.id)))
    stats = await service.stats()
    return {
        "total_tracks": total_tracks or 0,
        "jobs": stats["jobs"],
        "queue": stats["queue"],
    }


@router.post("/retry-failed")
async def retry_failed_jobs(service: TranscodeService = Depends(get_transcode_service)):
    """Resubmit every failed job as a new job."""
    result = await service.retry_failed()
    return {
        "message": f"Retried {result['retried_count']} failed jobs",
        **result,
    }


@router.post("/clear-failed")
async def clear_failed_jobs(service: TranscodeService = Depends(get_transcode_service)):
    """Delete all failed job records."""
    cleared = await service.clear_failed()
    return {"message": f"Cleared {cleared} failed jobs", "cleared_count": cleared}
