"""
Track upload and retrieval endpoints.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, UploadFile, File, Form, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from models import get_db, Track
from engine.encoder import FFmpegEncoder
from services.file_service import FileService, FileError, InvalidFileError, FileSizeError
from services.transcode_service import TranscodeService, get_transcode_service, parse_quality
from utils.exceptions import CapacityError, NotFoundError, ValidationError, TranscodeError

logger = logging.getLogger(__name__)
router = APIRouter()
file_service = FileService()


@router.post("/upload")
async def upload_track(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    title: Optional[str] = Form(None),
    artist: Optional[str] = Form(None),
    album: Optional[str] = Form(None),
    quality: str = Form("high"),
    transcode: bool = Form(False),
    db: AsyncSession = Depends(get_db),
    service: TranscodeService = Depends(get_transcode_service)
):
    """
    Upload an audio file as a new track.

    With transcode=true a transcode job at the given quality is queued
    right after the track is stored.
    """
    quality = parse_quality(quality)
    if transcode:
        # Refuse before storing anything when the queue is already full
        service.queue.ensure_capacity()

    try:
        file_service.validate_file(file.filename, file.size or 0)
        result = await file_service.save_upload(file, file.filename)
    except (InvalidFileError, FileSizeError) as e:
        raise ValidationError(str(e))
    except FileError as e:
        raise TranscodeError(f"Upload failed: {e}", retryable=False)

    try:
        duration = await FFmpegEncoder().probe_duration(result['file_path'])
    except TranscodeError as e:
        logger.warning(f"Could not probe duration of {result['filename']}: {e.message}")
        duration = None

    track = Track(
        title=title or Path(result['original_filename']).stem,
        artist=artist or "Unknown Artist",
        album=album,
        duration=duration,
        file_path=result['file_path'],
        quality=quality,
        size=result['size'],
        mime_type=result['media_type'],
        user_id=user_id,
    )
    db.add(track)
    await db.commit()
    await db.refresh(track)

    response = {**track.to_dict(), "message": "Track uploaded successfully"}

    if transcode:
        try:
            job = await service.submit(track.id, quality)
        except CapacityError:
            # Roll the upload back so a client retry does not duplicate the track
            await db.delete(track)
            await db.commit()
            file_service.delete_file(track.file_path)
            raise
        response["job_id"] = job.id

    return response


@router.get("/")
async def list_tracks(
    db: AsyncSession = Depends(get_db),
    user_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 20
):
    """List tracks, newest first, optionally for one user."""
    stmt = select(Track)
    if user_id:
        stmt = stmt.where(Track.user_id == user_id)

    result = await db.execute(
        stmt.order_by(Track.created_at.desc()).offset(skip).limit(limit)
    )
    return [track.to_dict() for track in result.scalars().all()]


@router.get("/{track_id}")
async def get_track(
    track_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Get track metadata by ID."""
    track = await db.get(Track, track_id)
    if not track:
        raise NotFoundError("Track not found")
    return track.to_dict()


@router.get("/{track_id}/jobs")
async def get_track_jobs(
    track_id: str,
    db: AsyncSession = Depends(get_db),
    service: TranscodeService = Depends(get_transcode_service)
):
    """List the transcode jobs of a track."""
    track = await db.get(Track, track_id)
    if not track:
        raise NotFoundError("Track not found")
    jobs = await service.list_jobs(track_id=track_id, limit=100)
    return [job.to_dict() for job in jobs]


@router.delete("/{track_id}")
async def delete_track(
    track_id: str,
    db: AsyncSession = Depends(get_db),
    service: TranscodeService = Depends(get_transcode_service)
):
    """Delete a track, its source file and its transcode jobs."""
    track = await db.get(Track, track_id)
    if not track:
        raise NotFoundError("Track not found")

    # Stop live jobs before their records go away
    cancelled = await service.cancel_for_track(track_id)
    jobs = await service.list_jobs(track_id=track_id, limit=1000)
    await service.store.delete_for_track(track_id)

    try:
        file_service.delete_file(track.file_path)
        for job in jobs:
            if job.output_path:
                file_service.delete_file(job.output_path)
    except OSError as e:
        # Log error but continue with DB deletion
        logger.error(f"Error deleting file {track.file_path}: {e}")

    await db.delete(track)
    await db.commit()

    return {"message": "Track deleted successfully", "cancelled_jobs": cancelled}
