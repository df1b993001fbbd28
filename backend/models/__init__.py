"""
Database models package.
"""

from models.database import Base, engine, get_db, async_session
from models.track import Track, AudioQuality
from models.job import TranscodeJob, JobStatus

__all__ = [
    "Base",
    "engine",
    "get_db",
    "async_session",
    "Track",
    "AudioQuality",
    "TranscodeJob",
    "JobStatus",
]
