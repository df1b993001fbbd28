"""
Transcode job database model.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum

from models.database import Base
from models.track import AudioQuality, new_id


class JobStatus(enum.Enum):
    """Status of a transcode job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TranscodeJob(Base):
    """
    One transcode request and its lifecycle record.

    Rows are only written through JobStore.apply(), which validates
    every status change.
    """

    __tablename__ = "transcode_jobs"

    id = Column(String(32), primary_key=True, default=new_id)
    track_id = Column(String(32), ForeignKey("tracks.id"), nullable=False, index=True)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)  # 0..100
    quality = Column(Enum(AudioQuality), nullable=False)
    input_path = Column(String(500), nullable=False)
    output_path = Column(String(500), nullable=True)  # set only when completed
    error = Column(Text, nullable=True)               # set only when failed
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    track = relationship("Track", back_populates="jobs")
