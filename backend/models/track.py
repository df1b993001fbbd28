"""
Track database model.
"""

from datetime import datetime
import uuid
from sqlalchemy import Column, Integer, String, Float, DateTime, Enum
from sqlalchemy.orm import relationship
import enum

from models.database import Base


class AudioQuality(enum.Enum):
    """Target encoding profile."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def new_id() -> str:
    return uuid.uuid4().hex


class Track(Base):
    """Uploaded audio track, owned by exactly one user."""

    __tablename__ = "tracks"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(500), nullable=False)
    artist = Column(String(500), nullable=False)
    album = Column(String(500), nullable=True)
    duration = Column(Float, nullable=True)  # seconds, None when probing failed
    file_path = Column(String(500), nullable=False)
    quality = Column(Enum(AudioQuality), default=AudioQuality.HIGH)
    size = Column(Integer, nullable=False, default=0)  # bytes
    mime_type = Column(String(100), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    jobs = relationship("TranscodeJob", back_populates="track", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "duration": self.duration,
            "file_path": self.file_path,
            "quality": self.quality.value if self.quality else None,
            "size": self.size,
            "mime_type": self.mime_type,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() + "Z",
            "updated_at": self.updated_at.isoformat() + "Z" if self.updated_at else None,
        }
