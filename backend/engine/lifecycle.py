"""
Transcode job lifecycle.

Jobs never change by free-form field mutation. Every change is an explicit
event applied through transition(), which rejects illegal moves:

    pending -> processing -> completed | failed
    pending | processing -> failed ("cancelled")
    processing -> pending (retry, worker crash, restart recovery)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from models.job import JobStatus, TranscodeJob
from models.track import AudioQuality
from utils.exceptions import InvalidTransitionError

CANCELLED_MESSAGE = "cancelled"

# Running jobs never report 100; that value is reserved for completed jobs.
MAX_RUNNING_PROGRESS = 99

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


@dataclass(frozen=True)
class JobSnapshot:
    """Committed state of a job, detached from any database session."""
    id: str
    track_id: str
    status: JobStatus
    progress: int
    quality: AudioQuality
    input_path: str
    output_path: Optional[str]
    error: Optional[str]
    attempts: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_model(cls, job: TranscodeJob) -> "JobSnapshot":
        return cls(
            id=job.id,
            track_id=job.track_id,
            status=job.status,
            progress=job.progress,
            quality=job.quality,
            input_path=job.input_path,
            output_path=job.output_path,
            error=job.error,
            attempts=job.attempts,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "status": self.status.value,
            "progress": self.progress,
            "quality": self.quality.value,
            "input_path": self.input_path,
            "output_path": self.output_path,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat() + "Z",
            "updated_at": self.updated_at.isoformat() + "Z",
        }


@dataclass(frozen=True)
class Submitted:
    track_id: str
    quality: AudioQuality
    input_path: str


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class ProgressUpdated:
    progress: float


@dataclass(frozen=True)
class Completed:
    output_path: str


@dataclass(frozen=True)
class Failed:
    error: str


@dataclass(frozen=True)
class Cancelled:
    pass


@dataclass(frozen=True)
class Requeued:
    reason: str = ""


JobEvent = Union[Submitted, Started, ProgressUpdated, Completed, Failed, Cancelled, Requeued]


def initial_fields(event: Submitted) -> Dict[str, Any]:
    """Column values for a freshly submitted job."""
    now = datetime.utcnow()
    return {
        "track_id": event.track_id,
        "quality": event.quality,
        "input_path": event.input_path,
        "status": JobStatus.PENDING,
        "progress": 0,
        "output_path": None,
        "error": None,
        "attempts": 0,
        "created_at": now,
        "updated_at": now,
    }


def _require(job: JobSnapshot, event: JobEvent, *allowed: JobStatus) -> None:
    if job.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot apply {type(event).__name__} to job {job.id} in {job.status.value} state"
        )


def transition(job: JobSnapshot, event: JobEvent) -> Dict[str, Any]:
    """
    Validate an event against the job's current state.

    Returns the column changes to persist; an empty dict means the event
    is legal but changes nothing. Raises InvalidTransitionError otherwise.
    """
    if isinstance(event, Started):
        _require(job, event, JobStatus.PENDING)
        return {"status": JobStatus.PROCESSING, "attempts": job.attempts + 1}

    if isinstance(event, ProgressUpdated):
        _require(job, event, JobStatus.PROCESSING)
        reported = max(0, min(MAX_RUNNING_PROGRESS, int(event.progress)))
        progress = max(job.progress, reported)
        if progress == job.progress:
            return {}
        return {"progress": progress}

    if isinstance(event, Completed):
        _require(job, event, JobStatus.PROCESSING)
        if not event.output_path:
            raise ValueError("Completed event requires an output path")
        return {
            "status": JobStatus.COMPLETED,
            "progress": 100,
            "output_path": event.output_path,
            "error": None,
        }

    if isinstance(event, Failed):
        _require(job, event, JobStatus.PROCESSING)
        return {
            "status": JobStatus.FAILED,
            "error": event.error or "Unknown error",
            "output_path": None,
        }

    if isinstance(event, Cancelled):
        _require(job, event, JobStatus.PENDING, JobStatus.PROCESSING)
        return {
            "status": JobStatus.FAILED,
            "error": CANCELLED_MESSAGE,
            "output_path": None,
        }

    if isinstance(event, Requeued):
        _require(job, event, JobStatus.PROCESSING)
        return {"status": JobStatus.PENDING}

    if isinstance(event, Submitted):
        raise InvalidTransitionError(f"Job {job.id} already exists")

    raise TypeError(f"Unknown job event: {event!r}")
