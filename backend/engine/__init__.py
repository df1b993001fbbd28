"""
Engine package for transcode processing.
Contains the job lifecycle, job store, queue, worker and encoder.
"""

from engine.job_store import JobStore
from engine.job_queue import JobQueue
from engine.encoder import FFmpegEncoder
from engine.worker import process_transcode_job

__all__ = [
    "JobStore",
    "JobQueue",
    "FFmpegEncoder",
    "process_transcode_job",
]
