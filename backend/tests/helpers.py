"""Shared test doubles and polling helpers."""

import asyncio
from pathlib import Path

from engine.encoder import TranscodeCancelled
from engine.job_store import JobStore
from utils.exceptions import TranscodeError

class FakeEncoder:
    """
    Stand-in for FFmpegEncoder.

    Reports progress in ``steps`` increments, yielding to the loop between
    each so cancellation and status reads can interleave. Failures can be
    scripted per call.
    """

    def __init__(self, steps: int = 4, delay: float = 0.01, failures=None, block: asyncio.Event = None):
        self.steps = steps
        self.delay = delay
        self.failures = list(failures or [])
        self.block = block
        self.calls = []
        self.started = asyncio.Event()

    async def transcode(self, input_path, output_path, quality, on_progress=None, cancel_event=None):
        self.calls.append((input_path, output_path, quality))
        self.started.set()
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"partial")
        try:
            if self.block is not None:
                while not self.block.is_set():
                    if cancel_event is not None and cancel_event.is_set():
                        raise TranscodeCancelled("cancelled")
                    await asyncio.sleep(self.delay)
            for step in range(1, self.steps + 1):
                if cancel_event is not None and cancel_event.is_set():
                    raise TranscodeCancelled("cancelled")
                await asyncio.sleep(self.delay)
                if on_progress is not None:
                    await on_progress(step * 100 / self.steps)
            if self.failures:
                failure = self.failures.pop(0)
                if failure is not None:
                    raise failure
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        path.write_bytes(b"mp3 data")
        return output_path


async def wait_for_terminal(store: JobStore, job_id: str, timeout: float = 5.0):
    """Poll until a job completes or fails."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        job = await store.get(job_id)
        if job.is_terminal:
            return job
        if loop.time() > deadline:
            raise AssertionError(f"Job {job_id} stuck in {job.status.value}")
        await asyncio.sleep(0.01)

def transcode_failure(message: str = "ffmpeg exited with code 1", retryable: bool = True) -> TranscodeError:
    return TranscodeError(message, retryable=retryable)
