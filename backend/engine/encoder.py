"""
FFmpeg encoder.
Transcodes source audio into MP3 streaming renditions and reports progress.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from config import settings
from models.track import AudioQuality
from utils.exceptions import TranscodeError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

# Bitrates per quality profile (kbit/s)
QUALITY_BITRATES = {
    AudioQuality.LOW: 96,
    AudioQuality.MEDIUM: 128,
    AudioQuality.HIGH: 320,
}

SAMPLE_RATE = 44100
CHANNELS = 2
LOUDNORM_FILTER = "loudnorm=I=-23:LRA=7:TP=-2"  # EBU R128

STDERR_TAIL = 2000


class TranscodeCancelled(Exception):
    """Raised when an encode is stopped through its cancel event."""
    pass


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """
    Turn one line of ``ffmpeg -progress`` output into a percentage.

    Returns None for lines that carry no position or when the duration
    is unknown.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or duration <= 0:
        return None
    # out_time_ms is in microseconds too (long-standing ffmpeg quirk)
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        position = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, position / duration * 100))


class FFmpegEncoder:
    """
    Runs ffmpeg as an async subprocess.

    The process is terminated when the cancel event is set, and the
    output file is removed on every exit that is not a success.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    async def probe_duration(self, file_path: str) -> float:
        """
        Get the duration of an audio file in seconds.

        Raises:
            TranscodeError: If ffprobe is missing, fails, or prints garbage.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                file_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Could not run ffprobe: {e}", retryable=False)

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode(errors="ignore").strip()
            logger.error(f"Failed to get audio duration: {message}")
            raise TranscodeError(f"Failed to get audio duration: {message}")
        try:
            return float(stdout.decode().strip())
        except ValueError:
            raise TranscodeError("Could not parse audio duration")

    def build_command(self, input_path: str, output_path: str, quality: AudioQuality) -> List[str]:
        bitrate = QUALITY_BITRATES[quality]
        return [
            self.ffmpeg_path,
            "-y",
            "-nostdin",
            "-i", input_path,
            "-vn",  # Drop embedded cover art streams
            "-c:a", "libmp3lame",
            "-b:a", f"{bitrate}k",
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-af", LOUDNORM_FILTER,
            "-f", "mp3",
            "-progress", "pipe:1",
            "-nostats",
            "-loglevel", "error",
            output_path,
        ]

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        quality: AudioQuality,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Encode input_path into output_path for the given quality.

        Returns:
            The output path.

        Raises:
            TranscodeError: If ffmpeg fails.
            TranscodeCancelled: If cancel_event was set during the encode.
        """
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        duration = await self.probe_duration(input_path)

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(input_path, output_path, quality),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Could not run ffmpeg: {e}", retryable=False)

        stderr_task = asyncio.create_task(process.stderr.read())
        watcher = None
        if cancel_event is not None:
            watcher = asyncio.create_task(self._terminate_on_cancel(process, cancel_event))

        succeeded = False
        try:
            async for raw in process.stdout:
                percent = parse_progress_line(raw.decode(errors="ignore"), duration)
                if percent is not None and on_progress is not None:
                    await on_progress(percent)

            returncode = await process.wait()
            stderr = await stderr_task

            if cancel_event is not None and cancel_event.is_set():
                raise TranscodeCancelled(f"Encode of {input_path} cancelled")
            if returncode != 0:
                message = stderr.decode(errors="ignore").strip()[-STDERR_TAIL:]
                raise TranscodeError(f"ffmpeg exited with code {returncode}: {message}")

            succeeded = True
            logger.info(f"Encoded {input_path} -> {output_path} ({quality.value})")
            return output_path
        finally:
            if watcher is not None:
                watcher.cancel()
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()
            if not succeeded:
                self.remove_partial(output_path)

    async def _terminate_on_cancel(self, process, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        if process.returncode is None:
            logger.info(f"Terminating ffmpeg (pid={process.pid}) on cancel")
            process.terminate()

    @staticmethod
    def remove_partial(output_path: str) -> None:
        path = Path(output_path)
        if path.exists():
            path.unlink()
            logger.info(f"Removed partial output: {output_path}")
