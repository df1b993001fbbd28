"""
Application configuration management.
Centralizes all configuration settings for the transcode service.
"""

import os
import shutil
from pathlib import Path
from pydantic_settings import BaseSettings


def get_app_data_dir() -> Path:
    """Get persistent application data directory."""
    data_dir = os.getenv("TRANSCODER_DATA_DIR")
    if data_dir:
        path = Path(data_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path
    # Development: Project root
    return Path(__file__).parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Audio Transcode Service"
    debug: bool = False

    # Paths
    base_dir: Path = get_app_data_dir()
    upload_dir: Path = base_dir / "uploads"
    output_dir: Path = base_dir / "transcoded"
    database_url: str = f"sqlite:///{base_dir / 'transcoder.db'}"

    # Encoder binaries
    ffmpeg_path: str = shutil.which("ffmpeg") or os.getenv("FFMPEG_PATH", "ffmpeg")
    ffprobe_path: str = shutil.which("ffprobe") or os.getenv("FFPROBE_PATH", "ffprobe")

    # Worker pool and retry policy
    worker_concurrency: int = 2
    max_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    queue_max_size: int = 100  # 0 = unbounded

    # Server
    host: str = "127.0.0.1"
    port: int = 8081
    cors_origins: list[str] = ["*"]

    # File limits
    max_upload_size_mb: int = 200
    allowed_extensions: set[str] = {".mp3", ".wav", ".flac", ".m4a", ".aac", ".ogg", ".opus"}

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

# Ensure directories exist
settings.upload_dir.mkdir(parents=True, exist_ok=True)
settings.output_dir.mkdir(parents=True, exist_ok=True)
