"""
File upload service.
Handles audio file validation, storage, and removal.
"""

import uuid
import logging
import aiofiles
from pathlib import Path
from typing import BinaryIO

from config import settings

logger = logging.getLogger(__name__)


class FileError(Exception):
    """Base exception for file-related errors."""
    pass


class InvalidFileError(FileError):
    """Raised when file type is not allowed."""
    pass


class FileSizeError(FileError):
    """Raised when file exceeds size limit."""
    pass


class FileService:
    """Service for handling audio uploads."""

    MEDIA_TYPES = {
        '.mp3': 'audio/mpeg',
        '.wav': 'audio/wav',
        '.flac': 'audio/flac',
        '.m4a': 'audio/mp4',
        '.aac': 'audio/aac',
        '.ogg': 'audio/ogg',
        '.opus': 'audio/opus',
    }

    # Read from settings on each use so reconfiguration takes effect
    @property
    def upload_dir(self) -> Path:
        return Path(settings.upload_dir)

    @property
    def max_size(self) -> int:
        return settings.max_upload_size_mb * 1024 * 1024  # Convert to bytes

    @property
    def allowed_extensions(self) -> set:
        return settings.allowed_extensions

    def validate_file(self, filename: str, file_size: int) -> None:
        """
        Validate file extension and size.

        Raises:
            InvalidFileError: If extension not allowed
            FileSizeError: If file too large
        """
        ext = Path(filename or "").suffix.lower()

        if ext not in self.allowed_extensions:
            raise InvalidFileError(
                f"File type '{ext}' not allowed. "
                f"Allowed types: {', '.join(sorted(self.allowed_extensions))}"
            )

        if file_size > self.max_size:
            raise FileSizeError(f"File too large. Maximum size is {settings.max_upload_size_mb}MB")

    async def save_upload(
        self,
        file: BinaryIO,
        filename: str,
        chunk_size: int = 1024 * 1024  # 1MB chunks
    ) -> dict:
        """
        Stream an uploaded file to disk.

        Returns:
            Dict with file_path, filename, original_filename, size, media_type
        """
        # Unique prefix prevents collisions between same-named uploads
        file_id = uuid.uuid4().hex[:8]
        ext = Path(filename).suffix.lower()
        safe_filename = f"{file_id}_{self._sanitize_filename(filename)}"

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.upload_dir / safe_filename

        try:
            total_size = 0
            async with aiofiles.open(file_path, 'wb') as out_file:
                while chunk := await file.read(chunk_size):
                    total_size += len(chunk)
                    if total_size > self.max_size:
                        raise FileSizeError(
                            f"File too large. Maximum size is {settings.max_upload_size_mb}MB"
                        )
                    await out_file.write(chunk)

            logger.info(f"Saved upload: {safe_filename} ({total_size} bytes)")

            return {
                'file_path': str(file_path),
                'filename': safe_filename,
                'original_filename': filename,
                'size': total_size,
                'media_type': self.get_media_type(ext),
            }

        except FileSizeError:
            file_path.unlink(missing_ok=True)  # Delete partial file
            raise
        except Exception as e:
            file_path.unlink(missing_ok=True)
            logger.error(f"Failed to save upload: {e}")
            raise FileError(f"Failed to save file: {str(e)}")

    def _sanitize_filename(self, filename: str) -> str:
        """Remove unsafe characters from filename."""
        safe_chars = set('abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-_')
        return ''.join(c if c in safe_chars else '_' for c in filename)

    def get_media_type(self, extension: str) -> str:
        """Get MIME type from file extension."""
        return self.MEDIA_TYPES.get(extension.lower(), 'application/octet-stream')

    def delete_file(self, file_path: str) -> bool:
        """Delete a stored file."""
        path = Path(file_path)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted file: {path.name}")
            return True
        return False
