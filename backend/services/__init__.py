"""
Services package.
"""

from services.file_service import FileService
from services.transcode_service import TranscodeService, get_transcode_service

__all__ = ["FileService", "TranscodeService", "get_transcode_service"]
