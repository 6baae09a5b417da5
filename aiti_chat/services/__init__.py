"""Shared service exports."""

from .audio_storage import AudioUploader, AudioUploadResult

__all__ = [
    "AudioUploader",
    "AudioUploadResult",
]
