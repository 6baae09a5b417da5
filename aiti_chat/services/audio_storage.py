"""Upload recorded audio to Supabase Storage and record it as a message row."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import CONFIG
from ..db.client import SupabaseDatabaseClient
from .webhook.attachments import AttachmentReader, AudioRecording
from .webhook.payload import WebhookRequestBody, build_audio_notification, sanitize_duration, sanitize_waveform

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_EXTENSION = "webm"


def extension_for_mime(mime_type: str) -> str:
    """Map an audio MIME type to a file extension."""
    normalized = (mime_type or "").lower()
    if "webm" in normalized:
        return "webm"
    if "mp4" in normalized:
        return "mp4"
    if "mpeg" in normalized or "mp3" in normalized:
        return "mp3"
    if "ogg" in normalized:
        return "ogg"
    parts = normalized.split("/")
    if len(parts) == 2 and parts[1]:
        return parts[1]
    return DEFAULT_AUDIO_EXTENSION


@dataclass(frozen=True)
class AudioUploadResult:
    """Metadata returned after the clip was stored."""

    message_id: str
    profile_id: str
    conversation_id: str
    storage_path: str
    signed_url: str
    mime: str
    duration_ms: int
    waveform: Optional[List[int]] = None

    @property
    def meta(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "url": self.signed_url,
            "path": self.storage_path,
            "mime": self.mime,
            "duration_ms": self.duration_ms,
        }
        if self.waveform:
            meta["waveform"] = list(self.waveform)
        return meta

    def to_notification(self) -> WebhookRequestBody:
        return build_audio_notification(
            message_id=self.message_id,
            profile_id=self.profile_id,
            conversation_id=self.conversation_id,
            storage_path=self.storage_path,
            signed_url=self.signed_url,
            mime=self.mime,
            duration_ms=self.duration_ms,
            waveform=self.waveform,
        )


class AudioUploader:
    """Stores a recording, signs a download URL and inserts the ``messages`` row."""

    def __init__(
        self,
        db: SupabaseDatabaseClient,
        *,
        bucket: Optional[str] = None,
        signed_url_ttl: Optional[int] = None,
        reader: Optional[AttachmentReader] = None,
    ) -> None:
        self.db = db
        self.bucket = bucket or CONFIG.audio_storage_bucket
        self.signed_url_ttl = signed_url_ttl or CONFIG.audio_signed_url_ttl
        self.reader = reader or AttachmentReader()

    @staticmethod
    def build_storage_path(profile_id: str, conversation_id: str, mime_type: str, *, epoch_ms: Optional[int] = None) -> str:
        stamp = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
        return f"{profile_id}/{conversation_id}/{stamp}.{extension_for_mime(mime_type)}"

    def upload_sync(
        self,
        profile_id: str,
        conversation_id: str,
        recording: AudioRecording,
        *,
        storage_path: Optional[str] = None,
    ) -> AudioUploadResult:
        """
        Blocking upload used from a worker thread.

        Raises:
            EncodingFailure: the recording could not be read.
            PersistenceError: storage or the ``messages`` insert failed.
        """
        content = self.reader.read(recording.data)
        mime = recording.resolved_mime_type
        storage_path = storage_path or self.build_storage_path(profile_id, conversation_id, mime)

        self.db.upload_object(self.bucket, storage_path, content, content_type=mime)
        signed_url = self.db.create_signed_url(self.bucket, storage_path, expires_in=self.signed_url_ttl)

        result = AudioUploadResult(
            message_id=str(uuid.uuid4()),
            profile_id=profile_id,
            conversation_id=conversation_id,
            storage_path=storage_path,
            signed_url=signed_url,
            mime=mime,
            duration_ms=sanitize_duration(recording.duration_ms),
            waveform=sanitize_waveform(recording.waveform),
        )
        self.db.insert_audio_message(
            {
                "id": result.message_id,
                "profile_id": profile_id,
                "conversation_id": conversation_id,
                "type": "audio",
                "content": None,
                "meta": result.meta,
            }
        )
        logger.info("Stored audio message %s at %s/%s", result.message_id, self.bucket, storage_path)
        return result

    async def upload(
        self,
        profile_id: str,
        conversation_id: str,
        recording: AudioRecording,
        *,
        storage_path: Optional[str] = None,
    ) -> AudioUploadResult:
        return await asyncio.to_thread(
            self.upload_sync, profile_id, conversation_id, recording, storage_path=storage_path
        )


__all__ = ["AudioUploadResult", "AudioUploader", "extension_for_mime"]
