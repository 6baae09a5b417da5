"""
Attachment sources and the reader adapter used to turn them into bytes.

Web uploads arrive as bytes (FastAPI ``UploadFile`` contents), native clients
and the CLI hand over filesystem paths, and tests pass file-like objects. The
``AttachmentReader`` is the only place that knows the difference.
"""

from __future__ import annotations

import base64
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from .errors import EncodingFailure


DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_AUDIO_MIME_TYPE = "audio/webm"

AttachmentData = Union[bytes, bytearray, str, os.PathLike, Any]


def guess_mime_type(name: str, declared: Optional[str] = None) -> str:
    """Return the declared type, else the extension-derived one, else octet-stream."""
    candidate = (declared or "").strip()
    if candidate:
        return candidate
    guessed, _ = mimetypes.guess_type(name or "")
    return guessed or DEFAULT_MIME_TYPE


@dataclass
class AttachmentSource:
    """A file the user attached to a turn."""

    name: str
    data: AttachmentData
    mime_type: Optional[str] = None
    size: Optional[int] = None

    @property
    def resolved_mime_type(self) -> str:
        return guess_mime_type(self.name, self.mime_type)


@dataclass
class AudioRecording:
    """A recorded voice clip; capture itself happens on the client."""

    data: AttachmentData
    mime_type: str = DEFAULT_AUDIO_MIME_TYPE
    duration_ms: float = 0
    waveform: Optional[List[float]] = field(default=None)

    @property
    def resolved_mime_type(self) -> str:
        return (self.mime_type or "").strip() or DEFAULT_AUDIO_MIME_TYPE


@dataclass(frozen=True)
class EncodedFile:
    """Bytes ready to be sent as one multipart part."""

    field_name: str
    filename: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    def as_data_url(self) -> str:
        return to_data_url(self.content, self.mime_type)


def to_data_url(content: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class AttachmentReader:
    """Reads attachment payloads into memory."""

    def read(self, data: AttachmentData) -> bytes:
        try:
            if isinstance(data, (bytes, bytearray)):
                return bytes(data)
            if isinstance(data, (str, os.PathLike)):
                return Path(data).read_bytes()
            if hasattr(data, "read"):
                if hasattr(data, "seek"):
                    data.seek(0)
                content = data.read()
                if isinstance(content, str):
                    content = content.encode("utf-8")
                if not isinstance(content, (bytes, bytearray)):
                    raise TypeError(f"read() returned {type(content).__name__}")
                return bytes(content)
        except (OSError, TypeError, ValueError) as exc:
            raise EncodingFailure(cause=exc) from exc
        raise EncodingFailure(f"Nicht unterstützter Anhang: {type(data).__name__}")

    def encode_file(self, source: AttachmentSource, field_name: str) -> EncodedFile:
        content = self.read(source.data)
        return EncodedFile(
            field_name=field_name,
            filename=source.name or field_name,
            content=content,
            mime_type=source.resolved_mime_type,
        )

    def encode_audio(self, recording: AudioRecording, filename: str = "audio") -> EncodedFile:
        content = self.read(recording.data)
        return EncodedFile(
            field_name="audio",
            filename=filename,
            content=content,
            mime_type=recording.resolved_mime_type,
        )


__all__ = [
    "AttachmentReader",
    "AttachmentSource",
    "AudioRecording",
    "DEFAULT_AUDIO_MIME_TYPE",
    "DEFAULT_MIME_TYPE",
    "EncodedFile",
    "guess_mime_type",
    "to_data_url",
]
