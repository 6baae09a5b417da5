"""
Turn a pending chat turn into a transport-ready webhook request body.

JSON is used when the turn carries no binary parts; as soon as a file (or an
inline audio clip) is attached the body switches to multipart/form-data with
``history`` encoded as a JSON string field.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ...config import AUDIO_DELIVERY_INLINE, CONFIG
from ...db.models import ChatMessage
from .attachments import AttachmentReader, AttachmentSource, AudioRecording, EncodedFile
from .errors import EmptyMessageError


ENCODING_JSON = "json"
ENCODING_MULTIPART = "multipart"

FILE_PLACEHOLDER = "Datei gesendet."
AUDIO_PLACEHOLDER = "Audio-Nachricht"

MAX_WAVEFORM_VALUES = 128


@dataclass
class PendingTurn:
    """Everything needed to send one user turn to a webhook."""

    conversation_id: str
    message_id: str
    text: str = ""
    files: List[AttachmentSource] = field(default_factory=list)
    audio: Optional[AudioRecording] = None
    history: List[ChatMessage] = field(default_factory=list)

    @property
    def trimmed_text(self) -> str:
        return (self.text or "").strip()

    def has_content(self) -> bool:
        return bool(self.trimmed_text or self.files or self.audio is not None)


@dataclass
class WebhookRequestBody:
    encoding: str
    fields: Dict[str, Any]
    files: List[EncodedFile] = field(default_factory=list)

    @property
    def is_multipart(self) -> bool:
        return self.encoding == ENCODING_MULTIPART

    def request_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``requests.post``."""
        if not self.is_multipart:
            return {"json": self.fields}
        data = {
            key: json.dumps(value) if not isinstance(value, str) else value
            for key, value in self.fields.items()
        }
        files: List[Tuple[str, Tuple[str, bytes, str]]] = [
            (part.field_name, (part.filename, part.content, part.mime_type)) for part in self.files
        ]
        return {"data": data, "files": files}


def message_content(text: str, *, has_files: bool, has_audio: bool) -> str:
    """Text sent as ``message``; never empty when something is attached."""
    trimmed = (text or "").strip()
    if trimmed:
        return trimmed
    if has_audio:
        return AUDIO_PLACEHOLDER
    if has_files:
        return FILE_PLACEHOLDER
    return ""


def serialize_history(messages: Iterable[ChatMessage]) -> List[Dict[str, Any]]:
    return [message.to_history_dict() for message in messages]


def audio_inline_enabled() -> bool:
    return CONFIG.audio_delivery == AUDIO_DELIVERY_INLINE


def encode_attachments(
    turn: PendingTurn,
    reader: Optional[AttachmentReader] = None,
    *,
    inline_audio: Optional[bool] = None,
) -> List[EncodedFile]:
    """Read every binary part of the turn; raises ``EncodingFailure``."""
    reader = reader or AttachmentReader()
    if inline_audio is None:
        inline_audio = audio_inline_enabled()

    encoded = [
        reader.encode_file(source, f"attachment_{index}")
        for index, source in enumerate(turn.files, start=1)
    ]
    if inline_audio and turn.audio is not None:
        encoded.append(reader.encode_audio(turn.audio))
    return encoded


def build_webhook_request(
    turn: PendingTurn,
    *,
    encoded: Optional[Sequence[EncodedFile]] = None,
    reader: Optional[AttachmentReader] = None,
    inline_audio: Optional[bool] = None,
) -> WebhookRequestBody:
    """
    Build the request body for a text/file turn.

    Raises:
        EmptyMessageError: the turn has no text and no attachments.
        EncodingFailure: an attachment could not be read.
    """
    if not turn.has_content():
        raise EmptyMessageError()

    if encoded is None:
        encoded = encode_attachments(turn, reader, inline_audio=inline_audio)
    parts = list(encoded)

    fields: Dict[str, Any] = {
        "chatId": turn.conversation_id,
        "messageId": turn.message_id,
        "message": message_content(
            turn.text,
            has_files=bool(turn.files),
            has_audio=turn.audio is not None,
        ),
        "history": serialize_history(turn.history),
    }
    encoding = ENCODING_MULTIPART if parts else ENCODING_JSON
    return WebhookRequestBody(encoding=encoding, fields=fields, files=parts)


def sanitize_duration(duration_ms: Any) -> int:
    try:
        value = float(duration_ms)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, int(round(value)))


def sanitize_waveform(waveform: Optional[Sequence[Any]]) -> Optional[List[int]]:
    """Keep the last 128 finite samples clamped to ``[0, 255]``; ``None`` when empty."""
    if not waveform:
        return None
    sanitized: List[int] = []
    for value in list(waveform)[-MAX_WAVEFORM_VALUES:]:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value):
            continue
        sanitized.append(max(0, min(255, int(round(value)))))
    return sanitized or None


def build_audio_notification(
    *,
    message_id: str,
    profile_id: str,
    conversation_id: str,
    storage_path: str,
    signed_url: str,
    mime: str,
    duration_ms: Any,
    waveform: Optional[Sequence[Any]] = None,
) -> WebhookRequestBody:
    """JSON body announcing an audio clip that was uploaded out of band."""
    fields: Dict[str, Any] = {
        "message_id": message_id,
        "profile_id": profile_id,
        "conversation_id": conversation_id,
        "storage_path": storage_path,
        "signed_url": signed_url,
        "mime": mime,
        "duration_ms": sanitize_duration(duration_ms),
    }
    cleaned = sanitize_waveform(waveform)
    if cleaned:
        fields["waveform"] = cleaned
    return WebhookRequestBody(encoding=ENCODING_JSON, fields=fields)


__all__ = [
    "AUDIO_PLACEHOLDER",
    "ENCODING_JSON",
    "ENCODING_MULTIPART",
    "FILE_PLACEHOLDER",
    "PendingTurn",
    "WebhookRequestBody",
    "build_audio_notification",
    "build_webhook_request",
    "encode_attachments",
    "message_content",
    "sanitize_duration",
    "sanitize_waveform",
    "serialize_history",
]
