"""Small text and time helpers shared by the conversation service and API."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..db.models import ChatAttachment

PREVIEW_LIMIT = 140
DEFAULT_PREVIEW = "Beschreibe dein nächstes Projekt und starte den AI Agent."
AUDIO_PREVIEW = "Audio Nachricht"
NEW_MESSAGE_PREVIEW = "Neue Nachricht"


def to_preview(value: str) -> str:
    """Truncate to at most 140 characters (137 plus an ellipsis)."""
    value = value or ""
    if len(value) > PREVIEW_LIMIT:
        return f"{value[:PREVIEW_LIMIT - 3]}…"
    return value


def user_message_preview(text: str, attachments: Sequence[ChatAttachment], *, has_audio: bool) -> str:
    trimmed = (text or "").strip()
    if trimmed:
        source = trimmed
    elif has_audio:
        source = AUDIO_PREVIEW
    elif attachments:
        source = attachments[0].name or NEW_MESSAGE_PREVIEW
    else:
        source = NEW_MESSAGE_PREVIEW
    return to_preview(source)


def greeting_for(user_name: Optional[str]) -> str:
    name = (user_name or "").strip()
    if name:
        return f"Hallo {name}! Wie kann ich dir heute helfen?"
    return "Hallo! Wie kann ich dir heute helfen?"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def format_display_time(value: Optional[str], *, now: Optional[datetime] = None) -> str:
    """``HH:MM`` for an ISO timestamp; the current time for missing or invalid input."""
    parsed = _parse_iso(value) or now or utcnow()
    return parsed.strftime("%H:%M")


__all__ = [
    "AUDIO_PREVIEW",
    "DEFAULT_PREVIEW",
    "NEW_MESSAGE_PREVIEW",
    "PREVIEW_LIMIT",
    "format_display_time",
    "greeting_for",
    "new_id",
    "to_preview",
    "user_message_preview",
    "utcnow",
    "utcnow_iso",
]
