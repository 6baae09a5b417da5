"""Reduce the many reply shapes automation webhooks produce to one string."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


DEFAULT_REPLY_MESSAGE = "Der Webhook hat keine Nachricht zurückgeliefert."

# Checked in order; the first non-blank string wins.
REPLY_FIELD_PROBES = ("reply", "message", "content", "response", "text")


@dataclass
class RawResponse:
    """Status, headers and decoded body of a webhook response."""

    status: int
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {str(key).lower(): str(value) for key, value in (self.headers or {}).items()}

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def from_requests(cls, response: Any) -> "RawResponse":
        headers: Mapping[str, Any] = getattr(response, "headers", None) or {}
        return cls(
            status=int(getattr(response, "status_code", 0) or 0),
            text=getattr(response, "text", "") or "",
            headers=dict(headers),
        )


def _probe_fields(payload: Dict[str, Any]) -> Optional[str]:
    for key in REPLY_FIELD_PROBES:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_reply(response: RawResponse, default_message: str = DEFAULT_REPLY_MESSAGE) -> str:
    """Return the reply text; falls back to ``default_message`` and never raises."""
    fallback = (default_message or "").strip() or DEFAULT_REPLY_MESSAGE
    body = response.text or ""
    if not body.strip():
        return fallback

    if "json" in response.content_type.lower():
        try:
            parsed = json.loads(body)
        except (ValueError, RecursionError):
            parsed = None
        if isinstance(parsed, dict):
            probed = _probe_fields(parsed)
            if probed:
                return probed
        elif isinstance(parsed, str) and parsed.strip():
            return parsed.strip()

    return body.strip() or fallback


__all__ = ["DEFAULT_REPLY_MESSAGE", "REPLY_FIELD_PROBES", "RawResponse", "normalize_reply"]
