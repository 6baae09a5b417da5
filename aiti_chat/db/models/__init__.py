"""
Database models and record definitions for agent conversations.

This module contains data classes for chat messages, attachments and the
persisted per-agent conversation row, plus the sanitisers that turn loosely
typed JSON columns into those records.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from ...auth.user_context import normalize_tools


MESSAGE_AUTHORS = ("user", "agent")
ATTACHMENT_KINDS = ("file", "audio")


@dataclass(frozen=True)
class ChatAttachment:
    """A file or audio clip attached to a chat message."""

    id: str
    name: str
    size: int
    mime_type: str
    kind: str = "file"
    url: Optional[str] = None
    duration_seconds: Optional[float] = None
    storage_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "type": self.mime_type,
            "kind": self.kind,
        }
        if self.url is not None:
            data["url"] = self.url
        if self.duration_seconds is not None:
            data["durationSeconds"] = self.duration_seconds
        if self.storage_path is not None:
            data["storagePath"] = self.storage_path
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["ChatAttachment"]:
        attachment_id = data.get("id")
        if not isinstance(attachment_id, str) or not attachment_id:
            return None
        kind = data.get("kind")
        duration = data.get("durationSeconds", data.get("duration_seconds"))
        storage_path = data.get("storagePath", data.get("storage_path"))
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return cls(
            id=attachment_id,
            name=str(data.get("name") or ""),
            size=size,
            mime_type=str(data.get("type") or data.get("mime_type") or "application/octet-stream"),
            kind=kind if kind in ATTACHMENT_KINDS else "file",
            url=data.get("url") if isinstance(data.get("url"), str) else None,
            duration_seconds=float(duration) if isinstance(duration, (int, float)) else None,
            storage_path=storage_path if isinstance(storage_path, str) and storage_path else None,
        )


@dataclass(frozen=True)
class ChatMessage:
    """A single chat message. Immutable once appended to a conversation."""

    id: str
    author: str
    content: str
    timestamp: str
    attachments: Tuple[ChatAttachment, ...] = ()

    def to_history_dict(self) -> Dict[str, Any]:
        """Wire form used in the webhook ``history`` field."""
        return {
            "id": self.id,
            "author": self.author,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_history_dict()
        if self.attachments:
            data["attachments"] = [attachment.to_dict() for attachment in self.attachments]
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ChatMessage"]:
        """Return a message for a well-formed entry, ``None`` otherwise."""
        if not isinstance(data, dict):
            return None
        message_id = data.get("id")
        author = data.get("author")
        content = data.get("content")
        timestamp = data.get("timestamp")
        if not isinstance(message_id, str) or not message_id:
            return None
        if author not in MESSAGE_AUTHORS:
            return None
        if not isinstance(content, str) or not isinstance(timestamp, str):
            return None

        attachments: List[ChatAttachment] = []
        raw_attachments = data.get("attachments")
        if isinstance(raw_attachments, list):
            for entry in raw_attachments:
                if isinstance(entry, dict):
                    attachment = ChatAttachment.from_dict(entry)
                    if attachment is not None:
                        attachments.append(attachment)

        return cls(
            id=message_id,
            author=author,
            content=content,
            timestamp=timestamp,
            attachments=tuple(attachments),
        )


def sanitize_messages(raw_messages: Any) -> List[ChatMessage]:
    """Drop malformed entries from a persisted ``messages`` column."""
    if not isinstance(raw_messages, list):
        return []
    messages: List[ChatMessage] = []
    for entry in raw_messages:
        message = ChatMessage.from_dict(entry)
        if message is not None:
            messages.append(message)
    return messages


@dataclass(frozen=True)
class AgentMetadata:
    """Agent fields cached on a conversation row."""

    name: Optional[str] = None
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    webhook_url: Optional[str] = None
    tools: Tuple[str, ...] = ()


@dataclass
class ConversationRecord:
    """A row of the ``agent_conversations`` table."""

    id: str
    profile_id: str
    agent_id: str
    metadata: AgentMetadata = field(default_factory=AgentMetadata)
    messages: List[ChatMessage] = field(default_factory=list)
    summary: Optional[str] = None
    last_message_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConversationRecord":
        return cls(
            id=str(row.get("id")),
            profile_id=str(row.get("profile_id")),
            agent_id=str(row.get("agent_id")),
            metadata=AgentMetadata(
                name=row.get("agent_name"),
                description=row.get("agent_description"),
                avatar_url=row.get("agent_avatar_url"),
                webhook_url=row.get("agent_webhook_url"),
                tools=tuple(normalize_tools(row.get("agent_tools"))),
            ),
            messages=sanitize_messages(row.get("messages")),
            summary=row.get("summary"),
            last_message_at=row.get("last_message_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


_UNSET: Any = object()


@dataclass
class ConversationUpdate:
    """
    Partial update for a conversation row.

    Fields left at the sentinel are not written, so a metadata-only update
    never touches ``messages``.
    """

    messages: Any = _UNSET
    summary: Any = _UNSET
    last_message_at: Any = _UNSET
    agent_name: Any = _UNSET
    agent_description: Any = _UNSET
    agent_avatar_url: Any = _UNSET
    agent_webhook_url: Any = _UNSET
    agent_tools: Any = _UNSET

    def is_empty(self) -> bool:
        return not self.to_columns()

    def touches_messages(self) -> bool:
        return self.messages is not _UNSET

    def to_columns(self) -> Dict[str, Any]:
        columns: Dict[str, Any] = {}
        if self.messages is not _UNSET:
            columns["messages"] = [message.to_dict() for message in self.messages]
        if self.summary is not _UNSET:
            columns["summary"] = self.summary
        if self.last_message_at is not _UNSET:
            columns["last_message_at"] = self.last_message_at
        if self.agent_name is not _UNSET:
            columns["agent_name"] = self.agent_name
        if self.agent_description is not _UNSET:
            columns["agent_description"] = self.agent_description
        if self.agent_avatar_url is not _UNSET:
            columns["agent_avatar_url"] = self.agent_avatar_url
        if self.agent_webhook_url is not _UNSET:
            columns["agent_webhook_url"] = self.agent_webhook_url
        if self.agent_tools is not _UNSET:
            columns["agent_tools"] = normalize_tools(self.agent_tools)
        return columns


@dataclass
class AgentConversation:
    """Local view of one (user, agent) conversation."""

    agent_id: str
    name: str
    messages: List[ChatMessage] = field(default_factory=list)
    preview: str = ""
    last_updated_at: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: AgentMetadata = field(default_factory=AgentMetadata)

    def with_message(self, message: ChatMessage, *, preview: str, timestamp: str) -> "AgentConversation":
        """Return a copy with ``message`` appended; the original is left untouched."""
        return replace(
            self,
            messages=[*self.messages, message],
            preview=preview,
            last_updated_at=timestamp,
        )

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None


__all__ = [
    "AgentConversation",
    "AgentMetadata",
    "ChatAttachment",
    "ChatMessage",
    "ConversationRecord",
    "ConversationUpdate",
    "sanitize_messages",
]
