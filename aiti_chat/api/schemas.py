"""Pydantic schemas for the public API."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.conversation_service import SendOutcome
from ..db.models import AgentConversation, ChatAttachment, ChatMessage


AuthType = Literal["none", "apiKey", "basic", "oauth"]


class AttachmentResponse(BaseModel):
    id: str
    name: str
    size: int
    type: str
    kind: Literal["file", "audio"] = "file"
    url: Optional[str] = None
    duration_seconds: Optional[float] = None
    storage_path: Optional[str] = None

    @classmethod
    def from_attachment(cls, attachment: ChatAttachment) -> "AttachmentResponse":
        return cls(
            id=attachment.id,
            name=attachment.name,
            size=attachment.size,
            type=attachment.mime_type,
            kind=attachment.kind,  # type: ignore[arg-type]
            url=attachment.url,
            duration_seconds=attachment.duration_seconds,
            storage_path=attachment.storage_path,
        )


class MessageResponse(BaseModel):
    id: str
    author: Literal["user", "agent"]
    content: str
    timestamp: str
    attachments: List[AttachmentResponse] = Field(default_factory=list)

    @classmethod
    def from_message(cls, message: ChatMessage) -> "MessageResponse":
        return cls(
            id=message.id,
            author=message.author,  # type: ignore[arg-type]
            content=message.content,
            timestamp=message.timestamp,
            attachments=[AttachmentResponse.from_attachment(item) for item in message.attachments],
        )


class ConversationResponse(BaseModel):
    agent_id: str
    conversation_id: Optional[str] = None
    name: str
    preview: str
    last_updated_at: Optional[str] = None
    messages: List[MessageResponse] = Field(default_factory=list)

    @classmethod
    def from_conversation(cls, conversation: AgentConversation) -> "ConversationResponse":
        return cls(
            agent_id=conversation.agent_id,
            conversation_id=conversation.conversation_id,
            name=conversation.name,
            preview=conversation.preview,
            last_updated_at=conversation.last_updated_at,
            messages=[MessageResponse.from_message(message) for message in conversation.messages],
        )


class ChatOverviewItem(BaseModel):
    id: str
    name: str
    description: str = ""
    avatar_url: Optional[str] = None
    preview: str
    last_updated: str


class ChatOverviewResponse(BaseModel):
    chats: List[ChatOverviewItem] = Field(default_factory=list)


class SearchResponse(BaseModel):
    agent_id: str
    query: str
    results: List[MessageResponse] = Field(default_factory=list)


class SendMessageResponse(BaseModel):
    conversation: ConversationResponse
    user_message: MessageResponse
    agent_message: MessageResponse
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: SendOutcome) -> "SendMessageResponse":
        return cls(
            conversation=ConversationResponse.from_conversation(outcome.conversation),
            user_message=MessageResponse.from_message(outcome.user_message),
            agent_message=MessageResponse.from_message(outcome.agent_message),
            succeeded=outcome.succeeded,
            error=outcome.error,
        )


class AgentSettingsResponse(BaseModel):
    webhook_url: str = ""
    auth_type: AuthType = "none"
    profile_name: str = ""
    profile_role: str = ""
    profile_avatar_image: Optional[str] = None
    agent_avatar_image: Optional[str] = None
    color_scheme: Literal["light", "dark"] = "dark"


class AgentSettingsUpdateRequest(BaseModel):
    profile_name: Optional[str] = None
    profile_role: Optional[str] = None
    profile_avatar_image: Optional[str] = None
    agent_avatar_image: Optional[str] = None
    color_scheme: Optional[Literal["light", "dark"]] = None


class IntegrationUpdateRequest(BaseModel):
    webhook_url: str = ""
    auth_type: AuthType = "none"
    api_key: Optional[str] = None
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None
    oauth_token: Optional[str] = None

    @field_validator("webhook_url", mode="before")
    @classmethod
    def _strip_url(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    @model_validator(mode="after")
    def _require_http_url(self) -> "IntegrationUpdateRequest":
        if self.webhook_url and not self.webhook_url.lower().startswith(("http://", "https://")):
            raise ValueError("webhook_url must start with http:// or https://")
        return self


class WebhookTestRequest(BaseModel):
    agent_id: Optional[str] = None


class WebhookTestResponse(BaseModel):
    url: str
    message: str
