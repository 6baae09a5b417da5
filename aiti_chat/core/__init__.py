"""Conversation state and reconciliation."""

from .conversation_service import (
    AgentNotFoundError,
    ConversationService,
    ConversationState,
    SendOutcome,
    search_messages,
)

__all__ = [
    "AgentNotFoundError",
    "ConversationService",
    "ConversationState",
    "SendOutcome",
    "search_messages",
]
