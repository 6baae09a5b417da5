"""
Database package for the agent chat core.

Exposes the Supabase client, the conversation record models and the settings
and secret helpers.
"""

from .client import DatabaseClient, PersistenceError, SupabaseDatabaseClient, get_database_client
from .models import (
    AgentConversation,
    AgentMetadata,
    ChatAttachment,
    ChatMessage,
    ConversationRecord,
    ConversationUpdate,
)

__all__ = [
    "DatabaseClient",
    "PersistenceError",
    "SupabaseDatabaseClient",
    "get_database_client",
    "AgentConversation",
    "AgentMetadata",
    "ChatAttachment",
    "ChatMessage",
    "ConversationRecord",
    "ConversationUpdate",
]
