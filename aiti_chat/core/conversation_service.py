"""
Per-user agent conversation service.

Keeps an optimistic local copy of every (user, agent) conversation, persists
each change to the ``agent_conversations`` table and drives the webhook round
trip for a sent turn:

    append user message -> persist -> dispatch -> append reply or error -> persist

Every dispatched turn ends with a visible agent message, either the reply or
a ``Webhook Fehler`` entry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..auth.user_context import AgentProfile, AuthUser, DEFAULT_AGENT_NAME, normalize_tools
from ..config import AUDIO_DELIVERY_INLINE, CONFIG
from ..db.client import PersistenceError, SupabaseDatabaseClient, get_database_client
from ..db.models import (
    AgentConversation,
    AgentMetadata,
    ChatAttachment,
    ChatMessage,
    ConversationRecord,
    ConversationUpdate,
)
from ..db.settings import SettingsProvider
from ..services.audio_storage import AudioUploader
from ..services.webhook.attachments import AttachmentReader, AttachmentSource, AudioRecording, to_data_url
from ..services.webhook.dispatcher import dispatch, resolve_webhook_target
from ..services.webhook.errors import DispatchError, EmptyMessageError
from ..services.webhook.normalizer import DEFAULT_REPLY_MESSAGE, normalize_reply
from ..services.webhook.payload import PendingTurn, build_webhook_request, encode_attachments, message_content
from .formatting import (
    DEFAULT_PREVIEW,
    format_display_time,
    greeting_for,
    new_id,
    to_preview,
    user_message_preview,
    utcnow_iso,
)

logger = logging.getLogger(__name__)

WEBHOOK_ERROR_PREFIX = "Webhook Fehler"
AUDIO_WEBHOOK_ERROR_PREFIX = "Audio-Webhook Fehler"
UNKNOWN_WEBHOOK_ERROR = "Unbekannter Fehler beim Webhook-Aufruf."


class ConversationState(str, Enum):
    ABSENT = "absent"
    LOADED = "loaded"
    PENDING_SEND = "pending_send"
    SETTLED = "settled"


class AgentNotFoundError(LookupError):
    """The user owns no agent with the requested id."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id} wurde nicht gefunden.")
        self.agent_id = agent_id


@dataclass
class SendOutcome:
    """Result of a settled send."""

    conversation: AgentConversation
    user_message: ChatMessage
    agent_message: ChatMessage
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def agent_metadata_changed(snapshot: AgentMetadata, agent: AgentProfile) -> bool:
    """Compare the cached snapshot with the authoritative profile; tool order is ignored."""
    if (snapshot.name or "") != agent.display_name:
        return True
    if (snapshot.description or "") != (agent.description or ""):
        return True
    if (snapshot.avatar_url or None) != (agent.avatar_url or None):
        return True
    if (snapshot.webhook_url or None) != (agent.webhook_url or None):
        return True
    return set(normalize_tools(list(snapshot.tools))) != set(agent.tools)


def metadata_for(agent: AgentProfile) -> AgentMetadata:
    return AgentMetadata(
        name=agent.display_name,
        description=agent.description or "",
        avatar_url=agent.avatar_url,
        webhook_url=agent.webhook_url,
        tools=tuple(agent.tools),
    )


def metadata_update(agent: AgentProfile, **columns: Any) -> ConversationUpdate:
    """Build an update carrying the agent snapshot plus any extra columns."""
    return ConversationUpdate(
        agent_name=agent.display_name,
        agent_description=agent.description or "",
        agent_avatar_url=agent.avatar_url,
        agent_webhook_url=agent.webhook_url,
        agent_tools=list(agent.tools),
        **columns,
    )


def conversation_from_record(record: ConversationRecord, agent: AgentProfile) -> AgentConversation:
    last = record.messages[-1] if record.messages else None
    summary_source = record.summary or (last.content if last else None) or DEFAULT_PREVIEW
    return AgentConversation(
        agent_id=record.agent_id,
        name=record.metadata.name or agent.display_name,
        messages=list(record.messages),
        preview=to_preview(summary_source),
        last_updated_at=record.last_message_at or record.updated_at or record.created_at,
        conversation_id=record.id,
        metadata=record.metadata,
    )


def search_messages(conversation: AgentConversation, query: str) -> List[ChatMessage]:
    """Case-insensitive substring search over message content."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(conversation.messages)
    return [message for message in conversation.messages if needle in message.content.lower()]


class ConversationService:
    """
    Conversation state for one user.

    Sends for the same agent are expected to be issued one at a time; use
    ``is_pending`` to guard against double submission.
    """

    def __init__(
        self,
        user: AuthUser,
        *,
        db: Optional[SupabaseDatabaseClient] = None,
        settings: Optional[SettingsProvider] = None,
        audio_uploader: Optional[AudioUploader] = None,
        reader: Optional[AttachmentReader] = None,
        audio_delivery: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.user = user
        self.db = db or get_database_client()
        self.settings = settings or SettingsProvider(user.id, db=self.db)
        self.reader = reader or AttachmentReader()
        self.audio_uploader = audio_uploader or AudioUploader(self.db, reader=self.reader)
        self.audio_delivery = audio_delivery or CONFIG.audio_delivery
        self.timeout = timeout
        self._conversations: Dict[str, AgentConversation] = {}
        self._states: Dict[str, ConversationState] = {}

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def state_of(self, agent_id: str) -> ConversationState:
        return self._states.get(agent_id, ConversationState.ABSENT)

    def is_pending(self, agent_id: str) -> bool:
        return self.state_of(agent_id) is ConversationState.PENDING_SEND

    def get_cached_conversation(self, agent_id: str) -> Optional[AgentConversation]:
        return self._conversations.get(agent_id)

    def _require_agent(self, agent_id: str) -> AgentProfile:
        agent = self.user.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def _store(self, conversation: AgentConversation, state: ConversationState) -> None:
        self._conversations[conversation.agent_id] = conversation
        self._states[conversation.agent_id] = state

    async def _upsert(self, agent_id: str, update: ConversationUpdate) -> ConversationRecord:
        return await asyncio.to_thread(self.db.upsert_agent_conversation, self.user.id, agent_id, update)

    # ------------------------------------------------------------------
    # Loading and reconciliation
    # ------------------------------------------------------------------

    async def get_or_create_conversation(self, agent_id: str) -> AgentConversation:
        """Return the conversation for ``agent_id``, creating and persisting a greeting when absent."""
        cached = self._conversations.get(agent_id)
        if cached is not None:
            return cached

        agent = self._require_agent(agent_id)
        records = await asyncio.to_thread(self.db.fetch_agent_conversations, self.user.id)
        record = next((item for item in records if item.agent_id == agent_id), None)
        return await self._load_one(agent, record)

    async def _load_one(self, agent: AgentProfile, record: Optional[ConversationRecord]) -> AgentConversation:
        if record is None or not record.messages:
            return await self._create_initial(agent)

        conversation = conversation_from_record(record, agent)
        self._store(conversation, ConversationState.LOADED)
        try:
            await self._reconcile(agent, conversation)
        except PersistenceError as exc:
            logger.error("Metadata for agent %s could not be reconciled: %s", agent.id, exc)
        return self._conversations[agent.id]

    async def _create_initial(self, agent: AgentProfile) -> AgentConversation:
        timestamp = utcnow_iso()
        greeting = ChatMessage(
            id=new_id(),
            author="agent",
            content=greeting_for(self.user.display_name),
            timestamp=timestamp,
        )
        conversation = AgentConversation(
            agent_id=agent.id,
            name=agent.display_name,
            messages=[greeting],
            preview=to_preview(greeting.content),
            last_updated_at=timestamp,
            metadata=metadata_for(agent),
        )
        self._store(conversation, ConversationState.LOADED)

        try:
            record = await self._upsert(
                agent.id,
                metadata_update(
                    agent,
                    messages=conversation.messages,
                    summary=conversation.preview,
                    last_message_at=timestamp,
                ),
            )
        except PersistenceError as exc:
            logger.error("Initial conversation for agent %s could not be saved: %s", agent.id, exc)
            return conversation

        conversation = replace(conversation, conversation_id=record.id)
        self._store(conversation, ConversationState.LOADED)
        return conversation

    async def _reconcile(self, agent: AgentProfile, conversation: AgentConversation) -> bool:
        if not agent_metadata_changed(conversation.metadata, agent):
            return False

        await self._upsert(agent.id, metadata_update(agent))
        current = self._conversations.get(agent.id, conversation)
        self._conversations[agent.id] = replace(current, name=agent.display_name, metadata=metadata_for(agent))
        logger.info("Reconciled metadata for agent %s", agent.id)
        return True

    async def reconcile_agent_metadata(self, agent_id: str) -> bool:
        """
        Push profile changes (name, description, avatar, webhook, tools) to the record.

        Only agent columns are written. Returns ``True`` when a write happened.
        """
        agent = self._require_agent(agent_id)
        conversation = await self.get_or_create_conversation(agent_id)
        return await self._reconcile(agent, self._conversations.get(agent_id, conversation))

    async def load_conversations(self) -> List[AgentConversation]:
        """
        Load, create or reconcile every agent's conversation and delete orphans.

        A failure for one agent is logged and does not stop the others.
        """
        records = await asyncio.to_thread(self.db.fetch_agent_conversations, self.user.id)
        by_agent: Dict[str, ConversationRecord] = {}
        for record in records:
            by_agent.setdefault(record.agent_id, record)

        agent_ids = set(self.user.agent_ids())
        orphans = [agent_id for agent_id in by_agent if agent_id not in agent_ids]

        operations = [self._load_one(agent, by_agent.get(agent.id)) for agent in self.user.agents]
        operations.extend(self._delete_orphan(agent_id) for agent_id in orphans)
        results = await asyncio.gather(*operations, return_exceptions=True)

        for label, result in zip([*self.user.agent_ids(), *orphans], results):
            if isinstance(result, BaseException):
                logger.error("Conversation sync failed for agent %s: %s", label, result)

        return [self._conversations[agent_id] for agent_id in self.user.agent_ids() if agent_id in self._conversations]

    async def _delete_orphan(self, agent_id: str) -> None:
        await asyncio.to_thread(self.db.delete_agent_conversation, self.user.id, agent_id)
        logger.info("Deleted orphaned conversation for agent %s", agent_id)

    async def delete_agent_conversation(self, agent_id: str) -> None:
        await asyncio.to_thread(self.db.delete_agent_conversation, self.user.id, agent_id)
        self._conversations.pop(agent_id, None)
        self._states.pop(agent_id, None)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def _build_attachments(
        self,
        files: Sequence[AttachmentSource],
        audio: Optional[AudioRecording],
        encoded_files: Sequence[Any],
        timestamp: str,
        *,
        audio_storage_path: Optional[str] = None,
        inline_audio: bool = False,
    ) -> List[ChatAttachment]:
        attachments = [
            ChatAttachment(
                id=new_id(),
                name=source.name or part.filename,
                size=part.size,
                mime_type=part.mime_type,
                kind="file",
                url=part.as_data_url(),
            )
            for source, part in zip(files, encoded_files)
        ]
        if audio is not None:
            content = self.reader.read(audio.data)
            # Uploaded clips are referenced by their storage path, not copied into the row.
            attachments.append(
                ChatAttachment(
                    id=new_id(),
                    name=f"Audio-{format_display_time(timestamp)}",
                    size=len(content),
                    mime_type=audio.resolved_mime_type,
                    kind="audio",
                    url=to_data_url(content, audio.resolved_mime_type) if inline_audio else None,
                    duration_seconds=round(max(0.0, float(audio.duration_ms or 0)) / 1000, 1),
                    storage_path=None if inline_audio else audio_storage_path,
                )
            )
        return attachments

    async def send_message(
        self,
        agent_id: str,
        text: str = "",
        *,
        files: Optional[Iterable[AttachmentSource]] = None,
        audio: Optional[AudioRecording] = None,
    ) -> SendOutcome:
        """
        Send one user turn to the agent's webhook and record the outcome.

        Raises:
            EmptyMessageError: no text and no attachments.
            AgentNotFoundError: the user owns no such agent.
            MissingEndpoint / EncodingFailure: detected before the user
                message is appended; the conversation is left unchanged.
            PersistenceError: the user message could not be saved; rolled back.
        """
        files = list(files or [])
        trimmed = (text or "").strip()
        if not trimmed and not files and audio is None:
            raise EmptyMessageError()

        agent = self._require_agent(agent_id)
        base = await self.get_or_create_conversation(agent_id)
        base_state = self.state_of(agent_id)
        inline_audio = self.audio_delivery == AUDIO_DELIVERY_INLINE

        timestamp = utcnow_iso()
        user_message_id = new_id()
        turn = PendingTurn(
            conversation_id=base.conversation_id or agent_id,
            message_id=user_message_id,
            text=trimmed,
            files=files,
            audio=audio,
        )

        # Endpoint and attachment problems surface before anything is appended.
        settings = await asyncio.to_thread(self.settings.refresh)
        target = resolve_webhook_target(agent, settings)
        encoded = encode_attachments(turn, self.reader, inline_audio=inline_audio)

        audio_storage_path: Optional[str] = None
        if audio is not None and not inline_audio and base.conversation_id:
            audio_storage_path = self.audio_uploader.build_storage_path(
                self.user.id, base.conversation_id, audio.resolved_mime_type
            )
        attachments = self._build_attachments(
            files,
            audio,
            encoded[: len(files)],
            timestamp,
            audio_storage_path=audio_storage_path,
            inline_audio=inline_audio,
        )

        user_message = ChatMessage(
            id=user_message_id,
            author="user",
            content=message_content(trimmed, has_files=bool(files), has_audio=audio is not None),
            timestamp=timestamp,
            attachments=tuple(attachments),
        )
        preview = user_message_preview(trimmed, attachments, has_audio=audio is not None)
        pending = base.with_message(user_message, preview=preview, timestamp=timestamp)
        self._store(pending, ConversationState.PENDING_SEND)

        try:
            record = await self._upsert(
                agent_id,
                metadata_update(agent, messages=pending.messages, summary=preview, last_message_at=timestamp),
            )
        except PersistenceError:
            logger.error("User message for agent %s could not be saved; rolling back", agent_id)
            self._store(base, base_state)
            raise

        pending = replace(pending, conversation_id=record.id, metadata=metadata_for(agent))
        self._store(pending, ConversationState.PENDING_SEND)

        error: Optional[str] = None
        try:
            if audio is not None and not inline_audio:
                if not pending.conversation_id:
                    raise DispatchError("Konversations-ID konnte nicht bestimmt werden.")
                upload = await self.audio_uploader.upload(
                    self.user.id, pending.conversation_id, audio, storage_path=audio_storage_path
                )
                body = upload.to_notification()
            else:
                turn.conversation_id = pending.conversation_id or agent_id
                turn.history = list(pending.messages)
                body = build_webhook_request(turn, encoded=encoded)
            response = await dispatch(target, body, self.timeout)
            content = normalize_reply(response, DEFAULT_REPLY_MESSAGE)
        except Exception as exc:  # noqa: BLE001
            if not isinstance(exc, (DispatchError, PersistenceError)):
                logger.exception("Unexpected error while dispatching to agent %s", agent_id)
            detail = str(exc) or UNKNOWN_WEBHOOK_ERROR
            prefix = AUDIO_WEBHOOK_ERROR_PREFIX if audio is not None else WEBHOOK_ERROR_PREFIX
            error = detail
            content = f"{prefix}: {detail}"

        return await self._settle(agent, pending, user_message, content, error)

    async def _settle(
        self,
        agent: AgentProfile,
        pending: AgentConversation,
        user_message: ChatMessage,
        content: str,
        error: Optional[str],
    ) -> SendOutcome:
        timestamp = utcnow_iso()
        agent_message = ChatMessage(id=new_id(), author="agent", content=content, timestamp=timestamp)
        preview = to_preview(content or DEFAULT_PREVIEW)
        settled = pending.with_message(agent_message, preview=preview, timestamp=timestamp)
        self._store(settled, ConversationState.SETTLED)

        try:
            await self._upsert(
                agent.id,
                metadata_update(agent, messages=settled.messages, summary=preview, last_message_at=timestamp),
            )
        except PersistenceError as exc:
            logger.error("Reply for agent %s could not be saved: %s", agent.id, exc)

        return SendOutcome(
            conversation=settled,
            user_message=user_message,
            agent_message=agent_message,
            error=error,
        )

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    def build_overview(self) -> List[Dict[str, Any]]:
        """Sidebar items for every agent, using cached conversations where loaded."""
        items: List[Dict[str, Any]] = []
        for agent in self.user.agents:
            conversation = self._conversations.get(agent.id)
            items.append(
                {
                    "id": agent.id,
                    "name": (agent.name or "").strip() or DEFAULT_AGENT_NAME,
                    "description": agent.description or "",
                    "avatar_url": agent.avatar_url,
                    "preview": conversation.preview if conversation and conversation.preview else DEFAULT_PREVIEW,
                    "last_updated": format_display_time(conversation.last_updated_at if conversation else None),
                }
            )
        return items


__all__ = [
    "AgentNotFoundError",
    "ConversationService",
    "ConversationState",
    "SendOutcome",
    "agent_metadata_changed",
    "conversation_from_record",
    "search_messages",
]
