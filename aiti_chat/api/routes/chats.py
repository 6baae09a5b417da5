"""Agent chat endpoints: overview, history, search, send and delete."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from ...core.conversation_service import AgentNotFoundError, ConversationService, search_messages
from ...db.client import PersistenceError
from ...services.webhook.attachments import AttachmentSource, AudioRecording
from ...services.webhook.errors import EmptyMessageError, EncodingFailure, MissingEndpoint
from ..dependencies import get_conversation_service
from ..schemas import (
    ChatOverviewItem,
    ChatOverviewResponse,
    ConversationResponse,
    MessageResponse,
    SearchResponse,
    SendMessageResponse,
)

router = APIRouter()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, AgentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, EmptyMessageError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, MissingEndpoint):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, EncodingFailure):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/chats", response_model=ChatOverviewResponse)
async def list_chats(service: ConversationService = Depends(get_conversation_service)) -> ChatOverviewResponse:
    """Sync every agent conversation and return the sidebar overview."""

    try:
        await service.load_conversations()
    except PersistenceError as exc:
        raise _http_error(exc) from exc
    return ChatOverviewResponse(chats=[ChatOverviewItem(**item) for item in service.build_overview()])


@router.get("/chats/{agent_id}", response_model=ConversationResponse)
async def get_chat(
    agent_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationResponse:
    try:
        conversation = await service.get_or_create_conversation(agent_id)
    except (AgentNotFoundError, PersistenceError) as exc:
        raise _http_error(exc) from exc
    return ConversationResponse.from_conversation(conversation)


@router.get("/chats/{agent_id}/search", response_model=SearchResponse)
async def search_chat(
    agent_id: str,
    q: str = Query(default=""),
    service: ConversationService = Depends(get_conversation_service),
) -> SearchResponse:
    try:
        conversation = await service.get_or_create_conversation(agent_id)
    except (AgentNotFoundError, PersistenceError) as exc:
        raise _http_error(exc) from exc
    results = search_messages(conversation, q)
    return SearchResponse(
        agent_id=agent_id,
        query=q,
        results=[MessageResponse.from_message(message) for message in results],
    )


@router.post("/chats/{agent_id}/messages", response_model=SendMessageResponse)
async def send_chat_message(
    agent_id: str,
    text: str = Form(default=""),
    files: Optional[List[UploadFile]] = File(default=None),
    audio: Optional[UploadFile] = File(default=None),
    audio_duration_ms: float = Form(default=0),
    service: ConversationService = Depends(get_conversation_service),
) -> SendMessageResponse:
    """Send a turn to the agent's webhook; failures after dispatch come back as an agent message."""

    sources = []
    for upload in files or []:
        sources.append(
            AttachmentSource(
                name=upload.filename or "upload.bin",
                data=await upload.read(),
                mime_type=upload.content_type,
            )
        )

    recording = None
    if audio is not None:
        recording = AudioRecording(
            data=await audio.read(),
            mime_type=audio.content_type or "",
            duration_ms=audio_duration_ms,
        )

    try:
        outcome = await service.send_message(agent_id, text, files=sources, audio=recording)
    except (AgentNotFoundError, EmptyMessageError, MissingEndpoint, EncodingFailure, PersistenceError) as exc:
        raise _http_error(exc) from exc
    return SendMessageResponse.from_outcome(outcome)


@router.delete("/chats/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    agent_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> None:
    try:
        await service.delete_agent_conversation(agent_id)
    except PersistenceError as exc:
        raise _http_error(exc) from exc
