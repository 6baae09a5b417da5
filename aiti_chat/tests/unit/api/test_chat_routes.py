"""Tests for the agent chat routes."""

from __future__ import annotations

import asyncio
import io

import pytest
from fastapi import HTTPException, UploadFile
from starlette.datastructures import Headers

from aiti_chat.api.routes import chats as chat_routes
from aiti_chat.core.conversation_service import ConversationService


def _upload(name: str, content: bytes, content_type: str) -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture
def service(auth_user, fake_db) -> ConversationService:
    return ConversationService(auth_user, db=fake_db)


def test_list_chats_returns_overview(service, fake_db) -> None:
    response = asyncio.run(chat_routes.list_chats(service=service))

    assert [item.id for item in response.chats] == ["agent-1"]
    assert response.chats[0].name == "Research Bot"
    assert response.chats[0].preview.startswith("Hallo Test User!")
    assert ("user-123", "agent-1") in fake_db.conversations


def test_get_chat_unknown_agent_is_404(service) -> None:
    with pytest.raises(HTTPException) as exc:
        asyncio.run(chat_routes.get_chat("missing", service=service))

    assert exc.value.status_code == 404


def test_send_message_returns_outcome(service, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, {"reply": "Hi there"})

    response = asyncio.run(
        chat_routes.send_chat_message(
            "agent-1",
            text="Hallo",
            files=[_upload("notes.txt", b"hello", "text/plain")],
            audio=None,
            audio_duration_ms=0,
            service=service,
        )
    )

    assert response.succeeded is True
    assert response.agent_message.content == "Hi there"
    assert response.user_message.attachments[0].name == "notes.txt"
    assert response.user_message.attachments[0].type == "text/plain"
    assert fake_webhook.last_call["files"][0][1][0] == "notes.txt"


def test_send_message_webhook_failure_is_still_200(service, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(502, "bad gateway", content_type="text/plain")

    response = asyncio.run(
        chat_routes.send_chat_message(
            "agent-1", text="Hallo", files=None, audio=None, audio_duration_ms=0, service=service
        )
    )

    assert response.succeeded is False
    assert response.agent_message.content.startswith("Webhook Fehler:")


def test_send_empty_message_is_400(service) -> None:
    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            chat_routes.send_chat_message(
                "agent-1", text="  ", files=None, audio=None, audio_duration_ms=0, service=service
            )
        )

    assert exc.value.status_code == 400


def test_send_without_endpoint_is_409(service, fake_webhook) -> None:
    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            chat_routes.send_chat_message(
                "agent-1", text="Hallo", files=None, audio=None, audio_duration_ms=0, service=service
            )
        )

    assert exc.value.status_code == 409
    assert fake_webhook.calls == []


def test_send_audio_uploads_clip(service, fake_db, fake_webhook, global_webhook) -> None:
    response = asyncio.run(
        chat_routes.send_chat_message(
            "agent-1",
            text="",
            files=None,
            audio=_upload("clip.webm", b"webm", "audio/webm"),
            audio_duration_ms=2500,
            service=service,
        )
    )

    assert response.user_message.content == "Audio-Nachricht"
    assert response.user_message.attachments[0].kind == "audio"
    assert len(fake_db.audio_messages) == 1
    assert fake_webhook.last_call["json"]["duration_ms"] == 2500


def test_persistence_failure_maps_to_503(service, fake_db, fake_webhook, global_webhook) -> None:
    asyncio.run(service.get_or_create_conversation("agent-1"))
    fake_db.fail_upsert = lambda update: True

    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            chat_routes.send_chat_message(
                "agent-1", text="Hallo", files=None, audio=None, audio_duration_ms=0, service=service
            )
        )

    assert exc.value.status_code == 503


def test_search_chat_filters_messages(service) -> None:
    response = asyncio.run(chat_routes.search_chat("agent-1", q="HELFEN", service=service))

    assert response.query == "HELFEN"
    assert len(response.results) == 1
    assert response.results[0].author == "agent"


def test_delete_chat_removes_record(service, fake_db) -> None:
    asyncio.run(service.get_or_create_conversation("agent-1"))

    asyncio.run(chat_routes.delete_chat("agent-1", service=service))

    assert fake_db.deleted == [("user-123", "agent-1")]
    assert service.get_cached_conversation("agent-1") is None


def test_unexpected_errors_map_to_500() -> None:
    assert chat_routes._http_error(RuntimeError("boom")).status_code == 500
