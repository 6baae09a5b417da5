"""Tests for the conversation reconciler and the send flow."""

from __future__ import annotations

import asyncio

import pytest

from aiti_chat.auth import AgentProfile, AuthUser
from aiti_chat.core.conversation_service import (
    AgentNotFoundError,
    ConversationService,
    ConversationState,
    search_messages,
)
from aiti_chat.db.client import PersistenceError
from aiti_chat.db.secrets import upsert_integration_secret
from aiti_chat.services.webhook.attachments import AttachmentSource, AudioRecording
from aiti_chat.services.webhook.errors import EmptyMessageError, EncodingFailure, MissingEndpoint
from aiti_chat.services.webhook.normalizer import DEFAULT_REPLY_MESSAGE


def _service(user, fake_db, **kwargs) -> ConversationService:
    return ConversationService(user, db=fake_db, **kwargs)


def _message_writes(fake_db):
    return [update for _, _, update in fake_db.upserts if update.touches_messages()]


def test_first_load_creates_greeting_and_persists(auth_user, fake_db) -> None:
    service = _service(auth_user, fake_db)

    conversation = asyncio.run(service.get_or_create_conversation("agent-1"))

    assert [message.author for message in conversation.messages] == ["agent"]
    assert conversation.messages[0].content == "Hallo Test User! Wie kann ich dir heute helfen?"
    assert conversation.conversation_id == fake_db.conversations[("user-123", "agent-1")]["id"]
    assert service.state_of("agent-1") is ConversationState.LOADED
    assert len(fake_db.upserts) == 1


def test_greeting_without_user_name(fake_db) -> None:
    user = AuthUser(id="user-123", name="  ", email=None, agents=[AgentProfile(id="agent-1", name="Bot")])

    conversation = asyncio.run(_service(user, fake_db).get_or_create_conversation("agent-1"))

    assert conversation.messages[0].content == "Hallo! Wie kann ich dir heute helfen?"


def test_greeting_persist_failure_keeps_local_conversation(auth_user, fake_db) -> None:
    fake_db.fail_upsert = lambda update: True
    service = _service(auth_user, fake_db)

    conversation = asyncio.run(service.get_or_create_conversation("agent-1"))

    assert conversation.conversation_id is None
    assert len(conversation.messages) == 1


def test_unknown_agent_raises(auth_user, fake_db) -> None:
    with pytest.raises(AgentNotFoundError):
        asyncio.run(_service(auth_user, fake_db).get_or_create_conversation("nope"))


def test_scenario_a_successful_reply(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, {"reply": "Hi there"})
    service = _service(auth_user, fake_db)

    outcome = asyncio.run(service.send_message("agent-1", "Hallo"))

    contents = [(message.author, message.content) for message in outcome.conversation.messages]
    assert contents[-2:] == [("user", "Hallo"), ("agent", "Hi there")]
    assert outcome.conversation.preview == "Hi there"
    assert outcome.succeeded is True
    assert service.state_of("agent-1") is ConversationState.SETTLED
    assert fake_webhook.last_call["url"] == global_webhook

    payload = fake_webhook.last_call["json"]
    assert payload["message"] == "Hallo"
    assert payload["messageId"] == outcome.user_message.id
    assert payload["history"][-1]["content"] == "Hallo"

    stored = fake_db.conversations[("user-123", "agent-1")]
    assert [message["content"] for message in stored["messages"]][-2:] == ["Hallo", "Hi there"]
    assert stored["summary"] == "Hi there"


def test_scenario_b_server_error_becomes_agent_message(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(500, "boom", content_type="text/plain")
    service = _service(auth_user, fake_db)

    outcome = asyncio.run(service.send_message("agent-1", "Hallo"))

    error_message = outcome.conversation.messages[-1]
    assert outcome.conversation.messages[-2].content == "Hallo"
    assert error_message.author == "agent"
    assert error_message.content.startswith("Webhook Fehler:")
    assert "500" in error_message.content and "boom" in error_message.content
    assert outcome.succeeded is False
    assert service.state_of("agent-1") is ConversationState.SETTLED


def test_scenario_c_file_only_turn(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, "", content_type="text/plain")
    service = _service(auth_user, fake_db)

    outcome = asyncio.run(
        service.send_message("agent-1", "", files=[AttachmentSource(name="plan.pdf", data=b"%PDF")])
    )

    call = fake_webhook.last_call
    assert "json" not in call
    assert call["data"]["message"] == "Datei gesendet."
    assert call["files"][0][0] == "attachment_1"
    assert outcome.user_message.content == "Datei gesendet."
    assert outcome.user_message.attachments[0].url.startswith("data:application/pdf;base64,")
    assert outcome.agent_message.content == DEFAULT_REPLY_MESSAGE


def test_scenario_d_agent_url_wins(fake_db, fake_webhook, global_webhook) -> None:
    user = AuthUser(
        id="user-123",
        name="Test User",
        email=None,
        agents=[AgentProfile(id="agent-1", name="Bot", webhook_url="https://hooks.example.com/agent")],
    )

    asyncio.run(_service(user, fake_db).send_message("agent-1", "Hallo"))

    assert fake_webhook.last_call["url"] == "https://hooks.example.com/agent"


def test_scenario_e_basic_auth_header(auth_user, fake_db, fake_webhook) -> None:
    upsert_integration_secret(
        "user-123",
        webhook_url="https://hooks.example.com/global",
        auth_type="basic",
        basic_username="u",
        basic_password="p",
        db=fake_db,
    )

    asyncio.run(_service(auth_user, fake_db).send_message("agent-1", "Hallo"))

    assert fake_webhook.last_call["headers"]["Authorization"] == "Basic dTpw"


def test_empty_turn_is_refused(auth_user, fake_db, fake_webhook) -> None:
    service = _service(auth_user, fake_db)

    with pytest.raises(EmptyMessageError):
        asyncio.run(service.send_message("agent-1", "   "))

    assert fake_webhook.calls == []
    assert fake_db.upserts == []


def test_missing_endpoint_leaves_conversation_unchanged(auth_user, fake_db, fake_webhook) -> None:
    service = _service(auth_user, fake_db)
    before = asyncio.run(service.get_or_create_conversation("agent-1"))

    with pytest.raises(MissingEndpoint):
        asyncio.run(service.send_message("agent-1", "Hallo"))

    assert service.get_cached_conversation("agent-1").messages == before.messages
    assert len(_message_writes(fake_db)) == 1
    assert fake_webhook.calls == []


def test_encoding_failure_leaves_conversation_unchanged(auth_user, fake_db, fake_webhook, global_webhook, tmp_path) -> None:
    service = _service(auth_user, fake_db)
    before = asyncio.run(service.get_or_create_conversation("agent-1"))

    with pytest.raises(EncodingFailure):
        asyncio.run(
            service.send_message("agent-1", "", files=[AttachmentSource(name="x.bin", data=tmp_path / "missing")])
        )

    assert service.get_cached_conversation("agent-1").messages == before.messages
    assert fake_webhook.calls == []


def test_persist_failure_rolls_back_and_skips_dispatch(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    service = _service(auth_user, fake_db)
    before = asyncio.run(service.get_or_create_conversation("agent-1"))
    fake_db.fail_upsert = lambda update: True

    with pytest.raises(PersistenceError):
        asyncio.run(service.send_message("agent-1", "Hallo"))

    assert service.get_cached_conversation("agent-1").messages == before.messages
    assert service.is_pending("agent-1") is False
    assert fake_webhook.calls == []


def test_settle_persist_failure_is_logged_not_raised(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, {"reply": "Hi there"})
    service = _service(auth_user, fake_db)
    asyncio.run(service.get_or_create_conversation("agent-1"))
    fake_db.fail_upsert = lambda update: update.touches_messages() and any(
        m.content == "Hi there" for m in update.messages
    )

    outcome = asyncio.run(service.send_message("agent-1", "Hallo"))

    assert outcome.agent_message.content == "Hi there"
    assert service.get_cached_conversation("agent-1").messages[-1].content == "Hi there"


def test_audio_upload_path_sends_notification(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, {"message": "Audio erhalten"})
    service = _service(auth_user, fake_db, audio_delivery="upload")

    outcome = asyncio.run(
        service.send_message(
            "agent-1",
            audio=AudioRecording(data=b"webm-bytes", mime_type="audio/webm", duration_ms=1500, waveform=[10, 20]),
        )
    )

    payload = fake_webhook.last_call["json"]
    conversation_id = fake_db.conversations[("user-123", "agent-1")]["id"]
    assert payload["conversation_id"] == conversation_id
    assert payload["profile_id"] == "user-123"
    assert payload["storage_path"].startswith(f"user-123/{conversation_id}/")
    assert payload["duration_ms"] == 1500
    assert payload["waveform"] == [10, 20]
    assert outcome.user_message.content == "Audio-Nachricht"
    assert outcome.user_message.attachments[0].kind == "audio"
    assert outcome.user_message.attachments[0].duration_seconds == 1.5
    assert outcome.agent_message.content == "Audio erhalten"
    assert outcome.conversation.messages[-2].content == "Audio-Nachricht"


def test_uploaded_audio_is_stored_by_reference(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    service = _service(auth_user, fake_db, audio_delivery="upload")

    outcome = asyncio.run(service.send_message("agent-1", audio=AudioRecording(data=b"webm-bytes")))

    attachment = outcome.user_message.attachments[0]
    assert attachment.url is None
    assert attachment.storage_path == fake_webhook.last_call["json"]["storage_path"]
    assert ("audio", attachment.storage_path) in fake_db.objects
    stored = fake_db.conversations[("user-123", "agent-1")]["messages"][-2]["attachments"][0]
    assert stored["storagePath"] == attachment.storage_path
    assert "url" not in stored


def test_audio_upload_failure_becomes_audio_error_message(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    def failing_upload(*args, **kwargs):
        raise PersistenceError("Audio konnte nicht hochgeladen werden.")

    fake_db.upload_object = failing_upload
    service = _service(auth_user, fake_db, audio_delivery="upload")

    outcome = asyncio.run(service.send_message("agent-1", audio=AudioRecording(data=b"x")))

    assert outcome.agent_message.content == "Audio-Webhook Fehler: Audio konnte nicht hochgeladen werden."
    assert fake_webhook.calls == []


def test_inline_audio_goes_into_multipart(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    service = _service(auth_user, fake_db, audio_delivery="inline")

    asyncio.run(service.send_message("agent-1", "Hör mal", audio=AudioRecording(data=b"x", mime_type="audio/ogg")))

    call = fake_webhook.last_call
    assert [part[0] for part in call["files"]] == ["audio"]
    assert call["data"]["message"] == "Hör mal"
    assert fake_db.objects == {}


def test_metadata_reconciliation_is_idempotent(fake_db) -> None:
    fake_db.seed_conversation(
        "user-123",
        "agent-1",
        agent_name="Old name",
        agent_tools=["a", "b"],
        messages=[{"id": "1", "author": "agent", "content": "Hallo", "timestamp": "t"}],
    )
    user = AuthUser(
        id="user-123",
        name="Test",
        email=None,
        agents=[AgentProfile(id="agent-1", name="New name", tools=["a", "b"])],
    )
    service = _service(user, fake_db)

    conversation = asyncio.run(service.get_or_create_conversation("agent-1"))
    writes_after_load = len(fake_db.upserts)
    changed_again = asyncio.run(service.reconcile_agent_metadata("agent-1"))

    assert writes_after_load == 1
    assert fake_db.upserts[0][2].touches_messages() is False
    assert conversation.name == "New name"
    assert changed_again is False
    assert len(fake_db.upserts) == 1
    assert fake_db.conversations[("user-123", "agent-1")]["agent_name"] == "New name"


def test_scenario_f_tool_reordering_is_not_drift(fake_db) -> None:
    fake_db.seed_conversation(
        "user-123",
        "agent-1",
        agent_name="Bot",
        agent_description="",
        agent_tools=["a", "b"],
        messages=[{"id": "1", "author": "agent", "content": "Hallo", "timestamp": "t"}],
    )
    user = AuthUser(
        id="user-123",
        name="Test",
        email=None,
        agents=[AgentProfile(id="agent-1", name="Bot", tools=["b", "a"])],
    )

    asyncio.run(_service(user, fake_db).get_or_create_conversation("agent-1"))

    assert fake_db.upserts == []


def test_load_conversations_creates_reconciles_and_deletes_orphans(fake_db) -> None:
    fake_db.seed_conversation(
        "user-123",
        "agent-1",
        agent_name="Bot",
        agent_description="",
        messages=[{"id": "1", "author": "agent", "content": "Alt", "timestamp": "t"}],
    )
    fake_db.seed_conversation("user-123", "gone", agent_name="Removed")
    user = AuthUser(
        id="user-123",
        name="Test",
        email=None,
        agents=[AgentProfile(id="agent-1", name="Bot"), AgentProfile(id="agent-2", name="Neu")],
    )
    service = _service(user, fake_db)

    conversations = asyncio.run(service.load_conversations())

    assert [conversation.agent_id for conversation in conversations] == ["agent-1", "agent-2"]
    assert conversations[0].messages[0].content == "Alt"
    assert conversations[1].messages[0].content.startswith("Hallo Test!")
    assert fake_db.deleted == [("user-123", "gone")]
    assert ("user-123", "gone") not in fake_db.conversations


def test_load_conversations_survives_individual_failures(fake_db) -> None:
    fake_db.seed_conversation("user-123", "gone")

    def failing_delete(user_id, agent_id):
        raise PersistenceError("Konversation konnte nicht gelöscht werden.")

    fake_db.delete_agent_conversation = failing_delete
    user = AuthUser(id="user-123", name="Test", email=None, agents=[AgentProfile(id="agent-1", name="Bot")])

    conversations = asyncio.run(_service(user, fake_db).load_conversations())

    assert [conversation.agent_id for conversation in conversations] == ["agent-1"]


def test_delete_agent_conversation_clears_local_state(auth_user, fake_db) -> None:
    service = _service(auth_user, fake_db)
    asyncio.run(service.get_or_create_conversation("agent-1"))

    asyncio.run(service.delete_agent_conversation("agent-1"))

    assert service.get_cached_conversation("agent-1") is None
    assert service.state_of("agent-1") is ConversationState.ABSENT
    assert ("user-123", "agent-1") not in fake_db.conversations


def test_search_and_overview(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    fake_webhook.respond(200, {"reply": "Die Antwort"})
    service = _service(auth_user, fake_db)
    assert service.build_overview()[0]["preview"] == "Beschreibe dein nächstes Projekt und starte den AI Agent."

    outcome = asyncio.run(service.send_message("agent-1", "Frage zu PYTHON"))

    assert [message.content for message in search_messages(outcome.conversation, "python")] == ["Frage zu PYTHON"]
    assert len(search_messages(outcome.conversation, "  ")) == len(outcome.conversation.messages)
    overview = service.build_overview()
    assert overview[0]["name"] == "Research Bot"
    assert overview[0]["preview"] == "Die Antwort"


def test_each_send_uses_current_integration_settings(auth_user, fake_db, fake_webhook, global_webhook) -> None:
    service = _service(auth_user, fake_db)
    asyncio.run(service.send_message("agent-1", "Erste"))

    upsert_integration_secret(
        "user-123",
        webhook_url="https://hooks.example.com/rotated",
        auth_type="oauth",
        oauth_token="tok",
        db=fake_db,
    )
    asyncio.run(service.send_message("agent-1", "Zweite"))

    assert fake_webhook.calls[0]["url"] == global_webhook
    assert fake_webhook.last_call["url"] == "https://hooks.example.com/rotated"
    assert fake_webhook.last_call["headers"]["Authorization"] == "Bearer tok"
