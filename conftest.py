"""Repository-wide pytest fixtures."""

from __future__ import annotations

import json
from collections.abc import Generator
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from cryptography.fernet import Fernet

from aiti_chat.auth import AgentProfile, AuthUser
from aiti_chat.config import reload_config
from aiti_chat.db.client import PersistenceError
from aiti_chat.db.models import ConversationRecord, ConversationUpdate


@pytest.fixture(autouse=True)
def _set_default_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against a predictable, offline configuration."""

    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.setenv("AUDIO_DELIVERY", "upload")
    monkeypatch.setenv("WEBHOOK_TIMEOUT_SECONDS", "20")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


class FakeDatabase:
    """In-memory stand-in for ``SupabaseDatabaseClient``."""

    def __init__(self) -> None:
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.conversations: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.settings_records: Dict[str, Dict[str, Any]] = {}
        self.secrets: Dict[str, Dict[str, Any]] = {}
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.audio_messages: List[Dict[str, Any]] = []
        self.upserts: List[Tuple[str, str, ConversationUpdate]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.fail_upsert: Optional[Callable[[ConversationUpdate], bool]] = None
        self._counter = 0

    # conversations -----------------------------------------------------
    def seed_conversation(self, user_id: str, agent_id: str, **columns: Any) -> Dict[str, Any]:
        self._counter += 1
        row = {
            "id": columns.pop("id", f"conv-{self._counter}"),
            "profile_id": user_id,
            "agent_id": agent_id,
            "messages": [],
            "agent_tools": [],
            "created_at": "2024-01-01T09:00:00+00:00",
            "updated_at": "2024-01-01T09:00:00+00:00",
        }
        row.update(columns)
        self.conversations[(user_id, agent_id)] = row
        return row

    def fetch_agent_conversations(self, user_id: str) -> List[ConversationRecord]:
        rows = [row for (owner, _), row in self.conversations.items() if owner == user_id]
        return [ConversationRecord.from_row(dict(row)) for row in rows]

    def upsert_agent_conversation(
        self, user_id: str, agent_id: str, updates: ConversationUpdate
    ) -> ConversationRecord:
        self.upserts.append((user_id, agent_id, updates))
        if self.fail_upsert is not None and self.fail_upsert(updates):
            raise PersistenceError("Konversation konnte nicht gespeichert werden.")
        row = self.conversations.get((user_id, agent_id))
        if row is None:
            row = self.seed_conversation(user_id, agent_id)
        row.update(updates.to_columns())
        row["updated_at"] = "2024-01-01T10:00:00+00:00"
        return ConversationRecord.from_row(dict(row))

    def delete_agent_conversation(self, user_id: str, agent_id: str) -> None:
        self.deleted.append((user_id, agent_id))
        self.conversations.pop((user_id, agent_id), None)

    # profiles ----------------------------------------------------------
    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.profiles.get(user_id)

    def get_auth_user(self, user_id: str, *, email: Optional[str] = None) -> Optional[AuthUser]:
        row = self.get_profile(user_id)
        return AuthUser.from_profile_row(row, email=email) if row else None

    # settings and secrets ----------------------------------------------
    def get_user_settings_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.settings_records.get(user_id)

    def upsert_user_settings_record(self, user_id: str, *, system_settings: Dict[str, Any]) -> bool:
        self.settings_records[user_id] = {"user_id": user_id, "system_settings": json.dumps(system_settings)}
        return True

    def get_integration_secret(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.secrets.get(user_id)

    def upsert_integration_secret(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self.secrets[row["profile_id"]] = dict(row)
        return dict(row)

    # storage -----------------------------------------------------------
    def upload_object(self, bucket: str, path: str, content: bytes, *, content_type: str) -> None:
        self.objects[(bucket, path)] = (content, content_type)

    def create_signed_url(self, bucket: str, path: str, *, expires_in: int) -> str:
        return f"https://storage.test/{bucket}/{path}?ttl={expires_in}"

    def insert_audio_message(self, row: Dict[str, Any]) -> None:
        self.audio_messages.append(row)


class FakeWebhook:
    """Replaces the ``requests`` module used by the dispatcher."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.status = 200
        self.body = ""
        self.content_type = "application/json"
        self.error: Optional[BaseException] = None

    def respond(self, status: int = 200, body: Any = "", content_type: str = "application/json") -> None:
        self.status = status
        self.body = body if isinstance(body, str) else json.dumps(body)
        self.content_type = content_type

    def post(self, url: str, **kwargs: Any) -> SimpleNamespace:
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            status_code=self.status,
            text=self.body,
            headers={"Content-Type": self.content_type},
        )

    @property
    def last_call(self) -> Dict[str, Any]:
        return self.calls[-1]


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_webhook(monkeypatch: pytest.MonkeyPatch) -> FakeWebhook:
    from aiti_chat.services.webhook import dispatcher

    webhook = FakeWebhook()
    monkeypatch.setattr(dispatcher, "requests", SimpleNamespace(post=webhook.post))
    return webhook


@pytest.fixture
def auth_user() -> AuthUser:
    """A user with one agent that relies on the global webhook URL."""

    return AuthUser(
        id="user-123",
        name="Test User",
        email="test@example.com",
        agents=[
            AgentProfile(
                id="agent-1",
                name="Research Bot",
                description="Finds things",
                tools=["search", "browse"],
            )
        ],
    )


@pytest.fixture
def global_webhook(fake_db: FakeDatabase) -> str:
    """Store a global webhook URL (no auth) for ``user-123``."""

    from aiti_chat.db.secrets import upsert_integration_secret

    url = "https://hooks.example.com/global"
    upsert_integration_secret("user-123", webhook_url=url, auth_type="none", db=fake_db)
    return url
