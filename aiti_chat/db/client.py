"""
Database client for the agent chat core.
Handles profiles, per-agent conversations, settings, integration secrets and
audio objects in Supabase.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from ..auth.user_context import AuthUser
from ..config import CONFIG
from ..logger import log
from .models import ConversationRecord, ConversationUpdate


_CONVERSATION_COLUMNS = (
    "id, profile_id, agent_id, agent_name, agent_description, agent_avatar_url, "
    "agent_webhook_url, agent_tools, messages, summary, last_message_at, created_at, updated_at"
)


class PersistenceError(Exception):
    """Raised when the backing store rejects a read or write."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


def _first_row(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseDatabaseClient:
    """Database client for Supabase operations."""

    def __init__(self, client: Optional[Client] = None):
        if client is not None:
            self.client = client
            return

        self.supabase_url = CONFIG.supabase_url

        # Prefer service role key when available to bypass RLS for server-side operations
        service_key = CONFIG.supabase_service_role_key
        if service_key:
            self.supabase_key = service_key
            self.using_service_role = True
        else:
            self.supabase_key = CONFIG.supabase_anon_key
            self.using_service_role = False

        if not self.supabase_url or not self.supabase_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_ANON_KEY (or SUPABASE_SERVICE_ROLE_KEY) environment variables are required"
            )

        self.client = create_client(self.supabase_url, self.supabase_key)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the raw profile row for a user."""
        try:
            result = (
                self.client.table(CONFIG.profiles_table)
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Profil konnte nicht geladen werden.", cause=exc) from exc
        return _first_row(result.data)

    def get_auth_user(self, user_id: str, *, email: Optional[str] = None) -> Optional[AuthUser]:
        """Assemble an AuthUser (with agents) from the profile row."""
        row = self.get_profile(user_id)
        if not row:
            return None
        return AuthUser.from_profile_row(row, email=email)

    # ------------------------------------------------------------------
    # Agent conversations
    # ------------------------------------------------------------------

    def fetch_agent_conversations(self, user_id: str) -> List[ConversationRecord]:
        """Return all conversation rows for a user, most recently updated first."""
        try:
            result = (
                self.client.table(CONFIG.conversations_table)
                .select(_CONVERSATION_COLUMNS)
                .eq("profile_id", user_id)
                .order("updated_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Konversationen konnten nicht geladen werden.", cause=exc) from exc
        return [ConversationRecord.from_row(row) for row in (result.data or [])]

    def upsert_agent_conversation(
        self,
        user_id: str,
        agent_id: str,
        updates: ConversationUpdate,
    ) -> ConversationRecord:
        """
        Update the (user, agent) row, inserting it when no row matched.

        Only the columns set on ``updates`` are written.
        """
        timestamp = _utcnow_iso()
        columns = updates.to_columns()
        update_payload: Dict[str, Any] = {**columns, "updated_at": timestamp}
        insert_payload: Dict[str, Any] = {
            **columns,
            "profile_id": user_id,
            "agent_id": agent_id,
            "updated_at": timestamp,
        }

        table = CONFIG.conversations_table
        try:
            updated = (
                self.client.table(table)
                .update(update_payload)
                .eq("profile_id", user_id)
                .eq("agent_id", agent_id)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Konversation konnte nicht gespeichert werden.", cause=exc) from exc

        row = _first_row(updated.data)
        if row:
            return ConversationRecord.from_row(row)

        try:
            inserted = self.client.table(table).insert(insert_payload).execute()
        except Exception as exc:
            raise PersistenceError("Konversation konnte nicht gespeichert werden.", cause=exc) from exc

        row = _first_row(inserted.data)
        if not row:
            raise PersistenceError("Konversation konnte nicht gespeichert werden.")
        return ConversationRecord.from_row(row)

    def delete_agent_conversation(self, user_id: str, agent_id: str) -> None:
        try:
            (
                self.client.table(CONFIG.conversations_table)
                .delete()
                .eq("profile_id", user_id)
                .eq("agent_id", agent_id)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Konversation konnte nicht gelöscht werden.", cause=exc) from exc

    # ------------------------------------------------------------------
    # Settings helpers shared with higher-level modules
    # ------------------------------------------------------------------

    def get_user_settings_record(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the raw settings record for a user."""
        try:
            response = (
                self.client.table(CONFIG.user_settings_table)
                .select("*")
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            log(f"[db] error loading user settings record for user {user_id}: {exc}")
            return None
        return _first_row(response.data)

    def upsert_user_settings_record(self, user_id: str, *, system_settings: Dict[str, Any]) -> bool:
        """Create or update the JSON settings blob for a user."""
        payload = {"user_id": user_id, "system_settings": json.dumps(system_settings)}
        try:
            self.client.table(CONFIG.user_settings_table).upsert(payload, on_conflict="user_id").execute()
        except Exception as exc:
            log(f"[db] error upserting user settings for user {user_id}: {exc}")
            return False
        return True

    # ------------------------------------------------------------------
    # Integration secrets
    # ------------------------------------------------------------------

    def get_integration_secret(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = (
                self.client.table(CONFIG.integration_secrets_table)
                .select("*")
                .eq("profile_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Integrations-Secrets konnten nicht geladen werden.", cause=exc) from exc
        return _first_row(result.data)

    def upsert_integration_secret(self, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = (
                self.client.table(CONFIG.integration_secrets_table)
                .upsert(row, on_conflict="profile_id")
                .execute()
            )
        except Exception as exc:
            raise PersistenceError("Integrations-Secrets konnten nicht gespeichert werden.", cause=exc) from exc
        return _first_row(result.data) or dict(row)

    # ------------------------------------------------------------------
    # Audio messages
    # ------------------------------------------------------------------

    def upload_object(self, bucket: str, path: str, content: bytes, *, content_type: str) -> None:
        try:
            self.client.storage.from_(bucket).upload(
                path,
                content,
                file_options={"content-type": content_type},
            )
        except Exception as exc:
            raise PersistenceError("Audio konnte nicht hochgeladen werden.", cause=exc) from exc

    def create_signed_url(self, bucket: str, path: str, *, expires_in: int) -> str:
        try:
            signed = self.client.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as exc:
            raise PersistenceError("Signierte URL konnte nicht erstellt werden.", cause=exc) from exc
        url = (signed or {}).get("signedUrl") or (signed or {}).get("signedURL")
        if not url:
            raise PersistenceError("Signierte URL konnte nicht erstellt werden.")
        return url

    def insert_audio_message(self, row: Dict[str, Any]) -> None:
        try:
            self.client.table(CONFIG.messages_table).insert(row).execute()
        except Exception as exc:
            raise PersistenceError("Nachricht konnte nicht gespeichert werden.", cause=exc) from exc


# Global database client instance
_database_client: Optional[SupabaseDatabaseClient] = None


def get_database_client() -> SupabaseDatabaseClient:
    """Get the global database client instance."""
    global _database_client
    if _database_client is None:
        from ..config import load_envs

        load_envs()
        _database_client = SupabaseDatabaseClient()
    return _database_client


def set_database_client(client: Optional[SupabaseDatabaseClient]) -> None:
    """Replace the global client (used by tests and embedding applications)."""
    global _database_client
    _database_client = client


# Simple alias for readability
DatabaseClient = SupabaseDatabaseClient
