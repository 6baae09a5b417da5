"""
Integration secrets (webhook URL and credentials) stored per user.

Credential columns are Fernet-encrypted at rest; callers only ever see the
decrypted ``IntegrationSecretRecord``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..auth.user_context import decrypt_token, encrypt_token
from ..logger import log
from .client import SupabaseDatabaseClient, get_database_client


AUTH_TYPES = ("none", "apiKey", "basic", "oauth")

_ENCRYPTED_COLUMNS = ("api_key", "basic_username", "basic_password", "oauth_token")


def coerce_auth_type(value: Any) -> str:
    return value if value in AUTH_TYPES else "none"


@dataclass
class IntegrationSecretRecord:
    id: str
    profile_id: str
    webhook_url: Optional[str] = None
    auth_type: str = "none"
    api_key: Optional[str] = None
    basic_username: Optional[str] = None
    basic_password: Optional[str] = None
    oauth_token: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "IntegrationSecretRecord":
        decrypted = {column: decrypt_token(row.get(column)) or None for column in _ENCRYPTED_COLUMNS}
        webhook_url = row.get("webhook_url")
        return cls(
            id=str(row.get("id") or uuid.uuid4()),
            profile_id=str(row.get("profile_id")),
            webhook_url=webhook_url if isinstance(webhook_url, str) else None,
            auth_type=coerce_auth_type(row.get("auth_type")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            **decrypted,
        )

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "id": self.id,
            "profile_id": self.profile_id,
            "webhook_url": self.webhook_url,
            "auth_type": self.auth_type,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        for column in _ENCRYPTED_COLUMNS:
            value = getattr(self, column)
            row[column] = encrypt_token(value) if value else None
        return row


def fetch_integration_secret(
    profile_id: str,
    db: Optional[SupabaseDatabaseClient] = None,
) -> Optional[IntegrationSecretRecord]:
    """Load and decrypt the secret record for a user, or ``None``."""
    db = db or get_database_client()
    row = db.get_integration_secret(profile_id)
    if not row:
        return None
    return IntegrationSecretRecord.from_row(row)


def upsert_integration_secret(
    profile_id: str,
    *,
    webhook_url: str,
    auth_type: str,
    api_key: Optional[str] = None,
    basic_username: Optional[str] = None,
    basic_password: Optional[str] = None,
    oauth_token: Optional[str] = None,
    db: Optional[SupabaseDatabaseClient] = None,
) -> IntegrationSecretRecord:
    """
    Store the credentials for the selected auth mode.

    Credentials belonging to other modes are cleared so switching modes never
    leaves a stale secret behind.
    """
    db = db or get_database_client()
    auth_type = coerce_auth_type(auth_type)
    timestamp = datetime.now(timezone.utc).isoformat()
    existing = fetch_integration_secret(profile_id, db=db)

    record = IntegrationSecretRecord(
        id=existing.id if existing else str(uuid.uuid4()),
        profile_id=profile_id,
        webhook_url=(webhook_url or "").strip(),
        auth_type=auth_type,
        api_key=api_key if auth_type == "apiKey" else None,
        basic_username=basic_username if auth_type == "basic" else None,
        basic_password=basic_password if auth_type == "basic" else None,
        oauth_token=oauth_token if auth_type == "oauth" else None,
        created_at=existing.created_at if existing and existing.created_at else timestamp,
        updated_at=timestamp,
    )
    db.upsert_integration_secret(record.to_row())
    log(f"[secrets] stored integration secret (auth_type={auth_type}) for user {profile_id}")
    return record


__all__ = [
    "AUTH_TYPES",
    "IntegrationSecretRecord",
    "coerce_auth_type",
    "fetch_integration_secret",
    "upsert_integration_secret",
]
