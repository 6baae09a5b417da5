"""
User and Agent Profiles

This module provides the AuthUser and AgentProfile dataclasses that describe
who is chatting and which webhook-backed agents they own, plus the token
encryption helpers used to store integration secrets at rest.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from ..logger import log


USER_ROLES = ("user", "admin")
DEFAULT_AGENT_NAME = "AITI Agent"


def normalize_tools(tools: Any) -> List[str]:
    """Trim, drop empty entries and de-duplicate while keeping first-seen order."""
    if not isinstance(tools, (list, tuple)):
        return []

    normalized: List[str] = []
    seen = set()
    for entry in tools:
        if not isinstance(entry, str):
            continue
        candidate = entry.strip()
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        normalized.append(candidate)
    return normalized


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


@dataclass
class AgentProfile:
    """A webhook-backed agent owned by exactly one user."""

    id: str
    name: str
    description: str = ""
    avatar_url: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    webhook_url: Optional[str] = None

    def __post_init__(self) -> None:
        self.tools = normalize_tools(self.tools)
        self.description = self.description or ""
        self.webhook_url = _optional_text(self.webhook_url)

    @property
    def display_name(self) -> str:
        name = (self.name or "").strip()
        return name or DEFAULT_AGENT_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "avatar_url": self.avatar_url,
            "tools": list(self.tools),
            "webhook_url": self.webhook_url or "",
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentProfile":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            avatar_url=data.get("avatar_url") or data.get("avatarUrl"),
            tools=data.get("tools") or [],
            webhook_url=data.get("webhook_url") or data.get("webhookUrl"),
        )


@dataclass
class AuthUser:
    """
    The authenticated user and the agents they own.

    Created at registration and mutated by profile edits and admin activation
    toggles elsewhere; this core only reads it.
    """

    id: str
    name: str
    email: Optional[str]
    role: str = "user"
    is_active: bool = True
    avatar_url: Optional[str] = None
    agents: List[AgentProfile] = field(default_factory=list)
    bio: Optional[str] = None
    email_verified: bool = False
    has_remote_profile: bool = False

    def __post_init__(self) -> None:
        if self.role not in USER_ROLES:
            self.role = "user"

    @property
    def display_name(self) -> str:
        return (self.name or "").strip()

    def get_agent(self, agent_id: str) -> Optional[AgentProfile]:
        return next((agent for agent in self.agents if agent.id == agent_id), None)

    def agent_ids(self) -> List[str]:
        return [agent.id for agent in self.agents]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "avatar_url": self.avatar_url,
            "agents": [agent.to_dict() for agent in self.agents],
            "bio": self.bio,
            "email_verified": self.email_verified,
            "has_remote_profile": self.has_remote_profile,
        }

    @classmethod
    def from_profile_row(cls, row: Dict[str, Any], *, email: Optional[str] = None) -> "AuthUser":
        """Build a user from a ``profiles`` row whose ``agents`` column holds JSON."""
        raw_agents: Iterable[Any] = row.get("agents") or []
        agents = [
            AgentProfile.from_dict(entry)
            for entry in raw_agents
            if isinstance(entry, dict) and entry.get("id")
        ]
        return cls(
            id=str(row.get("id")),
            name=str(row.get("name") or row.get("display_name") or ""),
            email=row.get("email") or email,
            role=str(row.get("role") or "user"),
            is_active=bool(row.get("is_active", True)),
            avatar_url=row.get("avatar_url"),
            agents=agents,
            bio=row.get("bio"),
            email_verified=bool(row.get("email_verified", False)),
            has_remote_profile=True,
        )


# Encryption utilities for integration secret storage
def get_encryption_key() -> bytes:
    """
    Return the Fernet key used for integration secrets.

    The key comes from ``ENCRYPTION_KEY``. Without it a throwaway key is
    generated, which means secrets written in this process cannot be read back
    after a restart.
    """
    key = os.getenv("ENCRYPTION_KEY")
    if key:
        return key.encode()

    new_key = Fernet.generate_key()
    os.environ["ENCRYPTION_KEY"] = new_key.decode()
    log("[auth] ENCRYPTION_KEY not set; generated an ephemeral key for this process")
    return new_key


def encrypt_token(token: Optional[str]) -> str:
    """Encrypt a sensitive token for storage."""
    if not token:
        return ""

    fernet = Fernet(get_encryption_key())
    return fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: Optional[str]) -> str:
    """Decrypt a stored token; unreadable values decrypt to an empty string."""
    if not encrypted_token:
        return ""

    fernet = Fernet(get_encryption_key())
    try:
        return fernet.decrypt(encrypted_token.encode()).decode()
    except (InvalidToken, ValueError) as exc:
        log(f"[auth] failed to decrypt token: {type(exc).__name__}")
        return ""
