"""
JSON-based agent settings for the chat core.

Non-secret preferences live inside the user's ``system_settings`` JSON blob
under ``agent_preferences``. Webhook credentials come from the integration
secret store and are merged in at use time; they never appear in the public
snapshot returned to clients.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..logger import log
from .client import SupabaseDatabaseClient, get_database_client
from .secrets import (
    IntegrationSecretRecord,
    coerce_auth_type,
    fetch_integration_secret,
    upsert_integration_secret,
)

AGENT_SETTINGS_KEY = "agent_preferences"

# Webhook URL and auth mode are owned by the integration secret record.
DEFAULT_AGENT_SETTINGS: Dict[str, Any] = {
    "profile_name": "",
    "profile_role": "",
    "profile_avatar_image": None,
    "agent_avatar_image": None,
    "color_scheme": "dark",
}

_VALID_COLOR_SCHEMES = {"light", "dark"}
_SECRET_FIELDS = ("api_key", "basic_auth_username", "basic_auth_password", "oauth_token")


@dataclass
class AgentSettings:
    """Effective webhook and profile settings for one user."""

    webhook_url: str = ""
    auth_type: str = "none"
    api_key: Optional[str] = None
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None
    oauth_token: Optional[str] = None
    profile_name: str = ""
    profile_role: str = ""
    profile_avatar_image: Optional[str] = None
    agent_avatar_image: Optional[str] = None
    color_scheme: str = "dark"

    def to_public_dict(self) -> Dict[str, Any]:
        """Snapshot safe to cache or return to clients (no credentials)."""
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name not in _SECRET_FIELDS
        }

    @classmethod
    def from_preferences(cls, data: Any) -> "AgentSettings":
        return cls(**_sanitize_agent_settings(data))


def _deserialize_settings(value: Any) -> Dict[str, Any]:
    """Normalize JSON/text payloads from the database into dicts."""
    if not value:
        return {}
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            return parsed if isinstance(parsed, dict) else {}
        except json.JSONDecodeError:
            return {}
    return {}


def _sanitize_agent_settings(raw_settings: Any) -> Dict[str, Any]:
    """Return a sanitized preferences payload with defaults applied."""

    sanitized = DEFAULT_AGENT_SETTINGS.copy()
    if isinstance(raw_settings, dict):
        sanitized.update(_filter_agent_settings_update(raw_settings))
    return sanitized


def _filter_agent_settings_update(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Filter an incoming update to recognised, well-typed preference keys."""

    permitted: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in DEFAULT_AGENT_SETTINGS:
            continue

        if key == "color_scheme":
            if isinstance(value, str) and value in _VALID_COLOR_SCHEMES:
                permitted[key] = value
            continue

        if key in {"profile_avatar_image", "agent_avatar_image"}:
            if value is None or isinstance(value, str):
                permitted[key] = value
            continue

        if isinstance(value, str):
            permitted[key] = value.strip()

    return permitted


def load_user_system_settings(user_id: str, db: Optional[SupabaseDatabaseClient] = None) -> Dict[str, Any]:
    db = db or get_database_client()
    record = db.get_user_settings_record(user_id)
    return _deserialize_settings(record.get("system_settings")) if record else {}


def save_user_system_settings(
    user_id: str,
    settings: Dict[str, Any],
    db: Optional[SupabaseDatabaseClient] = None,
) -> bool:
    db = db or get_database_client()
    success = db.upsert_user_settings_record(user_id, system_settings=settings)
    if success:
        log(f"[settings] saved {len(settings)} system settings for user {user_id}")
    return success


def load_agent_settings(user_id: str, db: Optional[SupabaseDatabaseClient] = None) -> AgentSettings:
    """Load the public agent preferences for a user, applying defaults."""
    system_settings = load_user_system_settings(user_id, db=db)
    return AgentSettings.from_preferences(system_settings.get(AGENT_SETTINGS_KEY, {}))


def save_agent_settings(
    user_id: str,
    updates: Dict[str, Any],
    db: Optional[SupabaseDatabaseClient] = None,
) -> Tuple[bool, Dict[str, Any]]:
    """Persist preference updates and return the resulting preferences."""
    filtered_updates = _filter_agent_settings_update(updates or {})
    system_settings = load_user_system_settings(user_id, db=db)
    current = _sanitize_agent_settings(system_settings.get(AGENT_SETTINGS_KEY, {}))
    current.update(filtered_updates)

    system_settings[AGENT_SETTINGS_KEY] = current
    success = save_user_system_settings(user_id, system_settings, db=db)
    return success, current.copy()


def apply_integration_secret(
    settings: AgentSettings,
    record: Optional[IntegrationSecretRecord],
) -> AgentSettings:
    """Merge stored credentials into ``settings``; only the active mode's secret is kept."""
    if record is None:
        return replace(
            settings,
            api_key=None,
            basic_auth_username=None,
            basic_auth_password=None,
            oauth_token=None,
        )

    auth_type = coerce_auth_type(record.auth_type)
    return replace(
        settings,
        webhook_url=(record.webhook_url or "").strip(),
        auth_type=auth_type,
        api_key=record.api_key if auth_type == "apiKey" else None,
        basic_auth_username=record.basic_username if auth_type == "basic" else None,
        basic_auth_password=record.basic_password if auth_type == "basic" else None,
        oauth_token=record.oauth_token if auth_type == "oauth" else None,
    )


SettingsListener = Callable[[AgentSettings], None]


class SettingsProvider:
    """
    Serves the effective settings for one user.

    ``refresh()`` reads preferences and secrets from the store; listeners
    registered with ``subscribe`` are told whenever the settings change and
    detach with the function ``subscribe`` returns.
    """

    def __init__(self, user_id: str, db: Optional[SupabaseDatabaseClient] = None) -> None:
        self.user_id = user_id
        self._db = db
        self._settings = AgentSettings()
        self._loaded = False
        self._listeners: List[SettingsListener] = []

    @property
    def db(self) -> SupabaseDatabaseClient:
        if self._db is None:
            self._db = get_database_client()
        return self._db

    def current(self) -> AgentSettings:
        if not self._loaded:
            self.refresh()
        return self._settings

    def refresh(self) -> AgentSettings:
        preferences = load_agent_settings(self.user_id, db=self.db)
        record = fetch_integration_secret(self.user_id, db=self.db)
        self._set(apply_integration_secret(preferences, record))
        return self._settings

    def save(self, updates: Dict[str, Any]) -> AgentSettings:
        success, preferences = save_agent_settings(self.user_id, updates, db=self.db)
        if not success:
            log(f"[settings] preferences for user {self.user_id} were not saved")
        merged = replace(self.current(), **preferences)
        self._set(merged)
        return merged

    def save_integration(
        self,
        *,
        webhook_url: str,
        auth_type: str,
        api_key: Optional[str] = None,
        basic_username: Optional[str] = None,
        basic_password: Optional[str] = None,
        oauth_token: Optional[str] = None,
    ) -> AgentSettings:
        record = upsert_integration_secret(
            self.user_id,
            webhook_url=webhook_url,
            auth_type=auth_type,
            api_key=api_key,
            basic_username=basic_username,
            basic_password=basic_password,
            oauth_token=oauth_token,
            db=self.db,
        )
        self._set(apply_integration_secret(self.current(), record))
        return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, settings: AgentSettings) -> None:
        changed = settings != self._settings or not self._loaded
        self._settings = settings
        self._loaded = True
        if not changed:
            return
        for listener in list(self._listeners):
            try:
                listener(settings)
            except Exception as exc:  # noqa: BLE001
                log(f"[settings] listener failed for user {self.user_id}: {exc}")


__all__ = [
    "AGENT_SETTINGS_KEY",
    "AgentSettings",
    "DEFAULT_AGENT_SETTINGS",
    "SettingsProvider",
    "apply_integration_secret",
    "load_agent_settings",
    "save_agent_settings",
]
