"""Environment-driven runtime settings for the agent chat core."""

from __future__ import annotations

import os
from types import SimpleNamespace
from typing import Optional, Sequence, Tuple


def _env_str(
    name: str,
    default: Optional[str] = None,
    *,
    alias: Optional[str] = None,
    empty_to_none: bool = True,
) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    value = raw.strip()
    if not value and empty_to_none:
        return None if default is None else default
    return value if value else default


def _env_bool(name: str, default: bool, *, alias: Optional[str] = None) -> bool:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, *, alias: Optional[str] = None) -> float:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_tuple(name: str, default: Sequence[str]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return tuple(default)
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or tuple(default)


AUDIO_DELIVERY_UPLOAD = "upload"
AUDIO_DELIVERY_INLINE = "inline"
_AUDIO_DELIVERY_MODES = {AUDIO_DELIVERY_UPLOAD, AUDIO_DELIVERY_INLINE}


class Settings(SimpleNamespace):
    """Simple attribute container used throughout the codebase."""


CONFIG = Settings()


def _compute_values() -> dict[str, object]:
    # -----------------------------------------------------------------------
    # RUNTIME ENVIRONMENT
    # -----------------------------------------------------------------------
    environment = _env_str("ENV", "prod", empty_to_none=False).lower()
    if environment not in {"dev", "test", "prod"}:
        environment = "prod"
    log_level = _env_str("LOG_LEVEL", "INFO", empty_to_none=False).upper()

    # -----------------------------------------------------------------------
    # SUPABASE BACKING STORE
    # -----------------------------------------------------------------------
    supabase_url = _env_str("SUPABASE_URL", None)
    supabase_anon_key = _env_str("SUPABASE_ANON_KEY", None)
    supabase_service_role_key = _env_str("SUPABASE_SERVICE_ROLE_KEY", None)
    supabase_jwt_secret = _env_str("SUPABASE_JWT_SECRET", None)
    profiles_table = _env_str("PROFILES_TABLE", "profiles", empty_to_none=False)
    conversations_table = _env_str("CONVERSATIONS_TABLE", "agent_conversations", empty_to_none=False)
    integration_secrets_table = _env_str(
        "INTEGRATION_SECRETS_TABLE",
        "integration_secrets",
        empty_to_none=False,
    )
    user_settings_table = _env_str("USER_SETTINGS_TABLE", "user_settings", empty_to_none=False)
    messages_table = _env_str("MESSAGES_TABLE", "messages", empty_to_none=False)

    # -----------------------------------------------------------------------
    # WEBHOOK DISPATCH
    # -----------------------------------------------------------------------
    webhook_timeout_seconds = _env_float("WEBHOOK_TIMEOUT_SECONDS", 20.0)
    if webhook_timeout_seconds <= 0:
        webhook_timeout_seconds = 20.0
    webhook_api_key_header = _env_str("WEBHOOK_API_KEY_HEADER", "x-api-key", empty_to_none=False)

    # -----------------------------------------------------------------------
    # AUDIO MESSAGES
    # -----------------------------------------------------------------------
    audio_delivery = _env_str("AUDIO_DELIVERY", AUDIO_DELIVERY_UPLOAD, empty_to_none=False).lower()
    if audio_delivery not in _AUDIO_DELIVERY_MODES:
        audio_delivery = AUDIO_DELIVERY_UPLOAD
    audio_storage_bucket = _env_str("AUDIO_STORAGE_BUCKET", "audio", empty_to_none=False)
    audio_signed_url_ttl = _env_int("AUDIO_SIGNED_URL_TTL", 900)

    # -----------------------------------------------------------------------
    # APPLICATION SECRETS
    # -----------------------------------------------------------------------
    encryption_key = _env_str("ENCRYPTION_KEY", None)

    # -----------------------------------------------------------------------
    # PUBLIC API
    # -----------------------------------------------------------------------
    api_title = _env_str("API_TITLE", "AITI Agent Chat API", empty_to_none=False)
    api_version = _env_str("API_VERSION", "1.0.0", empty_to_none=False)
    api_cors_origins = _env_tuple("API_CORS_ORIGINS", ())

    return {
        "environment": environment,
        "is_development": environment == "dev",
        "log_level": log_level,
        "supabase_url": supabase_url,
        "supabase_anon_key": supabase_anon_key,
        "supabase_service_role_key": supabase_service_role_key,
        "supabase_jwt_secret": supabase_jwt_secret,
        "supabase_configured": bool(supabase_url) and bool(supabase_service_role_key or supabase_anon_key),
        "profiles_table": profiles_table,
        "conversations_table": conversations_table,
        "integration_secrets_table": integration_secrets_table,
        "user_settings_table": user_settings_table,
        "messages_table": messages_table,
        "webhook_timeout_seconds": webhook_timeout_seconds,
        "webhook_api_key_header": webhook_api_key_header,
        "audio_delivery": audio_delivery,
        "audio_storage_bucket": audio_storage_bucket,
        "audio_signed_url_ttl": audio_signed_url_ttl,
        "encryption_key": encryption_key,
        "api_title": api_title,
        "api_version": api_version,
        "api_cors_origins": api_cors_origins,
    }


def reload_config() -> None:
    CONFIG.__dict__.update(_compute_values())


def load_envs(global_dir: str | None = None) -> None:
    """Load environment variables from a ``.env`` file and refresh ``CONFIG``."""
    from dotenv import load_dotenv

    if global_dir:
        load_dotenv(os.path.join(global_dir, ".env"))
    else:
        load_dotenv()
    reload_config()


# Load once on import so downstream modules can use CONFIG immediately.
reload_config()
