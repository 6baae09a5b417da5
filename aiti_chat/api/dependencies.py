"""FastAPI dependencies shared across the public API."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status

from ..auth import AuthUser, require_auth
from ..core.conversation_service import ConversationService
from ..db import DatabaseClient, PersistenceError, get_database_client
from ..db.settings import SettingsProvider


def get_current_user_id(authorization: str = Header(None)) -> str:
    """Resolve the authenticated Supabase user from the Authorization header."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return require_auth(authorization)


def get_database_with_user(
    user_id: str = Depends(get_current_user_id),
) -> tuple[str, DatabaseClient]:
    """Convenience helper that returns both user id and database client."""

    return user_id, get_database_client()


def get_auth_user(context=Depends(get_database_with_user)) -> AuthUser:
    """Load the caller's profile together with their agents."""

    user_id, db = context
    try:
        user = db.get_auth_user(user_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return user


def get_settings_provider(context=Depends(get_database_with_user)) -> SettingsProvider:
    user_id, db = context
    return SettingsProvider(user_id, db=db)


def get_conversation_service(
    user: AuthUser = Depends(get_auth_user),
    settings: SettingsProvider = Depends(get_settings_provider),
) -> ConversationService:
    return ConversationService(user, db=settings.db, settings=settings)
