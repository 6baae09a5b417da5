"""
Authentication module for Supabase integration.

This module provides:
- JWT token validation
- Bearer header parsing for the public API
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, status
from supabase import Client, create_client

from ..config import CONFIG


logger = logging.getLogger(__name__)


class SupabaseAuthManager:
    """Validates Supabase access tokens."""

    def __init__(self, client: Optional[Client] = None, jwt_secret: Optional[str] = None):
        self.jwt_secret = jwt_secret if jwt_secret is not None else CONFIG.supabase_jwt_secret
        self._jwt_secret_candidates = self._prepare_jwt_secret_candidates(self.jwt_secret)

        if client is not None:
            self.supabase = client
            return

        url = CONFIG.supabase_url
        key = CONFIG.supabase_service_role_key or CONFIG.supabase_anon_key
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY environment variables are required")
        if not CONFIG.supabase_service_role_key:
            logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; falling back to anon key for auth verification")
        self.supabase = create_client(url, key)

    @staticmethod
    def _prepare_jwt_secret_candidates(secret: Optional[str]) -> list:
        candidates: list = []
        if not secret:
            return candidates

        raw = secret.strip()
        if raw:
            candidates.append(raw)
            try:
                decoded = base64.b64decode(raw, validate=True)
                if decoded:
                    candidates.append(decoded)
            except (binascii.Error, ValueError):
                pass
        return candidates

    def _load_user_via_supabase(self, token: str) -> Optional[Dict[str, Any]]:
        """Fallback to Supabase SDK for token validation."""
        try:
            user = self.supabase.auth.get_user(token)
        except Exception as exc:
            logger.warning("Supabase auth get_user raised an exception: %s", exc)
            return None
        if not user or not getattr(user, "user", None):
            return None
        supa_user = user.user
        return {
            "sub": supa_user.id,
            "email": supa_user.email,
            "user_metadata": supa_user.user_metadata or {},
        }

    def verify_jwt_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Decode a Supabase access token, returning its claims or ``None``."""
        if not token:
            return None
        for candidate in self._jwt_secret_candidates:
            try:
                return jwt.decode(
                    token,
                    candidate,
                    algorithms=["HS256"],
                    audience="authenticated",
                )
            except jwt.InvalidTokenError:
                logger.debug("JWT decode failed for one candidate; trying next")
                continue
        return self._load_user_via_supabase(token)

    def get_user_from_token(self, token: str) -> Optional[Dict[str, Any]]:
        payload = self.verify_jwt_token(token)
        if not payload:
            return None
        return {
            "id": payload.get("sub"),
            "email": payload.get("email"),
            "metadata": payload.get("user_metadata", {}),
        }

    def authenticate_request_token(self, authorization: str) -> Optional[str]:
        """Return the user id for a ``Bearer`` header value."""
        if not authorization or not authorization.startswith("Bearer "):
            return None
        token = authorization.split(" ", 1)[1].strip()
        user_info = self.get_user_from_token(token)
        if not user_info:
            return None
        return user_info.get("id")


_auth_manager: Optional[SupabaseAuthManager] = None


def get_auth_manager() -> SupabaseAuthManager:
    """Get the global auth manager instance."""
    global _auth_manager
    if _auth_manager is None:
        _auth_manager = SupabaseAuthManager()
    return _auth_manager


def require_auth(authorization: Optional[str] = None) -> str:
    """
    Resolve the authenticated user id or raise ``401``.

    Raises:
        HTTPException: If authentication fails
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = get_auth_manager().authenticate_request_token(authorization)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


AuthManager = SupabaseAuthManager
