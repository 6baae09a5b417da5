"""
Authentication and User Profiles

This module provides:
- User authentication via Supabase Auth
- AuthUser / AgentProfile records
- Token encryption for integration secrets
"""

from .manager import AuthManager, get_auth_manager, require_auth
from .user_context import (
    AgentProfile,
    AuthUser,
    DEFAULT_AGENT_NAME,
    decrypt_token,
    encrypt_token,
    normalize_tools,
)

__all__ = [
    'AuthManager',
    'get_auth_manager',
    'require_auth',
    'AgentProfile',
    'AuthUser',
    'DEFAULT_AGENT_NAME',
    'normalize_tools',
    'encrypt_token',
    'decrypt_token',
]
