"""
Authentication and identity

This module provides:
- User authentication via Supabase Auth
- JWT token validation and sign-in/sign-out
- The immutable ``Identity`` carried through portal sessions
"""

from .identity import Identity
from .manager import AuthManager, get_auth_manager, require_auth

__all__ = [
    'AuthManager',
    'get_auth_manager',
    'require_auth',
    'Identity',
]
