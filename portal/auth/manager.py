"""
Authentication module for Supabase integration.

This module provides:
- JWT token validation
- Password sign-in and sign-out against Supabase Auth
- The ``require_auth`` helper used by the API dependencies
"""

import base64
import binascii
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, status
from supabase import Client, create_client

from ..config import CONFIG
from ..errors import AuthRequired
from .identity import Identity


logger = logging.getLogger(__name__)

class SupabaseAuthManager:
    """Manages authentication with Supabase Auth."""

    def __init__(self):
        """Initialize the AuthManager with Supabase client."""
        self.supabase_url = CONFIG.supabase_url
        self.supabase_anon_key = CONFIG.supabase_anon_key
        self.jwt_secret = CONFIG.supabase_jwt_secret
        if not all([self.supabase_url, self.supabase_anon_key]):
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY environment variables are required")

        self.supabase: Client = create_client(self.supabase_url, self.supabase_anon_key)
        service_key = CONFIG.supabase_service_role_key
        self._admin: Optional[Client] = create_client(self.supabase_url, service_key) if service_key else None
        if not service_key:
            logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; server-side sign-out is unavailable")
        self._jwt_secret_candidates = self._prepare_jwt_secret_candidates(self.jwt_secret)

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
        }

    def verify_jwt_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Verify and decode a JWT token from Supabase Auth.

        Args:
            token: The JWT token to verify

        Returns:
            Decoded token payload if valid, None if invalid
        """
        if not token:
            logger.debug("verify_jwt_token received empty token")
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
        logger.debug("Falling back to Supabase SDK token validation")
        result = self._load_user_via_supabase(token)
        if not result:
            logger.warning("Supabase SDK could not validate token")
        return result

    def current_user(self, token: str) -> Optional[Identity]:
        """Return the identity behind a valid access token, or ``None``."""
        payload = self.verify_jwt_token(token)
        if not payload:
            return None
        return Identity.from_claims(payload, access_token=token)

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """
        Exchange email and password for a Supabase session.

        Raises:
            AuthRequired: If Supabase rejects the credentials
        """
        try:
            response = self.supabase.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as exc:
            logger.warning("Sign-in failed for %s: %s", email, exc)
            raise AuthRequired("Invalid email or password") from exc

        session = getattr(response, "session", None)
        user = getattr(response, "user", None)
        if not session or not user:
            raise AuthRequired("Invalid email or password")

        return {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_in": session.expires_in,
            "identity": Identity(id=str(user.id), email=user.email, access_token=session.access_token),
        }

    def sign_out(self, token: str) -> bool:
        """Revoke the session behind ``token``."""
        if self._admin is None:
            return False
        try:
            self._admin.auth.admin.sign_out(token)
        except Exception as exc:
            logger.warning("Supabase sign-out failed: %s", exc)
            return False
        return True

    def authenticate_request_token(self, authorization_header: str) -> Optional[Identity]:
        """
        Extract and validate JWT token from Authorization header.

        Args:
            authorization_header: The Authorization header value

        Returns:
            Identity if valid, None if invalid
        """
        if not authorization_header or not authorization_header.startswith("Bearer "):
            return None

        token = authorization_header[7:].strip()  # Remove "Bearer " prefix
        return self.current_user(token)


AuthManager = SupabaseAuthManager


# Global auth manager instance
_auth_manager: Optional[AuthManager] = None


def get_auth_manager() -> AuthManager:
    """Get the global AuthManager instance."""
    global _auth_manager
    if _auth_manager is None:
        _auth_manager = AuthManager()
    return _auth_manager


def require_auth(authorization: str = None) -> Identity:
    """
    Resolve the caller's identity or reject the request.

    Args:
        authorization: Authorization header value

    Returns:
        The authenticated identity

    Raises:
        HTTPException: If authentication fails
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    auth_manager = get_auth_manager()
    identity = auth_manager.authenticate_request_token(authorization)

    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return identity
