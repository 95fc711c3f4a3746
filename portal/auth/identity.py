"""Authenticated identity carried through a portal session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Identity:
    """
    Opaque user id plus email as issued by Supabase Auth.

    Immutable for the lifetime of a session; profile data and permissions are
    resolved separately from the ``profiles`` table.
    """
    id: str
    email: Optional[str] = None
    access_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email}

    @classmethod
    def from_claims(cls, claims: Dict[str, Any], *, access_token: Optional[str] = None) -> Optional["Identity"]:
        user_id = claims.get("sub") or claims.get("id")
        if not user_id:
            return None
        return cls(id=str(user_id), email=claims.get("email"), access_token=access_token)
