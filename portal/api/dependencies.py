"""FastAPI dependencies shared across the public API."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, status

from ..auth import Identity, require_auth
from ..config import CONFIG
from ..core.preferences import ViewModeStore, get_view_mode_store
from ..core.role_resolver import RoleResolver
from ..db import DatabaseClient, get_database_client
from ..db.models import DateRange


def get_current_identity(authorization: str = Header(None)) -> Identity:
    """Resolve the authenticated Supabase user from the Authorization header."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return require_auth(authorization)


def get_current_user_id(identity: Identity = Depends(get_current_identity)) -> str:
    return identity.id


async def get_database(identity: Identity = Depends(get_current_identity)) -> DatabaseClient:
    """Return a database client that queries as the authenticated user."""

    try:
        return await get_database_client(identity.access_token)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database client is not configured",
        ) from exc


def get_preferences() -> ViewModeStore:
    return get_view_mode_store()


async def get_role_resolver(
    identity: Identity = Depends(get_current_identity),
    db: DatabaseClient = Depends(get_database),
    preferences: ViewModeStore = Depends(get_preferences),
) -> RoleResolver:
    """Role state for the caller, resolved before any data route runs."""

    resolver = RoleResolver(db, preferences)
    await resolver.resolve(identity.id)
    return resolver


def get_date_range(
    date_from: Optional[date] = Query(None, alias="from", description="First day, inclusive"),
    date_to: Optional[date] = Query(None, alias="to", description="Last day, inclusive"),
) -> DateRange:
    default = DateRange.last_days(CONFIG.default_date_range_days)
    try:
        return DateRange(start=date_from or default.start, end=date_to or default.end)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
