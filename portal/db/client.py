"""
Database client for the multi-tenant analytics portal.

Wraps the async Supabase client behind a small query boundary
(``select``/``insert``/``update``/``rpc``), change-feed subscriptions and
storage uploads. Higher layers never touch the PostgREST builder directly.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from supabase import AsyncClient, acreate_client

from ..config import CONFIG
from ..errors import DataSourceError
from .query import Query


logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Dict[str, Any]], None]


def _dev_mode_enabled() -> bool:
    value = os.getenv("DEVELOPMENT_MODE", "").strip().lower()
    return value not in {"", "0", "false", "off", "none"}


def _rows(result: Any) -> List[Dict[str, Any]]:
    data = getattr(result, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    return []


class SupabaseDatabaseClient:
    """Database client for Supabase operations."""

    def __init__(self, client: AsyncClient, *, using_service_role: bool = False):
        self.client = client
        self.using_service_role = using_service_role

    @classmethod
    async def create(cls, access_token: Optional[str] = None) -> "SupabaseDatabaseClient":
        """
        Build a client for one request.

        When ``access_token`` is supplied the anon key is used and PostgREST
        runs as that user so row-level security applies. Without a token the
        service role key is preferred for server-side maintenance tasks.
        """
        supabase_url = CONFIG.supabase_url
        service_key = CONFIG.supabase_service_role_key
        anon_key = CONFIG.supabase_anon_key

        using_service_role = False
        if access_token:
            supabase_key = anon_key or service_key
        elif service_key:
            supabase_key = service_key
            using_service_role = True
            if _dev_mode_enabled():
                logger.info("DatabaseClient: using service role key (development mode)")
        else:
            supabase_key = anon_key

        if not supabase_url or not supabase_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_ANON_KEY (or SUPABASE_SERVICE_ROLE_KEY) environment variables are required"
            )

        client = await acreate_client(supabase_url, supabase_key)
        if access_token:
            client.postgrest.auth(access_token)
        return cls(client, using_service_role=using_service_role)

    # ------------------------------------------------------------------
    # Generic query boundary
    # ------------------------------------------------------------------

    async def select(self, query: Query) -> List[Dict[str, Any]]:
        """Run a filtered read and return the rows."""
        try:
            builder = self.client.table(query.table).select(query.columns)
            for entry in query.filters:
                builder = getattr(builder, entry.op)(entry.column, entry.value)
            if query.order:
                builder = builder.order(query.order, desc=query.descending)
            if query.limit is not None:
                builder = builder.limit(query.limit)
            result = await builder.execute()
        except Exception as exc:
            raise DataSourceError(query.table, str(exc), cause=exc) from exc
        return _rows(result)

    async def insert(self, table: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            result = await self.client.table(table).insert(payload).execute()
        except Exception as exc:
            raise DataSourceError(table, str(exc), cause=exc) from exc
        return _rows(result)

    async def update(self, table: str, values: Dict[str, Any], match: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            builder = self.client.table(table).update(values)
            for column, value in match.items():
                builder = builder.eq(column, value)
            result = await builder.execute()
        except Exception as exc:
            raise DataSourceError(table, str(exc), cause=exc) from exc
        return _rows(result)

    async def rpc(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        try:
            result = await self.client.rpc(name, args or {}).execute()
        except Exception as exc:
            raise DataSourceError(f"rpc:{name}", str(exc), cause=exc) from exc
        return getattr(result, "data", None)

    # ------------------------------------------------------------------
    # Profiles and projects
    # ------------------------------------------------------------------

    async def get_profile(self, auth_user_id: str) -> Optional[Dict[str, Any]]:
        """Get the authoritative profile row for an auth user."""
        rows = await self.select(
            Query(
                table="profiles",
                columns="id, email, full_name, role, tenant_id, project_id",
                limit=1,
            ).eq("user_id", auth_user_id)
        )
        return rows[0] if rows else None

    async def get_legacy_user_profile(self, auth_user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.select(
            Query(table="user_profile", columns="user_id, role, account_id", limit=1).eq("user_id", auth_user_id)
        )
        return rows[0] if rows else None

    async def list_profiles(self, *, limit: int = 100) -> List[Dict[str, Any]]:
        return await self.select(
            Query(
                table="profiles",
                columns="id, email, full_name, role, tenant_id, project_id, created_at",
                limit=limit,
                order="created_at",
            )
        )

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.select(Query(table="project", limit=1).eq("id", project_id))
        return rows[0] if rows else None

    async def list_projects(
        self,
        *,
        account_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List projects ordered by name, optionally scoped to an account or a single id."""
        query = Query(table="project", order="name", descending=False, limit=limit)
        if account_id:
            query = query.eq("account_id", account_id)
        if project_id:
            query = query.eq("id", project_id)
        return await self.select(query)

    async def get_user_project_details(self) -> List[Dict[str, Any]]:
        """Project assignment of the calling user as resolved by the database."""
        data = await self.rpc("get_user_project_details")
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [row for row in data if isinstance(row, dict)]
        return []

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def subscribe(self, table: str, callback: ChangeCallback, *, channel_prefix: str = "portal") -> Any:
        """Register ``callback`` for insert/update/delete events on ``table``."""
        try:
            channel = self.client.channel(f"{channel_prefix}-{table}-changes")
            channel.on_postgres_changes("*", schema="public", table=table, callback=callback)
            await channel.subscribe()
        except Exception as exc:
            raise DataSourceError(table, f"subscription failed: {exc}", cause=exc) from exc
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        await self.client.remove_channel(handle)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def upload(self, bucket: str, path: str, data: bytes, *, content_type: Optional[str] = None) -> str:
        options = {"content-type": content_type} if content_type else None
        try:
            await self.client.storage.from_(bucket).upload(path, data, options)
        except Exception as exc:
            raise DataSourceError(f"storage:{bucket}", str(exc), cause=exc) from exc
        return path


# Simple alias for readability
DatabaseClient = SupabaseDatabaseClient


async def get_database_client(access_token: Optional[str] = None) -> SupabaseDatabaseClient:
    """Create a request-scoped database client."""
    return await SupabaseDatabaseClient.create(access_token)
