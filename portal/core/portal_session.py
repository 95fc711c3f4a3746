"""
Session-scoped controllers for the dashboard and admin views.

A ``PortalSession`` owns everything one open view needs: the caller's role
state, the current project selection and date range, the live-refresh
subscription, and the last data that loaded successfully. Views are handed
the session instead of reaching for module-level state.

Ordering rules enforced here:

* No aggregation runs while the role is still loading. ``start`` resolves
  the role and then aggregates exactly once.
* Every selection change bumps a generation counter. A load that finishes
  for an older generation is discarded, so a slow request for a previous
  project never overwrites a newer one.
* After ``close`` nothing is applied or emitted.
* The change subscription follows the tables the latest load read. When
  they change, the new channels open before the old ones are released.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..auth.identity import Identity
from ..config import CONFIG
from ..db import DatabaseClient
from ..db.models import (
    ALL_PROJECTS,
    ConversationMessage,
    DateRange,
    Document,
    ExecutionResult,
    KPISummary,
    Project,
    ViewMode,
    utc_now_iso,
)
from ..errors import AuthRequired, DataSourceError, FullFetchFailure, Unauthorized
from .conversations import CONVERSATION_TABLES, ConversationAggregator, group_by_session
from .documents import DocumentAggregator
from .executions import ExecutionAggregator
from .live_refresh import LiveRefresh, Subscription
from .preferences import ViewModeStore
from .role_resolver import RoleResolver, RoleState


logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def reconcile_selection(role: RoleState, accessible: Sequence[Project], current: str) -> str:
    """
    Clamp ``current`` to a selection the caller may actually view.

    Users outside admin mode with an assigned project are pinned to it. A
    lone accessible project replaces ``"all"``. Anything else that is not
    accessible falls back to ``"all"`` in admin mode, or to the first
    accessible project otherwise.
    """
    admin_mode = role.effective_mode is ViewMode.ADMIN
    if role.assigned_project_id and not admin_mode:
        return role.assigned_project_id

    project_ids = [project.id for project in accessible]
    if current == ALL_PROJECTS:
        if len(project_ids) == 1:
            return project_ids[0]
        return ALL_PROJECTS
    if current in project_ids:
        return current
    if admin_mode or not project_ids:
        return ALL_PROJECTS
    return project_ids[0]


class PortalSession:
    """Base controller; subclasses define what gets loaded and how it is shown."""

    scope = "portal"

    def __init__(
        self,
        identity: Optional[Identity],
        db: DatabaseClient,
        preferences: ViewModeStore,
        *,
        live: Optional[LiveRefresh] = None,
        on_update: Optional[UpdateCallback] = None,
        date_range: Optional[DateRange] = None,
        selection: str = ALL_PROJECTS,
    ) -> None:
        if identity is None:
            raise AuthRequired("Sign in to open the portal")
        self.identity = identity
        self.db = db
        self.role = RoleResolver(db, preferences)
        self.live = live
        self.on_update = on_update

        self.selection = selection or ALL_PROJECTS
        self.date_range = date_range or DateRange.last_days(CONFIG.default_date_range_days)
        self.projects: List[Project] = []
        self.data: Any = None
        self.notice: Optional[str] = None
        self.updated_at: Optional[str] = None

        self._generation = 0
        self._issued = 0
        self._applied = 0
        self._subscription: Optional[Subscription] = None
        self._subscription_lock = asyncio.Lock()
        self._subscriptions_opened = 0
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def role_state(self) -> RoleState:
        return self.role.state

    async def start(self) -> Dict[str, Any]:
        await self.role.resolve(self.identity.id)
        if self._closed:
            return self.snapshot()
        await self._reconcile()
        await self.refresh()
        await self._sync_subscription()
        return self.snapshot()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.close()
        logger.info("Closed %s session for user %s", self.scope, self.identity.id)

    # ------------------------------------------------------------------
    # Selection and view mode
    # ------------------------------------------------------------------

    async def set_selection(
        self,
        project: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> Dict[str, Any]:
        if project is not None:
            self.selection = reconcile_selection(self.role.state, self.projects, project)
        if date_range is not None:
            self.date_range = date_range
        self._generation += 1
        await self.refresh()
        return self.snapshot()

    async def switch_view_mode(self, mode: ViewMode) -> bool:
        if not self.role.switch_view_mode(mode):
            return False
        self._generation += 1
        await self._reconcile()
        await self.refresh()
        return True

    async def _reconcile(self) -> None:
        self.projects = await self.role.get_accessible_projects()
        self.selection = reconcile_selection(self.role.state, self.projects, self.selection)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> Optional[Dict[str, Any]]:
        """
        Reload data for the current selection.

        Shared by user actions and live change events. Returns the new
        snapshot, or ``None`` when the load was skipped or its result was
        discarded.
        """
        if self._closed:
            return None
        if self.role.loading:
            logger.debug("Role still loading for user %s; refresh deferred", self.identity.id)
            return None

        self._issued += 1
        ticket = self._issued
        generation = self._generation
        selection, date_range = self.selection, self.date_range

        try:
            data = await self._load(self.role.state, selection, date_range)
        except (FullFetchFailure, Unauthorized) as exc:
            if not self._is_current(generation, ticket):
                return None
            logger.warning("Refresh failed for %s session of user %s: %s", self.scope, self.identity.id, exc)
            self.notice = str(exc)
            self._applied = ticket
            await self._emit()
            return self.snapshot()

        if not self._is_current(generation, ticket):
            logger.debug(
                "Discarding stale %s load for selection %s (generation %s, current %s)",
                self.scope,
                selection,
                generation,
                self._generation,
            )
            return None

        self.data = data
        self.notice = self._notice_for(data)
        self.updated_at = utc_now_iso()
        self._applied = ticket
        await self._emit()
        await self._sync_subscription()
        return self.snapshot()

    def _is_current(self, generation: int, ticket: int) -> bool:
        return not self._closed and generation == self._generation and ticket > self._applied

    async def _sync_subscription(self) -> None:
        if self.live is None:
            return
        async with self._subscription_lock:
            if self._closed:
                return
            tables = self.live_tables()
            current = self._subscription
            if current is not None and set(current.tables) == set(tables):
                return

            self._subscriptions_opened += 1
            try:
                subscription = await self.live.subscribe(
                    tables,
                    self.refresh,
                    channel_prefix=f"{self.scope}-{self.identity.id}-{self._subscriptions_opened}",
                )
            except DataSourceError as exc:
                logger.warning("Live refresh unavailable for %s session of user %s: %s", self.scope, self.identity.id, exc)
                return
            if self._closed:
                await subscription.close()
                return
            self._subscription = subscription
            if current is not None:
                logger.debug("Live tables for %s session changed: %s -> %s", self.scope, current.tables, tables)
                await current.close()

    async def _emit(self) -> None:
        if self.on_update is None or self._closed:
            return
        try:
            result = self.on_update(self.snapshot())
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Update listener for %s session failed: %s", self.scope, exc)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def live_tables(self) -> List[str]:
        return []

    async def _load(self, role: RoleState, selection: str, date_range: DateRange) -> Any:
        raise NotImplementedError

    def _notice_for(self, data: Any) -> Optional[str]:
        return None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "scope": self.scope,
            "generation": self._generation,
            "role": self.role.state.to_dict(),
            "selection": self.selection,
            "date_range": {
                "from": self.date_range.start.isoformat(),
                "to": self.date_range.end.isoformat(),
            },
            "projects": [project.to_dict() for project in self.projects],
            "notice": self.notice,
            "updated_at": self.updated_at,
        }


@dataclass
class DashboardData:
    executions: ExecutionResult
    conversations: List[ConversationMessage] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)


async def _gather_or_cancel(*coros: Awaitable[Any]) -> List[Any]:
    """Run ``coros`` concurrently; the first failure cancels and reaps the rest."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class DashboardSession(PortalSession):
    scope = "dashboard"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.executions = ExecutionAggregator(self.db)
        self.conversations = ConversationAggregator(self.db)
        self.documents = DocumentAggregator(self.db)

    def live_tables(self) -> List[str]:
        tables = list(CONFIG.dashboard_live_tables)
        if isinstance(self.data, DashboardData):
            tables.extend(self.data.executions.tables)
        if self.role.state.has_access:
            tables.extend(CONVERSATION_TABLES)
        return list(dict.fromkeys(tables))

    async def _load(self, role: RoleState, selection: str, date_range: DateRange) -> DashboardData:
        if not role.has_access:
            return DashboardData(executions=ExecutionResult(records=[], kpis=KPISummary.empty()))
        executions, conversations, documents = await _gather_or_cancel(
            self.executions.fetch_executions(role, selection, date_range),
            self.conversations.fetch_conversations(role, selection),
            self.documents.fetch_documents(role),
        )
        return DashboardData(executions=executions, conversations=conversations, documents=documents)

    def _notice_for(self, data: DashboardData) -> Optional[str]:
        failures = data.executions.failures
        if not failures:
            return None
        tables = ", ".join(failure.table for failure in failures)
        return f"Some data sources could not be loaded: {tables}"

    def snapshot(self) -> Dict[str, Any]:
        payload = super().snapshot()
        data = self.data if isinstance(self.data, DashboardData) else None
        if data is None:
            payload.update(
                {
                    "executions": [],
                    "kpis": None,
                    "tables": [],
                    "failures": [],
                    "conversations": [],
                    "sessions": [],
                    "documents": [],
                }
            )
            return payload
        payload.update(
            {
                "executions": [record.to_dict() for record in data.executions.records],
                "kpis": data.executions.kpis.to_dict(),
                "tables": list(data.executions.tables),
                "failures": [
                    {"table": failure.table, "error": failure.error} for failure in data.executions.failures
                ],
                "conversations": [message.to_dict() for message in data.conversations],
                "sessions": list(group_by_session(data.conversations)),
                "documents": [document.to_dict() for document in data.documents],
            }
        )
        return payload


class AdminSession(PortalSession):
    scope = "admin"

    def live_tables(self) -> List[str]:
        return list(CONFIG.admin_live_tables)

    async def _load(self, role: RoleState, selection: str, date_range: DateRange) -> Any:
        from ..services.admin import AdminService

        return await AdminService(self.db, role).overview()

    def snapshot(self) -> Dict[str, Any]:
        payload = super().snapshot()
        data = self.data
        payload.update(
            {
                "profiles": [asdict(profile) for profile in data.profiles] if data else [],
                "admin_projects": [project.to_dict() for project in data.projects] if data else [],
                "tenants": list(data.tenants) if data else [],
                "clients": list(data.clients) if data else [],
            }
        )
        return payload


class SessionRegistry:
    """One open session per ``(user, scope)``; reopening closes the previous one."""

    def __init__(self) -> None:
        self._sessions: Dict[Tuple[str, str], PortalSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str, scope: str) -> Optional[PortalSession]:
        return self._sessions.get((user_id, scope))

    async def open(self, session: PortalSession) -> PortalSession:
        key = (session.identity.id, session.scope)
        previous = self._sessions.pop(key, None)
        if previous is not None and previous is not session:
            await previous.close()
        self._sessions[key] = session
        return session

    async def close(self, session: PortalSession) -> None:
        key = (session.identity.id, session.scope)
        if self._sessions.get(key) is session:
            del self._sessions[key]
        await session.close()

    async def close_user(self, user_id: str) -> None:
        keys = [key for key in self._sessions if key[0] == user_id]
        for key in keys:
            await self._sessions.pop(key).close()

    async def close_all(self) -> None:
        sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            await session.close()


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
