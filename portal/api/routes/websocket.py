"""WebSocket endpoint pushing live dashboard updates."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from ...auth import Identity, get_auth_manager
from ...core.live_refresh import LiveRefresh
from ...core.portal_session import DashboardSession, get_session_registry
from ...core.preferences import get_view_mode_store
from ...db import get_database_client
from ...db.models import ALL_PROJECTS, DateRange, ViewMode

router = APIRouter()
logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks live WebSocket connections per user."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)
        logger.info(
            "WebSocket connection accepted for user_id=%s; active=%s",
            user_id,
            len(self.active_connections[user_id]),
        )

    def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        connections = self.active_connections.get(user_id)
        if not connections:
            return
        connections.discard(websocket)
        if not connections:
            self.active_connections.pop(user_id, None)
        logger.debug(
            "Closed websocket for user=%s; remaining=%s",
            user_id,
            len(self.active_connections.get(user_id, ())),
        )


manager = ConnectionManager()


def authenticate_websocket_token(token: str) -> Optional[Identity]:
    """Validate a Supabase JWT passed as a query parameter."""
    if not token:
        return None

    try:
        return get_auth_manager().current_user(token)
    except ValueError as exc:
        logger.warning("WebSocket auth token verification failed: %s", exc)
        return None


def _parse_range(message: Dict[str, Any], current: DateRange) -> Optional[DateRange]:
    raw_from, raw_to = message.get("from"), message.get("to")
    if not raw_from and not raw_to:
        return None
    start = date.fromisoformat(raw_from) if raw_from else current.start
    end = date.fromisoformat(raw_to) if raw_to else current.end
    return DateRange(start=start, end=end)


async def _send(websocket: WebSocket, payload: Dict[str, Any]) -> None:
    await websocket.send_text(json.dumps(payload, default=str))


@router.websocket("/ws/dashboard")
async def dashboard_websocket(
    websocket: WebSocket,
    token: str = Query(..., description="JWT token for authentication"),
    project: Optional[str] = Query(None, description="Initial project id or 'all'"),
) -> None:
    """
    Live dashboard channel.

    The server pushes ``{"type": "refresh", "data": ...}`` after every
    successful reload, whether triggered by a table change or by the client.
    Client messages: ``ping``, ``refresh``, ``select`` (``project``, ``from``,
    ``to``) and ``view_mode`` (``mode``).
    """

    identity = authenticate_websocket_token(token)
    if identity is None:
        logger.warning("WebSocket authentication failed for dashboard channel")
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    try:
        db = await get_database_client(identity.access_token)
    except ValueError as exc:
        logger.error("Database client unavailable for dashboard websocket: %s", exc)
        await websocket.close(code=1011, reason="Database client is not configured")
        return

    await manager.connect(websocket, identity.id)

    async def push(snapshot: Dict[str, Any]) -> None:
        await _send(websocket, {"type": "refresh", "data": snapshot})

    session = DashboardSession(
        identity,
        db,
        get_view_mode_store(),
        live=LiveRefresh(db),
        on_update=push,
        selection=project or ALL_PROJECTS,
    )
    registry = get_session_registry()
    await registry.open(session)
    pending: Set[asyncio.Task] = set()

    def spawn(coro: Any) -> None:
        # Selection changes run concurrently so a newer selection is never queued behind a slow one.
        task = asyncio.create_task(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    try:
        await session.start()
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await _send(websocket, {"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await _send(websocket, {"type": "error", "message": "Messages must be JSON objects"})
                continue

            msg_type = message.get("type")
            if msg_type == "ping":
                await _send(websocket, {"type": "pong"})
                continue

            if msg_type == "refresh":
                spawn(session.refresh())
                continue

            if msg_type == "select":
                try:
                    date_range = _parse_range(message, session.date_range)
                except (TypeError, ValueError) as exc:
                    await _send(websocket, {"type": "error", "message": f"Invalid date range: {exc}"})
                    continue
                project_id = message.get("project")
                if project_id is not None and not isinstance(project_id, str):
                    await _send(websocket, {"type": "error", "message": "project must be a string"})
                    continue
                spawn(session.set_selection(project_id, date_range))
                continue

            if msg_type == "view_mode":
                mode = ViewMode.parse(message.get("mode"))
                if mode is None or not await session.switch_view_mode(mode):
                    await _send(websocket, {"type": "error", "message": "View mode change not allowed"})
                continue

            logger.warning("Unknown WebSocket message type: %s from user_id=%s", msg_type, identity.id)
    except WebSocketDisconnect:
        logger.debug("Dashboard websocket disconnected for user=%s", identity.id)
    except Exception:
        logger.exception("WebSocket error for user=%s", identity.id)
    finally:
        for task in list(pending):
            task.cancel()
        await registry.close(session)
        manager.disconnect(websocket, identity.id)
