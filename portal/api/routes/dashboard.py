"""Dashboard data endpoints: executions, KPIs, documents and conversations."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...auth import Identity
from ...core.conversations import ConversationAggregator, group_by_session, parse_message
from ...core.portal_session import DashboardSession, reconcile_selection
from ...core.preferences import ViewModeStore
from ...core.role_resolver import RoleResolver
from ...db import DatabaseClient
from ...db.models import ALL_PROJECTS, ConversationMessage, DateRange
from ..dependencies import get_current_identity, get_database, get_date_range, get_preferences, get_role_resolver
from ..schemas import ConversationMessageResponse, ConversationsResponse, DashboardResponse, ParsedMessageResponse

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_CACHED_SNAPSHOTS = 256

_last_good: "OrderedDict[Tuple[str, str, str, str], Dict[str, Any]]" = OrderedDict()


def _remember(key: Tuple[str, str, str, str], snapshot: Dict[str, Any]) -> None:
    _last_good[key] = snapshot
    _last_good.move_to_end(key)
    while len(_last_good) > MAX_CACHED_SNAPSHOTS:
        _last_good.popitem(last=False)


def _dashboard_response(snapshot: Dict[str, Any], *, notice: Any = None, stale: bool = False) -> DashboardResponse:
    return DashboardResponse(
        selection=snapshot["selection"],
        date_from=snapshot["date_range"]["from"],
        date_to=snapshot["date_range"]["to"],
        executions=snapshot.get("executions") or [],
        kpis=snapshot.get("kpis"),
        tables=snapshot.get("tables") or [],
        failures=snapshot.get("failures") or [],
        documents=snapshot.get("documents") or [],
        notice=notice if stale else snapshot.get("notice"),
        stale=stale,
    )


@router.get("/dashboard", response_model=DashboardResponse, status_code=status.HTTP_200_OK)
async def get_dashboard(
    project: str = Query(ALL_PROJECTS, description="Project id or 'all'"),
    date_range: DateRange = Depends(get_date_range),
    identity: Identity = Depends(get_current_identity),
    db: DatabaseClient = Depends(get_database),
    preferences: ViewModeStore = Depends(get_preferences),
) -> DashboardResponse:
    """
    Aggregate executions and KPIs for the selected project and date range.

    When every relevant table fails, the last successful response for the
    same selection is returned with ``stale=True`` and a notice. Without one
    the request fails with 502.
    """

    session = DashboardSession(identity, db, preferences, date_range=date_range, selection=project)
    try:
        snapshot = await session.start()
    finally:
        await session.close()

    key = (identity.id, snapshot["selection"], snapshot["date_range"]["from"], snapshot["date_range"]["to"])
    if session.data is None:
        cached = _last_good.get(key)
        if cached is None:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=session.notice or "Failed to load dashboard data",
            )
        logger.info("Serving last known dashboard data for user %s selection %s", identity.id, key[1])
        return _dashboard_response(cached, notice=session.notice, stale=True)

    _remember(key, snapshot)
    return _dashboard_response(snapshot)


def _message_response(message: ConversationMessage) -> ConversationMessageResponse:
    parsed = parse_message(message.message)
    return ConversationMessageResponse(
        **asdict(message),
        parsed=ParsedMessageResponse(content=parsed.content, type=parsed.type, timestamp=parsed.timestamp),
    )


@router.get("/dashboard/conversations", response_model=ConversationsResponse, status_code=status.HTTP_200_OK)
async def get_conversations(
    project: str = Query(ALL_PROJECTS, description="Project id or 'all'"),
    resolver: RoleResolver = Depends(get_role_resolver),
) -> ConversationsResponse:
    """Return conversation messages in fetch order plus the same messages grouped by session."""

    projects = await resolver.get_accessible_projects()
    selection = reconcile_selection(resolver.state, projects, project)
    if not resolver.state.has_access:
        return ConversationsResponse(selection=selection)

    messages = await ConversationAggregator(resolver.db).fetch_conversations(resolver.state, selection)
    return ConversationsResponse(
        selection=selection,
        messages=[_message_response(message) for message in messages],
        sessions={
            session_id: [_message_response(message) for message in group]
            for session_id, group in group_by_session(messages).items()
        },
    )
