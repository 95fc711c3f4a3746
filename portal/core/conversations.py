"""
Conversation aggregation from the portal's chat-shaped tables.

Two sources feed the conversation view: ``mulchbg`` rows, which carry their
own ``project_id``, and ``chat_message`` rows, which only know their
conversation and recover the project through an inner join on
``chat_conversation``. Results are concatenated mulch-first; no merged
chronological order is imposed across the two sources.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..config import CONFIG
from ..db import DatabaseClient, Query
from ..db.models import (
    ALL_PROJECTS,
    UNKNOWN_SESSION,
    ChatMessageRow,
    ConversationMessage,
    MulchRow,
)
from ..errors import DataSourceError
from .role_resolver import RoleState


logger = logging.getLogger(__name__)

CHAT_SOURCE = "chat"
MULCH_SOURCE = "mulchbg"
CHAT_MESSAGE_COLUMNS = "id, content, conversation_id, created_at, chat_conversation!inner(project_id)"
CONVERSATION_TABLES = ("mulchbg", "chat_message")


def mulch_to_message(row: MulchRow) -> ConversationMessage:
    return ConversationMessage(
        id=row.id,
        session_id=row.session_id or UNKNOWN_SESSION,
        message=row.message,
        timestamp=None,
        project_id=row.project_id,
        source=MULCH_SOURCE,
    )


def chat_to_message(row: ChatMessageRow, *, project_id: Optional[str] = None) -> ConversationMessage:
    return ConversationMessage(
        id=row.id,
        session_id=row.conversation_id or UNKNOWN_SESSION,
        message=row.content,
        timestamp=row.created_at,
        project_id=project_id or row.project_id,
        source=CHAT_SOURCE,
    )


class ConversationAggregator:
    def __init__(self, db: DatabaseClient) -> None:
        self.db = db

    async def fetch_conversations(self, role: RoleState, selection: str) -> List[ConversationMessage]:
        if role.is_privileged:
            project_id = None if selection == ALL_PROJECTS else selection
            mulch_limit = CONFIG.conversation_admin_mulch_limit
        else:
            project_id = role.assigned_project_id
            if not project_id:
                return []
            mulch_limit = CONFIG.conversation_client_mulch_limit

        messages: List[ConversationMessage] = []
        messages.extend(await self._fetch_mulch(project_id, mulch_limit))
        messages.extend(await self._fetch_chat(project_id, CONFIG.conversation_chat_limit))
        logger.debug("Loaded %s conversation messages for project %s", len(messages), project_id or ALL_PROJECTS)
        return messages

    async def _fetch_mulch(self, project_id: Optional[str], limit: int) -> List[ConversationMessage]:
        query = Query(table="mulchbg", order="id", limit=limit)
        if project_id:
            query = query.eq("project_id", project_id)
        try:
            rows = await self.db.select(query)
        except DataSourceError as exc:
            logger.warning("mulchbg conversation fetch failed for project %s: %s", project_id, exc)
            return []
        return [mulch_to_message(MulchRow.from_record(row)) for row in rows]

    async def _fetch_chat(self, project_id: Optional[str], limit: int) -> List[ConversationMessage]:
        query = Query(table="chat_message", columns=CHAT_MESSAGE_COLUMNS, order="id", limit=limit)
        if project_id:
            query = query.eq("chat_conversation.project_id", project_id)
        try:
            rows = await self.db.select(query)
        except DataSourceError as exc:
            logger.warning("chat_message conversation fetch failed for project %s: %s", project_id, exc)
            return []
        return [chat_to_message(ChatMessageRow.from_record(row), project_id=project_id) for row in rows]


def group_by_session(messages: Iterable[ConversationMessage]) -> Dict[str, List[ConversationMessage]]:
    """Group by ``session_id`` keeping first-seen session order and per-group fetch order."""
    groups: Dict[str, List[ConversationMessage]] = {}
    for message in messages:
        groups.setdefault(message.session_id or UNKNOWN_SESSION, []).append(message)
    return groups


@dataclass(frozen=True)
class ParsedMessage:
    content: str
    type: str
    timestamp: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def parse_message(message: Any) -> ParsedMessage:
    """
    Normalise a stored chat payload for display.

    Payloads are plain strings, JSON-encoded strings, or dictionaries in the
    LangChain/n8n shape (``{"type": "human", "content": ...}``).
    """
    if isinstance(message, str):
        try:
            decoded = json.loads(message)
        except json.JSONDecodeError:
            return ParsedMessage(content=message, type="unknown")
        if isinstance(decoded, dict):
            return parse_message(decoded)
        return ParsedMessage(content=message, type="unknown")

    if isinstance(message, dict):
        content = message.get("content") or message.get("text") or message.get("message") or ""
        kind = message.get("type") or message.get("role") or "unknown"
        timestamp = message.get("timestamp") or message.get("created_at")
        return ParsedMessage(
            content=content if isinstance(content, str) else json.dumps(content),
            type=str(kind).lower(),
            timestamp=timestamp,
            metadata=dict(message),
        )

    return ParsedMessage(content="Empty message", type="unknown")
