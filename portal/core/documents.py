"""Dashboard document list, newest first."""

from __future__ import annotations

import logging
from typing import List

from ..config import CONFIG
from ..db import DatabaseClient, Query
from ..db.models import Document
from ..errors import DataSourceError
from .role_resolver import RoleState


logger = logging.getLogger(__name__)

DOCUMENT_COLUMNS = "id, content, metadata"


class DocumentAggregator:
    def __init__(self, db: DatabaseClient) -> None:
        self.db = db

    async def fetch_documents(self, role: RoleState) -> List[Document]:
        """Admins and owners get the longer list; a failed read yields no documents."""
        if not role.has_access:
            return []
        limit = CONFIG.document_admin_limit if role.is_privileged else CONFIG.document_client_limit
        try:
            rows = await self.db.select(Query(table="documents", columns=DOCUMENT_COLUMNS, order="id", limit=limit))
        except DataSourceError as exc:
            logger.warning("Document fetch failed: %s", exc)
            return []
        logger.debug("Loaded %s documents (limit %s)", len(rows), limit)
        return [Document.from_record(row) for row in rows]
