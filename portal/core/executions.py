"""
Execution aggregation across a tenant's project data tables.

Every project names the physical table that holds its records. This module
decides which tables a caller may read, queries them through a declarative
registry, normalises the heterogeneous rows into ``ExecutionRecord`` and
computes the dashboard KPIs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import CONFIG
from ..db import DatabaseClient, Query
from ..db.query import SUPPORTED_OPERATORS
from ..db.models import (
    ALL_PROJECTS,
    DEFAULT_DATA_TABLE,
    ChatHistoryRow,
    ChatMessageRow,
    DateRange,
    ExecutionRecord,
    ExecutionResult,
    ExecutionRow,
    FilterConfig,
    GenericRow,
    KPISummary,
    MulchRow,
    Project,
    SourceFailure,
    SourceRow,
    parse_timestamp,
    utc_now_iso,
)
from ..errors import DataSourceError, FullFetchFailure
from .role_resolver import RoleState


logger = logging.getLogger(__name__)

FAILED_STATUSES = frozenset({"error", "failed"})
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class FetchContext:
    table: str
    tenant_id: Optional[str]
    project_id: Optional[str]
    date_range: DateRange
    limit: int
    filter_config: Optional[FilterConfig] = None


@dataclass(frozen=True)
class TableSource:
    name: str
    build_query: Callable[[FetchContext], Query]
    parse_row: Callable[[Dict[str, Any], str, int], SourceRow]
    tenant_scoped: bool = False


def _apply_filter_config(query: Query, ctx: FetchContext) -> Query:
    config = ctx.filter_config
    if config is None:
        return query
    op = config.type if config.type in SUPPORTED_OPERATORS else "eq"
    return query.where(config.column, op, config.value)


def _executions_query(ctx: FetchContext) -> Query:
    query = Query(table=ctx.table, order="timestamp", limit=ctx.limit).eq("tenant_id", ctx.tenant_id)
    query = query.where("timestamp", "gte", ctx.date_range.lower_bound().isoformat())
    query = query.where("timestamp", "lte", ctx.date_range.upper_bound().isoformat())
    return _apply_filter_config(query, ctx)


def _mulch_query(ctx: FetchContext) -> Query:
    # mulchbg has no timestamp column, so no date bound applies.
    query = Query(table=ctx.table, order="id", limit=ctx.limit)
    if ctx.project_id:
        query = query.eq("project_id", ctx.project_id)
    return _apply_filter_config(query, ctx)


def _chat_history_query(ctx: FetchContext) -> Query:
    query = Query(table=ctx.table, order="id", limit=ctx.limit)
    return _apply_filter_config(query, ctx)


def _generic_query(ctx: FetchContext) -> Query:
    return _apply_filter_config(Query(table=ctx.table, order="id", limit=ctx.limit), ctx)


TABLE_REGISTRY: Dict[str, TableSource] = {
    "executions": TableSource(
        name="executions",
        build_query=_executions_query,
        parse_row=lambda record, table, index: ExecutionRow.from_record(record),
        tenant_scoped=True,
    ),
    "mulchbg": TableSource(
        name="mulchbg",
        build_query=_mulch_query,
        parse_row=lambda record, table, index: MulchRow.from_record(record),
    ),
    "n8n_chat_histories": TableSource(
        name="n8n_chat_histories",
        build_query=_chat_history_query,
        parse_row=lambda record, table, index: ChatHistoryRow.from_record(record),
    ),
}


def source_for(table: str) -> TableSource:
    """Return the registered source for ``table`` or a generic fallback."""
    registered = TABLE_REGISTRY.get(table)
    if registered is not None:
        return registered
    return TableSource(
        name=table,
        build_query=_generic_query,
        parse_row=lambda record, name, index: GenericRow.from_record(record, table=name, index=index),
    )


def _generic_workflow_name(table: str) -> str:
    return f"{table[:1].upper()}{table[1:]} Entry"


def to_execution_record(row: SourceRow, *, source_table: str, now: Optional[str] = None) -> ExecutionRecord:
    """Map one source row variant onto the canonical execution record."""
    now = now or utc_now_iso()
    placeholder = CONFIG.placeholder_duration_ms

    if isinstance(row, ExecutionRow):
        return ExecutionRecord(
            id=row.id,
            workflow_name=row.workflow_name,
            status=row.status,
            timestamp=row.timestamp or now,
            duration_ms=max(row.duration_ms or 0, 0),
            cost_usd=row.cost_usd or 0,
            error_message=row.error_message,
            source_table=source_table,
            timestamp_missing=row.timestamp is None,
        )
    if isinstance(row, MulchRow):
        return ExecutionRecord(
            id=row.id,
            workflow_name=f"Mulch Entry {row.id}",
            status="success",
            timestamp=now,
            duration_ms=placeholder,
            cost_usd=0,
            source_table=source_table,
            timestamp_missing=True,
        )
    if isinstance(row, ChatHistoryRow):
        return ExecutionRecord(
            id=row.id,
            workflow_name=f"Chat History {row.id}",
            status="success",
            timestamp=row.created_at or now,
            duration_ms=placeholder,
            cost_usd=0,
            source_table=source_table,
            timestamp_missing=row.created_at is None,
        )
    if isinstance(row, ChatMessageRow):
        return ExecutionRecord(
            id=row.id,
            workflow_name=f"Chat Message {row.id}",
            status="success",
            timestamp=row.created_at or now,
            duration_ms=placeholder,
            cost_usd=0,
            source_table=source_table,
            timestamp_missing=row.created_at is None,
        )
    if isinstance(row, GenericRow):
        stamp = row.created_at or row.timestamp
        return ExecutionRecord(
            id=row.id,
            workflow_name=_generic_workflow_name(row.table),
            status="success",
            timestamp=stamp or now,
            duration_ms=placeholder,
            cost_usd=0,
            source_table=source_table,
            timestamp_missing=stamp is None,
        )
    raise TypeError(f"Unhandled source row type: {type(row).__name__}")


def sort_by_timestamp(records: Sequence[ExecutionRecord]) -> List[ExecutionRecord]:
    """Newest first; records with unparseable timestamps sink to the end."""
    return sorted(
        records,
        key=lambda record: parse_timestamp(record.timestamp) or _EPOCH,
        reverse=True,
    )


def compute_kpis(records: Sequence[ExecutionRecord], *, now: Optional[str] = None) -> KPISummary:
    total = len(records)
    if total == 0:
        return KPISummary.empty(now=now)

    successful = sum(1 for record in records if record.status == "success")
    failed = sum(1 for record in records if record.status in FAILED_STATUSES)
    avg_duration = sum(record.duration_ms or 0 for record in records) / total

    return KPISummary(
        total_processed=total,
        success_rate=successful / total * 100,
        failed_ops=failed,
        last_update=records[0].timestamp or now or utc_now_iso(),
        avg_processing_time=avg_duration,
        data_volume=total * CONFIG.data_volume_mb_per_record,
    )


class ExecutionAggregator:
    """Fetches execution-shaped records for a role, project selection and date range."""

    def __init__(self, db: DatabaseClient) -> None:
        self.db = db

    async def fetch_executions(
        self,
        role: RoleState,
        selection: str,
        date_range: DateRange,
    ) -> ExecutionResult:
        now = utc_now_iso()

        if role.is_privileged and selection == ALL_PROJECTS:
            return await self._fetch_all_projects(role, date_range, now=now)

        project_id, table, filter_config = await self._resolve_single_source(role, selection)
        if table is None:
            logger.info("No project assigned; returning empty execution set")
            return ExecutionResult(records=[], kpis=KPISummary.empty(now=now))

        ctx = FetchContext(
            table=table,
            tenant_id=role.tenant_id,
            project_id=project_id,
            date_range=date_range,
            limit=CONFIG.execution_row_limit,
            filter_config=filter_config,
        )
        try:
            records = await self._fetch_table(ctx, now=now)
        except DataSourceError as exc:
            logger.exception("Failed to fetch %s for project %s", table, project_id)
            raise FullFetchFailure(table, exc) from exc

        return ExecutionResult(records=records, kpis=compute_kpis(records, now=now), tables=[table])

    async def _resolve_single_source(
        self,
        role: RoleState,
        selection: str,
    ) -> Tuple[Optional[str], Optional[str], Optional[FilterConfig]]:
        """Return ``(project_id, table, filter)`` for a single-project fetch; table is ``None`` when nothing is visible."""
        if role.is_privileged:
            project = await self._load_project(selection)
            if project is None:
                return selection, DEFAULT_DATA_TABLE, None
            return project.id, project.data_table, project.filter_config

        project_id = role.assigned_project_id
        if not project_id:
            return None, None, None

        project = await self._assigned_project(project_id)
        if project is None:
            return project_id, DEFAULT_DATA_TABLE, None
        return project_id, project.data_table, project.filter_config

    async def _load_project(self, project_id: str) -> Optional[Project]:
        try:
            record = await self.db.get_project(project_id)
        except DataSourceError as exc:
            logger.warning("Project lookup failed for %s: %s", project_id, exc)
            return None
        return Project.from_record(record) if record else None

    async def _assigned_project(self, project_id: str) -> Optional[Project]:
        try:
            details = await self.db.get_user_project_details()
        except DataSourceError as exc:
            logger.warning("get_user_project_details failed: %s", exc)
            details = []

        for entry in details:
            if str(entry.get("project_id")) == project_id:
                return Project.from_record(entry)
        if details:
            logger.warning(
                "get_user_project_details did not include assigned project %s; using project table", project_id
            )
        return await self._load_project(project_id)

    async def _fetch_all_projects(self, role: RoleState, date_range: DateRange, *, now: str) -> ExecutionResult:
        if not role.tenant_id:
            logger.warning("Profile %s has no tenant; nothing to aggregate", role.profile.id if role.profile else None)
            return ExecutionResult(records=[], kpis=KPISummary.empty(now=now))

        try:
            project_records = await self.db.list_projects(account_id=role.tenant_id)
        except DataSourceError as exc:
            logger.exception("Error fetching all projects for tenant %s", role.tenant_id)
            raise FullFetchFailure("project", exc) from exc

        tables: List[str] = []
        for record in project_records:
            table = Project.from_record(record).data_table
            if table not in tables:
                tables.append(table)

        logger.info("Aggregating %s tables for tenant %s: %s", len(tables), role.tenant_id, tables)
        if not tables:
            return ExecutionResult(records=[], kpis=KPISummary.empty(now=now))

        contexts = [
            FetchContext(
                table=table,
                tenant_id=role.tenant_id,
                project_id=None,
                date_range=date_range,
                limit=CONFIG.aggregate_row_limit,
            )
            for table in tables
        ]
        outcomes = await asyncio.gather(
            *(self._fetch_table(ctx, now=now) for ctx in contexts),
            return_exceptions=True,
        )

        combined: List[ExecutionRecord] = []
        failures: List[SourceFailure] = []
        for table, outcome in zip(tables, outcomes):
            if isinstance(outcome, DataSourceError):
                logger.warning("Skipping %s after fetch error: %s", table, outcome)
                failures.append(SourceFailure(table=table, error=str(outcome)))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            logger.debug("Added %s records from %s", len(outcome), table)
            combined.extend(outcome)

        records = sort_by_timestamp(combined)
        return ExecutionResult(
            records=records,
            kpis=compute_kpis(records, now=now),
            tables=tables,
            failures=failures,
        )

    async def _fetch_table(self, ctx: FetchContext, *, now: str) -> List[ExecutionRecord]:
        source = source_for(ctx.table)
        if source.tenant_scoped and not ctx.tenant_id:
            logger.warning("Skipping %s: tenant-scoped table requested without a tenant", ctx.table)
            return []
        rows = await self.db.select(source.build_query(ctx))
        return [
            to_execution_record(source.parse_row(record, ctx.table, index), source_table=ctx.table, now=now)
            for index, record in enumerate(rows)
        ]
