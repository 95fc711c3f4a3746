"""
Administrative operations over profiles, tenants, clients, projects and executions.

Every operation checks the caller's effective view mode before touching the
database; a caller outside admin mode is rejected with ``Unauthorized`` and
no request is issued.
"""

from __future__ import annotations

import csv
import io
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import CONFIG
from ..core.role_resolver import RoleState
from ..db import DatabaseClient, Query
from ..db.models import Profile, Project, ProjectExecution, ViewMode, parse_timestamp
from ..errors import DataSourceError, Unauthorized
from ..logger import log


logger = logging.getLogger(__name__)

VALID_ROLES = ("admin", "owner", "operator", "viewer")
VALID_STATUSES = ("success", "error", "failed", "running")


@dataclass
class BulkImportResult:
    success_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class AdminOverview:
    profiles: List[Profile]
    projects: List[Project]
    tenants: List[Dict[str, Any]]
    clients: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ProjectDetails:
    project_id: str
    executions: List[ProjectExecution]
    profiles: List[Profile]


def _clean_name(value: Optional[str], label: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{label} is required")
    return cleaned


class AdminService:
    def __init__(self, db: DatabaseClient, role: RoleState) -> None:
        self.db = db
        self.role = role

    def _require_admin(self, action: str) -> None:
        if self.role.effective_mode is not ViewMode.ADMIN:
            user = self.role.profile.id if self.role.profile else None
            logger.warning("Rejected %s for profile %s: admin mode required", action, user)
            raise Unauthorized(f"Admin access required to {action}")

    async def overview(self) -> AdminOverview:
        self._require_admin("view admin data")
        profiles = [Profile.from_record(row) for row in await self.db.list_profiles()]
        projects = [Project.from_record(row) for row in await self.db.list_projects(limit=100)]
        tenants = await self.db.select(Query(table="tenants", order="name", descending=False, limit=100))
        clients = await self.db.select(Query(table="clients", order="name", descending=False, limit=100))
        return AdminOverview(profiles=profiles, projects=projects, tenants=tenants, clients=clients)

    async def list_profiles(self) -> List[Profile]:
        self._require_admin("list profiles")
        return [Profile.from_record(row) for row in await self.db.list_profiles()]

    async def update_user_role(self, profile_id: str, role: str) -> bool:
        self._require_admin("change user roles")
        normalized = (role or "").strip().lower()
        if normalized not in VALID_ROLES:
            raise ValueError(f"role must be one of {', '.join(VALID_ROLES)}")
        rows = await self.db.update("profiles", {"role": normalized}, {"id": profile_id})
        log("[admin] role updated", profile=profile_id, role=normalized)
        return bool(rows)

    async def assign_project(self, profile_id: str, project_id: Optional[str]) -> bool:
        self._require_admin("assign projects")
        rows = await self.db.update("profiles", {"project_id": project_id or None}, {"id": profile_id})
        log("[admin] project assigned", profile=profile_id, project=project_id)
        return bool(rows)

    async def assign_tenant(self, profile_id: str, tenant_id: Optional[str]) -> bool:
        self._require_admin("assign tenants")
        rows = await self.db.update("profiles", {"tenant_id": tenant_id or None}, {"id": profile_id})
        log("[admin] tenant assigned", profile=profile_id, tenant=tenant_id)
        return bool(rows)

    async def create_tenant(self, name: str) -> Optional[Dict[str, Any]]:
        self._require_admin("create tenants")
        rows = await self.db.insert("tenants", {"name": _clean_name(name, "Tenant name")})
        return rows[0] if rows else None

    async def create_client(self, name: str, external_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Register a client under the caller's own tenant."""
        self._require_admin("create clients")
        cleaned = _clean_name(name, "Client name")
        if not self.role.tenant_id:
            raise ValueError("A tenant is required to create clients")
        rows = await self.db.insert(
            "clients",
            {"name": cleaned, "external_id": (external_id or "").strip() or None, "tenant_id": self.role.tenant_id},
        )
        log("[admin] client created", client=cleaned, tenant=self.role.tenant_id)
        return rows[0] if rows else None

    async def create_project(self, name: str, description: str = "") -> Any:
        self._require_admin("create projects")
        return await self.db.rpc(
            "create_real_project",
            {
                "p_project_name": _clean_name(name, "Project name"),
                "p_description": (description or "").strip(),
            },
        )

    async def project_details(self, project_id: str) -> ProjectDetails:
        self._require_admin("view project details")
        if not project_id:
            raise ValueError("Project is required")
        execution_rows = await self.db.select(
            Query(table="execution", order="started_at", limit=CONFIG.project_detail_execution_limit).eq(
                "project_id", project_id
            )
        )
        profile_rows = await self.db.select(
            Query(table="profiles", columns="id, email, full_name, role, tenant_id, project_id").eq(
                "project_id", project_id
            )
        )
        return ProjectDetails(
            project_id=project_id,
            executions=[ProjectExecution.from_record(row) for row in execution_rows],
            profiles=[Profile.from_record(row) for row in profile_rows],
        )

    async def update_project_source(
        self,
        project_id: str,
        *,
        data_table: str,
        filter_column: Optional[str] = None,
        filter_value: Optional[str] = None,
        filter_type: Optional[str] = None,
    ) -> bool:
        self._require_admin("edit project sources")
        values = {
            "data_table": _clean_name(data_table, "Data table"),
            "filter_column": filter_column or None,
            "filter_value": filter_value or None,
            "filter_type": filter_type or None,
        }
        rows = await self.db.update("project", values, {"id": project_id})
        return bool(rows)

    async def add_execution(
        self,
        project_id: str,
        workflow_name: str,
        *,
        status: str = "success",
        duration_ms: Optional[int] = None,
        started_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> Any:
        self._require_admin("add executions")
        if not project_id:
            raise ValueError("Project is required")
        if duration_ms is not None and duration_ms < 0:
            raise ValueError("duration_ms must not be negative")
        started = started_at or datetime.now(timezone.utc)
        return await self.db.rpc(
            "add_real_execution",
            {
                "p_project_id": project_id,
                "p_workflow_name": _clean_name(workflow_name, "Workflow name"),
                "p_status": (status or "success").strip().lower(),
                "p_duration_ms": duration_ms,
                "p_started_at": started.isoformat(),
                "p_error_message": (error_message or "").strip() or None,
            },
        )

    async def bulk_import_executions(self, project_id: str, payload: str) -> BulkImportResult:
        """
        Import executions from ``name,status,duration_ms,started_at`` lines.

        Lines are imported independently; a bad line is counted and skipped.
        """
        self._require_admin("import executions")
        if not project_id or not (payload or "").strip():
            raise ValueError("Project and execution data are required")

        result = BulkImportResult()
        for line_number, columns in enumerate(csv.reader(io.StringIO(payload.strip())), start=1):
            fields = [column.strip() for column in columns] + ["", "", "", ""]
            name, status, duration_raw, date_raw = fields[:4]
            if not name:
                continue
            try:
                duration_ms = int(duration_raw) if duration_raw else None
                started_at = parse_timestamp(date_raw) if date_raw else None
                if date_raw and started_at is None:
                    raise ValueError(f"invalid date {date_raw!r}")
                await self.add_execution(
                    project_id,
                    name,
                    status=status or "success",
                    duration_ms=duration_ms,
                    started_at=started_at,
                )
            except (ValueError, DataSourceError) as exc:
                logger.warning("Bulk import line %s failed: %s", line_number, exc)
                result.error_count += 1
                result.errors.append(f"line {line_number}: {exc}")
                continue
            result.success_count += 1

        log(
            "[admin] bulk import finished",
            project=project_id,
            imported=result.success_count,
            failed=result.error_count,
        )
        return result

    async def upload_tenant_document(
        self,
        tenant_id: str,
        filename: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> str:
        self._require_admin("upload tenant documents")
        safe_name = _clean_name(filename, "File name").replace("/", "_")
        path = f"{tenant_id}/{int(time.time() * 1000)}-{safe_name}"
        return await self.db.upload(CONFIG.supabase_storage_bucket, path, data, content_type=content_type)
