"""
Admin endpoints for managing users, tenants, clients, projects and execution data.

Every route requires the caller to be in effective admin view mode.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from ...config import CONFIG
from ...core.role_resolver import RoleResolver
from ...errors import DataSourceError, Unauthorized
from ...services.admin import AdminService
from ..dependencies import get_role_resolver
from ..schemas import (
    AdminOverviewResponse,
    BulkImportRequest,
    BulkImportResponse,
    ClientCreateRequest,
    DocumentUploadResponse,
    ExecutionCreateRequest,
    MutationResponse,
    ProfileResponse,
    ProjectAssignmentRequest,
    ProjectCreateRequest,
    ProjectDetailsResponse,
    ProjectExecutionResponse,
    ProjectResponse,
    ProjectSourceUpdateRequest,
    RoleUpdateRequest,
    TenantAssignmentRequest,
    TenantCreateRequest,
)

router = APIRouter(prefix="/admin")
logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 25 * 1024 * 1024


def get_admin_service(resolver: RoleResolver = Depends(get_role_resolver)) -> AdminService:
    return AdminService(resolver.db, resolver.state)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, Unauthorized):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("Admin operation failed: %s", exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.get("/overview", response_model=AdminOverviewResponse, status_code=status.HTTP_200_OK)
async def get_overview(service: AdminService = Depends(get_admin_service)) -> AdminOverviewResponse:
    try:
        overview = await service.overview()
    except (Unauthorized, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return AdminOverviewResponse(
        profiles=[ProfileResponse(**asdict(profile)) for profile in overview.profiles],
        projects=[ProjectResponse(**project.to_dict()) for project in overview.projects],
        tenants=overview.tenants,
        clients=overview.clients,
    )


@router.get("/profiles", response_model=List[ProfileResponse], status_code=status.HTTP_200_OK)
async def list_profiles(service: AdminService = Depends(get_admin_service)) -> List[ProfileResponse]:
    try:
        profiles = await service.list_profiles()
    except (Unauthorized, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return [ProfileResponse(**asdict(profile)) for profile in profiles]


@router.patch("/profiles/{profile_id}/role", response_model=MutationResponse, status_code=status.HTTP_200_OK)
async def update_user_role(
    profile_id: str,
    payload: RoleUpdateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        updated = await service.update_user_role(profile_id, payload.role)
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=updated)


@router.put("/profiles/{profile_id}/project", response_model=MutationResponse, status_code=status.HTTP_200_OK)
async def assign_project(
    profile_id: str,
    payload: ProjectAssignmentRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    """Assign a project to a user; a null ``project_id`` removes the assignment."""

    try:
        updated = await service.assign_project(profile_id, payload.project_id)
    except (Unauthorized, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=updated)


@router.put("/profiles/{profile_id}/tenant", response_model=MutationResponse, status_code=status.HTTP_200_OK)
async def assign_tenant(
    profile_id: str,
    payload: TenantAssignmentRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        updated = await service.assign_tenant(profile_id, payload.tenant_id)
    except (Unauthorized, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=updated)


@router.post("/tenants", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        tenant = await service.create_tenant(payload.name)
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=tenant is not None, data=tenant)


@router.post("/clients", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    payload: ClientCreateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        client = await service.create_client(payload.name, payload.external_id)
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=client is not None, data=client)


@router.post("/projects", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        result = await service.create_project(payload.name, payload.description)
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=True, data=result)


@router.get("/projects/{project_id}", response_model=ProjectDetailsResponse, status_code=status.HTTP_200_OK)
async def get_project_details(
    project_id: str,
    service: AdminService = Depends(get_admin_service),
) -> ProjectDetailsResponse:
    """Recent executions of a project and the users assigned to it."""
    try:
        details = await service.project_details(project_id)
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return ProjectDetailsResponse(
        project_id=details.project_id,
        executions=[ProjectExecutionResponse(**execution.to_dict()) for execution in details.executions],
        profiles=[ProfileResponse(**asdict(profile)) for profile in details.profiles],
    )


@router.patch("/projects/{project_id}/source", response_model=MutationResponse, status_code=status.HTTP_200_OK)
async def update_project_source(
    project_id: str,
    payload: ProjectSourceUpdateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    """Point a project at a data table, optionally narrowed by a column filter."""

    try:
        updated = await service.update_project_source(
            project_id,
            data_table=payload.data_table,
            filter_column=payload.filter_column,
            filter_value=payload.filter_value,
            filter_type=payload.filter_type,
        )
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=updated)


@router.post("/executions", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_execution(
    payload: ExecutionCreateRequest,
    service: AdminService = Depends(get_admin_service),
) -> MutationResponse:
    try:
        result = await service.add_execution(
            payload.project_id,
            payload.workflow_name,
            status=payload.status,
            duration_ms=payload.duration_ms,
            started_at=payload.started_at,
            error_message=payload.error_message,
        )
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return MutationResponse(success=True, data=result)


@router.post("/executions/bulk", response_model=BulkImportResponse, status_code=status.HTTP_200_OK)
async def bulk_import_executions(
    payload: BulkImportRequest,
    service: AdminService = Depends(get_admin_service),
) -> BulkImportResponse:
    try:
        result = await service.bulk_import_executions(payload.project_id, payload.data)
    except (Unauthorized, ValueError) as exc:
        raise _http_error(exc) from exc
    return BulkImportResponse(**asdict(result))


@router.post(
    "/tenants/{tenant_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_tenant_document(
    tenant_id: str,
    file: UploadFile = File(..., description="Document to store for the tenant"),
    service: AdminService = Depends(get_admin_service),
) -> DocumentUploadResponse:
    """Store a document in the tenant's folder of the documents bucket."""

    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file was empty.")
    if len(data) > MAX_DOCUMENT_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Uploaded file exceeds the maximum allowed size.",
        )

    try:
        path = await service.upload_tenant_document(
            tenant_id,
            file.filename or "document",
            data,
            content_type=file.content_type,
        )
    except (Unauthorized, ValueError, DataSourceError) as exc:
        raise _http_error(exc) from exc
    return DocumentUploadResponse(path=path, bucket=CONFIG.supabase_storage_bucket)
