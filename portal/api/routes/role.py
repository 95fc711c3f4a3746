"""Role state, view mode and project directory endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.portal_session import reconcile_selection
from ...core.role_resolver import RoleResolver
from ...db.models import ALL_PROJECTS
from ..dependencies import get_role_resolver
from ..schemas import ProjectListResponse, ProjectResponse, RoleStateResponse, ViewModeUpdateRequest

router = APIRouter()


def _role_response(resolver: RoleResolver) -> RoleStateResponse:
    return RoleStateResponse(
        **resolver.state.to_dict(),
        show_admin_features=resolver.should_show_admin_features(),
    )


@router.get("/role", response_model=RoleStateResponse, status_code=status.HTTP_200_OK)
def get_role(resolver: RoleResolver = Depends(get_role_resolver)) -> RoleStateResponse:
    """Return the caller's resolved role and effective view mode."""

    return _role_response(resolver)


@router.put("/role/view-mode", response_model=RoleStateResponse, status_code=status.HTTP_200_OK)
def update_view_mode(
    payload: ViewModeUpdateRequest,
    resolver: RoleResolver = Depends(get_role_resolver),
) -> RoleStateResponse:
    """Switch between admin and client view; admin requires an admin or owner role."""

    if not resolver.switch_view_mode(payload.mode):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin view requires an admin or owner role",
        )
    return _role_response(resolver)


@router.get("/projects", response_model=ProjectListResponse, status_code=status.HTTP_200_OK)
async def list_projects(
    selection: str = Query(ALL_PROJECTS, description="Requested project id or 'all'"),
    resolver: RoleResolver = Depends(get_role_resolver),
) -> ProjectListResponse:
    """List the projects visible in the current view mode and the selection to use."""

    projects = await resolver.get_accessible_projects()
    return ProjectListResponse(
        projects=[ProjectResponse(**project.to_dict()) for project in projects],
        selection=reconcile_selection(resolver.state, projects, selection),
    )
