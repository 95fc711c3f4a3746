"""Tests for the role and project directory routes."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import HTTPException

from portal.api.routes import role as role_routes
from portal.api.schemas import ViewModeUpdateRequest
from portal.core.preferences import InMemoryViewModeStore
from portal.core.role_resolver import RoleResolver
from portal.tests.fakes import FakeDatabase, profile_row, project_row


def _resolver(role: str, project_id=None) -> RoleResolver:
    db = FakeDatabase(
        {
            "profiles": [profile_row("u1", role, project_id=project_id)],
            "project": [project_row("p2", "Beta"), project_row("p1", "Alpha")],
        }
    )
    resolver = RoleResolver(db, InMemoryViewModeStore())
    asyncio.run(resolver.resolve("u1"))
    return resolver


def test_get_role_reports_effective_mode() -> None:
    response = role_routes.get_role(_resolver("owner"))

    assert response.role == "owner"
    assert response.effective_mode == "admin"
    assert response.show_admin_features is True
    assert response.loading is False


def test_view_mode_switch_round_trip() -> None:
    resolver = _resolver("admin")

    client = role_routes.update_view_mode(ViewModeUpdateRequest(mode="client"), resolver)
    admin = role_routes.update_view_mode(ViewModeUpdateRequest(mode="ADMIN"), resolver)

    assert client.effective_mode == "client"
    assert client.show_admin_features is False
    assert admin.effective_mode == "admin"


def test_viewer_cannot_switch_to_admin() -> None:
    with pytest.raises(HTTPException) as exc:
        role_routes.update_view_mode(ViewModeUpdateRequest(mode="admin"), _resolver("viewer", "p1"))

    assert exc.value.status_code == 403


def test_invalid_mode_is_rejected_by_schema() -> None:
    with pytest.raises(ValueError):
        ViewModeUpdateRequest(mode="superuser")


def test_admin_project_list_is_sorted_and_keeps_all() -> None:
    response = asyncio.run(role_routes.list_projects(selection="all", resolver=_resolver("admin")))

    assert [project.name for project in response.projects] == ["Alpha", "Beta"]
    assert response.selection == "all"


def test_client_project_list_pins_assignment() -> None:
    response = asyncio.run(role_routes.list_projects(selection="p2", resolver=_resolver("viewer", "p1")))

    assert [project.id for project in response.projects] == ["p1"]
    assert response.selection == "p1"
