"""Tests for the dashboard REST routes."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import date

import pytest
from fastapi import HTTPException

from portal.api.routes import dashboard
from portal.auth import Identity
from portal.core.preferences import InMemoryViewModeStore
from portal.core.role_resolver import RoleResolver
from portal.db.models import DateRange
from portal.tests.fakes import FakeDatabase, execution_row, profile_row, project_row


JANUARY = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
USER = Identity(id="u1", email="u1@example.com", access_token="token")


@pytest.fixture(autouse=True)
def _empty_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(dashboard, "_last_good", OrderedDict())


def _db(role: str = "admin", project_id=None) -> FakeDatabase:
    return FakeDatabase(
        {
            "profiles": [profile_row("u1", role, project_id=project_id)],
            "project": [project_row("p1", "Alpha", "executions")],
            "executions": [
                execution_row("e1", "2024-01-10T00:00:00Z"),
                execution_row("e2", "2024-01-12T00:00:00Z", status="failed"),
                execution_row("e0", "2023-12-01T00:00:00Z"),
            ],
            "mulchbg": [{"id": 1, "session_id": "s1", "message": '{"type": "ai", "content": "hi"}', "project_id": "p1"}],
            "chat_message": [],
        }
    )


def _dashboard(db: FakeDatabase, project: str = "all"):
    return asyncio.run(
        dashboard.get_dashboard(
            project=project,
            date_range=JANUARY,
            identity=USER,
            db=db,
            preferences=InMemoryViewModeStore(),
        )
    )


def test_dashboard_returns_records_and_kpis() -> None:
    response = _dashboard(_db())

    # A single accessible project replaces "all".
    assert response.selection == "p1"
    assert [record.id for record in response.executions] == ["e2", "e1"]
    assert response.kpis.total_processed == 2
    assert response.kpis.failed_ops == 1
    assert response.kpis.success_rate == pytest.approx(50.0)
    assert response.stale is False
    assert (response.date_from, response.date_to) == ("2024-01-01", "2024-01-31")


def test_dashboard_serves_last_known_data_when_source_fails() -> None:
    db = _db()
    _dashboard(db)
    db.fail("executions", "timeout")

    response = _dashboard(db)

    assert response.stale is True
    assert "executions" in response.notice
    assert [record.id for record in response.executions] == ["e2", "e1"]


def test_dashboard_without_cached_data_fails_with_502() -> None:
    db = _db()
    db.fail("executions")

    with pytest.raises(HTTPException) as exc:
        _dashboard(db)

    assert exc.value.status_code == 502


def test_dashboard_session_releases_resources() -> None:
    db = _db()

    _dashboard(db)

    assert db.channels == []


def test_client_without_assignment_gets_empty_dashboard() -> None:
    response = _dashboard(_db(role="viewer"))

    assert response.executions == []
    assert response.kpis.total_processed == 0


def _resolver(db: FakeDatabase) -> RoleResolver:
    resolver = RoleResolver(db, InMemoryViewModeStore())
    asyncio.run(resolver.resolve("u1"))
    return resolver


def test_conversations_include_parsed_content_and_sessions() -> None:
    response = asyncio.run(dashboard.get_conversations(project="all", resolver=_resolver(_db())))

    assert response.selection == "p1"
    assert [message.parsed.content for message in response.messages] == ["hi"]
    assert response.messages[0].parsed.type == "ai"
    assert list(response.sessions) == ["s1"]


def test_conversations_for_unknown_user_are_empty() -> None:
    db = FakeDatabase({"profiles": []})

    response = asyncio.run(dashboard.get_conversations(project="all", resolver=_resolver(db)))

    assert response.messages == []
    assert db.queried_tables() == ["profiles"]
