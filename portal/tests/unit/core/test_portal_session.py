"""Tests for the session controller: gating, stale results, notices and teardown."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Dict, List

import pytest

from portal.auth import Identity
from portal.core.live_refresh import LiveRefresh
from portal.core.portal_session import (
    AdminSession,
    DashboardSession,
    SessionRegistry,
    reconcile_selection,
)
from portal.core.preferences import InMemoryViewModeStore
from portal.core.role_resolver import RoleState
from portal.db.models import DateRange, Profile, Project, ViewMode
from portal.errors import AuthRequired
from portal.tests.fakes import FakeDatabase, execution_row, profile_row, project_row


JANUARY = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))
USER = Identity(id="u1", email="u1@example.com")


def _tables(role: str = "admin", project_id=None) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "profiles": [profile_row("u1", role, project_id=project_id)],
        "project": [
            project_row("pA", "Alpha", "orders"),
            project_row("pB", "Beta", "executions"),
        ],
        "orders": [{"id": "order-1", "created_at": "2024-01-05T00:00:00Z"}],
        "executions": [
            execution_row("e1", "2024-01-10T00:00:00Z"),
            execution_row("e2", "2024-01-11T00:00:00Z", status="error"),
        ],
        "mulchbg": [],
        "chat_message": [],
    }


def _session(db: FakeDatabase, updates=None, **kwargs) -> DashboardSession:
    on_update = updates.append if updates is not None else None
    return DashboardSession(USER, db, InMemoryViewModeStore(), on_update=on_update, date_range=JANUARY, **kwargs)


def _data_queries(db: FakeDatabase) -> List[str]:
    return [table for table in db.queried_tables() if table in {"orders", "executions"}]


def test_missing_identity_raises_auth_required() -> None:
    with pytest.raises(AuthRequired):
        DashboardSession(None, FakeDatabase(), InMemoryViewModeStore())


def test_refresh_before_role_resolution_is_a_noop() -> None:
    db = FakeDatabase(_tables())
    session = _session(db)

    assert asyncio.run(session.refresh()) is None
    assert db.queries == []
    assert session.data is None


def test_start_aggregates_exactly_once_after_role_load() -> None:
    db = FakeDatabase(_tables())
    updates: list = []
    session = _session(db, updates)

    snapshot = asyncio.run(session.start())

    assert sorted(_data_queries(db)) == ["executions", "orders"]
    assert len(updates) == 1
    assert snapshot["selection"] == "all"
    assert snapshot["role"]["effective_mode"] == "admin"
    assert snapshot["kpis"]["total_processed"] == 3


def test_stale_selection_result_is_discarded() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        updates: list = []
        session = _session(db, updates)
        await session.start()

        gate = db.gate("orders")
        slow = asyncio.create_task(session.set_selection("pA"))
        for _ in range(5):
            await asyncio.sleep(0)

        await session.set_selection("pB")
        after_b = session.snapshot()

        gate.set()
        await slow
        return session, updates, after_b

    session, updates, after_b = asyncio.run(scenario())

    assert after_b["selection"] == "pB"
    assert session.selection == "pB"
    assert session.data.executions.tables == ["executions"]
    assert {record["id"] for record in session.snapshot()["executions"]} == {"e1", "e2"}
    assert updates[-1]["tables"] == ["executions"]
    assert all(update["tables"] != ["orders"] for update in updates)


def test_full_fetch_failure_keeps_last_known_good_data() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        session = _session(db, selection="pB")
        await session.start()
        good = session.data
        db.fail("executions", "connection reset")
        snapshot = await session.refresh()
        return session, good, snapshot

    session, good, snapshot = asyncio.run(scenario())

    assert session.data is good
    assert "executions" in snapshot["notice"]
    assert [record["id"] for record in snapshot["executions"]] == ["e2", "e1"]


def test_notice_clears_after_successful_refresh() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        session = _session(db, selection="pB")
        await session.start()
        db.fail("executions")
        await session.refresh()
        db.failures.clear()
        return await session.refresh()

    assert asyncio.run(scenario())["notice"] is None


def test_partial_failure_surfaces_notice_with_remaining_data() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        db.fail("orders")
        session = _session(db)
        return await session.start()

    snapshot = asyncio.run(scenario())

    assert "orders" in snapshot["notice"]
    assert [failure["table"] for failure in snapshot["failures"]] == ["orders"]
    assert {record["id"] for record in snapshot["executions"]} == {"e1", "e2"}


def test_live_change_triggers_refresh_through_same_path() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        updates: list = []
        session = _session(db, updates, live=LiveRefresh(db, debounce_seconds=0.01))
        await session.start()
        watched = sorted(channel.table for channel in db.channels)
        db.tables["executions"].append(execution_row("e3", "2024-01-12T00:00:00Z"))
        db.emit("executions")
        await asyncio.sleep(0.05)
        await session.close()
        return watched, updates

    watched, updates = asyncio.run(scenario())

    assert watched == ["chat_message", "executions", "mulchbg", "orders", "project"]
    assert len(updates) == 2
    assert updates[-1]["kpis"]["total_processed"] == 4


def test_live_subscription_follows_the_selected_tables() -> None:
    async def scenario():
        tables = _tables()
        tables["project"].append(project_row("pC", "Gamma", "mulchbg"))
        db = FakeDatabase(tables)
        session = _session(db, live=LiveRefresh(db, debounce_seconds=0.01), selection="pA")
        await session.start()
        before = sorted(channel.table for channel in db.channels)
        await session.set_selection("pC")
        after = sorted(channel.table for channel in db.channels)
        delivered = (db.emit("mulchbg"), db.emit("chat_message"), db.emit("orders"))
        await session.close()
        return before, after, delivered, db.channels

    before, after, delivered, remaining = asyncio.run(scenario())

    assert before == ["chat_message", "executions", "mulchbg", "orders", "project"]
    assert after == ["chat_message", "executions", "mulchbg", "project"]
    assert delivered == (1, 1, 0)
    assert remaining == []


def test_channel_failure_leaves_the_session_usable(caplog) -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        db.fail("channel:mulchbg")
        session = _session(db, live=LiveRefresh(db, debounce_seconds=0.01))
        snapshot = await session.start()
        refreshed = await session.refresh()
        await session.close()
        return db, snapshot, refreshed

    db, snapshot, refreshed = asyncio.run(scenario())

    assert snapshot["kpis"]["total_processed"] == 3
    assert refreshed is not None
    assert db.channels == []
    assert any("Live refresh unavailable" in message for message in caplog.messages)


def test_failed_execution_load_cancels_sibling_loads() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        db.fail("executions")
        db.gate("chat_message")
        session = _session(db, selection="pB")
        snapshot = await session.start()
        pending = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        return snapshot, pending

    snapshot, pending = asyncio.run(scenario())

    assert "executions" in snapshot["notice"]
    assert pending == []


def test_snapshot_includes_documents() -> None:
    tables = _tables()
    tables["documents"] = [
        {"id": 1, "content": "Onboarding guide", "metadata": {"source": "upload"}},
        {"id": 2, "content": "Pricing", "metadata": None},
    ]
    db = FakeDatabase(tables)

    snapshot = asyncio.run(_session(db).start())

    assert [document["id"] for document in snapshot["documents"]] == ["2", "1"]
    assert snapshot["documents"][1]["metadata"] == {"source": "upload"}


def test_close_releases_subscriptions_and_stops_updates() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        updates: list = []
        session = _session(db, updates, live=LiveRefresh(db, debounce_seconds=0.01))
        await session.start()
        await session.close()
        delivered = db.emit("executions")
        await asyncio.sleep(0.05)
        result = await session.refresh()
        return db, updates, delivered, result, session

    db, updates, delivered, result, session = asyncio.run(scenario())

    assert db.channels == []
    assert delivered == 0
    assert result is None
    assert len(updates) == 1
    assert session.closed is True


def test_load_finishing_after_close_is_dropped() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        updates: list = []
        session = _session(db, updates, selection="pA")
        gate = db.gate("orders")
        start = asyncio.create_task(session.start())
        for _ in range(10):
            await asyncio.sleep(0)
        await session.close()
        gate.set()
        await start
        return session, updates

    session, updates = asyncio.run(scenario())

    assert session.data is None
    assert updates == []


def test_switch_to_client_mode_pins_assigned_project() -> None:
    async def scenario():
        db = FakeDatabase(_tables(role="owner", project_id="pB"))
        session = _session(db)
        await session.start()
        before = session.selection
        switched = await session.switch_view_mode(ViewMode.CLIENT)
        return before, switched, session

    before, switched, session = asyncio.run(scenario())

    assert before == "all"
    assert switched is True
    assert session.selection == "pB"
    assert [project.id for project in session.projects] == ["pB"]


def test_switch_to_admin_denied_for_viewer() -> None:
    async def scenario():
        db = FakeDatabase(_tables(role="viewer", project_id="pB"))
        session = _session(db)
        await session.start()
        generation = session.generation
        return await session.switch_view_mode(ViewMode.ADMIN), generation, session

    allowed, generation, session = asyncio.run(scenario())

    assert allowed is False
    assert session.generation == generation


def test_zero_access_user_gets_empty_dashboard() -> None:
    db = FakeDatabase({"profiles": []})

    snapshot = asyncio.run(_session(db).start())

    assert snapshot["role"]["has_access"] is False
    assert snapshot["executions"] == []
    assert snapshot["kpis"]["success_rate"] == 0


def test_admin_session_loads_overview() -> None:
    db = FakeDatabase({**_tables(), "tenants": [{"id": "tenant-1", "name": "Acme"}]})
    session = AdminSession(USER, db, InMemoryViewModeStore(), date_range=JANUARY)

    snapshot = asyncio.run(session.start())

    assert [profile["id"] for profile in snapshot["profiles"]] == ["profile-u1"]
    assert snapshot["tenants"] == [{"id": "tenant-1", "name": "Acme"}]
    assert snapshot["notice"] is None


def test_admin_session_in_client_mode_reports_unauthorized() -> None:
    db = FakeDatabase(_tables(role="viewer"))
    session = AdminSession(USER, db, InMemoryViewModeStore(), date_range=JANUARY)

    snapshot = asyncio.run(session.start())

    assert snapshot["profiles"] == []
    assert "Admin access required" in snapshot["notice"]


# ---------------------------------------------------------------------------
# Selection reconciliation
# ---------------------------------------------------------------------------


def _state(role: str, mode: ViewMode, project_id=None) -> RoleState:
    privileged = role in {"admin", "owner"}
    return RoleState(
        profile=Profile(id="p", email=None, role=role, tenant_id="t", project_id=project_id),
        view_mode=mode,
        can_switch_roles=privileged,
        assigned_project_id=project_id,
        is_admin=role == "admin",
        is_owner=role == "owner",
        loading=False,
    )


PROJECTS = [Project(id="p1", name="One"), Project(id="p2", name="Two")]


def test_reconcile_pins_client_to_assigned_project() -> None:
    assert reconcile_selection(_state("viewer", ViewMode.CLIENT, "p2"), PROJECTS[1:], "all") == "p2"
    assert reconcile_selection(_state("admin", ViewMode.CLIENT, "p2"), PROJECTS[1:], "p1") == "p2"


def test_reconcile_replaces_all_with_single_project() -> None:
    assert reconcile_selection(_state("admin", ViewMode.ADMIN), PROJECTS[:1], "all") == "p1"


def test_reconcile_keeps_accessible_selection_and_all_for_admins() -> None:
    state = _state("admin", ViewMode.ADMIN)

    assert reconcile_selection(state, PROJECTS, "p2") == "p2"
    assert reconcile_selection(state, PROJECTS, "all") == "all"
    assert reconcile_selection(state, PROJECTS, "gone") == "all"


def test_reconcile_falls_back_to_first_project_outside_admin_mode() -> None:
    state = _state("owner", ViewMode.CLIENT)

    assert reconcile_selection(state, PROJECTS, "gone") == "p1"
    assert reconcile_selection(state, [], "gone") == "all"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_reopen_closes_previous_session() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        registry = SessionRegistry()
        first = await registry.open(_session(db, live=LiveRefresh(db, debounce_seconds=0.01)))
        await first.start()
        second = await registry.open(_session(db))
        return registry, first, second, db

    registry, first, second, db = asyncio.run(scenario())

    assert first.closed is True
    assert second.closed is False
    assert registry.get("u1", "dashboard") is second
    assert db.channels == []


def test_registry_close_all_and_close_user() -> None:
    async def scenario():
        db = FakeDatabase(_tables())
        registry = SessionRegistry()
        dashboard = await registry.open(_session(db))
        admin = await registry.open(AdminSession(USER, db, InMemoryViewModeStore()))
        await registry.close_user("u1")
        remaining = len(registry)
        other = await registry.open(DashboardSession(Identity(id="u2"), db, InMemoryViewModeStore()))
        await registry.close_all()
        return dashboard, admin, other, remaining, len(registry)

    dashboard, admin, other, remaining, final = asyncio.run(scenario())

    assert dashboard.closed and admin.closed and other.closed
    assert remaining == 0
    assert final == 0
