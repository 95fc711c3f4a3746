"""Tests for conversation aggregation and message parsing."""

from __future__ import annotations

import asyncio
import json

from portal.core.conversations import ConversationAggregator, group_by_session, parse_message
from portal.core.role_resolver import RoleState
from portal.db.models import ConversationMessage, Profile, ViewMode
from portal.tests.fakes import FakeDatabase


def _role(role: str, project_id=None) -> RoleState:
    privileged = role in {"admin", "owner"}
    return RoleState(
        profile=Profile(id="profile-1", email=None, role=role, tenant_id="tenant-1", project_id=project_id),
        view_mode=ViewMode.ADMIN if privileged else ViewMode.CLIENT,
        can_switch_roles=privileged,
        assigned_project_id=project_id,
        is_admin=role == "admin",
        is_owner=role == "owner",
        loading=False,
    )


def _chat(message_id: int, conversation: str, project_id: str, created_at: str = "2024-01-01T00:00:00Z"):
    return {
        "id": message_id,
        "content": f"chat {message_id}",
        "conversation_id": conversation,
        "created_at": created_at,
        "chat_conversation": {"project_id": project_id},
    }


def _mulch(row_id: int, session: str, project_id: str):
    return {"id": row_id, "session_id": session, "message": {"content": f"mulch {row_id}"}, "project_id": project_id}


def _db(mulch_count: int = 3, chat_count: int = 2) -> FakeDatabase:
    return FakeDatabase(
        {
            "mulchbg": [_mulch(i, f"s{i % 2}", "p1" if i % 2 else "p2") for i in range(1, mulch_count + 1)],
            "chat_message": [_chat(100 + i, f"c{i}", "p1" if i % 2 else "p2") for i in range(1, chat_count + 1)],
        }
    )


def test_admin_all_reads_both_sources_without_project_filter() -> None:
    db = _db()

    messages = asyncio.run(ConversationAggregator(db).fetch_conversations(_role("admin"), "all"))

    assert [message.source for message in messages] == ["mulchbg"] * 3 + ["chat"] * 2
    assert all(not query.filters for query in db.queries)


def test_results_are_mulch_first_each_in_descending_id_order() -> None:
    messages = asyncio.run(ConversationAggregator(_db()).fetch_conversations(_role("owner"), "all"))

    assert [message.id for message in messages] == ["3", "2", "1", "102", "101"]


def test_concrete_project_filters_both_sources() -> None:
    db = _db()

    messages = asyncio.run(ConversationAggregator(db).fetch_conversations(_role("admin"), "p1"))

    assert {message.project_id for message in messages} == {"p1"}
    assert [query.filter_value("project_id") for query in db.queries if query.table == "mulchbg"] == ["p1"]
    chat_query = next(query for query in db.queries if query.table == "chat_message")
    assert chat_query.filter_value("chat_conversation.project_id") == "p1"
    assert "chat_conversation!inner(project_id)" in chat_query.columns


def test_row_caps_depend_on_role() -> None:
    admin_db = _db(mulch_count=40, chat_count=25)
    client_db = _db(mulch_count=40, chat_count=25)
    for row in client_db.tables["mulchbg"] + [r["chat_conversation"] for r in client_db.tables["chat_message"]]:
        row["project_id"] = "p1"

    admin = asyncio.run(ConversationAggregator(admin_db).fetch_conversations(_role("admin"), "all"))
    client = asyncio.run(ConversationAggregator(client_db).fetch_conversations(_role("viewer", "p1"), "all"))

    assert sum(1 for m in admin if m.source == "mulchbg") == 30
    assert sum(1 for m in admin if m.source == "chat") == 20
    assert sum(1 for m in client if m.source == "mulchbg") == 20
    assert sum(1 for m in client if m.source == "chat") == 20


def test_client_without_assignment_gets_nothing() -> None:
    db = _db()

    assert asyncio.run(ConversationAggregator(db).fetch_conversations(_role("viewer"), "all")) == []
    assert db.queries == []


def test_failing_source_is_skipped() -> None:
    db = _db()
    db.fail("chat_message")

    messages = asyncio.run(ConversationAggregator(db).fetch_conversations(_role("admin"), "all"))

    assert [message.source for message in messages] == ["mulchbg"] * 3


def test_group_by_session_preserves_first_seen_order() -> None:
    messages = [
        ConversationMessage(id="1", session_id="b", message="x"),
        ConversationMessage(id="2", session_id="a", message="y"),
        ConversationMessage(id="3", session_id="b", message="z"),
        ConversationMessage(id="4", session_id="", message="w"),
    ]

    groups = group_by_session(messages)

    assert list(groups) == ["b", "a", "unknown"]
    assert [message.id for message in groups["b"]] == ["1", "3"]


def test_missing_session_ids_group_under_unknown() -> None:
    db = FakeDatabase({"mulchbg": [{"id": 1, "message": "x"}], "chat_message": []})

    messages = asyncio.run(ConversationAggregator(db).fetch_conversations(_role("admin"), "all"))

    assert messages[0].session_id == "unknown"


def test_parse_message_handles_json_strings_and_dicts() -> None:
    encoded = parse_message(json.dumps({"type": "Human", "content": "hello", "timestamp": "t"}))
    plain = parse_message("just text")
    role_based = parse_message({"role": "assistant", "text": "hi"})
    empty = parse_message(None)

    assert (encoded.content, encoded.type, encoded.timestamp) == ("hello", "human", "t")
    assert (plain.content, plain.type) == ("just text", "unknown")
    assert (role_based.content, role_based.type) == ("hi", "assistant")
    assert empty.content == "Empty message"


def test_parse_message_keeps_json_arrays_raw() -> None:
    parsed = parse_message("[1, 2]")

    assert parsed.content == "[1, 2]"
    assert parsed.type == "unknown"
