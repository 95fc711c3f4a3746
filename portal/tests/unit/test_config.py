"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from portal import config
from portal.config import CONFIG, load_envs, reload_config


def test_defaults_apply_when_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("EXECUTION_ROW_LIMIT", "AGGREGATE_ROW_LIMIT", "DEFAULT_DATE_RANGE_DAYS", "DASHBOARD_LIVE_TABLES"):
        monkeypatch.delenv(name, raising=False)
    reload_config()

    assert CONFIG.execution_row_limit == 1000
    assert CONFIG.aggregate_row_limit == 500
    assert CONFIG.default_date_range_days == 30
    assert CONFIG.dashboard_live_tables == ("executions", "project")
    assert CONFIG.supabase_configured is True


def test_invalid_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXECUTION_ROW_LIMIT", "lots")
    monkeypatch.setenv("LIVE_REFRESH_DEBOUNCE_SECONDS", "soon")
    reload_config()

    assert CONFIG.execution_row_limit == 1000
    assert CONFIG.live_refresh_debounce_seconds == 1.0


def test_unknown_environment_is_treated_as_prod(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENV", "staging")
    reload_config()

    assert CONFIG.environment == "prod"
    assert config.ENVIRONMENT == "prod"


def test_table_lists_are_comma_separated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADMIN_LIVE_TABLES", "profiles, project,,tenants")
    monkeypatch.setenv("API_CORS_ORIGINS", "https://portal.example.com")
    reload_config()

    assert CONFIG.admin_live_tables == ("profiles", "project", "tenants")
    assert CONFIG.api_cors_origins == ("https://portal.example.com",)


def test_missing_supabase_keys_mark_unconfigured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUPABASE_ANON_KEY")
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY")
    reload_config()

    assert CONFIG.supabase_configured is False


def test_load_envs_reads_dotenv_file(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # dotenv writes os.environ directly; register the key so undo removes it.
    monkeypatch.setenv("CONVERSATION_CHAT_LIMIT", "")
    monkeypatch.delenv("CONVERSATION_CHAT_LIMIT")
    (tmp_path / ".env").write_text("CONVERSATION_CHAT_LIMIT=7\n", encoding="utf-8")

    load_envs(str(tmp_path))

    assert CONFIG.conversation_chat_limit == 7
