"""Repository-wide pytest fixtures."""

from __future__ import annotations

from collections.abc import Generator

import pytest

from portal.auth import Identity
from portal.config import reload_config


@pytest.fixture(autouse=True)
def _set_default_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Generator[None, None, None]:
    """Point configuration at a fake Supabase project and a throwaway preference file."""

    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("VIEW_MODE_STORE_PATH", str(tmp_path / "view_modes.json"))
    monkeypatch.setenv("LIVE_REFRESH_DEBOUNCE_SECONDS", "0.01")
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def identity() -> Identity:
    """Reusable authenticated identity fixture."""

    return Identity(id="user-123", email="test@example.com", access_token="token-abc")
