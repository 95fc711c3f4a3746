"""Environment-driven runtime settings for the analytics portal."""

from __future__ import annotations

import os
from pathlib import Path
from types import SimpleNamespace
from typing import Optional, Sequence, Tuple


PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _env_str(
    name: str,
    default: Optional[str] = None,
    *,
    alias: Optional[str] = None,
    empty_to_none: bool = True,
) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    value = raw.strip()
    if not value and empty_to_none:
        return None if default is None else default
    return value if value else default


def _env_bool(name: str, default: bool, *, alias: Optional[str] = None) -> bool:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, *, alias: Optional[str] = None) -> float:
    raw = os.getenv(name)
    if raw is None and alias:
        raw = os.getenv(alias)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_tuple(name: str, default: Sequence[str]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return tuple(default)
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or tuple(default)


class Settings(SimpleNamespace):
    """Simple attribute container used throughout the codebase."""

CONFIG = Settings()


def _compute_values() -> tuple[dict[str, object], dict[str, object]]:
    # -----------------------------------------------------------------------
    # RUNTIME ENVIRONMENT
    # -----------------------------------------------------------------------
    environment = _env_str("ENV", "prod", empty_to_none=False).lower()
    if environment not in {"dev", "prod", "test"}:
        environment = "prod"
    is_development = environment == "dev"

    # -----------------------------------------------------------------------
    # SUPABASE
    # -----------------------------------------------------------------------
    supabase_url = _env_str("SUPABASE_URL", None)
    supabase_anon_key = _env_str("SUPABASE_ANON_KEY", None)
    supabase_service_role_key = _env_str("SUPABASE_SERVICE_ROLE_KEY", None)
    supabase_jwt_secret = _env_str("SUPABASE_JWT_SECRET", None)
    supabase_storage_bucket = _env_str(
        "SUPABASE_STORAGE_BUCKET",
        "tenant-documents",
        empty_to_none=False,
    )
    supabase_configured = bool(supabase_url) and bool(supabase_anon_key or supabase_service_role_key)

    # -----------------------------------------------------------------------
    # AGGREGATION LIMITS
    # -----------------------------------------------------------------------
    execution_row_limit = _env_int("EXECUTION_ROW_LIMIT", 1000)
    aggregate_row_limit = _env_int("AGGREGATE_ROW_LIMIT", 500)
    conversation_admin_mulch_limit = _env_int("CONVERSATION_ADMIN_MULCH_LIMIT", 30)
    conversation_client_mulch_limit = _env_int("CONVERSATION_CLIENT_MULCH_LIMIT", 20)
    conversation_chat_limit = _env_int("CONVERSATION_CHAT_LIMIT", 20)
    document_admin_limit = _env_int("DOCUMENT_ADMIN_LIMIT", 50)
    document_client_limit = _env_int("DOCUMENT_CLIENT_LIMIT", 10)
    project_detail_execution_limit = _env_int("PROJECT_DETAIL_EXECUTION_LIMIT", 50)
    default_date_range_days = _env_int("DEFAULT_DATE_RANGE_DAYS", 30)
    placeholder_duration_ms = _env_int("PLACEHOLDER_DURATION_MS", 1000)
    data_volume_mb_per_record = _env_float("DATA_VOLUME_MB_PER_RECORD", 0.5)

    # -----------------------------------------------------------------------
    # LIVE REFRESH
    # -----------------------------------------------------------------------
    live_refresh_debounce_seconds = _env_float("LIVE_REFRESH_DEBOUNCE_SECONDS", 1.0)
    dashboard_live_tables = _env_tuple("DASHBOARD_LIVE_TABLES", ("executions", "project"))
    admin_live_tables = _env_tuple("ADMIN_LIVE_TABLES", ("profiles", "project", "execution"))

    # -----------------------------------------------------------------------
    # PREFERENCES
    # -----------------------------------------------------------------------
    view_mode_store_path = _env_str(
        "VIEW_MODE_STORE_PATH",
        str(PROJECT_ROOT / "data" / "view_modes.json"),
        empty_to_none=False,
    )

    # -----------------------------------------------------------------------
    # API
    # -----------------------------------------------------------------------
    api_title = _env_str("API_TITLE", "Client Analytics Portal API", empty_to_none=False)
    api_version = _env_str("API_VERSION", "1.0.0", empty_to_none=False)
    api_cors_origins = _env_tuple("API_CORS_ORIGINS", ())

    globals_map = {
        "ENVIRONMENT": environment,
        "IS_DEVELOPMENT": is_development,
        "SUPABASE_URL": supabase_url,
        "SUPABASE_ANON_KEY": supabase_anon_key,
        "SUPABASE_SERVICE_ROLE_KEY": supabase_service_role_key,
        "SUPABASE_JWT_SECRET": supabase_jwt_secret,
        "SUPABASE_STORAGE_BUCKET": supabase_storage_bucket,
        "EXECUTION_ROW_LIMIT": execution_row_limit,
        "AGGREGATE_ROW_LIMIT": aggregate_row_limit,
        "LIVE_REFRESH_DEBOUNCE_SECONDS": live_refresh_debounce_seconds,
        "VIEW_MODE_STORE_PATH": view_mode_store_path,
    }

    config_map = {
        "environment": environment,
        "is_development": is_development,
        "supabase_url": supabase_url,
        "supabase_anon_key": supabase_anon_key,
        "supabase_service_role_key": supabase_service_role_key,
        "supabase_jwt_secret": supabase_jwt_secret,
        "supabase_storage_bucket": supabase_storage_bucket,
        "supabase_configured": supabase_configured,
        "execution_row_limit": execution_row_limit,
        "aggregate_row_limit": aggregate_row_limit,
        "conversation_admin_mulch_limit": conversation_admin_mulch_limit,
        "conversation_client_mulch_limit": conversation_client_mulch_limit,
        "conversation_chat_limit": conversation_chat_limit,
        "document_admin_limit": document_admin_limit,
        "document_client_limit": document_client_limit,
        "project_detail_execution_limit": project_detail_execution_limit,
        "default_date_range_days": default_date_range_days,
        "placeholder_duration_ms": placeholder_duration_ms,
        "data_volume_mb_per_record": data_volume_mb_per_record,
        "live_refresh_debounce_seconds": live_refresh_debounce_seconds,
        "dashboard_live_tables": dashboard_live_tables,
        "admin_live_tables": admin_live_tables,
        "view_mode_store_path": view_mode_store_path,
        "api_title": api_title,
        "api_version": api_version,
        "api_cors_origins": api_cors_origins,
    }

    return globals_map, config_map


def reload_config() -> None:
    globals_map, config_map = _compute_values()
    globals().update(globals_map)
    CONFIG.__dict__.update(config_map)


def load_envs(global_dir: str) -> None:
    """Load environment variables from the project ``.env`` file and refresh CONFIG."""
    from dotenv import load_dotenv

    load_dotenv(os.path.join(global_dir, ".env"))
    reload_config()


# Load once on import so downstream modules can use CONFIG immediately.
reload_config()
