"""FastAPI application exposing the portal's JSON API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import CONFIG, PROJECT_ROOT, load_envs
from ..core.portal_session import get_session_registry
from .routes import admin, auth, dashboard, role, websocket


load_envs(str(PROJECT_ROOT))


@asynccontextmanager
async def lifespan(api_app: FastAPI) -> AsyncIterator[None]:
    yield
    # Release realtime channels held by views that are still open.
    await get_session_registry().close_all()


app = FastAPI(
    title=CONFIG.api_title,
    version=CONFIG.api_version,
    description=(
        "Role-aware analytics API for the client portal. "
        "Authenticate using a Supabase JWT in the Authorization header."
    ),
    lifespan=lifespan,
)


def _configure_cors(api_app: FastAPI) -> None:
    origins = list(CONFIG.api_cors_origins)
    if not origins:
        return

    api_app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_configure_cors(app)


@app.get("/health", tags=["health"])  # pragma: no cover - trivial fast check
def healthcheck() -> dict[str, str]:
    """Simple health endpoint for load balancers and smoke tests."""

    return {"status": "ok"}


app.include_router(auth.router, prefix="/v1", tags=["auth"])
app.include_router(role.router, prefix="/v1", tags=["role"])
app.include_router(dashboard.router, prefix="/v1", tags=["dashboard"])
app.include_router(admin.router, prefix="/v1", tags=["admin"])
app.include_router(websocket.router, prefix="/v1", tags=["websocket"])
