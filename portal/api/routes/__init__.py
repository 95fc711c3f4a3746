"""Route modules for the public API."""

from . import admin, auth, dashboard, role, websocket

__all__ = [
    "admin",
    "auth",
    "dashboard",
    "role",
    "websocket",
]
