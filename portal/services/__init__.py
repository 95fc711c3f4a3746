"""Shared service exports."""

from .admin import AdminOverview, AdminService, BulkImportResult

__all__ = [
    "AdminOverview",
    "AdminService",
    "BulkImportResult",
]
