"""
Database module for the analytics portal.

This module provides:
- The async Supabase client and its query boundary
- Backend-neutral query descriptions
- Row and record models shared by the aggregators
"""

from .client import DatabaseClient, SupabaseDatabaseClient, get_database_client
from .query import Filter, Query

__all__ = [
    "DatabaseClient",
    "SupabaseDatabaseClient",
    "get_database_client",
    "Filter",
    "Query",
]
