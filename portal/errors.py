"""Exception types raised by the portal's data-access layer."""

from __future__ import annotations

from typing import Optional


class PortalError(Exception):
    """Base class for portal failures."""


class AuthRequired(PortalError):
    """No authenticated session is available."""


class Unauthorized(PortalError):
    """A privileged operation was attempted without effective admin access."""


class DataSourceError(PortalError):
    """A query against the relational data source failed."""

    def __init__(self, table: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table
        self.cause = cause


class FullFetchFailure(PortalError):
    """The only relevant table for a fetch could not be read."""

    def __init__(self, table: str, cause: Optional[BaseException] = None) -> None:
        detail = f" ({cause})" if cause else ""
        super().__init__(f"Failed to fetch records from {table}{detail}")
        self.table = table
        self.cause = cause


__all__ = [
    "PortalError",
    "AuthRequired",
    "Unauthorized",
    "DataSourceError",
    "FullFetchFailure",
]
