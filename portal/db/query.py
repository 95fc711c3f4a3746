"""Backend-neutral description of a filtered, ordered, bounded table read."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple


SUPPORTED_OPERATORS = ("eq", "neq", "gte", "lte", "like", "ilike")


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class Query:
    table: str
    columns: str = "*"
    filters: Tuple[Filter, ...] = field(default_factory=tuple)
    order: Optional[str] = None
    descending: bool = True
    limit: Optional[int] = None

    def where(self, column: str, op: str, value: Any) -> "Query":
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    def eq(self, column: str, value: Any) -> "Query":
        return self.where(column, "eq", value)

    def filter_value(self, column: str, op: str = "eq") -> Any:
        """Return the value of the first filter on ``column`` with ``op``, if any."""
        for entry in self.filters:
            if entry.column == column and entry.op == op:
                return entry.value
        return None


__all__ = ["Filter", "Query", "SUPPORTED_OPERATORS"]
