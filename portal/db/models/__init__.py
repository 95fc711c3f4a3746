"""
Database models and normalised record types for the analytics portal.

Rows arrive from Supabase as loosely typed dictionaries. Each physical table
gets its own dataclass with a ``from_record`` constructor so downstream
mapping code works against named fields instead of ad-hoc dictionary keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


ALL_PROJECTS = "all"
DEFAULT_DATA_TABLE = "executions"
UNKNOWN_SESSION = "unknown"


class ViewMode(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"

    @classmethod
    def parse(cls, value: Any) -> Optional["ViewMode"]:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            candidate = value.strip().lower()
            for member in cls:
                if member.value == candidate:
                    return member
        return None


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO8601 value into an aware datetime; ``None`` when unparseable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        candidate = value.strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Profile:
    """Authoritative user profile from the ``profiles`` table."""
    id: str
    email: Optional[str]
    role: str
    tenant_id: Optional[str]
    full_name: Optional[str] = None
    project_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Profile":
        return cls(
            id=str(record.get("id")),
            email=_str_or_none(record.get("email")),
            role=str(record.get("role") or "").strip().lower(),
            tenant_id=_str_or_none(record.get("tenant_id")),
            full_name=_str_or_none(record.get("full_name")),
            project_id=_str_or_none(record.get("project_id")),
        )


@dataclass(frozen=True)
class LegacyUserProfile:
    """
    Row from the legacy ``user_profile`` table.

    Informational only. Its ``role`` column predates ``profiles.role`` and is
    never an input to permission checks, which accept ``Profile`` exclusively.
    """
    user_id: str
    legacy_role: Optional[str] = None
    account_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "LegacyUserProfile":
        return cls(
            user_id=str(record.get("user_id")),
            legacy_role=_str_or_none(record.get("role")),
            account_id=_str_or_none(record.get("account_id")),
        )


@dataclass(frozen=True)
class FilterConfig:
    column: str
    value: str
    type: str = "eq"


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    account_id: Optional[str] = None
    data_table: str = DEFAULT_DATA_TABLE
    filter_column: Optional[str] = None
    filter_value: Optional[str] = None
    filter_type: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Project":
        return cls(
            id=str(record.get("id") or record.get("project_id")),
            name=str(record.get("name") or record.get("project_name") or ""),
            account_id=_str_or_none(record.get("account_id")),
            data_table=str(record.get("data_table") or DEFAULT_DATA_TABLE),
            filter_column=_str_or_none(record.get("filter_column")),
            filter_value=_str_or_none(record.get("filter_value")),
            filter_type=_str_or_none(record.get("filter_type")),
            description=_str_or_none(record.get("description")),
        )

    @property
    def filter_config(self) -> Optional[FilterConfig]:
        if not self.filter_column or self.filter_value is None:
            return None
        return FilterConfig(
            column=self.filter_column,
            value=self.filter_value,
            type=(self.filter_type or "eq").lower(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range used to bound timestamped tables."""
    start: date
    end: date

    @classmethod
    def last_days(cls, days: int, *, today: Optional[date] = None) -> "DateRange":
        today = today or datetime.now(timezone.utc).date()
        return cls(start=today - timedelta(days=days), end=today)

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("date range start must not be after its end")

    def lower_bound(self) -> datetime:
        return datetime.combine(self.start, time(0, 0, 0), tzinfo=timezone.utc)

    def upper_bound(self) -> datetime:
        return datetime.combine(self.end, time(23, 59, 59), tzinfo=timezone.utc)

    def contains(self, instant: datetime) -> bool:
        return self.lower_bound() <= instant <= self.upper_bound()


# ---------------------------------------------------------------------------
# Source rows, one variant per physical table shape
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionRow:
    id: str
    workflow_name: str
    status: str
    timestamp: Optional[str]
    duration_ms: float = 0
    cost_usd: float = 0
    error_message: Optional[str] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ExecutionRow":
        return cls(
            id=str(record.get("id")),
            workflow_name=str(record.get("workflow_name") or ""),
            status=str(record.get("status") or ""),
            timestamp=_str_or_none(record.get("timestamp")),
            duration_ms=_number(record.get("duration_ms")),
            cost_usd=_number(record.get("cost_usd")),
            error_message=_str_or_none(record.get("error_message")),
            tenant_id=_str_or_none(record.get("tenant_id")),
        )


@dataclass(frozen=True)
class MulchRow:
    id: str
    session_id: Optional[str]
    message: Any
    project_id: Optional[str] = None
    mulch_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MulchRow":
        return cls(
            id=str(record.get("id")),
            session_id=_str_or_none(record.get("session_id")),
            message=record.get("message"),
            project_id=_str_or_none(record.get("project_id")),
            mulch_id=_str_or_none(record.get("mulch id")),
        )


@dataclass(frozen=True)
class ChatHistoryRow:
    id: str
    session_id: Optional[str]
    message: Any
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChatHistoryRow":
        return cls(
            id=str(record.get("id")),
            session_id=_str_or_none(record.get("session_id")),
            message=record.get("message"),
            created_at=_str_or_none(record.get("created_at")),
        )


@dataclass(frozen=True)
class ChatMessageRow:
    """``chat_message`` row joined with its parent ``chat_conversation``."""
    id: str
    content: Any
    conversation_id: Optional[str]
    created_at: Optional[str] = None
    project_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChatMessageRow":
        conversation = record.get("chat_conversation")
        if isinstance(conversation, list):
            conversation = conversation[0] if conversation else None
        project_id = conversation.get("project_id") if isinstance(conversation, dict) else None
        return cls(
            id=str(record.get("id")),
            content=record.get("content"),
            conversation_id=_str_or_none(record.get("conversation_id")),
            created_at=_str_or_none(record.get("created_at")),
            project_id=_str_or_none(project_id),
        )


@dataclass(frozen=True)
class GenericRow:
    """Row from a table without a dedicated mapping."""
    table: str
    id: str
    created_at: Optional[str] = None
    timestamp: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_record(cls, record: Dict[str, Any], *, table: str, index: int) -> "GenericRow":
        raw_id = record.get("id")
        return cls(
            table=table,
            id=str(raw_id if raw_id is not None else index),
            created_at=_str_or_none(record.get("created_at")),
            timestamp=_str_or_none(record.get("timestamp")),
            values=dict(record),
        )


SourceRow = Union[ExecutionRow, MulchRow, ChatHistoryRow, ChatMessageRow, GenericRow]


# ---------------------------------------------------------------------------
# Normalised output shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionRecord:
    id: str
    workflow_name: str
    status: str
    timestamp: str
    duration_ms: float
    cost_usd: float
    error_message: Optional[str] = None
    source_table: Optional[str] = None
    # True when the source row carried no timestamp and ``timestamp`` was filled with fetch time.
    timestamp_missing: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    session_id: str
    message: Any
    timestamp: Optional[str] = None
    project_id: Optional[str] = None
    source: str = "mulchbg"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Document:
    """Knowledge-base document shown on the dashboard; embeddings are not carried."""

    id: str
    content: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Document":
        metadata = record.get("metadata")
        return cls(
            id=str(record.get("id")),
            content=_str_or_none(record.get("content")),
            metadata=metadata if isinstance(metadata, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProjectExecution:
    """Row of the admin-side ``execution`` table, keyed by project."""

    id: str
    project_id: Optional[str]
    workflow_name: Optional[str] = None
    status: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProjectExecution":
        duration = record.get("duration_ms")
        return cls(
            id=str(record.get("id")),
            project_id=_str_or_none(record.get("project_id")),
            workflow_name=_str_or_none(record.get("workflow_name")),
            status=_str_or_none(record.get("status")),
            started_at=_str_or_none(record.get("started_at")),
            finished_at=_str_or_none(record.get("finished_at")),
            duration_ms=None if duration is None else _number(duration),
            error=_str_or_none(record.get("error")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class KPISummary:
    total_processed: int
    success_rate: float
    failed_ops: int
    last_update: str
    avg_processing_time: float
    # Linear estimate from the record count, not a measured byte size.
    data_volume: float

    @classmethod
    def empty(cls, *, now: Optional[str] = None) -> "KPISummary":
        return cls(
            total_processed=0,
            success_rate=0.0,
            failed_ops=0,
            last_update=now or utc_now_iso(),
            avg_processing_time=0.0,
            data_volume=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SourceFailure:
    table: str
    error: str


@dataclass
class ExecutionResult:
    records: List[ExecutionRecord]
    kpis: KPISummary
    tables: List[str] = field(default_factory=list)
    failures: List[SourceFailure] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


__all__ = [
    "ALL_PROJECTS",
    "DEFAULT_DATA_TABLE",
    "UNKNOWN_SESSION",
    "ViewMode",
    "Profile",
    "LegacyUserProfile",
    "FilterConfig",
    "Project",
    "DateRange",
    "ExecutionRow",
    "MulchRow",
    "ChatHistoryRow",
    "ChatMessageRow",
    "GenericRow",
    "SourceRow",
    "ExecutionRecord",
    "ConversationMessage",
    "Document",
    "ProjectExecution",
    "KPISummary",
    "SourceFailure",
    "ExecutionResult",
    "parse_timestamp",
    "utc_now_iso",
]
