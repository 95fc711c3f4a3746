"""Pydantic schemas for the public API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..db.models import ViewMode


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None


class SignInResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    user: SessionUser


class SignOutResponse(BaseModel):
    signed_out: bool


class RoleStateResponse(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    assigned_project_id: Optional[str] = None
    view_mode: str
    effective_mode: str
    can_switch_roles: bool = False
    is_admin: bool = False
    is_owner: bool = False
    has_access: bool = False
    loading: bool = False
    legacy_role: Optional[str] = None
    show_admin_features: bool = False


class ViewModeUpdateRequest(BaseModel):
    mode: ViewMode

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, value: Any) -> ViewMode:
        parsed = ViewMode.parse(value)
        if parsed is None:
            raise ValueError("mode must be admin or client")
        return parsed


class ProjectResponse(BaseModel):
    id: str
    name: str
    account_id: Optional[str] = None
    data_table: str = "executions"
    filter_column: Optional[str] = None
    filter_value: Optional[str] = None
    filter_type: Optional[str] = None
    description: Optional[str] = None


class ProjectListResponse(BaseModel):
    projects: List[ProjectResponse] = Field(default_factory=list)
    selection: str


class ExecutionRecordResponse(BaseModel):
    id: str
    workflow_name: str
    status: str
    timestamp: str
    duration_ms: float
    cost_usd: float
    error_message: Optional[str] = None
    source_table: Optional[str] = None
    timestamp_missing: bool = False


class KPISummaryResponse(BaseModel):
    total_processed: int
    success_rate: float
    failed_ops: int
    last_update: str
    avg_processing_time: float
    data_volume: float


class SourceFailureResponse(BaseModel):
    table: str
    error: str


class DocumentResponse(BaseModel):
    id: str
    content: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DashboardResponse(BaseModel):
    selection: str
    date_from: str
    date_to: str
    executions: List[ExecutionRecordResponse] = Field(default_factory=list)
    kpis: Optional[KPISummaryResponse] = None
    tables: List[str] = Field(default_factory=list)
    failures: List[SourceFailureResponse] = Field(default_factory=list)
    documents: List[DocumentResponse] = Field(default_factory=list)
    notice: Optional[str] = None
    stale: bool = False


class ParsedMessageResponse(BaseModel):
    content: str
    type: str
    timestamp: Optional[str] = None


class ConversationMessageResponse(BaseModel):
    id: str
    session_id: str
    message: Any = None
    timestamp: Optional[str] = None
    project_id: Optional[str] = None
    source: str
    parsed: ParsedMessageResponse


class ConversationsResponse(BaseModel):
    selection: str
    messages: List[ConversationMessageResponse] = Field(default_factory=list)
    sessions: Dict[str, List[ConversationMessageResponse]] = Field(default_factory=dict)


class ProfileResponse(BaseModel):
    id: str
    email: Optional[str] = None
    role: str
    tenant_id: Optional[str] = None
    full_name: Optional[str] = None
    project_id: Optional[str] = None


class AdminOverviewResponse(BaseModel):
    profiles: List[ProfileResponse] = Field(default_factory=list)
    projects: List[ProjectResponse] = Field(default_factory=list)
    tenants: List[Dict[str, Any]] = Field(default_factory=list)
    clients: List[Dict[str, Any]] = Field(default_factory=list)


class RoleUpdateRequest(BaseModel):
    role: str = Field(..., min_length=1)


class ProjectAssignmentRequest(BaseModel):
    project_id: Optional[str] = None


class TenantAssignmentRequest(BaseModel):
    tenant_id: Optional[str] = None


class TenantCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)


class ClientCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    external_id: Optional[str] = None


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class ProjectSourceUpdateRequest(BaseModel):
    data_table: str = Field(..., min_length=1)
    filter_column: Optional[str] = None
    filter_value: Optional[str] = None
    filter_type: Optional[str] = None

    @field_validator("filter_type", mode="before")
    @classmethod
    def normalize_filter_type(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not str(value).strip():
            return None
        candidate = str(value).strip().lower()
        if candidate not in {"eq", "neq", "gte", "lte", "like", "ilike"}:
            raise ValueError("filter_type must be one of eq, neq, gte, lte, like, ilike")
        return candidate


class ExecutionCreateRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    workflow_name: str = Field(..., min_length=1)
    status: str = Field(default="success")
    duration_ms: Optional[int] = Field(default=None, ge=0)
    started_at: Optional[datetime] = None
    error_message: Optional[str] = None


class ProjectExecutionResponse(BaseModel):
    id: str
    project_id: Optional[str] = None
    workflow_name: Optional[str] = None
    status: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_ms: Optional[float] = None
    error: Optional[str] = None


class ProjectDetailsResponse(BaseModel):
    project_id: str
    executions: List[ProjectExecutionResponse] = Field(default_factory=list)
    profiles: List[ProfileResponse] = Field(default_factory=list)


class BulkImportRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    data: str = Field(..., min_length=1, description="One execution per line: name,status,duration_ms,started_at")


class BulkImportResponse(BaseModel):
    success_count: int
    error_count: int
    errors: List[str] = Field(default_factory=list)


class MutationResponse(BaseModel):
    success: bool
    data: Any = None


class DocumentUploadResponse(BaseModel):
    path: str
    bucket: str
