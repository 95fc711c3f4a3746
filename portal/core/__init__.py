"""Role resolution, aggregation and session control for the portal."""

from .conversations import ConversationAggregator, group_by_session, parse_message  # noqa: F401
from .executions import ExecutionAggregator, compute_kpis, to_execution_record  # noqa: F401
from .live_refresh import LiveRefresh, Subscription  # noqa: F401
from .portal_session import (  # noqa: F401
    AdminSession,
    DashboardSession,
    PortalSession,
    SessionRegistry,
    get_session_registry,
    reconcile_selection,
)
from .preferences import get_view_mode_store  # noqa: F401
from .role_resolver import RoleResolver, RoleState, evaluate_permissions  # noqa: F401

__all__ = [
    "AdminSession",
    "ConversationAggregator",
    "DashboardSession",
    "ExecutionAggregator",
    "LiveRefresh",
    "PortalSession",
    "RoleResolver",
    "RoleState",
    "SessionRegistry",
    "Subscription",
    "compute_kpis",
    "evaluate_permissions",
    "get_session_registry",
    "get_view_mode_store",
    "group_by_session",
    "parse_message",
    "reconcile_selection",
    "to_execution_record",
]
