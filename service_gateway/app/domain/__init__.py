"""
Domain layer for the Gateway service.

Holds the authentication gate and the in-memory stores behind the
notifications, workflows, audit, analytics and admin routes. Each store
owns its lock and is handed to the routes by ``GatewayService``.
"""

from .admin import AdminStore
from .analytics import AnalyticsService
from .audit import AuditLogStore
from .auth_middleware import AuthDecision, AuthDecisionKind, AuthGate
from .notifications import NotificationStore
from .workflows import WorkflowStore

__all__ = [
    "AdminStore",
    "AnalyticsService",
    "AuditLogStore",
    "AuthDecision",
    "AuthDecisionKind",
    "AuthGate",
    "NotificationStore",
    "WorkflowStore",
]
