"""Business logic services."""

from app.services.audit import AuditService, write_audit_event
from app.services.auth import AuthService
from app.services.rbac import Permission, RBACService

__all__ = [
    "AuditService",
    "write_audit_event",
    "AuthService",
    "RBACService",
    "Permission",
]
