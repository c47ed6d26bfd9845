"""ORM model exports."""

from iam_core.models.audit_event import AuditActorType, AuditEvent
from iam_core.models.impersonation import ImpersonationSession
from iam_core.models.permission_override import TenantRolePermission, TenantUserPermission
from iam_core.models.session import Session
from iam_core.models.tenant import Agency, Tenant
from iam_core.models.user import User, UserRole

__all__ = [
    "Agency",
    "AuditActorType",
    "AuditEvent",
    "ImpersonationSession",
    "Session",
    "Tenant",
    "TenantRolePermission",
    "TenantUserPermission",
    "User",
    "UserRole",
]
