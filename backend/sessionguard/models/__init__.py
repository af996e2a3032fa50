from sessionguard.models.user import User
from sessionguard.models.refresh_session import RefreshSession
from sessionguard.models.audit_log import AuditLog

__all__ = [
    "User",
    "RefreshSession",
    "AuditLog",
]
