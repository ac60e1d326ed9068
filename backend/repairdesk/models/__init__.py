from repairdesk.models.audit_log import AuditLog
from repairdesk.models.refresh_token import RefreshToken
from repairdesk.models.user import Role, User

__all__ = [
    "AuditLog",
    "RefreshToken",
    "Role",
    "User",
]
