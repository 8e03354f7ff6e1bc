from .credential import CredentialRecord
from .audit import AuditAction, AuditStatus, AuditEvent, AuditLogEntry

__all__ = [
    "CredentialRecord",
    "AuditAction",
    "AuditStatus",
    "AuditEvent",
    "AuditLogEntry"
]
