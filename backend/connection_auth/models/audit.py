from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AuditAction(str, Enum):
    """Canonical security event names stored in ``audit_logs.action``"""
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    REGISTER = "register"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION_SENT = "email_verification_sent"
    EMAIL_VERIFIED = "email_verified"
    PHONE_VERIFICATION_SENT = "phone_verification_sent"
    PHONE_VERIFIED = "phone_verified"
    MAGIC_CODE_REQUESTED = "magic_code_requested"
    MAGIC_LOGIN = "magic_login"
    MAGIC_LOGIN_FAILED = "magic_login_failed"
    ADMIN_ACTION = "admin_action"
    USER_BLOCK = "user_block"
    USER_UNBLOCK = "user_unblock"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"


@dataclass
class AuditEvent:
    """A single security event, written once and never updated"""
    action: AuditAction
    status: AuditStatus = AuditStatus.SUCCESS
    user_id: Optional[int] = None
    username: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditLogEntry:
    """A stored audit row as read back for admins"""
    id: int
    action: str
    status: str
    created_at: datetime
    user_id: Optional[int] = None
    username: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
