from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from connection_auth.core.clock import from_db


@dataclass
class CredentialRecord:
    """
    One user's authentication-relevant fields.

    Attributes:
        id: Numeric user id
        username: Unique username
        email: Unique email address
        password_hash: bcrypt hash (self-describing, includes cost and salt)
        login_attempts: Consecutive failed logins since the last success
        lockout_until: End of the current lockout, if any
        tokens_valid_after: Bearer tokens issued before this instant are void
    """
    id: int
    username: str
    email: str
    password_hash: str
    created_at: datetime
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    email_verified: bool = False
    email_verified_at: Optional[datetime] = None
    email_verification_token_hash: Optional[str] = None
    email_verification_expires_at: Optional[datetime] = None
    email_verification_last_sent_at: Optional[datetime] = None
    sms_verified: bool = False
    sms_verification_code: Optional[str] = None
    sms_verification_expires_at: Optional[datetime] = None
    login_attempts: int = 0
    lockout_until: Optional[datetime] = None
    is_admin: bool = False
    is_active: bool = True
    last_login: Optional[datetime] = None
    tokens_valid_after: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CredentialRecord":
        """Create a record from a ``users`` row"""
        return cls(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=from_db(row["created_at"]),
            display_name=row.get("display_name"),
            phone_number=row.get("phone_number"),
            email_verified=bool(row.get("email_verified")),
            email_verified_at=from_db(row.get("email_verified_at")),
            email_verification_token_hash=row.get("email_verification_token_hash"),
            email_verification_expires_at=from_db(row.get("email_verification_expires_at")),
            email_verification_last_sent_at=from_db(row.get("email_verification_last_sent_at")),
            sms_verified=bool(row.get("sms_verified")),
            sms_verification_code=row.get("sms_verification_code"),
            sms_verification_expires_at=from_db(row.get("sms_verification_expires_at")),
            login_attempts=row.get("login_attempts") or 0,
            lockout_until=from_db(row.get("lockout_until")),
            is_admin=bool(row.get("is_admin")),
            is_active=bool(row.get("is_active", 1)),
            last_login=from_db(row.get("last_login")),
            tokens_valid_after=from_db(row.get("tokens_valid_after")),
        )

    @property
    def requires_phone_verification(self) -> bool:
        return bool(self.phone_number) and not self.sms_verified

    def to_public(self) -> Dict[str, Any]:
        """User data safe to return to clients (no secrets, no pending tokens)"""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "display_name": self.display_name or self.username,
            "phone_number": self.phone_number,
            "email_verified": self.email_verified,
            "sms_verified": self.sms_verified,
            "is_admin": self.is_admin,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }
