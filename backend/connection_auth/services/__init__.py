from .container import AuthServices, build_services
from .credential_store import CredentialStore
from .password_hasher import PasswordHasher
from .login_governor import LoginAttemptGovernor, LockState
from .rate_limiter import IPRateLimiter, RateLimitPolicy, InMemoryCounterStore
from .ephemeral_store import InMemoryTTLStore
from .verification_service import VerificationService
from .magic_code_service import MagicCodeService
from .token_issuer import TokenIssuer
from .session_manager import SessionManager
from .session_issuer import SessionIssuer
from .audit_logger import AuditLogger

__all__ = [
    "AuthServices",
    "build_services",
    "CredentialStore",
    "PasswordHasher",
    "LoginAttemptGovernor",
    "LockState",
    "IPRateLimiter",
    "RateLimitPolicy",
    "InMemoryCounterStore",
    "InMemoryTTLStore",
    "VerificationService",
    "MagicCodeService",
    "TokenIssuer",
    "SessionManager",
    "SessionIssuer",
    "AuditLogger"
]
