import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.config import Settings
from connection_auth.services.admin_service import AdminService
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.auth_service import AuthenticationService
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.delivery import (
    EmailSender,
    SmsSender,
    build_email_sender,
    build_sms_sender,
)
from connection_auth.services.ephemeral_store import EphemeralStore, InMemoryTTLStore
from connection_auth.services.login_governor import LoginAttemptGovernor
from connection_auth.services.magic_code_service import MagicCodeService
from connection_auth.services.password_hasher import PasswordHasher
from connection_auth.services.password_reset import PasswordResetService
from connection_auth.services.rate_limiter import CounterStore, IPRateLimiter, build_policies
from connection_auth.services.session_issuer import SessionIssuer
from connection_auth.services.session_manager import SessionManager
from connection_auth.services.token_issuer import TokenIssuer
from connection_auth.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Every identity service of one application instance"""
    settings: Settings
    store: CredentialStore
    hasher: PasswordHasher
    governor: LoginAttemptGovernor
    rate_limiter: IPRateLimiter
    verification: VerificationService
    magic_codes: MagicCodeService
    sessions: SessionManager
    tokens: TokenIssuer
    issuer: SessionIssuer
    audit: AuditLogger
    auth: AuthenticationService
    password_reset: PasswordResetService
    admin: AdminService

    async def initialize(self):
        await self.store.initialize()


def build_services(
    settings: Settings,
    clock: Clock = utcnow,
    email_sender: Optional[EmailSender] = None,
    sms_sender: Optional[SmsSender] = None,
    ephemeral_store: Optional[EphemeralStore] = None,
    counter_store: Optional[CounterStore] = None,
) -> AuthServices:
    """Wire the services for one app; shared stores may be injected for multi-instance deployments"""
    email_sender = email_sender or build_email_sender(settings)
    sms_sender = sms_sender or build_sms_sender(settings)
    db_path = settings.DATABASE_PATH

    store = CredentialStore(db_path, clock=clock)
    hasher = PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    audit = AuditLogger(db_path, clock=clock)
    governor = LoginAttemptGovernor(
        store,
        max_attempts=settings.MAX_LOGIN_ATTEMPTS,
        lockout_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
        clock=clock,
    )
    rate_limiter = IPRateLimiter(
        build_policies(settings),
        store=counter_store,
        clock=clock,
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    sessions = SessionManager(
        db_path, session_duration=timedelta(days=settings.SESSION_EXPIRE_DAYS), clock=clock
    )
    tokens = TokenIssuer(
        settings.JWT_SECRET,
        db_path,
        algorithm=settings.JWT_ALGORITHM,
        lifetime=timedelta(days=settings.BEARER_TOKEN_EXPIRE_DAYS),
        clock=clock,
    )
    issuer = SessionIssuer(settings.AUTH_STRATEGY, sessions, tokens, store)

    base_url = settings.APP_BASE_URL.rstrip("/")
    verification = VerificationService(
        store,
        audit,
        email_sender,
        sms_sender,
        verify_url=f"{base_url}{settings.API_V1_STR}/auth/verify-email",
        email_ttl=timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS),
        phone_ttl=timedelta(minutes=settings.PHONE_CODE_TTL_MINUTES),
        resend_cooldown=timedelta(seconds=settings.VERIFICATION_RESEND_COOLDOWN_SECONDS),
        clock=clock,
    )
    magic_codes = MagicCodeService(
        store,
        ephemeral_store or InMemoryTTLStore(clock=clock),
        tokens,
        email_sender,
        audit,
        ttl=timedelta(minutes=settings.MAGIC_CODE_TTL_MINUTES),
        test_email_pattern=settings.MAGIC_CODE_TEST_EMAIL_PATTERN or None,
        test_code=settings.MAGIC_CODE_TEST_VALUE,
        clock=clock,
    )
    auth = AuthenticationService(store, hasher, governor, verification, issuer, audit, clock=clock)
    password_reset = PasswordResetService(
        store,
        hasher,
        issuer,
        email_sender,
        audit,
        reset_url=f"{base_url}/reset-password",
        ttl=timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
        clock=clock,
    )
    admin = AdminService(store, issuer, audit)

    logger.info(f"Identity services ready (strategy={settings.AUTH_STRATEGY}, db={db_path})")
    return AuthServices(
        settings=settings,
        store=store,
        hasher=hasher,
        governor=governor,
        rate_limiter=rate_limiter,
        verification=verification,
        magic_codes=magic_codes,
        sessions=sessions,
        tokens=tokens,
        issuer=issuer,
        audit=audit,
        auth=auth,
        password_reset=password_reset,
        admin=admin,
    )
