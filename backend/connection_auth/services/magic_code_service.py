import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from connection_auth.auth.identity import RequestContext
from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.errors import (
    ConfigurationError,
    ExpiredError,
    InvalidCodeError,
    InvalidTokenError,
    Outcome,
)
from connection_auth.models.audit import AuditAction, AuditStatus
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.delivery import EmailSender, deliver_safely
from connection_auth.services.email_templates import magic_code_email
from connection_auth.services.ephemeral_store import EphemeralStore
from connection_auth.services.token_issuer import IssuedToken, TokenIssuer
from connection_auth.services.verification_service import generate_numeric_code

logger = logging.getLogger(__name__)

# Entries outlive their expiry by this much so a late attempt reads as expired, not unknown
EXPIRED_ENTRY_GRACE = timedelta(hours=1)


@dataclass
class MagicCodeEntry:
    email: str
    code: str
    expires_at: datetime


@dataclass
class MagicLogin:
    email: str
    token: IssuedToken
    user: Optional[CredentialRecord] = None


class MagicCodeService:
    """
    Passwordless sign-in with a short numeric code sent by email.

    Codes live only in the ephemeral store, keyed by an opaque request
    token. Each entry allows a single verification attempt. This path has
    no account-level attempt counter; the IP rate limiter is its only
    brute-force defence.
    """

    def __init__(
        self,
        store: CredentialStore,
        entries: EphemeralStore,
        tokens: TokenIssuer,
        email_sender: EmailSender,
        audit: AuditLogger,
        ttl: timedelta = timedelta(minutes=15),
        test_email_pattern: Optional[str] = None,
        test_code: str = "111222",
        clock: Clock = utcnow,
    ):
        self.store = store
        self.entries = entries
        self.tokens = tokens
        self.email_sender = email_sender
        self.audit = audit
        self.ttl = ttl
        self.test_email_pattern = re.compile(test_email_pattern, re.IGNORECASE) if test_email_pattern else None
        self.test_code = test_code
        self.clock = clock

    def _generate_code(self, email: str) -> str:
        if self.test_email_pattern and self.test_email_pattern.search(email):
            return self.test_code
        return generate_numeric_code()

    async def request_code(self, email: str, ctx: Optional[RequestContext] = None) -> str:
        """Store a new code for ``email``, mail it and return the request token"""
        email = email.strip().lower()
        code = self._generate_code(email)
        token = secrets.token_hex(16)
        entry = MagicCodeEntry(email=email, code=code, expires_at=self.clock() + self.ttl)
        self.entries.put(token, entry, self.ttl + EXPIRED_ENTRY_GRACE)

        ttl_minutes = int(self.ttl.total_seconds() // 60)
        await deliver_safely(
            self.email_sender.send(email, magic_code_email(code, ttl_minutes)),
            f"magic code to {email}",
        )
        await self.audit.log(AuditAction.MAGIC_CODE_REQUESTED, ctx, email=email)
        logger.info(f"Magic code issued for {email}")
        return token

    async def verify_code(self, token: str, code: str, ctx: Optional[RequestContext] = None) -> Outcome[MagicLogin]:
        """
        Check a code against its request token.

        The entry is removed before any check, so every attempt (right or
        wrong) uses it up.

        Raises:
            ConfigurationError: no signing secret is configured
        """
        if not self.tokens.secret_key:
            raise ConfigurationError("JWT_SECRET environment variable is required for magic code login")

        entry: Optional[MagicCodeEntry] = self.entries.pop(token)
        if entry is None:
            await self.audit.log(
                AuditAction.MAGIC_LOGIN_FAILED, ctx, AuditStatus.FAILURE, reason="Unknown token"
            )
            return Outcome.failure(InvalidTokenError())

        if self.clock() > entry.expires_at:
            await self.audit.log(
                AuditAction.MAGIC_LOGIN_FAILED, ctx, AuditStatus.FAILURE,
                email=entry.email, reason="Code expired",
            )
            return Outcome.failure(ExpiredError())

        if not hmac.compare_digest(entry.code.encode("utf-8"), code.encode("utf-8")):
            await self.audit.log(
                AuditAction.MAGIC_LOGIN_FAILED, ctx, AuditStatus.FAILURE,
                email=entry.email, reason="Code mismatch",
            )
            return Outcome.failure(InvalidCodeError())

        user = await self.store.get_user_by_email(entry.email)
        if user:
            issued = self.tokens.issue(user.id, user.username, user.email, user.is_admin)
            await self.store.update_last_login(user.id)
        else:
            issued = self.tokens.issue(None, None, entry.email)

        await self.audit.log(
            AuditAction.MAGIC_LOGIN, ctx,
            user_id=user.id if user else None,
            username=user.username if user else None,
            email=entry.email,
        )
        return Outcome.success(MagicLogin(email=entry.email, token=issued, user=user))
