import hashlib
import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from connection_auth.auth.identity import RequestContext
from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.errors import (
    CooldownError,
    InvalidOrExpiredTokenError,
    NotFoundError,
    Outcome,
    ValidationError,
)
from connection_auth.models.audit import AuditAction, AuditStatus
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.delivery import EmailSender, SmsSender, deliver_safely
from connection_auth.services.email_templates import phone_code_message, verification_email

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_numeric_code(digits: int = 6) -> str:
    return f"{secrets.randbelow(10 ** digits):0{digits}d}"


@dataclass
class VerificationDispatch:
    """What the client learns after a verification secret is sent"""
    expires_at: datetime
    next_allowed_at: datetime


class VerificationService:
    """
    Single-use email and phone verification.

    Email: an opaque random token travels in a link; only its SHA-256 hash
    is stored. Phone: a 6-digit code is stored as-is with a short expiry.
    Issuing overwrites any pending secret for the channel, and every
    verification attempt that finds a pending secret consumes it.
    """

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLogger,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        verify_url: str,
        email_ttl: timedelta = timedelta(hours=24),
        phone_ttl: timedelta = timedelta(minutes=10),
        resend_cooldown: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ):
        self.store = store
        self.audit = audit
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.verify_url = verify_url
        self.email_ttl = email_ttl
        self.phone_ttl = phone_ttl
        self.resend_cooldown = resend_cooldown
        self.clock = clock

    def _cooldown_remaining(self, last_sent: Optional[datetime]) -> int:
        if not last_sent:
            return 0
        remaining = (last_sent + self.resend_cooldown - self.clock()).total_seconds()
        return max(0, math.ceil(remaining))

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def issue_email(self, user: CredentialRecord, ctx: Optional[RequestContext] = None) -> VerificationDispatch:
        """Create a fresh email token, store its hash and mail the link"""
        now = self.clock()
        token = secrets.token_hex(32)
        expires_at = now + self.email_ttl

        await self.store.set_email_verification(user.id, hash_token(token), expires_at, now)

        link = f"{self.verify_url}?token={token}"
        await deliver_safely(
            self.email_sender.send(user.email, verification_email(link)),
            f"verification email to {user.email}",
        )
        await self.audit.log(
            AuditAction.EMAIL_VERIFICATION_SENT, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )
        logger.info(f"Email verification issued for {user.email}")
        return VerificationDispatch(expires_at=expires_at, next_allowed_at=now + self.resend_cooldown)

    async def resend(self, email: str, ctx: Optional[RequestContext] = None) -> Outcome[VerificationDispatch]:
        user = await self.store.get_user_by_email(email)
        if not user:
            return Outcome.failure(NotFoundError("User not found"))
        if user.email_verified:
            return Outcome.failure(ValidationError("Email already verified"))

        remaining = self._cooldown_remaining(user.email_verification_last_sent_at)
        if remaining > 0:
            return Outcome.failure(CooldownError(
                remaining, "Verification email recently sent; try again later"
            ))

        return Outcome.success(await self.issue_email(user, ctx))

    async def verify_email(self, token: str, ctx: Optional[RequestContext] = None) -> Outcome[CredentialRecord]:
        if not token:
            return Outcome.failure(InvalidOrExpiredTokenError("Verification token required"))

        token_hash = hash_token(token)
        user = await self.store.get_user_by_email_verification_hash(token_hash)
        if not user:
            return Outcome.failure(InvalidOrExpiredTokenError())

        expires_at = user.email_verification_expires_at
        if not expires_at or self.clock() > expires_at:
            await self.store.clear_email_verification(user.id)
            await self.audit.log(
                AuditAction.EMAIL_VERIFIED, ctx, AuditStatus.FAILURE,
                user_id=user.id, username=user.username, reason="Token expired",
            )
            return Outcome.failure(InvalidOrExpiredTokenError())

        if not await self.store.consume_email_verification(user.id, token_hash):
            return Outcome.failure(InvalidOrExpiredTokenError())

        await self.audit.log(
            AuditAction.EMAIL_VERIFIED, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )
        logger.info(f"Email verified for user {user.username}")
        return Outcome.success(await self.store.get_user_by_id(user.id))

    # ------------------------------------------------------------------
    # Phone
    # ------------------------------------------------------------------

    async def issue_phone(self, user: CredentialRecord, ctx: Optional[RequestContext] = None) -> Outcome[VerificationDispatch]:
        if not user.phone_number:
            return Outcome.failure(ValidationError("No phone number on file"))

        now = self.clock()
        code = generate_numeric_code()
        expires_at = now + self.phone_ttl
        await self.store.set_phone_verification(user.id, code, expires_at)

        await deliver_safely(
            self.sms_sender.send(user.phone_number, phone_code_message(code)),
            f"verification SMS for user {user.username}",
        )
        await self.audit.log(
            AuditAction.PHONE_VERIFICATION_SENT, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )
        logger.info(f"Phone verification issued for user {user.username}")
        return Outcome.success(VerificationDispatch(
            expires_at=expires_at, next_allowed_at=now + self.resend_cooldown
        ))

    async def resend_phone(self, email: str, ctx: Optional[RequestContext] = None) -> Outcome[VerificationDispatch]:
        user = await self.store.get_user_by_email(email)
        if not user:
            return Outcome.failure(NotFoundError("User not found"))
        if user.sms_verified:
            return Outcome.failure(ValidationError("Phone number already verified"))

        if user.sms_verification_code and user.sms_verification_expires_at:
            last_sent = user.sms_verification_expires_at - self.phone_ttl
            remaining = self._cooldown_remaining(last_sent)
            if remaining > 0:
                return Outcome.failure(CooldownError(
                    remaining, "Verification code recently sent; try again later"
                ))

        return await self.issue_phone(user, ctx)

    async def verify_phone(self, email: str, code: str, ctx: Optional[RequestContext] = None) -> Outcome[CredentialRecord]:
        """
        Check a phone code for the account owning ``email``.

        A wrong or expired code clears the pending code; the user has to
        request a new one.
        """
        user = await self.store.get_user_by_email(email)
        if not user or not user.sms_verification_code:
            return Outcome.failure(InvalidOrExpiredTokenError("Invalid or expired code"))

        expired = (
            not user.sms_verification_expires_at
            or self.clock() > user.sms_verification_expires_at
        )
        matches = hmac.compare_digest(user.sms_verification_code.encode("utf-8"), code.encode("utf-8"))

        if expired or not matches:
            await self.store.clear_phone_verification(user.id)
            await self.audit.log(
                AuditAction.PHONE_VERIFIED, ctx, AuditStatus.FAILURE,
                user_id=user.id, username=user.username,
                reason="Code expired" if expired else "Code mismatch",
            )
            return Outcome.failure(InvalidOrExpiredTokenError("Invalid or expired code"))

        if not await self.store.consume_phone_verification(user.id, code):
            return Outcome.failure(InvalidOrExpiredTokenError("Invalid or expired code"))

        await self.audit.log(
            AuditAction.PHONE_VERIFIED, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )
        return Outcome.success(await self.store.get_user_by_id(user.id))
