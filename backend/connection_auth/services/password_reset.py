import logging
import secrets
from datetime import timedelta
from typing import Optional

from connection_auth.auth.identity import RequestContext
from connection_auth.core.clock import Clock, from_db, to_db, utcnow
from connection_auth.core.errors import InvalidOrExpiredTokenError, Outcome
from connection_auth.db.database import connect
from connection_auth.models.audit import AuditAction, AuditStatus
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.delivery import EmailSender, deliver_safely
from connection_auth.services.email_templates import password_reset_email
from connection_auth.services.password_hasher import PasswordHasher
from connection_auth.services.session_issuer import SessionIssuer
from connection_auth.services.verification_service import hash_token

logger = logging.getLogger(__name__)


class PasswordResetService:
    """
    Forgotten-password flow.

    Reset tokens are 32 random bytes mailed as hex; only the SHA-256 hash is
    stored. A token works once, and requesting a new one retires the old.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        issuer: SessionIssuer,
        email_sender: EmailSender,
        audit: AuditLogger,
        reset_url: str,
        ttl: timedelta = timedelta(hours=1),
        clock: Clock = utcnow,
    ):
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.email_sender = email_sender
        self.audit = audit
        self.reset_url = reset_url
        self.ttl = ttl
        self.clock = clock

    @property
    def db_path(self) -> str:
        return self.store.db_path

    async def request_reset(self, email: str, ctx: Optional[RequestContext] = None) -> None:
        """Send a reset link if the address belongs to an account; silent otherwise"""
        user = await self.store.get_user_by_email(email)
        if not user or not user.is_active:
            logger.info("Password reset requested for unknown or blocked address")
            return

        now = self.clock()
        token = secrets.token_hex(32)
        async with connect(self.db_path) as db:
            await db.execute("""
                UPDATE password_reset_tokens SET used_at = ?
                WHERE user_id = ? AND used_at IS NULL
            """, (to_db(now), user.id))
            await db.execute("""
                INSERT INTO password_reset_tokens (user_id, token_hash, email, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (user.id, hash_token(token), user.email, to_db(now + self.ttl), to_db(now)))
            await db.commit()

        ttl_minutes = int(self.ttl.total_seconds() // 60)
        await deliver_safely(
            self.email_sender.send(
                user.email, password_reset_email(f"{self.reset_url}?token={token}", ttl_minutes)
            ),
            f"password reset email to {user.email}",
        )
        await self.audit.log(
            AuditAction.PASSWORD_RESET_REQUESTED, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )

    async def reset_password(
        self,
        token: str,
        new_password: str,
        ctx: Optional[RequestContext] = None,
    ) -> Outcome[CredentialRecord]:
        user_id = await self._consume_token(token)
        user = await self.store.get_user_by_id(user_id) if user_id is not None else None
        if not user:
            return await self._invalid(ctx)

        await self.store.update_password_hash(user.id, await self.hasher.hash_async(new_password))
        await self.store.reset_login_attempts(user.id)
        await self.issuer.revoke_user(user.id)

        await self.audit.log(
            AuditAction.PASSWORD_RESET, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
        )
        logger.info(f"Password reset completed for user {user.username}")
        return Outcome.success(await self.store.get_user_by_id(user.id))

    async def _consume_token(self, token: str) -> Optional[int]:
        """Mark a pending, unexpired token used; returns its user id"""
        now = self.clock()
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT id, user_id, expires_at, used_at FROM password_reset_tokens WHERE token_hash = ?",
                (hash_token(token),)
            )
            row = await cursor.fetchone()
            await cursor.close()
            if not row or row["used_at"] or now > from_db(row["expires_at"]):
                return None

            cursor = await db.execute("""
                UPDATE password_reset_tokens SET used_at = ?
                WHERE id = ? AND used_at IS NULL
            """, (to_db(now), row["id"]))
            await db.commit()
            return row["user_id"] if cursor.rowcount == 1 else None

    async def _invalid(self, ctx: Optional[RequestContext]) -> Outcome[CredentialRecord]:
        await self.audit.log(
            AuditAction.PASSWORD_RESET, ctx, AuditStatus.FAILURE, reason="Invalid or expired token"
        )
        return Outcome.failure(InvalidOrExpiredTokenError("Invalid or expired reset link"))
