import logging
from dataclasses import dataclass
from typing import Optional

from connection_auth.auth.identity import Anonymous, Authenticated, Identity, RequestContext
from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.errors import (
    AccountLockedError,
    DuplicateResourceError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    Outcome,
    PhoneNotVerifiedError,
    ValidationError,
)
from connection_auth.models.audit import AuditAction, AuditStatus
from connection_auth.models.auth_models import UserRegistrationRequest
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.login_governor import LoginAttemptGovernor
from connection_auth.services.password_hasher import PasswordHasher
from connection_auth.services.session_issuer import IssuedCredential, SessionIssuer
from connection_auth.services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: CredentialRecord
    credential: IssuedCredential


class AuthenticationService:
    """Registration, password login and account maintenance"""

    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        governor: LoginAttemptGovernor,
        verification: VerificationService,
        issuer: SessionIssuer,
        audit: AuditLogger,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.hasher = hasher
        self.governor = governor
        self.verification = verification
        self.issuer = issuer
        self.audit = audit
        self.clock = clock

    async def register(self, data: UserRegistrationRequest, ctx: Optional[RequestContext] = None) -> Outcome[CredentialRecord]:
        """
        Create an unverified account and send its verification messages.

        The account exists even if the emails/SMS fail to go out; the user
        can ask for a resend.
        """
        password_hash = await self.hasher.hash_async(data.password)
        try:
            user = await self.store.create_user(
                username=data.username,
                email=data.email,
                password_hash=password_hash,
                display_name=data.display_name,
                phone_number=data.phone_number,
            )
        except DuplicateResourceError as e:
            await self.audit.log(
                AuditAction.REGISTER, ctx, AuditStatus.FAILURE,
                username=data.username, reason=e.message,
            )
            return Outcome.failure(e)

        await self.verification.issue_email(user, ctx)
        if user.phone_number:
            await self.verification.issue_phone(user, ctx)

        await self.audit.log(
            AuditAction.REGISTER, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
            email=user.email,
        )
        logger.info(f"User registered: {user.username}")
        return Outcome.success(await self.store.get_user_by_id(user.id))

    async def login(self, identifier: str, password: str, ctx: Optional[RequestContext] = None) -> Outcome[LoginResult]:
        """
        Password login.

        Order of checks: account lookup, lockout, verification gate, password.
        Unknown and blocked accounts get the same generic 401.
        """
        user = await self.store.find_for_login(identifier)

        if not user:
            await self.hasher.dummy_verify_async(password)
            await self.audit.log(
                AuditAction.LOGIN_FAILED, ctx, AuditStatus.FAILURE,
                username=identifier, reason="User not found",
            )
            return Outcome.failure(InvalidCredentialsError())

        if not user.is_active:
            await self.hasher.dummy_verify_async(password)
            await self.audit.log(
                AuditAction.LOGIN_FAILED, ctx, AuditStatus.BLOCKED,
                user_id=user.id, username=user.username, reason="Account blocked",
            )
            return Outcome.failure(InvalidCredentialsError())

        locked = self.governor.check(user)
        if not locked.ok:
            await self.audit.log(
                AuditAction.LOGIN_FAILED, ctx, AuditStatus.BLOCKED,
                user_id=user.id, username=user.username, reason="Account locked",
            )
            return Outcome.failure(locked.error)

        gate = self._verification_gate(user)
        if gate is not None:
            await self.audit.log(
                AuditAction.LOGIN_FAILED, ctx, AuditStatus.BLOCKED,
                user_id=user.id, username=user.username, reason=gate.message,
            )
            return Outcome.failure(gate)

        if not await self.hasher.verify_async(password, user.password_hash):
            failure = await self.governor.register_failure(user)
            if isinstance(failure.error, AccountLockedError):
                await self.audit.log(
                    AuditAction.ACCOUNT_LOCKED, ctx, AuditStatus.BLOCKED,
                    user_id=user.id, username=user.username,
                    entity_type="user", entity_id=user.id,
                    remaining_minutes=failure.error.remaining_minutes,
                )
            await self.audit.log(
                AuditAction.LOGIN_FAILED, ctx, AuditStatus.FAILURE,
                user_id=user.id, username=user.username, reason="Invalid password",
            )
            return failure

        await self.governor.register_success(user)
        await self.store.update_last_login(user.id)
        if self.hasher.needs_rehash(user.password_hash):
            await self.store.update_password_hash(user.id, await self.hasher.hash_async(password))
            logger.info(f"Upgraded password hash for user {user.username}")

        credential = await self.issuer.issue(user, ctx)

        await self.audit.log(
            AuditAction.LOGIN, ctx,
            user_id=user.id, username=user.username,
            method=credential.kind,
        )
        return Outcome.success(LoginResult(
            user=await self.store.get_user_by_id(user.id),
            credential=credential,
        ))

    @staticmethod
    def _verification_gate(user: CredentialRecord):
        if not user.email_verified:
            return EmailNotVerifiedError()
        if user.requires_phone_verification:
            return PhoneNotVerifiedError()
        return None

    async def current_user(self, identity: Identity) -> Outcome[CredentialRecord]:
        """The account behind an identity; magic-code identities without an account have none"""
        if isinstance(identity, Anonymous) or identity.user_id is None:
            return Outcome.failure(NotAuthenticatedError())

        user = await self.store.get_user_by_id(identity.user_id)
        if not user or not user.is_active:
            return Outcome.failure(NotAuthenticatedError())
        return Outcome.success(user)

    async def change_password(
        self,
        identity: Authenticated,
        current_password: str,
        new_password: str,
        ctx: Optional[RequestContext] = None,
    ) -> Outcome[None]:
        """Change password with current password verification"""
        current = await self.current_user(identity)
        if not current.ok:
            return Outcome.failure(current.error)
        user = current.value

        if not await self.hasher.verify_async(current_password, user.password_hash):
            await self.audit.log(
                AuditAction.PASSWORD_CHANGE, ctx, AuditStatus.FAILURE,
                user_id=user.id, username=user.username, reason="Current password is incorrect",
            )
            return Outcome.failure(InvalidCredentialsError(message="Current password is incorrect"))

        if await self.hasher.verify_async(new_password, user.password_hash):
            return Outcome.failure(ValidationError("New password must be different from current password"))

        await self.store.update_password_hash(user.id, await self.hasher.hash_async(new_password))
        revoked = await self.issuer.revoke_user(user.id, keep=identity)

        await self.audit.log(
            AuditAction.PASSWORD_CHANGE, ctx,
            user_id=user.id, username=user.username,
            entity_type="user", entity_id=user.id,
            sessions_ended=revoked,
        )
        return Outcome.success()

    async def logout(self, identity: Identity, ctx: Optional[RequestContext] = None):
        """End current session"""
        if not isinstance(identity, Authenticated):
            return

        await self.issuer.revoke(identity)
        await self.audit.log(
            AuditAction.LOGOUT, ctx,
            user_id=identity.user_id, username=identity.username,
            method=identity.via,
        )
