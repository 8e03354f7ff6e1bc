import logging
from typing import List, Optional

from connection_auth.auth.identity import Authenticated, RequestContext
from connection_auth.core.errors import NotFoundError, Outcome
from connection_auth.models.audit import AuditAction, AuditLogEntry
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.audit_logger import AuditLogger
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.session_issuer import SessionIssuer

logger = logging.getLogger(__name__)


class AdminService:
    """Account interventions available to administrators; every one is audited"""

    def __init__(self, store: CredentialStore, issuer: SessionIssuer, audit: AuditLogger):
        self.store = store
        self.issuer = issuer
        self.audit = audit

    async def _target(self, user_id: int) -> Outcome[CredentialRecord]:
        user = await self.store.get_user_by_id(user_id)
        if not user:
            return Outcome.failure(NotFoundError("User not found"))
        return Outcome.success(user)

    async def unlock(self, actor: Authenticated, user_id: int, ctx: Optional[RequestContext] = None) -> Outcome[CredentialRecord]:
        target = await self._target(user_id)
        if not target.ok:
            return target

        await self.store.reset_login_attempts(user_id)
        await self.audit.log(
            AuditAction.ADMIN_ACTION, ctx,
            user_id=actor.user_id, username=actor.username,
            entity_type="user", entity_id=user_id,
            operation="unlock",
            old_value={"login_attempts": target.value.login_attempts,
                       "lockout_until": target.value.lockout_until},
        )
        logger.info(f"Admin {actor.username} unlocked user {target.value.username}")
        return Outcome.success(await self.store.get_user_by_id(user_id))

    async def set_blocked(
        self,
        actor: Authenticated,
        user_id: int,
        blocked: bool,
        ctx: Optional[RequestContext] = None,
    ) -> Outcome[CredentialRecord]:
        """Block (deactivate and sign out) or unblock an account"""
        target = await self._target(user_id)
        if not target.ok:
            return target

        await self.store.set_active(user_id, not blocked)
        if blocked:
            await self.issuer.revoke_user(user_id)

        await self.audit.log(
            AuditAction.USER_BLOCK if blocked else AuditAction.USER_UNBLOCK, ctx,
            user_id=actor.user_id, username=actor.username,
            entity_type="user", entity_id=user_id,
            old_value={"is_active": target.value.is_active},
            new_value={"is_active": not blocked},
        )
        logger.info(f"Admin {actor.username} {'blocked' if blocked else 'unblocked'} user {target.value.username}")
        return Outcome.success(await self.store.get_user_by_id(user_id))

    async def list_users(self) -> List[CredentialRecord]:
        return await self.store.list_users()

    async def audit_logs(
        self,
        limit: int = 100,
        action: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> List[AuditLogEntry]:
        return await self.audit.list_entries(limit=limit, action=action, user_id=user_id)
