import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from connection_auth.auth.identity import Anonymous, Authenticated, Identity, RequestContext
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.credential_store import CredentialStore
from connection_auth.services.session_manager import SessionManager
from connection_auth.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class IssuedCredential:
    """What the client receives after authenticating"""
    kind: str  # "session" or "bearer"
    value: str
    expires_at: datetime


class SessionIssuer:
    """
    Establishes a server-side session or a bearer token after login.

    The strategy is fixed by configuration. Both kinds resolve to the same
    ``Authenticated`` identity (user id, username, admin flag), so
    authorization does not depend on the channel.
    """

    def __init__(self, strategy: str, sessions: SessionManager, tokens: TokenIssuer, store: CredentialStore):
        self.strategy = strategy
        self.sessions = sessions
        self.tokens = tokens
        self.store = store

    async def issue(self, user: CredentialRecord, ctx: Optional[RequestContext] = None) -> IssuedCredential:
        """
        Raises:
            PersistenceError: the session could not be saved
            ConfigurationError: bearer mode without a signing secret
        """
        if self.strategy == "bearer":
            issued = self.tokens.issue(user.id, user.username, user.email, user.is_admin)
            return IssuedCredential(kind="bearer", value=issued.token, expires_at=issued.expires_at)

        session = await self.sessions.create_session(user.id, user.username, user.is_admin, ctx)
        return IssuedCredential(kind="session", value=session.session_id, expires_at=session.expires_at)

    async def resolve_bearer(self, token: str) -> Identity:
        payload = self.tokens.decode(token)
        if payload is None:
            return Anonymous(reason="Invalid or expired token")
        if await self.tokens.is_revoked(payload.jti):
            return Anonymous(reason="Token revoked")

        username, is_admin = payload.username, payload.is_admin
        if payload.user_id is not None:
            # Account state wins over the claims signed into the token
            user = await self.store.get_user_by_id(payload.user_id)
            if user is None or not user.is_active:
                return Anonymous(reason="Account is not active")
            # iat has whole-second precision
            cutoff = user.tokens_valid_after
            if cutoff is not None and payload.issued_at < cutoff.replace(microsecond=0):
                return Anonymous(reason="Token revoked")
            username, is_admin = user.username, user.is_admin

        return Authenticated(
            user_id=payload.user_id,
            username=username,
            is_admin=is_admin,
            email=payload.email,
            via="bearer",
            credential=token,
        )

    async def resolve_session(self, session_id: str) -> Identity:
        session = await self.sessions.get_session(session_id)
        if session is None:
            return Anonymous(reason="Invalid or expired session")
        return Authenticated(
            user_id=session.user_id,
            username=session.username,
            is_admin=session.is_admin,
            via="session",
            credential=session_id,
        )

    async def revoke(self, identity: Identity) -> bool:
        """End the session or revoke the token behind ``identity``"""
        if not isinstance(identity, Authenticated) or not identity.credential:
            return False
        if identity.via == "bearer":
            payload = self.tokens.decode(identity.credential)
            if payload is None:
                return False
            await self.tokens.revoke(payload)
            return True
        return await self.sessions.end_session(identity.credential)

    async def revoke_user(self, user_id: int, keep: Optional[Identity] = None) -> int:
        """
        End every session of a user and void the bearer tokens issued so far.

        ``keep`` spares the caller's own server-side session. Bearer tokens
        cannot be spared one by one, so a bearer caller is signed out too.
        """
        keep_session = None
        if isinstance(keep, Authenticated) and keep.via == "session":
            keep_session = keep.credential
        await self.store.void_tokens_issued_before_now(user_id)
        count = await self.sessions.end_user_sessions(user_id, keep_session_id=keep_session)
        if count:
            logger.info(f"Ended {count} session(s) for user {user_id}")
        return count
