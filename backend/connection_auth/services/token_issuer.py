"""
Bearer token issuing and validation.

Tokens are HS256 JWTs with a fixed lifetime; they are never refreshed, the
client signs in again once one expires. Each token carries a ``jti`` so it
can be revoked at logout.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from connection_auth.core.clock import Clock, from_db, to_db, utcnow
from connection_auth.core.errors import ConfigurationError
from connection_auth.db.database import connect

logger = logging.getLogger(__name__)


@dataclass
class TokenPayload:
    """
    Decoded bearer token.

    Attributes:
        subject: ``sub`` claim; the user id, or ``email:<address>`` for
            magic-code sign-ins without an account
        user_id: Numeric user id when the subject is an account
        jti: Token id used for revocation
    """
    subject: str
    user_id: Optional[int]
    username: Optional[str]
    email: Optional[str]
    is_admin: bool
    issued_at: datetime
    expires_at: datetime
    jti: str


@dataclass
class IssuedToken:
    token: str
    expires_at: datetime
    jti: str


class TokenIssuer:
    def __init__(
        self,
        secret_key: Optional[str],
        db_path: str,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(days=7),
        clock: Clock = utcnow,
    ):
        self.secret_key = secret_key
        self.db_path = db_path
        self.algorithm = algorithm
        self.lifetime = lifetime
        self.clock = clock

    def _require_secret(self) -> str:
        if not self.secret_key:
            raise ConfigurationError("JWT_SECRET environment variable is required to issue tokens")
        return self.secret_key

    def issue(
        self,
        user_id: Optional[int],
        username: Optional[str],
        email: Optional[str],
        is_admin: bool = False,
    ) -> IssuedToken:
        """Sign a token for an account, or for a bare email when ``user_id`` is None"""
        secret = self._require_secret()
        now = self.clock()
        expires_at = now + self.lifetime
        jti = secrets.token_urlsafe(16)

        payload = {
            "sub": str(user_id) if user_id is not None else f"email:{email}",
            "username": username,
            "email": email,
            "admin": is_admin,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
        }
        token = jwt.encode(payload, secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=expires_at, jti=jti)

    def decode(self, token: str) -> Optional[TokenPayload]:
        """Validate signature and expiry; None for any invalid token"""
        if not self.secret_key:
            return None
        try:
            # Expiry is checked against the injected clock below
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp", "jti"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Rejected bearer token: {e}")
            return None

        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        if self.clock() >= expires_at:
            return None

        subject = str(payload["sub"])
        return TokenPayload(
            subject=subject,
            user_id=int(subject) if subject.isdigit() else None,
            username=payload.get("username"),
            email=payload.get("email"),
            is_admin=bool(payload.get("admin")),
            issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
            expires_at=expires_at,
            jti=payload["jti"],
        )

    async def revoke(self, payload: TokenPayload):
        async with connect(self.db_path) as db:
            await db.execute("""
                INSERT OR IGNORE INTO revoked_tokens (jti, user_id, expires_at, revoked_at)
                VALUES (?, ?, ?, ?)
            """, (payload.jti, payload.user_id, to_db(payload.expires_at), to_db(self.clock())))
            await db.commit()
        logger.info(f"Bearer token revoked for {payload.subject}")

    async def is_revoked(self, jti: str) -> bool:
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT expires_at FROM revoked_tokens WHERE jti = ?", (jti,)
            )
            row = await cursor.fetchone()
        return row is not None and from_db(row["expires_at"]) > self.clock()

    async def cleanup_revoked(self) -> int:
        """Forget revocations of tokens that have expired anyway"""
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM revoked_tokens WHERE expires_at <= ?", (to_db(self.clock()),)
            )
            await db.commit()
            return cursor.rowcount
