import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import aiosqlite

from connection_auth.auth.identity import RequestContext
from connection_auth.core.clock import Clock, from_db, to_db, utcnow
from connection_auth.core.errors import PersistenceError
from connection_auth.db.database import connect

logger = logging.getLogger(__name__)


@dataclass
class UserSession:
    """User session data structure"""
    session_id: str
    user_id: int
    username: str
    is_admin: bool
    created_at: datetime
    last_activity: datetime
    expires_at: datetime


def _hash_session_id(session_id: str) -> str:
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


class SessionManager:
    """
    Server-side sessions stored in the ``sessions`` table.

    The client holds the opaque session id in a cookie; only its hash is
    stored. Expiry slides forward on every successful lookup.
    """

    def __init__(self, db_path: str, session_duration: timedelta = timedelta(days=30), clock: Clock = utcnow):
        self.db_path = db_path
        self.session_duration = session_duration
        self.clock = clock

    async def create_session(
        self,
        user_id: int,
        username: str,
        is_admin: bool = False,
        ctx: Optional[RequestContext] = None,
    ) -> UserSession:
        """
        Create and persist a new session.

        Raises:
            PersistenceError: the session row could not be saved
        """
        session_id = secrets.token_urlsafe(32)
        now = self.clock()
        session = UserSession(
            session_id=session_id,
            user_id=user_id,
            username=username,
            is_admin=is_admin,
            created_at=now,
            last_activity=now,
            expires_at=now + self.session_duration,
        )

        try:
            async with connect(self.db_path) as db:
                await db.execute("""
                    INSERT INTO sessions (
                        session_hash, user_id, username, is_admin,
                        created_at, last_activity, expires_at, ip_address, user_agent
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    _hash_session_id(session_id), user_id, username, 1 if is_admin else 0,
                    to_db(now), to_db(now), to_db(session.expires_at),
                    ctx.ip_address if ctx else None, ctx.user_agent if ctx else None,
                ))
                await db.commit()
        except aiosqlite.IntegrityError as e:
            logger.error(f"Failed to save session for user {username}: {e}")
            raise PersistenceError("Session could not be saved") from e

        logger.info(f"Session created for user {username}")
        return session

    async def get_session(self, session_id: str) -> Optional[UserSession]:
        """Get an active session and slide its expiry forward"""
        session_hash = _hash_session_id(session_id)
        now = self.clock()

        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM sessions WHERE session_hash = ?", (session_hash,)
            )
            row = await cursor.fetchone()
            await cursor.close()
            if not row:
                return None

            if now >= from_db(row["expires_at"]):
                await db.execute("DELETE FROM sessions WHERE session_hash = ?", (session_hash,))
                await db.commit()
                return None

            expires_at = now + self.session_duration
            await db.execute("""
                UPDATE sessions SET last_activity = ?, expires_at = ?
                WHERE session_hash = ?
            """, (to_db(now), to_db(expires_at), session_hash))
            await db.commit()

        return UserSession(
            session_id=session_id,
            user_id=row["user_id"],
            username=row["username"],
            is_admin=bool(row["is_admin"]),
            created_at=from_db(row["created_at"]),
            last_activity=now,
            expires_at=expires_at,
        )

    async def end_session(self, session_id: str) -> bool:
        """End a specific session"""
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM sessions WHERE session_hash = ?", (_hash_session_id(session_id),)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def end_user_sessions(self, user_id: int, keep_session_id: Optional[str] = None) -> int:
        """End all sessions for a user, optionally keeping the caller's own"""
        query = "DELETE FROM sessions WHERE user_id = ?"
        params: tuple = (user_id,)
        if keep_session_id:
            query += " AND session_hash != ?"
            params = (user_id, _hash_session_id(keep_session_id))

        async with connect(self.db_path) as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount

    async def cleanup_expired_sessions(self) -> int:
        """Remove expired sessions"""
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM sessions WHERE expires_at <= ?", (to_db(self.clock()),)
            )
            await db.commit()
            return cursor.rowcount

    async def get_active_sessions_count(self) -> int:
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM sessions WHERE expires_at > ?", (to_db(self.clock()),)
            )
            row = await cursor.fetchone()
            return row[0]
